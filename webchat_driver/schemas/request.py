"""Schemas for a single prompt request routed through the browser engine."""
from __future__ import annotations

from pathlib import Path
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from webchat_driver.schemas.cookies import CookieParam

ProviderName = Literal["chatgpt", "gemini"]


class Attachment(BaseModel):
    path: str = Field(..., description="Local file to attach")

    @property
    def name(self) -> str:
        """Basename the composer shows for the uploaded file."""
        return Path(self.path).name


class BrowserConfig(BaseModel):
    """Resolved configuration handed in by the CLI/config layer."""

    provider: ProviderName = Field(default="chatgpt")
    desired_model: Optional[str] = Field(default=None, description="Model label as typed by the user")
    url: Optional[str] = Field(default=None, description="Override for the provider start URL")

    manual_login: bool = Field(
        default=False,
        description="Capture cookies by signing in inside the controlled Chrome instead of reading the local store",
    )
    inline_cookies: List[CookieParam] = Field(default_factory=list)
    inline_cookies_file: Optional[str] = Field(default=None, description="JSON cookie export to use as inline cookies")
    inline_cookies_source: Optional[str] = Field(default=None, description="Label for logs (env, file, cli)")
    cookie_sync: bool = Field(default=True, description="Read the local Chrome cookie store when needed")
    chrome_profile: Optional[str] = Field(default=None, description="Local Chrome profile name, e.g. 'Default'")
    chrome_cookie_path: Optional[str] = Field(default=None, description="Explicit path to a Chrome Cookies DB")

    chrome_path: Optional[str] = None
    headless: Optional[bool] = None
    profile_dir: Optional[str] = Field(default=None, description="Persistent profile for the controlled Chrome")
    keep_browser: Optional[bool] = Field(
        default=None,
        description="Leave Chrome running after the request; None lets each path pick its default",
    )

    timeout_s: Optional[float] = Field(default=None, gt=0, description="Overall request deadline")
    input_timeout_s: float = Field(default=60.0, gt=0, description="Deadline for the prompt input to appear")
    attachment_timeout_s: float = Field(default=25.0, gt=0)

    show_thoughts: bool = Field(default=False, description="Prepend the reasoning side channel to the markdown")
    generate_image: Optional[str] = Field(default=None, description="Output path for image generation")
    edit_image: Optional[str] = Field(default=None, description="Input image to edit")
    output_path: Optional[str] = None
    aspect_ratio: Optional[str] = None
    youtube: Optional[str] = None


class BrowserRunRequest(BaseModel):
    prompt: str
    attachments: List[Attachment] = Field(default_factory=list)
    config: BrowserConfig = Field(default_factory=BrowserConfig)


class BrowserRunResult(BaseModel):
    answer_text: str
    answer_markdown: str
    took_ms: int
    answer_tokens: int
    answer_chars: int
