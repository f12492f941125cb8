"""Pydantic models for cookies exchanged with Chrome."""
from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class CookieParam(BaseModel):
    """Cookie in the shape of CDP ``Network.CookieParam``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    value: str
    domain: Optional[str] = None
    path: Optional[str] = "/"
    url: Optional[str] = None
    secure: Optional[bool] = None
    http_only: Optional[bool] = Field(default=None, alias="httpOnly")
    same_site: Optional[str] = Field(default=None, alias="sameSite")
    expires: Optional[float] = None

    def to_cdp(self) -> Optional[Dict[str, Any]]:
        """Return the ``Network.setCookies`` payload, or None if the cookie has no scope."""
        if not self.domain and not self.url:
            return None
        return self.model_dump(by_alias=True, exclude_none=True)


class CookieResolution(BaseModel):
    provider: str
    source: str = Field(..., description="inline / manual / native / none")
    cookie_names: list[str] = Field(default_factory=list)
    satisfied: bool
