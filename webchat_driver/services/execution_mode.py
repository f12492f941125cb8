"""Pick between browser DOM automation and the HTTP path for a request."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Literal, Optional, Sequence

from webchat_driver.schemas.request import ProviderName
from webchat_driver.utils.logger import BrowserLogger, make_log

ExecutionMode = Literal["dom", "http"]


@dataclass(frozen=True)
class ModelVariant:
    id: str
    provider: ProviderName
    dom_capable: bool
    dom_uploads: bool = False


@dataclass(frozen=True)
class ExecutionModeSelection:
    mode: ExecutionMode
    reasons: List[str]


GEMINI_3_PRO = ModelVariant("gemini-3-pro", "gemini", dom_capable=False)
GEMINI_3_DEEP_THINK = ModelVariant("gemini-3-pro-deep-think", "gemini", dom_capable=True)
GEMINI_25_PRO = ModelVariant("gemini-2.5-pro", "gemini", dom_capable=False)
GEMINI_25_FLASH = ModelVariant("gemini-2.5-flash", "gemini", dom_capable=False)

DEFAULT_GEMINI_MODEL = GEMINI_3_PRO
DEFAULT_CHATGPT_MODEL = "chatgpt"

_GEMINI_ALIASES: Dict[str, ModelVariant] = {
    "gemini-3-pro": GEMINI_3_PRO,
    "gemini-3.0-pro": GEMINI_3_PRO,
    "gemini-3-deep-think": GEMINI_3_DEEP_THINK,
    "gemini-3-pro-deep-think": GEMINI_3_DEEP_THINK,
    "gemini-3-pro-deepthink": GEMINI_3_DEEP_THINK,
    "gemini-2.5-pro": GEMINI_25_PRO,
    "gemini-2.5-flash": GEMINI_25_FLASH,
}


def normalize_model_name(desired: Optional[str]) -> str:
    return re.sub(r"[_\s]+", "-", (desired or "").strip().lower())


def resolve_model(
    desired: Optional[str],
    provider: ProviderName = "gemini",
    log: Optional[BrowserLogger] = None,
) -> ModelVariant:
    """
    Map a user-typed model label onto a known variant.

    ChatGPT always runs in the browser and uploads files through the composer,
    so every ChatGPT label resolves to a DOM variant carrying that label.
    Unknown Gemini labels fall back to ``gemini-3-pro``.
    """
    normalized = normalize_model_name(desired)
    if provider == "chatgpt":
        return ModelVariant(normalized or DEFAULT_CHATGPT_MODEL, "chatgpt", dom_capable=True, dom_uploads=True)

    if not normalized:
        return DEFAULT_GEMINI_MODEL
    variant = _GEMINI_ALIASES.get(normalized)
    if variant is not None:
        return variant
    if "gemini" in normalized:
        make_log(log)(
            f'[gemini-web] Unsupported Gemini web model "{desired}". Falling back to {DEFAULT_GEMINI_MODEL.id}.'
        )
    return DEFAULT_GEMINI_MODEL


def select_execution_mode(
    model: ModelVariant,
    attachments: Sequence[object] = (),
    generate_image: Optional[str] = None,
    edit_image: Optional[str] = None,
) -> ExecutionModeSelection:
    if not model.dom_capable:
        return ExecutionModeSelection(mode="http", reasons=["model"])

    reasons: List[str] = []
    if attachments and not model.dom_uploads:
        reasons.append("attachments")
    if generate_image:
        reasons.append("image-generation")
    if edit_image:
        reasons.append("image-edit")

    if reasons:
        return ExecutionModeSelection(mode="http", reasons=reasons)
    return ExecutionModeSelection(mode="dom", reasons=[])


__all__ = [
    "ExecutionModeSelection",
    "ModelVariant",
    "normalize_model_name",
    "resolve_model",
    "select_execution_mode",
]
