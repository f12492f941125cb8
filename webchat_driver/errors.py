"""
Error taxonomy for the automation engine.

Every error is terminal for the current request; none are retried inside the
engine. Each carries a ``hint`` that user-facing surfaces print instead of a
stack trace.
"""
from __future__ import annotations

from typing import Any, Iterable, Optional


class EngineError(Exception):
    """Base class for all engine errors."""

    default_hint = "Check the logs for details and retry."

    def __init__(self, message: str, *, hint: Optional[str] = None) -> None:
        super().__init__(message)
        self.hint: str = hint or self.default_hint


class Timeout(EngineError):
    """A polling deadline elapsed."""

    default_hint = "The page did not reach the expected state in time; retry or raise the timeout."

    def __init__(
        self,
        message: str,
        *,
        last_state: Any = None,
        hint: Optional[str] = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.last_state = last_state

    def __str__(self) -> str:
        base = super().__str__()
        if self.last_state is None:
            return base
        return f"{base} | last_state={self.last_state!r}"


class SignInTimeout(Timeout):
    default_hint = "Sign in within the opened Chrome window before the deadline, then retry."


class RequiresSignIn(EngineError):
    default_hint = "Sign in to the provider in the controlled Chrome window and retry."


class MissingAuthCookies(EngineError):
    default_hint = (
        "Sign in to the provider in Chrome, pass inline cookies, "
        "or enable manual login so cookies can be captured."
    )

    def __init__(self, provider: str, missing: Iterable[str], *, hint: Optional[str] = None) -> None:
        self.provider = provider
        self.missing = list(missing)
        super().__init__(
            f"{provider} requires auth cookies (missing {', '.join(self.missing)}).",
            hint=hint,
        )


class ProtocolError(EngineError):
    """The DevTools connection failed or a command returned an error."""

    default_hint = "Chrome DevTools connection was lost; close stray Chrome windows and retry."


class UnacknowledgedAttachment(EngineError):
    default_hint = "The page never showed the file as attached; retry, or send without the attachment."


class MissingAttachment(EngineError):
    default_hint = "Check the attachment path exists and is readable, or send without it."

    def __init__(self, path: str, *, hint: Optional[str] = None) -> None:
        self.path = path
        super().__init__(f"Attachment not found or unreadable: {path}", hint=hint)


class UnsupportedControl(EngineError):
    """An expected UI affordance was never found."""

    default_hint = "The provider UI may have changed; check that the page looks normal in Chrome."

    def __init__(self, control: str, message: str, *, hint: Optional[str] = None) -> None:
        super().__init__(message, hint=hint)
        self.control = control


class ExecutionModeUnavailable(EngineError):
    default_hint = "Remove attachments/image options to use browser automation, or configure an HTTP client."

    def __init__(self, reasons: Iterable[str], *, hint: Optional[str] = None) -> None:
        self.reasons = list(reasons)
        super().__init__(
            f"HTTP execution path required ({', '.join(self.reasons)}) but no HTTP client is configured.",
            hint=hint,
        )


class BrowserLaunchError(EngineError):
    default_hint = "Check CHROME_BINARY and that no other Chrome holds the profile directory."


def format_error(exc: BaseException) -> str:
    """Render an error for user-facing output."""
    if isinstance(exc, EngineError):
        return f"{exc}\nHint: {exc.hint}"
    return str(exc)


__all__ = [
    "BrowserLaunchError",
    "EngineError",
    "ExecutionModeUnavailable",
    "MissingAttachment",
    "MissingAuthCookies",
    "ProtocolError",
    "RequiresSignIn",
    "SignInTimeout",
    "Timeout",
    "UnacknowledgedAttachment",
    "UnsupportedControl",
    "format_error",
]
