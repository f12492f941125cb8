"""FastMCP entry for the chrome-devtools based chat provider tools."""
import os
from typing import List, Optional

from fastmcp import FastMCP
from fastmcp.server.middleware import Middleware, MiddlewareContext

from webchat_driver.config import LOG_DIR, MCP_SERVER_NAME
from webchat_driver.errors import EngineError, format_error
from webchat_driver.schemas.cookies import CookieResolution
from webchat_driver.schemas.request import Attachment, BrowserConfig, BrowserRunRequest
from webchat_driver.services.cookie_service import COOKIE_SPECS, has_required_cookies, resolve_cookies
from webchat_driver.services.execution_mode import GEMINI_3_DEEP_THINK
from webchat_driver.services.executor import run_browser_request
from webchat_driver.utils.cookie_storage import default_cookie_file
from webchat_driver.utils.logger import configure_logging, logger


# =============================================================================
# Parameter Filter Middleware
# =============================================================================

# Arguments each tool accepts; agents often send extra metadata fields.
TOOL_ALLOWED_PARAMS = {
    "ask_provider": {
        "prompt", "provider", "model", "attachments", "show_thoughts",
        "manual_login", "keep_browser", "timeout_s",
    },
    "resolve_provider_cookies": {"provider", "manual_login"},
}


class ParameterFilterMiddleware(Middleware):
    """Drop arguments a tool does not declare before FastMCP validates them."""

    async def on_call_tool(self, context: MiddlewareContext, call_next):
        tool_name = context.message.name
        allowed_params = TOOL_ALLOWED_PARAMS.get(tool_name)

        if context.message.arguments is None:
            context.message.arguments = {}

        if allowed_params is not None:
            original_args = dict(context.message.arguments)
            filtered_args = {
                key: value
                for key, value in original_args.items()
                if key in allowed_params and value is not None
            }
            removed_keys = set(original_args) - set(filtered_args)
            if removed_keys:
                logger.debug("ParameterFilterMiddleware: Tool '{}' - removed params: {}", tool_name, removed_keys)
            context.message.arguments = filtered_args

        return await call_next(context)


# =============================================================================
# Service Initialization
# =============================================================================

mcp = FastMCP(MCP_SERVER_NAME)
mcp.add_middleware(ParameterFilterMiddleware())

configure_logging()
logger.info("Logging initialized at {}", LOG_DIR.resolve())


PROVIDER_ALIASES = {
    "chatgpt": "chatgpt",
    "chat-gpt": "chatgpt",
    "openai": "chatgpt",
    "gpt": "chatgpt",
    "gemini": "gemini",
    "google": "gemini",
    "bard": "gemini",
}


# Used when the caller names no model; the server runs without an HTTP client.
DEFAULT_MODELS = {"gemini": GEMINI_3_DEEP_THINK.id}


def _canonical_provider(value: Optional[str]) -> str:
    normalized = (value or "gemini").strip().lower().replace("_", "-").replace(" ", "-")
    return PROVIDER_ALIASES.get(normalized, normalized)


def _build_config(
    provider: Optional[str],
    *,
    model: Optional[str] = None,
    show_thoughts: bool = False,
    manual_login: bool = False,
    keep_browser: Optional[bool] = None,
    timeout_s: Optional[float] = None,
) -> BrowserConfig:
    canonical = _canonical_provider(provider)
    cookie_file = default_cookie_file(canonical)
    return BrowserConfig(
        provider=canonical,  # type: ignore[arg-type]
        desired_model=model or DEFAULT_MODELS.get(canonical),
        show_thoughts=show_thoughts,
        manual_login=manual_login,
        keep_browser=keep_browser,
        timeout_s=timeout_s,
        inline_cookies_file=str(cookie_file) if cookie_file.exists() else None,
        inline_cookies_source="login_helper" if cookie_file.exists() else None,
    )


def _error_payload(exc: Exception) -> dict:
    hint = exc.hint if isinstance(exc, EngineError) else None
    return {"success": False, "error": str(exc), "hint": hint, "message": format_error(exc)}


async def _ask(
    prompt: str,
    provider: Optional[str],
    model: Optional[str],
    attachments: Optional[List[str]],
    show_thoughts: bool,
    manual_login: bool,
    keep_browser: Optional[bool],
    timeout_s: Optional[float],
) -> dict:
    try:
        config = _build_config(
            provider,
            model=model,
            show_thoughts=show_thoughts,
            manual_login=manual_login,
            keep_browser=keep_browser,
            timeout_s=timeout_s,
        )
        request = BrowserRunRequest(
            prompt=prompt,
            attachments=[Attachment(path=path) for path in attachments or []],
            config=config,
        )
        result = await run_browser_request(request)
    except (EngineError, ValueError) as exc:
        logger.error("ask failed: {}", exc)
        return _error_payload(exc)
    return {"success": True, **result.model_dump()}


# =============================================================================
# MCP Tools
# =============================================================================

@mcp.tool()
async def ask_provider(
    prompt: str,
    provider: str = "gemini",
    model: Optional[str] = None,
    attachments: Optional[List[str]] = None,
    show_thoughts: bool = False,
    manual_login: bool = False,
    keep_browser: Optional[bool] = None,
    timeout_s: Optional[float] = None,
) -> dict:
    """Send a prompt to ChatGPT or Gemini through the controlled Chrome and return the answer."""
    logger.info("ask_provider called provider={} model={}", provider, model)
    return await _ask(prompt, provider, model, attachments, show_thoughts, manual_login, keep_browser, timeout_s)


@mcp.tool()
async def resolve_provider_cookies(provider: str = "gemini", manual_login: bool = False) -> dict:
    """Report which auth cookies are available for a provider (names only, never values)."""
    logger.info("resolve_provider_cookies called provider={}", provider)
    try:
        config = _build_config(provider, manual_login=manual_login)
        spec = COOKIE_SPECS[config.provider]
        resolved = await resolve_cookies(config, spec)
    except (EngineError, ValueError) as exc:
        logger.error("cookie resolution failed: {}", exc)
        return _error_payload(exc)
    resolution = CookieResolution(
        provider=config.provider,
        source=resolved.source,
        cookie_names=sorted(resolved.cookies),
        satisfied=has_required_cookies(resolved.cookies, spec),
    )
    return {"success": True, **resolution.model_dump()}


# =============================================================================
# REST API Layer (FastAPI with MCP mounted)
# =============================================================================

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel


class AskRequest(BaseModel):
    prompt: str
    provider: str = "gemini"
    model: Optional[str] = None
    attachments: List[str] = []
    show_thoughts: bool = False
    manual_login: bool = False
    keep_browser: Optional[bool] = None
    timeout_s: Optional[float] = None


mcp_app = mcp.http_app(path="/mcp")

app = FastAPI(
    title="Webchat Driver MCP Server",
    description="MCP server with REST API for driving chat web apps",
    version="0.1.0",
    lifespan=mcp_app.lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/mcp", mcp_app)


@app.get("/api/health")
async def health_check():
    return {"status": "ok", "service": "Webchat Driver REST API"}


@app.post("/api/ask")
async def rest_ask(request: AskRequest):
    """Same as the ask_provider tool, for plain HTTP callers."""
    logger.info("REST API: ask called provider={} model={}", request.provider, request.model)
    return await _ask(
        request.prompt,
        request.provider,
        request.model,
        request.attachments,
        request.show_thoughts,
        request.manual_login,
        request.keep_browser,
        request.timeout_s,
    )


# =============================================================================
# Main Entry Point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    transport = os.getenv("FASTMCP_TRANSPORT", "stdio")
    host = os.getenv("FASTMCP_HOST", "0.0.0.0")
    port = int(os.getenv("FASTMCP_PORT", "9431"))

    if transport == "stdio":
        mcp.run(transport=transport)
    else:
        logger.info("Starting combined FastAPI + MCP server on port {}", port)
        logger.info("  - GET  http://{}:{}/api/health", host, port)
        logger.info("  - POST http://{}:{}/api/ask", host, port)
        logger.info("  - MCP  http://{}:{}/mcp", host, port)
        uvicorn.run(app, host=host, port=port, log_level="info")
