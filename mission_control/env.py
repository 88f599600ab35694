from __future__ import annotations

import logging
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv
from pydantic import AnyHttpUrl, ValidationError

from auth.flow import DEFAULT_SCOPES

from .constants import (
    AUTH_MODE_HEADER,
    AUTH_MODES,
    DEFAULT_CALL_TIMEOUT,
    DEFAULT_MCP_URL,
    DEFAULT_REDIRECT_URI,
    LOGGER,
)


@dataclass
class Settings:
    client_id: str
    client_secret: str | None = None
    redirect_uri: str = DEFAULT_REDIRECT_URI
    scopes: list[str] = field(default_factory=lambda: list(DEFAULT_SCOPES))
    mcp_url: str = DEFAULT_MCP_URL
    mcp_auth_mode: str = AUTH_MODE_HEADER
    mcp_command: str | None = None
    mcp_args: list[str] = field(default_factory=list)
    mcp_token_env: str | None = None
    token_path: str | None = None
    call_timeout: float = DEFAULT_CALL_TIMEOUT


def is_truthy(value: str | None) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_env(key: str, default: str | None = None) -> str | None:
    raw = os.getenv(key, "").strip()
    return raw or default


def _get_env_float(key: str, default: float) -> float:
    raw = os.getenv(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{key} must be a number.")


def load_env() -> None:
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if not env_path.exists():
        return
    load_dotenv(env_path, override=False)


def load_settings() -> Settings:
    scopes = _get_env("HUBSPOT_SCOPES")
    return Settings(
        client_id=_get_env("HUBSPOT_CLIENT_ID", ""),
        client_secret=_get_env("HUBSPOT_CLIENT_SECRET"),
        redirect_uri=_get_env("HUBSPOT_REDIRECT_URI", DEFAULT_REDIRECT_URI),
        scopes=scopes.split() if scopes else list(DEFAULT_SCOPES),
        mcp_url=_get_env("HUBSPOT_MCP_URL", DEFAULT_MCP_URL),
        mcp_auth_mode=_get_env("HUBSPOT_MCP_AUTH_MODE", AUTH_MODE_HEADER).lower(),
        mcp_command=_get_env("HUBSPOT_MCP_COMMAND"),
        mcp_args=shlex.split(_get_env("HUBSPOT_MCP_ARGS", "")),
        mcp_token_env=_get_env("HUBSPOT_MCP_TOKEN_ENV"),
        token_path=_get_env("MISSION_CONTROL_TOKEN_PATH"),
        call_timeout=_get_env_float("MISSION_CONTROL_CALL_TIMEOUT", DEFAULT_CALL_TIMEOUT),
    )


def validate_settings(settings: Settings) -> None:
    if not settings.client_id:
        raise RuntimeError("HUBSPOT_CLIENT_ID is required.")

    try:
        AnyHttpUrl(settings.redirect_uri)
    except ValidationError:
        raise RuntimeError(
            "HUBSPOT_REDIRECT_URI must be a valid HTTP URL (for example: "
            f"{DEFAULT_REDIRECT_URI})."
        )

    if not settings.mcp_command:
        try:
            AnyHttpUrl(settings.mcp_url)
        except ValidationError:
            raise RuntimeError("HUBSPOT_MCP_URL must be a valid HTTP URL.")

    if settings.mcp_auth_mode not in AUTH_MODES:
        raise RuntimeError(
            f"HUBSPOT_MCP_AUTH_MODE must be one of: {', '.join(AUTH_MODES)}."
        )


def setup_logging() -> bool:
    debug_enabled = is_truthy(os.getenv("DEBUG"))
    logging.basicConfig(
        level=logging.DEBUG if debug_enabled else logging.INFO,
        format="%(levelname)s: %(message)s",
    )
    LOGGER.setLevel(logging.DEBUG if debug_enabled else logging.INFO)
    return debug_enabled
