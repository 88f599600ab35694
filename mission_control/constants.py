from __future__ import annotations

import logging

LOGGER = logging.getLogger("mission_control")
APP_NAME = "mission-control"
APP_VERSION = "0.1.0"

MCP_PROTOCOL_VERSION = "2024-11-05"
DEFAULT_MCP_URL = "http://127.0.0.1:3333"
DEFAULT_REDIRECT_URI = "http://127.0.0.1:8400/oauth/callback"
DEFAULT_CALL_TIMEOUT = 30.0
TOKEN_REFRESH_WINDOW_SECONDS = 300.0

AUTH_MODE_HEADER = "header"
AUTH_MODE_CONTEXT = "context"
AUTH_MODES = (AUTH_MODE_HEADER, AUTH_MODE_CONTEXT)
