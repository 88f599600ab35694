from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

from auth.errors import NotAuthenticated
from auth.flow import OAuthFlow
from auth.token_store import Token, TokenStore

from .constants import (
    APP_NAME,
    APP_VERSION,
    DEFAULT_CALL_TIMEOUT,
    LOGGER,
    MCP_PROTOCOL_VERSION,
    TOKEN_REFRESH_WINDOW_SECONDS,
)
from .correlator import RequestCorrelator
from .transport import Transport


@dataclass
class Tool:
    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict) -> "Tool":
        return cls(
            name=payload["name"],
            description=payload.get("description") or "",
            input_schema=payload.get("inputSchema") or {},
        )


@dataclass
class AuthStatus:
    authenticated: bool
    message: str
    expires_at: float | None = None
    is_expired: bool = False


class Agent:
    """MCP client that checks the stored HubSpot token before every call."""

    def __init__(
        self,
        *,
        transport: Transport,
        token_store: TokenStore,
        oauth_flow: OAuthFlow,
        call_timeout: float | None = DEFAULT_CALL_TIMEOUT,
        refresh_window: float = TOKEN_REFRESH_WINDOW_SECONDS,
        correlator: RequestCorrelator | None = None,
    ) -> None:
        self.transport = transport
        self.refresh_window = refresh_window
        self._token_store = token_store
        self._oauth_flow = oauth_flow
        self._correlator = correlator or RequestCorrelator(transport, default_timeout=call_timeout)
        self._refresh_lock = asyncio.Lock()
        self._started = False
        self.server_info: dict[str, Any] = {}

    async def ensure_valid(self) -> Token:
        async with self._refresh_lock:
            token = await self._token_store.load()
            if token is None:
                raise NotAuthenticated()

            if token.is_expired() or token.is_expiring_soon(self.refresh_window):
                LOGGER.info("Token expired or expiring soon, refreshing...")
                await self._oauth_flow.refresh_token()
                token = await self._token_store.load()
                if token is None:
                    raise NotAuthenticated()

        self.transport.set_token(token.access_token)
        return token

    async def start(self) -> None:
        if self._started:
            return
        await self.ensure_valid()
        await self._correlator.start()
        await self._initialize()
        self._started = True

    async def _initialize(self) -> None:
        result = await self._correlator.call(
            "initialize",
            {
                "protocolVersion": MCP_PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": APP_NAME, "version": APP_VERSION},
            },
        )
        self.server_info = result.get("serverInfo", {}) if isinstance(result, dict) else {}
        await self._correlator.notify("notifications/initialized")
        LOGGER.debug("MCP session initialized: %s", self.server_info)

    async def list_tools(self) -> list[Tool]:
        await self.start()
        tools: list[Tool] = []
        cursor = None
        while True:
            await self.ensure_valid()
            params = {"cursor": cursor} if cursor else {}
            result = await self._correlator.call("tools/list", params)
            tools.extend(Tool.from_payload(item) for item in result.get("tools", []))
            cursor = result.get("nextCursor")
            if not cursor:
                return tools

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> Any:
        await self.start()
        await self.ensure_valid()
        return await self._correlator.call(
            "tools/call",
            {"name": name, "arguments": arguments or {}},
        )

    async def auth_status(self) -> AuthStatus:
        token = await self._token_store.load()
        if token is None:
            return AuthStatus(authenticated=False, message="Not authenticated")

        if token.is_expired():
            message = "Token expired - will be refreshed on next use"
        elif token.is_expiring_soon(self.refresh_window):
            message = "Token expiring soon - will be refreshed on next use"
        else:
            message = "Authenticated"
        return AuthStatus(
            authenticated=True,
            message=message,
            expires_at=token.expires_at,
            is_expired=token.is_expired(),
        )

    async def close(self) -> None:
        await self._correlator.close()

    async def __aenter__(self) -> "Agent":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
