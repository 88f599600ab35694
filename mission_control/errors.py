from __future__ import annotations

from typing import Any


class MCPError(RuntimeError):
    pass


class TransportClosed(MCPError):
    def __init__(self, reason: str = "connection closed") -> None:
        super().__init__(f"MCP server is unreachable: {reason}")
        self.reason = reason


class ServiceRejected(MCPError):
    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"MCP server rejected the request with status {status_code}: {body}")
        self.status_code = status_code
        self.body = body


class ProtocolError(MCPError):
    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(f"MCP server rejected the call (error {code}): {message}")
        self.code = code
        self.message = message
        self.data = data


class CallTimeout(MCPError, TimeoutError):
    def __init__(self, method: str, timeout: float) -> None:
        super().__init__(f"MCP call {method!r} timed out after {timeout:g} seconds.")
        self.method = method
        self.timeout = timeout
