from __future__ import annotations

import asyncio
import threading
import uuid
from typing import Any, Callable

from .constants import DEFAULT_CALL_TIMEOUT, LOGGER
from .errors import CallTimeout, ProtocolError, TransportClosed
from .jsonrpc import JSONRPCResponse, build_notification, build_request, parse_response
from .transport import Transport

_UNSET: Any = object()


class PendingCalls:
    """Lock-guarded registry of in-flight calls, keyed by request id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._calls: dict[str, asyncio.Future[JSONRPCResponse]] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._calls)

    def __contains__(self, call_id: str) -> bool:
        with self._lock:
            return call_id in self._calls

    def register(self, call_id: str) -> asyncio.Future[JSONRPCResponse]:
        future = asyncio.get_running_loop().create_future()
        with self._lock:
            if call_id in self._calls:
                raise ValueError(f"request id {call_id!r} is already pending")
            self._calls[call_id] = future
        return future

    def pop(self, call_id: str) -> asyncio.Future[JSONRPCResponse] | None:
        with self._lock:
            return self._calls.pop(call_id, None)

    def drain(self) -> list[asyncio.Future[JSONRPCResponse]]:
        with self._lock:
            futures = list(self._calls.values())
            self._calls.clear()
        return futures


def _new_request_id() -> str:
    return str(uuid.uuid4())


class RequestCorrelator:
    """Turns a multiplexed JSON-RPC transport into awaitable per-call results.

    Each call registers a future under a fresh id before sending; a single
    reader task resolves futures as responses arrive, in any order. When the
    transport ends, every call still waiting fails with ``TransportClosed``.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        pending: PendingCalls | None = None,
        id_factory: Callable[[], str] = _new_request_id,
        default_timeout: float | None = DEFAULT_CALL_TIMEOUT,
    ) -> None:
        self.transport = transport
        self.pending = pending if pending is not None else PendingCalls()
        self.default_timeout = default_timeout
        self._id_factory = id_factory
        self._reader_task: asyncio.Task | None = None
        self._closed = False
        self._eof = False
        self._close_reason = "client is closed"

    @property
    def closed(self) -> bool:
        return self._closed or self._eof

    async def start(self) -> None:
        if self._reader_task is not None:
            return
        await self.transport.start()
        self._reader_task = asyncio.create_task(self._read_loop())

    async def call(self, method: str, params: Any = None, *, timeout: float | None = _UNSET) -> Any:
        if self.closed:
            raise TransportClosed(self._close_reason)
        if timeout is _UNSET:
            timeout = self.default_timeout

        call_id = self._id_factory()
        future = self.pending.register(call_id)

        async def send_and_wait() -> JSONRPCResponse:
            await self.transport.send(build_request(call_id, method, params))
            LOGGER.debug("MCP call %s sent (id=%s)", method, call_id)
            return await future

        # One deadline covers the send too; the HTTP transport answers inside send().
        try:
            response = await asyncio.wait_for(send_and_wait(), timeout)
        except asyncio.TimeoutError:
            raise CallTimeout(method, timeout) from None
        finally:
            self.pending.pop(call_id)

        if response.error is not None:
            raise ProtocolError(response.error.code, response.error.message, response.error.data)
        return response.result

    async def notify(self, method: str, params: Any = None) -> None:
        if self.closed:
            raise TransportClosed(self._close_reason)
        await self.transport.send(build_notification(method, params))

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.transport.close()
        finally:
            if self._reader_task is not None:
                self._reader_task.cancel()
                await asyncio.gather(self._reader_task, return_exceptions=True)
            self._fail_pending(self._close_reason)

    async def __aenter__(self) -> "RequestCorrelator":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _read_loop(self) -> None:
        reason = "connection closed by MCP server"
        try:
            async for frame in self.transport.receive():
                self._dispatch(frame)
        except Exception as error:
            LOGGER.error("MCP transport reader failed: %s", error)
            reason = f"transport failed: {error}"
        finally:
            self._eof = True
            if not self._closed:
                self._close_reason = reason
            self._fail_pending(self._close_reason)

    def _dispatch(self, frame: bytes) -> None:
        try:
            response = parse_response(frame)
        except ValueError as error:
            LOGGER.warning("Failed to parse MCP response: %s", error)
            return

        if response is None:
            LOGGER.debug("Ignoring MCP message without a response id: %s", frame[:200])
            return

        future = self.pending.pop(response.id)
        if future is None:
            LOGGER.debug("Dropping MCP response with unknown id %s", response.id)
            return
        if not future.done():
            future.set_result(response)

    def _fail_pending(self, reason: str) -> None:
        for future in self.pending.drain():
            if not future.done():
                future.set_exception(TransportClosed(reason))
