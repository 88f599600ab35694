from __future__ import annotations

import asyncio
import os
import sys
from abc import ABC, abstractmethod
from typing import AsyncIterator, Mapping, Sequence

import httpx

from .constants import AUTH_MODE_HEADER, DEFAULT_CALL_TIMEOUT, LOGGER
from .errors import ServiceRejected, TransportClosed

STDIO_LINE_LIMIT = 16 * 1024 * 1024
PROCESS_EXIT_TIMEOUT = 5.0


class Transport(ABC):
    """Duplex link to an MCP server carrying newline-delimited JSON frames."""

    _token: str | None = None

    async def start(self) -> None:
        return None

    def set_token(self, token: str | None) -> None:
        self._token = token

    @abstractmethod
    async def send(self, message: bytes) -> None:
        raise NotImplementedError

    @abstractmethod
    def receive(self) -> AsyncIterator[bytes]:
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        raise NotImplementedError


class SubprocessTransport(Transport):
    def __init__(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        env: Mapping[str, str] | None = None,
        token_env: str | None = None,
        stderr_prefix: str = "[MCP Server]",
    ) -> None:
        self.command = command
        self.args = list(args)
        self._env = dict(env or {})
        self._token_env = token_env
        self._stderr_prefix = stderr_prefix
        self._process: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task | None = None
        self._closed = False

    @property
    def returncode(self) -> int | None:
        if self._process is None:
            return None
        return self._process.returncode

    def set_token(self, token: str | None) -> None:
        super().set_token(token)
        if self._process is not None:
            LOGGER.debug("MCP server already running; new token applies on next launch")

    async def start(self) -> None:
        if self._process is not None:
            return

        env = {**os.environ, **self._env}
        if self._token_env and self._token:
            env[self._token_env] = self._token

        try:
            self._process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                limit=STDIO_LINE_LIMIT,
            )
        except OSError as error:
            raise TransportClosed(f"failed to start {self.command!r}: {error}") from error

        LOGGER.debug("Started MCP server %s (pid %s)", self.command, self._process.pid)
        self._stderr_task = asyncio.create_task(self._forward_stderr())

    async def send(self, message: bytes) -> None:
        if self._process is None or self._closed or self._process.stdin is None:
            raise TransportClosed("MCP server process is not running")

        try:
            self._process.stdin.write(message + b"\n")
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as error:
            raise TransportClosed(f"failed to write request: {error}") from error

    async def receive(self) -> AsyncIterator[bytes]:
        if self._process is None or self._process.stdout is None:
            return
        async for line in self._process.stdout:
            line = line.strip()
            if line:
                yield line

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._process is None:
            return

        if self._process.stdin is not None:
            self._process.stdin.close()
            try:
                await self._process.stdin.wait_closed()
            except (BrokenPipeError, ConnectionResetError):
                pass

        try:
            returncode = await asyncio.wait_for(self._process.wait(), PROCESS_EXIT_TIMEOUT)
        except asyncio.TimeoutError:
            LOGGER.warning("MCP server did not exit after %ss; killing it", PROCESS_EXIT_TIMEOUT)
            self._process.kill()
            returncode = await self._process.wait()

        if returncode:
            LOGGER.warning("MCP server exited with status %s", returncode)
        if self._stderr_task is not None:
            await asyncio.gather(self._stderr_task, return_exceptions=True)

    async def _forward_stderr(self) -> None:
        if self._process is None or self._process.stderr is None:
            return
        async for line in self._process.stderr:
            text = line.decode("utf-8", errors="replace").rstrip("\r\n")
            print(f"{self._stderr_prefix} {text}", file=sys.stderr, flush=True)


class HTTPTransport(Transport):
    """One POST per message; the response body becomes the inbound frame."""

    def __init__(
        self,
        url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_CALL_TIMEOUT,
        auth_mode: str = AUTH_MODE_HEADER,
    ) -> None:
        self.url = url
        self.auth_mode = auth_mode
        self._own_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            event_hooks={"request": [_log_request], "response": [_log_response]},
        )
        self._frames: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._session_id: str | None = None
        self._closed = False

    async def send(self, message: bytes) -> None:
        if self._closed:
            raise TransportClosed("HTTP transport is closed")

        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
        }
        if self._token and self.auth_mode == AUTH_MODE_HEADER:
            headers["Authorization"] = f"Bearer {self._token}"
        if self._session_id:
            headers["Mcp-Session-Id"] = self._session_id

        try:
            response = await self._client.post(self.url, content=message, headers=headers)
        except httpx.TransportError as error:
            raise TransportClosed(f"{self.url}: {error}") from error

        if not response.is_success:
            raise ServiceRejected(response.status_code, response.text)

        session_id = response.headers.get("mcp-session-id")
        if session_id:
            self._session_id = session_id

        for frame in _response_frames(response):
            self._frames.put_nowait(frame)

    async def receive(self) -> AsyncIterator[bytes]:
        while True:
            frame = await self._frames.get()
            if frame is None:
                return
            yield frame

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._frames.put_nowait(None)
        if self._own_client:
            await self._client.aclose()


def _response_frames(response: httpx.Response) -> list[bytes]:
    content_type = response.headers.get("content-type", "")
    if content_type.startswith("text/event-stream"):
        frames = []
        data_lines: list[str] = []
        # A blank line ends an event; its data: lines join with newlines.
        for line in response.text.splitlines() + [""]:
            if line.startswith("data:"):
                data = line[len("data:"):]
                data_lines.append(data[1:] if data.startswith(" ") else data)
            elif not line and data_lines:
                event = "\n".join(data_lines).strip()
                if event:
                    frames.append(event.encode("utf-8"))
                data_lines = []
        return frames

    body = response.content.strip()
    return [body] if body else []


async def _log_request(request: httpx.Request) -> None:
    LOGGER.debug("MCP request %s %s", request.method, request.url)


async def _log_response(response: httpx.Response) -> None:
    LOGGER.debug(
        "MCP response %s %s -> %s",
        response.request.method,
        response.request.url,
        response.status_code,
    )
    if response.status_code >= 400:
        body = await response.aread()
        text = body.decode("utf-8", errors="replace")
        if len(text) > 1000:
            text = text[:1000] + "...<truncated>"
        LOGGER.warning("MCP error body: %s", text)
