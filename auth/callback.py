from __future__ import annotations

import asyncio
import logging
import secrets
import socket

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, PlainTextResponse, Response
from starlette.routing import Route

from auth.errors import AuthDenied, MissingAuthorizationCode, StateMismatch

LOGGER = logging.getLogger("mission_control.auth")

DEFAULT_CALLBACK_PATH = "/oauth/callback"

CALLBACK_SUCCESS_HTML = """<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="utf-8" />
    <title>Authorization successful</title>
  </head>
  <body>
    <div style="max-width: 640px; margin: 80px auto; font-family: system-ui, sans-serif;">
      <h1>Authorization successful</h1>
      <p>You can close this window and return to the terminal.</p>
    </div>
  </body>
</html>
"""


class CallbackListener:
    """Single-use HTTP endpoint that captures the OAuth authorization redirect.

    The first request on ``path`` decides the outcome: a code when the state
    matches, otherwise the login error. Every later request gets a 400.
    Must be created inside a running event loop.
    """

    def __init__(
        self,
        *,
        expected_state: str,
        host: str = "127.0.0.1",
        port: int = 8400,
        path: str = DEFAULT_CALLBACK_PATH,
    ) -> None:
        self.host = host
        self.path = path or "/"
        self._requested_port = port
        self._expected_state = expected_state
        self._outcome: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        self._socket: socket.socket | None = None
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task | None = None
        self._closed = False
        self.app = Starlette(routes=[Route(self.path, self._handle_callback, methods=["GET"])])

    @property
    def port(self) -> int:
        if self._socket is None:
            return self._requested_port
        return self._socket.getsockname()[1]

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def resolved(self) -> bool:
        return self._outcome.done()

    async def start(self) -> None:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self._requested_port))
        except OSError:
            sock.close()
            raise
        self._socket = sock

        config = uvicorn.Config(
            self.app,
            log_level="warning",
            access_log=False,
            lifespan="off",
            timeout_graceful_shutdown=2,
        )
        self._server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self._server.serve(sockets=[sock]))

        while not self._server.started:
            if self._serve_task.done():
                await self.close()
                raise OSError(f"Callback listener failed to start on {self.host}:{self.port}")
            await asyncio.sleep(0.01)

        LOGGER.debug("Callback listener started on http://%s:%s%s", self.host, self.port, self.path)

    async def wait_for_code(self) -> str:
        return await asyncio.shield(self._outcome)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        if self._server is not None:
            self._server.should_exit = True
        if self._serve_task is not None:
            await asyncio.gather(self._serve_task, return_exceptions=True)
        if self._socket is not None:
            self._socket.close()
        if not self._outcome.done():
            self._outcome.cancel()
        LOGGER.debug("Callback listener on port %s closed", self.port)

    def _resolve(self, *, code: str | None = None, error: Exception | None = None) -> None:
        if error is not None:
            self._outcome.set_exception(error)
            # Surfaced to the waiter; mark retrieved so an abandoned outcome stays quiet.
            self._outcome.exception()
        else:
            self._outcome.set_result(code)

    async def _handle_callback(self, request: Request) -> Response:
        if self._outcome.done():
            return PlainTextResponse("Authorization already handled.", status_code=400)

        params = request.query_params
        error = params.get("error")
        if error:
            LOGGER.warning("Authorization denied: %s", error)
            self._resolve(error=AuthDenied(error, params.get("error_description")))
            return PlainTextResponse(f"Authorization failed: {error}", status_code=400)

        state = params.get("state") or ""
        if not secrets.compare_digest(state.encode(), self._expected_state.encode()):
            LOGGER.warning("Rejected authorization callback with mismatched state")
            self._resolve(error=StateMismatch())
            return PlainTextResponse("Invalid state parameter", status_code=400)

        code = params.get("code")
        if not code:
            self._resolve(error=MissingAuthorizationCode())
            return PlainTextResponse("No authorization code received", status_code=400)

        self._resolve(code=code)
        return HTMLResponse(CALLBACK_SUCCESS_HTML)
