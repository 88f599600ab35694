from __future__ import annotations

import asyncio
import logging
import sys
import urllib.parse
import webbrowser
from typing import Callable

import httpx

from auth import oauth2
from auth.callback import DEFAULT_CALLBACK_PATH, CallbackListener
from auth.errors import (
    AuthDenied,
    LoginCanceled,
    LoginError,
    LoginTimedOut,
    NotAuthenticated,
    StateMismatch,
    TokenRefreshFailed,
)
from auth.models import AuthSession, LoginState
from auth.token_store import Token, TokenStore

LOGGER = logging.getLogger("mission_control.auth")

LOGIN_TIMEOUT_SECONDS = 300.0
DEFAULT_CALLBACK_PORT = 8400
DEFAULT_SCOPES = [
    "crm.objects.contacts.read",
    "crm.objects.contacts.write",
    "crm.objects.companies.read",
    "crm.objects.companies.write",
    "crm.objects.deals.read",
    "crm.objects.deals.write",
]


def _eprint(*args, **kwargs) -> None:
    print(*args, file=sys.stderr, **kwargs)


class OAuthFlow:
    """Authorization Code + PKCE login against the HubSpot authorization server.

    ``login`` walks IDLE -> AWAITING_CALLBACK -> EXCHANGING -> COMPLETE, or
    ends in one of DENIED, STATE_MISMATCH, TIMED_OUT, CANCELED or FAILED.
    The callback listener is closed on every path out of the callback wait.
    """

    def __init__(
        self,
        *,
        client_id: str,
        token_store: TokenStore,
        redirect_uri: str,
        client_secret: str | None = None,
        scopes: list[str] | None = None,
        authorize_url: str = oauth2.HUBSPOT_AUTHORIZE_URL,
        token_url: str = oauth2.HUBSPOT_TOKEN_URL,
        login_timeout: float = LOGIN_TIMEOUT_SECONDS,
        http_client: httpx.AsyncClient | None = None,
        open_browser: Callable[[str], bool] = webbrowser.open,
        display: Callable[..., None] = _eprint,
        listener_factory=CallbackListener,
        exchange_code_fn=oauth2.exchange_code,
        refresh_token_fn=oauth2.refresh_token,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes or list(DEFAULT_SCOPES)
        self.authorize_url = authorize_url
        self.token_url = token_url
        self.login_timeout = login_timeout
        self.state = LoginState.IDLE

        self._token_store = token_store
        self._http_client = http_client
        self._open_browser = open_browser
        self._display = display
        self._listener_factory = listener_factory
        self._exchange_code_fn = exchange_code_fn
        self._refresh_token_fn = refresh_token_fn

    def authorization_url(self, session: AuthSession) -> str:
        return oauth2.build_authorization_url(
            client_id=self.client_id,
            redirect_uri=self.redirect_uri,
            scopes=self.scopes,
            state=session.state,
            code_challenge=session.challenge,
            authorize_url=self.authorize_url,
        )

    def callback_address(self) -> tuple[str, int, str]:
        parsed = urllib.parse.urlparse(self.redirect_uri)
        host = parsed.hostname or "127.0.0.1"
        if host == "localhost":
            host = "127.0.0.1"
        return host, parsed.port or DEFAULT_CALLBACK_PORT, parsed.path or DEFAULT_CALLBACK_PATH

    # -- login -----------------------------------------------------------------

    async def login(self, cancel_event: asyncio.Event | None = None) -> Token:
        session = AuthSession.new(self.login_timeout)
        auth_url = self.authorization_url(session)

        host, port, path = self.callback_address()
        listener = self._listener_factory(
            expected_state=session.state,
            host=host,
            port=port,
            path=path,
        )
        await listener.start()
        self.state = LoginState.AWAITING_CALLBACK

        try:
            self._surface_url(auth_url)
            code = await self._wait_for_code(listener, session, cancel_event)
        except asyncio.CancelledError:
            self.state = LoginState.CANCELED
            raise
        finally:
            await listener.close()

        LOGGER.info("Authorization code received")
        self.state = LoginState.EXCHANGING
        try:
            response = await self._exchange_code_fn(
                client_id=self.client_id,
                client_secret=self.client_secret,
                code=code,
                redirect_uri=self.redirect_uri,
                code_verifier=session.verifier,
                token_url=self.token_url,
                client=self._http_client,
            )
            token = Token.from_token_response(response)
            await self._token_store.save(token)
        except asyncio.CancelledError:
            self.state = LoginState.CANCELED
            raise
        except Exception:
            self.state = LoginState.FAILED
            raise

        self.state = LoginState.COMPLETE
        LOGGER.info("Authentication successful")
        return token

    def _surface_url(self, auth_url: str) -> None:
        LOGGER.info("Opening browser for authorization...")
        self._display(f"Please visit: {auth_url}")
        try:
            opened = self._open_browser(auth_url)
        except Exception as error:
            LOGGER.warning("Failed to open browser automatically: %s", error)
            opened = False
        if not opened:
            self._display("Please open the URL manually in your browser.")

    async def _wait_for_code(
        self,
        listener: CallbackListener,
        session: AuthSession,
        cancel_event: asyncio.Event | None,
    ) -> str:
        code_task = asyncio.ensure_future(listener.wait_for_code())
        waiters = {code_task}
        cancel_task = None
        if cancel_event is not None:
            cancel_task = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=session.remaining(),
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()

        if code_task in done:
            try:
                return code_task.result()
            except AuthDenied:
                self.state = LoginState.DENIED
                raise
            except StateMismatch:
                self.state = LoginState.STATE_MISMATCH
                raise
            except LoginError:
                self.state = LoginState.FAILED
                raise
        if cancel_task is not None and cancel_task in done:
            self.state = LoginState.CANCELED
            raise LoginCanceled()

        self.state = LoginState.TIMED_OUT
        raise LoginTimedOut(self.login_timeout)

    # -- token lifecycle ---------------------------------------------------------

    async def refresh_token(self) -> Token:
        token = await self._token_store.load()
        if token is None:
            raise NotAuthenticated()
        if not token.refresh_token:
            raise TokenRefreshFailed(None, "No refresh token available.")

        response = await self._refresh_token_fn(
            client_id=self.client_id,
            client_secret=self.client_secret,
            refresh_token=token.refresh_token,
            token_url=self.token_url,
            client=self._http_client,
        )

        token.access_token = response.access_token
        if response.refresh_token:
            token.refresh_token = response.refresh_token
        token.expires_at = response.expires_at
        await self._token_store.save(token)

        LOGGER.info("Token refreshed successfully")
        return token

    async def logout(self) -> None:
        await self._token_store.delete()
        self.state = LoginState.IDLE
        LOGGER.info("Stored token deleted")
