from __future__ import annotations

import base64
import hashlib
import secrets
import time
import urllib.parse
from dataclasses import dataclass

import httpx

from auth.errors import TokenExchangeFailed, TokenRefreshFailed, TokenRequestError

HUBSPOT_AUTHORIZE_URL = "https://app.hubspot.com/oauth/authorize"
HUBSPOT_TOKEN_URL = "https://api.hubapi.com/oauth/v1/token"


@dataclass
class TokenResponse:
    access_token: str
    refresh_token: str | None
    expires_in: int
    expires_at: float
    token_type: str = "bearer"

    def is_expired(self) -> bool:
        return time.time() >= self.expires_at

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenResponse":
        if not isinstance(payload, dict):
            raise ValueError("Token response must be a JSON object.")
        access_token = payload.get("access_token")
        refresh_token = payload.get("refresh_token")
        expires_in = payload.get("expires_in")
        token_type = payload.get("token_type", "bearer")

        if not isinstance(access_token, str) or not access_token:
            raise ValueError("Token response missing access_token.")
        if refresh_token is not None and not isinstance(refresh_token, str):
            raise ValueError("Token response refresh_token must be a string.")
        if isinstance(expires_in, bool) or not isinstance(expires_in, int):
            raise ValueError("Token response missing expires_in.")

        return cls(
            access_token=access_token,
            refresh_token=refresh_token or None,
            expires_in=expires_in,
            expires_at=time.time() + expires_in,
            token_type=token_type if isinstance(token_type, str) else "bearer",
        )


def generate_code_verifier() -> str:
    while True:
        verifier = secrets.token_urlsafe(64)
        if 43 <= len(verifier) <= 128:
            return verifier


def generate_code_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).decode("utf-8").rstrip("=")


def generate_state() -> str:
    return secrets.token_urlsafe(32)


def build_authorization_url(
    client_id: str,
    redirect_uri: str,
    scopes: list[str],
    state: str,
    code_challenge: str,
    *,
    authorize_url: str = HUBSPOT_AUTHORIZE_URL,
) -> str:
    query = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
        "state": state,
        "scope": " ".join(scopes),
    }
    return f"{authorize_url}?{urllib.parse.urlencode(query)}"


async def _token_request(
    payload: dict[str, str],
    *,
    token_url: str,
    error_cls: type[TokenRequestError],
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    own_client = client is None
    http_client = client or httpx.AsyncClient(timeout=30.0)

    try:
        response = await http_client.post(token_url, data=payload)
        response.raise_for_status()
    except httpx.HTTPStatusError as error:
        raise error_cls(error.response.status_code, error.response.text) from error
    except httpx.HTTPError as error:
        raise error_cls(None, str(error) or type(error).__name__) from error
    finally:
        if own_client:
            await http_client.aclose()

    try:
        return TokenResponse.from_payload(response.json())
    except ValueError as error:
        raise error_cls(response.status_code, f"{error} Body: {response.text}") from error


def _client_payload(client_id: str, client_secret: str | None) -> dict[str, str]:
    payload = {"client_id": client_id}
    if client_secret:
        payload["client_secret"] = client_secret
    return payload


async def exchange_code(
    client_id: str,
    client_secret: str | None,
    code: str,
    redirect_uri: str,
    code_verifier: str,
    *,
    token_url: str = HUBSPOT_TOKEN_URL,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    return await _token_request(
        {
            "grant_type": "authorization_code",
            **_client_payload(client_id, client_secret),
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
        },
        token_url=token_url,
        error_cls=TokenExchangeFailed,
        client=client,
    )


async def refresh_token(
    client_id: str,
    client_secret: str | None,
    refresh_token: str,
    *,
    token_url: str = HUBSPOT_TOKEN_URL,
    client: httpx.AsyncClient | None = None,
) -> TokenResponse:
    return await _token_request(
        {
            "grant_type": "refresh_token",
            **_client_payload(client_id, client_secret),
            "refresh_token": refresh_token,
        },
        token_url=token_url,
        error_cls=TokenRefreshFailed,
        client=client,
    )
