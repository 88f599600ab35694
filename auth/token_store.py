from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from pathlib import Path

import keyring
import keyring.errors

from auth.errors import StorageError
from auth.oauth2 import TokenResponse

LOGGER = logging.getLogger("mission_control.auth")

KEYRING_SERVICE = "mission-control"
KEYRING_TOKEN_KEY = "hubspot-token"
DEFAULT_TOKEN_PATH = Path.home() / ".config" / "mission-control" / "token.json"


@dataclass
class Token:
    access_token: str
    refresh_token: str
    expires_at: float

    def is_expired(self, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current >= self.expires_at

    def is_expiring_soon(self, window_seconds: float, now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current + window_seconds >= self.expires_at

    @classmethod
    def from_token_response(cls, response: TokenResponse) -> "Token":
        return cls(
            access_token=response.access_token,
            refresh_token=response.refresh_token or "",
            expires_at=response.expires_at,
        )

    @classmethod
    def from_json(cls, raw: str) -> "Token":
        try:
            payload = json.loads(raw)
            return cls(
                access_token=payload["access_token"],
                refresh_token=payload.get("refresh_token", ""),
                expires_at=float(payload["expires_at"]),
            )
        except (ValueError, KeyError, TypeError) as error:
            raise StorageError(f"Stored token is invalid: {error}") from error

    def to_json(self) -> str:
        return json.dumps(asdict(self), indent=2, sort_keys=True)


class TokenStore(ABC):
    @abstractmethod
    async def save(self, token: Token) -> None:
        raise NotImplementedError

    @abstractmethod
    async def load(self) -> Token | None:
        raise NotImplementedError

    @abstractmethod
    async def delete(self) -> None:
        raise NotImplementedError


class MemoryTokenStore(TokenStore):
    def __init__(self, token: Token | None = None) -> None:
        self._token = token

    async def save(self, token: Token) -> None:
        self._token = Token(**asdict(token))

    async def load(self) -> Token | None:
        if self._token is None:
            return None
        return Token(**asdict(self._token))

    async def delete(self) -> None:
        self._token = None


class FileTokenStore(TokenStore):
    def __init__(self, path: str | Path = DEFAULT_TOKEN_PATH) -> None:
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    async def save(self, token: Token) -> None:
        try:
            self._write(token.to_json())
        except OSError as error:
            raise StorageError(f"Failed to write token file {self._path}: {error}") from error

    async def load(self) -> Token | None:
        try:
            raw = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as error:
            raise StorageError(f"Failed to read token file {self._path}: {error}") from error
        return Token.from_json(raw)

    async def delete(self) -> None:
        try:
            self._path.unlink(missing_ok=True)
        except OSError as error:
            raise StorageError(f"Failed to delete token file {self._path}: {error}") from error

    def _write(self, contents: str) -> None:
        self._path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{self._path.name}.",
            suffix=".tmp",
            dir=self._path.parent,
        )
        tmp_path = Path(tmp_name)

        try:
            os.chmod(tmp_path, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(contents)
            os.replace(tmp_path, self._path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()


class KeyringTokenStore(TokenStore):
    def __init__(self, service_name: str = KEYRING_SERVICE, key: str = KEYRING_TOKEN_KEY) -> None:
        self._service_name = service_name
        self._key = key

    async def save(self, token: Token) -> None:
        try:
            await asyncio.to_thread(
                keyring.set_password, self._service_name, self._key, token.to_json()
            )
        except keyring.errors.KeyringError as error:
            raise StorageError(f"Failed to save token to keyring: {error}") from error

    async def load(self) -> Token | None:
        try:
            raw = await asyncio.to_thread(keyring.get_password, self._service_name, self._key)
        except keyring.errors.KeyringError as error:
            raise StorageError(f"Failed to read token from keyring: {error}") from error
        if raw is None:
            return None
        return Token.from_json(raw)

    async def delete(self) -> None:
        try:
            await asyncio.to_thread(keyring.delete_password, self._service_name, self._key)
        except keyring.errors.PasswordDeleteError:
            return
        except keyring.errors.KeyringError as error:
            raise StorageError(f"Failed to delete token from keyring: {error}") from error


def is_keyring_available(service_name: str = KEYRING_SERVICE) -> bool:
    probe_key = "test-availability"
    try:
        keyring.set_password(service_name, probe_key, "test")
        keyring.delete_password(service_name, probe_key)
    except keyring.errors.KeyringError:
        return False
    return True


def create_token_store(path: str | Path | None = None) -> TokenStore:
    if path:
        return FileTokenStore(path)
    if is_keyring_available():
        return KeyringTokenStore()

    LOGGER.warning(
        "System keyring unavailable; storing token in %s (mode 0600).", DEFAULT_TOKEN_PATH
    )
    return FileTokenStore(DEFAULT_TOKEN_PATH)
