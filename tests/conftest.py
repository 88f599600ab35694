import keyring
import keyring.errors
import pytest


class FakeKeyring:
    def __init__(self, *, fail: bool = False) -> None:
        self.passwords: dict[tuple[str, str], str] = {}
        self.fail = fail

    def set_password(self, service: str, key: str, value: str) -> None:
        if self.fail:
            raise keyring.errors.NoKeyringError("no backend")
        self.passwords[(service, key)] = value

    def get_password(self, service: str, key: str) -> str | None:
        if self.fail:
            raise keyring.errors.NoKeyringError("no backend")
        return self.passwords.get((service, key))

    def delete_password(self, service: str, key: str) -> None:
        if (service, key) not in self.passwords:
            raise keyring.errors.PasswordDeleteError("not found")
        del self.passwords[(service, key)]


@pytest.fixture
def fake_keyring(monkeypatch) -> FakeKeyring:
    fake = FakeKeyring()
    monkeypatch.setattr(keyring, "set_password", fake.set_password)
    monkeypatch.setattr(keyring, "get_password", fake.get_password)
    monkeypatch.setattr(keyring, "delete_password", fake.delete_password)
    return fake
