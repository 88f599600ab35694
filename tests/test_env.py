import logging

import pytest

from auth.flow import DEFAULT_SCOPES
from mission_control import env
from mission_control.constants import DEFAULT_MCP_URL, DEFAULT_REDIRECT_URI
from mission_control.env import Settings, is_truthy, load_settings, setup_logging, validate_settings

ENV_KEYS = (
    "HUBSPOT_CLIENT_ID",
    "HUBSPOT_CLIENT_SECRET",
    "HUBSPOT_REDIRECT_URI",
    "HUBSPOT_SCOPES",
    "HUBSPOT_MCP_URL",
    "HUBSPOT_MCP_AUTH_MODE",
    "HUBSPOT_MCP_COMMAND",
    "HUBSPOT_MCP_ARGS",
    "HUBSPOT_MCP_TOKEN_ENV",
    "MISSION_CONTROL_TOKEN_PATH",
    "MISSION_CONTROL_CALL_TIMEOUT",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch) -> None:
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.mark.parametrize(
    ("value", "expected"),
    [("1", True), ("true", True), (" YES ", True), ("on", True), ("0", False), ("", False), (None, False)],
)
def test_is_truthy(value, expected) -> None:
    assert is_truthy(value) is expected


def test_load_settings_defaults() -> None:
    settings = load_settings()

    assert settings.client_id == ""
    assert settings.client_secret is None
    assert settings.redirect_uri == DEFAULT_REDIRECT_URI
    assert settings.scopes == list(DEFAULT_SCOPES)
    assert settings.mcp_url == DEFAULT_MCP_URL
    assert settings.mcp_auth_mode == "header"
    assert settings.mcp_command is None
    assert settings.mcp_args == []
    assert settings.call_timeout == 30.0


def test_load_settings_reads_environment(monkeypatch) -> None:
    monkeypatch.setenv("HUBSPOT_CLIENT_ID", "client-123")
    monkeypatch.setenv("HUBSPOT_CLIENT_SECRET", "secret")
    monkeypatch.setenv("HUBSPOT_SCOPES", "crm.objects.contacts.read  oauth")
    monkeypatch.setenv("HUBSPOT_MCP_COMMAND", "npx")
    monkeypatch.setenv("HUBSPOT_MCP_ARGS", "-y '@hubspot/mcp-server'")
    monkeypatch.setenv("HUBSPOT_MCP_TOKEN_ENV", "PRIVATE_APP_ACCESS_TOKEN")
    monkeypatch.setenv("MISSION_CONTROL_TOKEN_PATH", "/tmp/token.json")
    monkeypatch.setenv("MISSION_CONTROL_CALL_TIMEOUT", "12.5")

    settings = load_settings()

    assert settings.client_id == "client-123"
    assert settings.client_secret == "secret"
    assert settings.scopes == ["crm.objects.contacts.read", "oauth"]
    assert settings.mcp_command == "npx"
    assert settings.mcp_args == ["-y", "@hubspot/mcp-server"]
    assert settings.mcp_token_env == "PRIVATE_APP_ACCESS_TOKEN"
    assert settings.token_path == "/tmp/token.json"
    assert settings.call_timeout == 12.5


def test_load_settings_rejects_non_numeric_timeout(monkeypatch) -> None:
    monkeypatch.setenv("MISSION_CONTROL_CALL_TIMEOUT", "soon")

    with pytest.raises(RuntimeError, match="MISSION_CONTROL_CALL_TIMEOUT"):
        load_settings()


def test_validate_settings_requires_client_id() -> None:
    with pytest.raises(RuntimeError, match="HUBSPOT_CLIENT_ID"):
        validate_settings(Settings(client_id=""))


def test_validate_settings_rejects_bad_redirect_uri() -> None:
    with pytest.raises(RuntimeError, match="HUBSPOT_REDIRECT_URI"):
        validate_settings(Settings(client_id="client-123", redirect_uri="not a url"))


def test_validate_settings_checks_mcp_url_only_without_command() -> None:
    with pytest.raises(RuntimeError, match="HUBSPOT_MCP_URL"):
        validate_settings(Settings(client_id="client-123", mcp_url="nope"))

    validate_settings(Settings(client_id="client-123", mcp_url="nope", mcp_command="hubspot-mcp"))


def test_load_env_reads_project_dotenv(monkeypatch, tmp_path) -> None:
    loaded = []
    package_dir = tmp_path / "mission_control"
    package_dir.mkdir()
    (tmp_path / ".env").write_text("HUBSPOT_CLIENT_ID=from-dotenv\n", encoding="utf-8")
    monkeypatch.setattr(env, "__file__", str(package_dir / "env.py"))
    monkeypatch.setattr(env, "load_dotenv", lambda path, override: loaded.append((path, override)))

    env.load_env()

    assert loaded == [(tmp_path.resolve() / ".env", False)]


def test_setup_logging_honours_debug(monkeypatch) -> None:
    monkeypatch.setenv("DEBUG", "true")
    assert setup_logging() is True
    assert logging.getLogger("mission_control").level == logging.DEBUG

    monkeypatch.setenv("DEBUG", "0")
    assert setup_logging() is False
    assert logging.getLogger("mission_control").level == logging.INFO


def test_load_settings_reads_auth_mode(monkeypatch) -> None:
    monkeypatch.setenv("HUBSPOT_MCP_AUTH_MODE", "Context")

    assert load_settings().mcp_auth_mode == "context"


def test_validate_settings_rejects_unknown_auth_mode() -> None:
    with pytest.raises(RuntimeError, match="HUBSPOT_MCP_AUTH_MODE"):
        validate_settings(Settings(client_id="client-123", mcp_auth_mode="query"))
