import logging

import pytest

from tardis_stream.adapters.env_provider import EnvSettingsProvider, MissingSettingError


@pytest.fixture(autouse=True)
def reset_logging_handlers():
    # Keep test logging deterministic and avoid leaking handlers between tests.
    logging.getLogger("tardis_stream.adapters.env_provider").handlers = []


def test_get_returns_env_value(monkeypatch):
    monkeypatch.setenv("TARDIS_MACHINE_WS_URL", "ws://localhost:8001")

    provider = EnvSettingsProvider()

    assert provider.get("machine_ws_url") == "ws://localhost:8001"


def test_api_key_is_allowed(monkeypatch):
    monkeypatch.setenv("TARDIS_API_KEY", "TD.secret")

    assert EnvSettingsProvider().get("api_key") == "TD.secret"


def test_missing_setting_raises_for_unknown_name(monkeypatch):
    monkeypatch.setenv("TARDIS_MACHINE_WS_URL", "ws://localhost:8001")
    provider = EnvSettingsProvider()

    with pytest.raises(MissingSettingError) as exc:
        provider.get("nonexistent")

    assert "nonexistent" in str(exc.value)
    assert exc.value.env_var is None


def test_missing_setting_raises_when_env_absent(monkeypatch):
    monkeypatch.delenv("TARDIS_MACHINE_WS_URL", raising=False)
    provider = EnvSettingsProvider()

    with pytest.raises(MissingSettingError) as exc:
        provider.get("machine_ws_url")

    assert "machine_ws_url" in str(exc.value)
    assert exc.value.env_var == "TARDIS_MACHINE_WS_URL"


def test_empty_value_counts_as_missing(monkeypatch):
    monkeypatch.setenv("TARDIS_API_KEY", "")

    with pytest.raises(MissingSettingError):
        EnvSettingsProvider().get("api_key")


def test_custom_prefix_and_allowlist(monkeypatch):
    monkeypatch.setenv("MY_MACHINE_URL", "ws://other:8001")
    provider = EnvSettingsProvider(prefix="MY_", allowed={"machine_ws_url": "MACHINE_URL"})

    assert provider.env_var("machine_ws_url") == "MY_MACHINE_URL"
    assert provider.get("machine_ws_url") == "ws://other:8001"


def test_empty_prefix_rejected():
    with pytest.raises(ValueError):
        EnvSettingsProvider(prefix="")


def test_resolution_is_logged_without_value(monkeypatch, caplog):
    monkeypatch.setenv("TARDIS_API_KEY", "TD.secret")
    caplog.set_level(logging.DEBUG, logger="tardis_stream.adapters.env_provider")

    EnvSettingsProvider().get("api_key")

    records = [r for r in caplog.records if getattr(r, "event", None) == "setting_resolved"]
    assert len(records) == 1
    assert records[0].setting_name == "api_key"
    assert "TD.secret" not in caplog.text
