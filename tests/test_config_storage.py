from pathlib import Path

import pytest

from resolvehub_client.config import Settings
from resolvehub_client.storage import StateStorage


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in (
        "RESOLVEHUB_API_URL",
        "RESOLVEHUB_REFRESH_INTERVAL",
        "RESOLVEHUB_MAX_PHOTO_BYTES",
        "RESOLVEHUB_STATE_FILE",
    ):
        monkeypatch.delenv(key, raising=False)


def test_settings_defaults():
    settings = Settings.from_env()

    assert settings.api_url == "http://localhost:8000"
    assert settings.refresh_interval == 30.0
    assert settings.notification_ttl == 5.0
    assert settings.max_photo_bytes == 5 * 1024 * 1024


def test_settings_read_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("RESOLVEHUB_API_URL", "https://hub.example.bf/api/")
    monkeypatch.setenv("RESOLVEHUB_REFRESH_INTERVAL", "10")
    monkeypatch.setenv("RESOLVEHUB_STATE_FILE", str(tmp_path / "state.json"))

    settings = Settings.from_env()

    assert settings.api_url == "https://hub.example.bf/api"
    assert settings.refresh_interval == 10.0
    assert settings.state_file == tmp_path / "state.json"


def test_settings_reject_malformed_numbers(monkeypatch):
    monkeypatch.setenv("RESOLVEHUB_REFRESH_INTERVAL", "souvent")
    monkeypatch.setenv("RESOLVEHUB_MAX_PHOTO_BYTES", "5MB")

    with pytest.raises(RuntimeError) as excinfo:
        Settings.from_env()

    assert "RESOLVEHUB_REFRESH_INTERVAL" in str(excinfo.value)
    assert "RESOLVEHUB_MAX_PHOTO_BYTES" in str(excinfo.value)


def test_state_storage_round_trips_known_keys(tmp_path):
    storage = StateStorage(tmp_path / "nested" / "state.json")

    storage.update(token="abc", phone_number="70000000")
    storage.forget("token")

    assert StateStorage(storage.path).load() == {"phone_number": "70000000"}


def test_state_storage_tolerates_corrupt_file(tmp_path):
    path = tmp_path / "state.json"
    path.write_text("{not json", encoding="utf-8")

    assert StateStorage(path).load() == {}
    assert StateStorage(Path(tmp_path / "missing.json")).get("token") is None


def test_state_storage_rejects_unknown_keys(tmp_path):
    with pytest.raises(KeyError):
        StateStorage(tmp_path / "state.json").update(password="secret")


def test_state_storage_write_failure_is_logged_not_raised(tmp_path, caplog):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    storage = StateStorage(blocker / "state.json")

    storage.update(token="abc")
    storage.forget("token")

    assert storage.load() == {}
    assert "State not saved" in caplog.text
