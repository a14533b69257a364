import json

import pytest

from caresync.utils.key_manager import KeyManager

SECRET_NAME = "TEST_ROTATION_KEYS"


@pytest.fixture
def dev_manager(monkeypatch):
    monkeypatch.setenv("SERVICE_ENV", "development")
    monkeypatch.setenv(SECRET_NAME, json.dumps({"v1": "key-one"}))
    monkeypatch.delenv("CURRENT_KEY_VERSION", raising=False)
    return KeyManager(secret_name=SECRET_NAME)


def test_legacy_format_is_migrated(dev_manager):
    keys = dev_manager.list_keys()
    assert list(keys) == ["v1"]
    assert "created_at" in keys["v1"]
    assert "key" not in keys["v1"]


def test_current_key_defaults_to_highest_version(dev_manager, monkeypatch):
    monkeypatch.setenv(SECRET_NAME, json.dumps({"v1": "key-one", "v10": "key-ten", "v2": "key-two"}))
    assert dev_manager.get_current_key() == ("key-ten", "v10")


def test_current_key_version_env_wins(dev_manager, monkeypatch):
    monkeypatch.setenv(SECRET_NAME, json.dumps({"v1": "key-one", "v2": "key-two"}))
    monkeypatch.setenv("CURRENT_KEY_VERSION", "v1")
    assert dev_manager.get_current_key() == ("key-one", "v1")


def test_rotate_key(dev_manager, monkeypatch):
    # Registered so monkeypatch restores the variable rotate_key overwrites
    monkeypatch.setenv("CURRENT_KEY_VERSION", "v1")
    new_key, version = dev_manager.rotate_key()
    assert version == "v2"
    assert dev_manager.get_current_key() == (new_key, "v2")
    assert dev_manager.get_key("v1") == "key-one"
    assert set(dev_manager.list_keys()) == {"v1", "v2"}


def test_unknown_version(dev_manager):
    with pytest.raises(RuntimeError):
        dev_manager.get_key("v9")


def test_missing_keys(monkeypatch):
    monkeypatch.setenv("SERVICE_ENV", "development")
    monkeypatch.delenv(SECRET_NAME, raising=False)
    monkeypatch.delenv("CURRENT_KEY_VERSION", raising=False)
    with pytest.raises(RuntimeError):
        KeyManager(secret_name=SECRET_NAME).get_current_key()


def test_production_rotation_is_refused(monkeypatch):
    monkeypatch.setenv("SERVICE_ENV", "production")
    manager = KeyManager(secret_name="ENCRYPTION_KEYS")
    with pytest.raises(NotImplementedError):
        manager.rotate_key()
