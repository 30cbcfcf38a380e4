import json

from cryptography.fernet import Fernet
import pytest

from backup_lifecycle.api.schemas.backup_config import DEFAULT_KEEP_LAST, DEFAULT_SCHEDULE, BackupConfig
from backup_lifecycle.backend.services.lifecycle.config_crypto import (
    ConfigEncryptionError,
    decrypt_secrets,
    encrypt_secrets,
)
from backup_lifecycle.backend.services.lifecycle.config_provider import (
    ENCRYPTED_CREDENTIAL_KEY,
    JsonFileConfigProvider,
)


@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "data" / "backup-config.json"


def _config(tokens, **overrides):
    return BackupConfig(remote_enabled=True, keep_last=2, remote_credential=tokens, **overrides)


def test_missing_file_returns_defaults(config_path):
    config = JsonFileConfigProvider(config_path).get()

    assert config.enabled is True
    assert config.schedule == DEFAULT_SCHEDULE
    assert config.keep_last == DEFAULT_KEEP_LAST
    assert config.remote_enabled is False
    assert config.credential() is None


def test_round_trip_encrypts_credential(config_path, tokens):
    provider = JsonFileConfigProvider(config_path, encryption_key="correct horse battery staple")

    provider.set(_config(tokens))

    raw = config_path.read_text()
    assert "access-1" not in raw
    assert "refresh-1" not in raw
    data = json.loads(raw)
    assert ENCRYPTED_CREDENTIAL_KEY in data
    assert "remote_credential" not in data

    loaded = JsonFileConfigProvider(config_path, encryption_key="correct horse battery staple").get()
    assert loaded.keep_last == 2
    assert loaded.credential().access_token == "access-1"
    assert loaded.credential().refresh_token == "refresh-1"


def test_plaintext_credential_without_key(config_path, tokens, caplog):
    provider = JsonFileConfigProvider(config_path)

    provider.set(_config(tokens))

    assert "storing remote credential unencrypted" in caplog.text
    data = json.loads(config_path.read_text())
    assert data["remote_credential"]["access_token"] == "access-1"
    assert JsonFileConfigProvider(config_path).get().credential().access_token == "access-1"


def test_write_leaves_no_temp_file(config_path):
    JsonFileConfigProvider(config_path).set(BackupConfig())

    assert sorted(p.name for p in config_path.parent.iterdir()) == ["backup-config.json"]


def test_invalid_json_falls_back_to_defaults(config_path, caplog):
    config_path.parent.mkdir(parents=True)
    config_path.write_text("{not json")

    config = JsonFileConfigProvider(config_path).get()

    assert config == BackupConfig()
    assert "using default configuration" in caplog.text


def test_invalid_record_falls_back_to_last_known(config_path):
    provider = JsonFileConfigProvider(config_path)
    provider.set(BackupConfig(schedule="0 2 * * *", keep_last=7))
    assert provider.get().keep_last == 7

    config_path.write_text(json.dumps({"schedule": "not a cron", "keep_last": 7}))

    assert provider.get().schedule == "0 2 * * *"


@pytest.mark.parametrize(
    "record",
    [
        ["a", "list"],
        {"keep_last": 0},
        {"unexpected": True},
        {"schedule": "0 0 * *"},
    ],
)
def test_invalid_records_are_rejected(config_path, record):
    config_path.parent.mkdir(parents=True)
    config_path.write_text(json.dumps(record))

    assert JsonFileConfigProvider(config_path).get() == BackupConfig()


def test_wrong_key_falls_back(config_path, tokens):
    JsonFileConfigProvider(config_path, encryption_key="key-one").set(_config(tokens))

    config = JsonFileConfigProvider(config_path, encryption_key="key-two").get()

    assert config.credential() is None


def test_camel_case_record_is_accepted(config_path):
    config_path.parent.mkdir(parents=True)
    config_path.write_text(json.dumps({"keepLast": 3, "remoteEnabled": True, "schedule": "0  1 * *  *"}))

    config = JsonFileConfigProvider(config_path).get()

    assert config.keep_last == 3
    assert config.remote_enabled is True
    assert config.schedule == "0 1 * * *"


def test_crypto_accepts_native_fernet_key():
    key = Fernet.generate_key().decode()
    token = encrypt_secrets({"access_token": "a"}, key)

    assert Fernet(key.encode()).decrypt(token.encode())
    assert decrypt_secrets(token, key) == {"access_token": "a"}


def test_crypto_requires_key():
    with pytest.raises(ConfigEncryptionError):
        encrypt_secrets({"access_token": "a"}, "")


def test_crypto_empty_values():
    assert encrypt_secrets({}, "any") is None
    assert decrypt_secrets(None, "any") == {}
