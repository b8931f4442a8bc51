"""Unit tests for configuration loading, validation and saving."""

from __future__ import annotations

import stat
import sys
import types

import pytest

from concrnt.core.config import ConcrntConfig, config_from_env, load_config, save_config
from concrnt.core.exceptions import ConfigError, ConfigNotFoundError

_KEY = "ab" * 32
_ENV = ("CONCRNT_CONFIG", "CONCRNT_HOST", "CONCRNT_PRIVATE_KEY", "CONCRNT_SUBKEY", "CONCRNT_LOG_LEVEL", "CONCRNT_REQUEST_TIMEOUT")


@pytest.fixture(autouse=True)
def _isolated(monkeypatch, tmp_path):
    monkeypatch.setenv("HOME", str(tmp_path))
    for name in _ENV:
        monkeypatch.delenv(name, raising=False)


def _write(path, text: str):
    path.write_text(text)
    return path


class TestModel:
    def test_minimal(self):
        config = ConcrntConfig.model_validate({"identity": {"host": "Example.COM"}})
        assert config.identity.host == "example.com"
        assert config.network.request_timeout == 5.0
        assert config.realtime.max_missed_pongs == 3
        assert config.private_key_hex() is None

    @pytest.mark.parametrize("host", ["https://example.com", "example.com/path", "", "exa mple.com"])
    def test_bad_host(self, host):
        with pytest.raises(ValueError):
            ConcrntConfig.model_validate({"identity": {"host": host}})

    def test_private_key_must_be_hex(self):
        with pytest.raises(ValueError):
            ConcrntConfig.model_validate({"identity": {"host": "example.com", "private_key": "nope"}})

    def test_private_key_hidden(self):
        config = ConcrntConfig.model_validate({"identity": {"host": "example.com", "private_key": _KEY}})
        assert _KEY not in repr(config)
        assert config.private_key_hex() == _KEY

    def test_subkey_prefix(self):
        with pytest.raises(ValueError):
            ConcrntConfig.model_validate({"identity": {"host": "example.com", "subkey": "bad"}})

    def test_key_and_subkey_exclusive(self):
        with pytest.raises(ValueError, match="not both"):
            ConcrntConfig.model_validate(
                {
                    "identity": {
                        "host": "example.com",
                        "private_key": _KEY,
                        "subkey": f"concurrent-subkey {_KEY} con1a@example.com",
                    }
                }
            )

    def test_log_level_normalized(self):
        config = ConcrntConfig.model_validate({"identity": {"host": "example.com"}, "logging": {"level": "debug"}})
        assert config.logging.level == "DEBUG"

    def test_bad_timeout(self):
        with pytest.raises(ValueError):
            ConcrntConfig.model_validate({"identity": {"host": "example.com"}, "network": {"request_timeout": 0}})

    def test_keyring_placeholder_resolved(self, monkeypatch):
        mock_keyring = types.ModuleType("keyring")
        mock_keyring.get_password = lambda svc, key: _KEY if (svc, key) == ("concrnt", "me") else None  # type: ignore[attr-defined]
        monkeypatch.setitem(sys.modules, "keyring", mock_keyring)
        config = ConcrntConfig.model_validate(
            {"identity": {"host": "example.com", "private_key": "keyring:concrnt:me"}}
        )
        assert config.private_key_hex() == _KEY

    def test_missing_keyring_entry(self, monkeypatch):
        mock_keyring = types.ModuleType("keyring")
        mock_keyring.get_password = lambda svc, key: None  # type: ignore[attr-defined]
        monkeypatch.setitem(sys.modules, "keyring", mock_keyring)
        config = ConcrntConfig.model_validate(
            {"identity": {"host": "example.com", "private_key": "keyring:concrnt:gone"}}
        )
        with pytest.raises(ConfigError):
            config.private_key_hex()


class TestLoad:
    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigNotFoundError):
            load_config(tmp_path / "nope.toml")

    def test_load(self, tmp_path):
        path = _write(
            tmp_path / "config.toml",
            f'config_version = 2\n[identity]\nhost = "example.com"\nprivate_key = "{_KEY}"\n',
        )
        config = load_config(path)
        assert config.identity.host == "example.com"
        assert config.private_key_hex() == _KEY

    def test_flat_v1_file_is_upgraded(self, tmp_path):
        path = _write(tmp_path / "config.toml", 'config_version = 1\nhost = "example.com"\n')
        config = load_config(path)
        assert config.identity.host == "example.com"
        assert config.config_version == 2

    def test_invalid_toml(self, tmp_path):
        path = _write(tmp_path / "config.toml", "[identity\n")
        with pytest.raises(ConfigError, match="Cannot read"):
            load_config(path)

    def test_invalid_values(self, tmp_path):
        path = _write(tmp_path / "config.toml", '[identity]\nhost = "https://x"\n')
        with pytest.raises(ConfigError, match="Invalid config"):
            load_config(path)

    def test_env_overrides(self, tmp_path, monkeypatch):
        path = _write(tmp_path / "config.toml", '[identity]\nhost = "example.com"\n')
        monkeypatch.setenv("CONCRNT_HOST", "other.example")
        monkeypatch.setenv("CONCRNT_LOG_LEVEL", "warning")
        monkeypatch.setenv("CONCRNT_REQUEST_TIMEOUT", "9")
        config = load_config(path)
        assert config.identity.host == "other.example"
        assert config.logging.level == "WARNING"
        assert config.network.request_timeout == 9.0

    def test_non_numeric_timeout_env(self, tmp_path, monkeypatch):
        path = _write(tmp_path / "config.toml", '[identity]\nhost = "example.com"\n')
        monkeypatch.setenv("CONCRNT_REQUEST_TIMEOUT", "soon")
        with pytest.raises(ConfigError, match="CONCRNT_REQUEST_TIMEOUT"):
            load_config(path)

    def test_config_env_var_selects_file(self, tmp_path, monkeypatch):
        path = _write(tmp_path / "elsewhere.toml", '[identity]\nhost = "example.com"\n')
        monkeypatch.setenv("CONCRNT_CONFIG", str(path))
        assert load_config().identity.host == "example.com"

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("CONCRNT_HOST", "example.com")
        monkeypatch.setenv("CONCRNT_PRIVATE_KEY", _KEY)
        config = config_from_env()
        assert config.private_key_hex() == _KEY

    def test_from_env_without_host(self):
        with pytest.raises(ConfigError):
            config_from_env()


class TestSave:
    def test_round_trip_and_permissions(self, tmp_path):
        path = save_config({"identity": {"host": "example.com", "private_key": _KEY}}, tmp_path / "c.toml")
        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        config = load_config(path)
        assert config.private_key_hex() == _KEY
        assert config.config_version == 2
        assert not (tmp_path / "c.tmp").exists()
