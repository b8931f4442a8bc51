"""concrnt configuration: Pydantic model, load, and save."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

from concrnt.core.config_migrate import CURRENT_CONFIG_VERSION, detect_version, upgrade_config
from concrnt.core.constants import (
    CONCRNT_DIR_NAME,
    CONFIG_FILENAME,
    DEFAULT_DOMAIN_RETRY_SECONDS,
    DEFAULT_KEEPALIVE_INTERVAL,
    DEFAULT_MAX_MISSED_PONGS,
    DEFAULT_RECONNECT_DELAY,
    DEFAULT_REQUEST_TIMEOUT,
    SUBKEY_SECRET_PREFIX,
)
from concrnt.core.exceptions import ConfigError, ConfigNotFoundError
from concrnt.core.keyring_store import is_keyring_placeholder, retrieve_token


def concrnt_dir() -> Path:
    """Return the concrnt config directory (~/.concrnt), creating it if needed."""
    d = Path.home() / CONCRNT_DIR_NAME
    d.mkdir(mode=0o700, parents=True, exist_ok=True)
    return d


def _secret_value(v: Any) -> str:
    return str(v.get_secret_value() if hasattr(v, "get_secret_value") else v)


# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------


class IdentityConfig(BaseModel):
    host: str
    private_key: SecretStr | None = None  # 64 hex chars, or a keyring: placeholder
    subkey: SecretStr | None = None  # "concurrent-subkey <hex> <ccid>@<domain>"
    token: SecretStr | None = None  # pre-issued home token for key-less sessions
    client_name: str = "concrnt-python"

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        v = v.strip().lower()
        if not v or "/" in v or any(c.isspace() for c in v):
            raise ValueError("host must be a bare domain name, e.g. 'example.com' (no scheme or path)")
        return v

    @field_validator("private_key", mode="before")
    @classmethod
    def validate_private_key(cls, v: Any) -> Any:
        if v is None:
            return v
        key = _secret_value(v)
        if is_keyring_placeholder(key):
            return v
        if not re.fullmatch(r"[0-9a-fA-F]{64}", key):
            raise ValueError("private_key must be 64 hex characters (a raw secp256k1 scalar)")
        return v

    @field_validator("subkey", mode="before")
    @classmethod
    def validate_subkey(cls, v: Any) -> Any:
        if v is None:
            return v
        secret = _secret_value(v)
        if is_keyring_placeholder(secret):
            return v
        if not secret.startswith(SUBKEY_SECRET_PREFIX):
            raise ValueError(
                f"subkey must look like '{SUBKEY_SECRET_PREFIX} <privatekey> <ccid>@<domain>'"
            )
        return v

    @model_validator(mode="after")
    def single_key_source(self) -> IdentityConfig:
        if self.private_key is not None and self.subkey is not None:
            raise ValueError("Configure either identity.private_key or identity.subkey, not both")
        return self


class NetworkConfig(BaseModel):
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    domain_retry_seconds: float = DEFAULT_DOMAIN_RETRY_SECONDS

    @field_validator("request_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if not (0.1 <= v <= 120):
            raise ValueError("request_timeout must be between 0.1 and 120 seconds")
        return v


class RealtimeConfig(BaseModel):
    keepalive_interval: float = DEFAULT_KEEPALIVE_INTERVAL
    max_missed_pongs: int = Field(default=DEFAULT_MAX_MISSED_PONGS, ge=1)
    reconnect_delay: float = Field(default=DEFAULT_RECONNECT_DELAY, ge=0)

    @field_validator("keepalive_interval")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("keepalive_interval must be positive")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: str = "text"  # "text" | "json"

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v not in ("text", "json"):
            raise ValueError("Log format must be 'text' or 'json'")
        return v


# ---------------------------------------------------------------------------
# Root config
# ---------------------------------------------------------------------------


class ConcrntConfig(BaseModel):
    """Root concrnt configuration model."""

    config_version: int = CURRENT_CONFIG_VERSION
    identity: IdentityConfig
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    realtime: RealtimeConfig = Field(default_factory=RealtimeConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    _config_path: Path | None = None

    def private_key_hex(self) -> str | None:
        """Return the private key, resolving a keyring placeholder if needed."""
        return _resolve_secret(self.identity.private_key, "private_key")

    def subkey_secret(self) -> str | None:
        return _resolve_secret(self.identity.subkey, "subkey")


def _resolve_secret(value: SecretStr | None, name: str) -> str | None:
    if value is None:
        return None
    raw = value.get_secret_value()
    if not is_keyring_placeholder(raw):
        return raw
    resolved = retrieve_token(raw)
    if resolved is None:
        raise ConfigError(f"identity.{name} refers to a keyring entry that does not exist: {raw}")
    return resolved


# ---------------------------------------------------------------------------
# Load / save
# ---------------------------------------------------------------------------


def _config_file_path() -> Path:
    if env_path := os.environ.get("CONCRNT_CONFIG"):
        return Path(env_path)
    return concrnt_dir() / CONFIG_FILENAME


def load_config(path: Path | None = None) -> ConcrntConfig:
    """
    Load ConcrntConfig from TOML file, overlaid with environment variables.

    Priority (highest to lowest):
      1. Environment variables (CONCRNT_*)
      2. Config file (~/.concrnt/config.toml)
    """
    import tomllib

    cfg_path = path or _config_file_path()

    if not cfg_path.exists():
        raise ConfigNotFoundError(
            f"concrnt is not configured. Run 'concrnt keygen --save --host <domain>' first.\n"
            f"(Config file not found: {cfg_path})"
        )

    try:
        with open(cfg_path, "rb") as f:
            data = tomllib.load(f)
    except Exception as exc:
        raise ConfigError(f"Cannot read config file {cfg_path}: {exc}") from exc

    data = upgrade_config(data, detect_version(data), CURRENT_CONFIG_VERSION)

    # Apply environment variable overrides
    _apply_env_overrides(data)

    try:
        config = ConcrntConfig.model_validate(data)
    except Exception as exc:
        raise ConfigError(f"Invalid config at {cfg_path}: {exc}") from exc

    config._config_path = cfg_path
    return config


def config_from_env() -> ConcrntConfig:
    """Build a config purely from CONCRNT_* environment variables."""
    data: dict[str, Any] = {}
    _apply_env_overrides(data)
    try:
        return ConcrntConfig.model_validate(data)
    except Exception as exc:
        raise ConfigError(f"Invalid environment configuration: {exc}") from exc


def _apply_env_overrides(data: dict[str, Any]) -> None:
    """Overlay CONCRNT_* environment variables onto the parsed TOML data."""
    if host := os.environ.get("CONCRNT_HOST"):
        data.setdefault("identity", {})["host"] = host
    if key := os.environ.get("CONCRNT_PRIVATE_KEY"):
        data.setdefault("identity", {})["private_key"] = key
    if subkey := os.environ.get("CONCRNT_SUBKEY"):
        data.setdefault("identity", {})["subkey"] = subkey
    if level := os.environ.get("CONCRNT_LOG_LEVEL"):
        data.setdefault("logging", {})["level"] = level
    if timeout := os.environ.get("CONCRNT_REQUEST_TIMEOUT"):
        try:
            data.setdefault("network", {})["request_timeout"] = float(timeout)
        except ValueError as exc:
            raise ConfigError(
                f"CONCRNT_REQUEST_TIMEOUT must be a number of seconds, got {timeout!r}"
            ) from exc


def save_config(config_data: dict[str, Any], path: Path | None = None) -> Path:
    """Write config dict to TOML file with secure permissions (0600)."""
    import tomli_w

    cfg_path = path or _config_file_path()
    cfg_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    config_data.setdefault("config_version", CURRENT_CONFIG_VERSION)

    # Write atomically
    tmp_path = cfg_path.with_suffix(".tmp")
    try:
        with open(tmp_path, "wb") as f:
            tomli_w.dump(config_data, f)
        tmp_path.rename(cfg_path)
    except Exception as exc:
        tmp_path.unlink(missing_ok=True)
        raise ConfigError(f"Cannot write config to {cfg_path}: {exc}") from exc

    # Secure permissions
    cfg_path.chmod(0o600)
    return cfg_path
