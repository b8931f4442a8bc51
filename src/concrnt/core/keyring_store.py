"""
Optional OS keyring storage for private keys.

Config values of the form ``keyring:concrnt:<name>`` are placeholders: the
real secret lives in the OS keyring under service ``concrnt``.  The
``keyring`` package is only imported when a placeholder is stored or
resolved, so plain-text configs work without it.
"""

from __future__ import annotations

import logging

from concrnt.core.exceptions import ConfigError

logger = logging.getLogger(__name__)

SERVICE_NAME = "concrnt"
KEYRING_PREFIX = "keyring:"


def is_keyring_placeholder(value: str) -> bool:
    return value.startswith(KEYRING_PREFIX)


def _keyring():  # type: ignore[no-untyped-def]
    try:
        import keyring
    except ImportError as exc:
        raise ConfigError(
            "The keyring package is required for keyring: secrets. "
            "Install it with: pip install 'concrnt-client[keyring]'"
        ) from exc
    return keyring


def store_token(name: str, secret: str) -> str:
    """Store *secret* in the keyring and return the placeholder to write to config."""
    _keyring().set_password(SERVICE_NAME, name, secret)
    logger.debug("Stored secret %r in keyring", name)
    return f"{KEYRING_PREFIX}{SERVICE_NAME}:{name}"


def retrieve_token(placeholder: str) -> str | None:
    """Resolve a ``keyring:<service>:<name>`` placeholder, or None if absent."""
    if not is_keyring_placeholder(placeholder):
        return None
    try:
        service, name = placeholder[len(KEYRING_PREFIX) :].split(":", 1)
    except ValueError:
        return None
    return _keyring().get_password(service, name)
