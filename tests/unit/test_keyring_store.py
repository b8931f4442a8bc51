"""Unit tests for optional keyring integration."""

from __future__ import annotations

import sys
import types

import pytest

from concrnt.core.exceptions import ConfigError
from concrnt.core.keyring_store import (
    KEYRING_PREFIX,
    SERVICE_NAME,
    is_keyring_placeholder,
    retrieve_token,
    store_token,
)


def _mock_keyring(monkeypatch, store: dict) -> None:
    mock_keyring = types.ModuleType("keyring")
    mock_keyring.set_password = lambda svc, key, val: store.update({f"{svc}:{key}": val})  # type: ignore[attr-defined]
    mock_keyring.get_password = lambda svc, key: store.get(f"{svc}:{key}")  # type: ignore[attr-defined]
    monkeypatch.setitem(sys.modules, "keyring", mock_keyring)


class TestIsKeyringPlaceholder:
    def test_valid_placeholder(self):
        assert is_keyring_placeholder("keyring:concrnt:con1abc")

    def test_plain_key(self):
        assert not is_keyring_placeholder("ab" * 32)

    def test_empty_string(self):
        assert not is_keyring_placeholder("")


class TestStoreAndRetrieve:
    def test_round_trip_mocked(self, monkeypatch):
        store: dict = {}
        _mock_keyring(monkeypatch, store)

        placeholder = store_token("con1abc", "ab" * 32)
        assert placeholder == f"{KEYRING_PREFIX}{SERVICE_NAME}:con1abc"
        assert retrieve_token(placeholder) == "ab" * 32

    def test_retrieve_nonexistent_returns_none(self, monkeypatch):
        _mock_keyring(monkeypatch, {})
        assert retrieve_token("keyring:concrnt:missing") is None

    def test_retrieve_non_placeholder_returns_none(self):
        assert retrieve_token("not-a-keyring-placeholder") is None

    def test_prefix_only_returns_none(self):
        assert retrieve_token("keyring:") is None

    def test_missing_package(self, monkeypatch):
        monkeypatch.setitem(sys.modules, "keyring", None)
        with pytest.raises(ConfigError, match="pip install"):
            store_token("con1abc", "secret")


class TestConstants:
    def test_service_name(self):
        assert SERVICE_NAME == "concrnt"

    def test_prefix(self):
        assert KEYRING_PREFIX == "keyring:"
