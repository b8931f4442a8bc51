"""Unit tests for bearer tokens."""

from __future__ import annotations

import json

import pytest

from concrnt.core.exceptions import InvalidKeyError
from concrnt.identity.keys import load_key
from concrnt.identity.token import (
    b64url_decode,
    b64url_encode,
    issue_bearer_token,
    parse_bearer_token,
    recover_token_signer,
    validate_bearer_token,
)

_KEY = "5" * 64
_NOW = 1_700_000_000


class TestEncoding:
    def test_no_padding(self):
        assert "=" not in b64url_encode(b"ab")

    def test_decode_accepts_standard_alphabet(self):
        data = bytes(range(250, 256))
        standard = b64url_encode(data).replace("-", "+").replace("_", "/")
        assert b64url_decode(standard) == data


class TestIssue:
    def test_three_segments(self):
        token = issue_bearer_token(_KEY, now=_NOW)
        assert token.count(".") == 2

    def test_header(self):
        token = issue_bearer_token(_KEY, now=_NOW)
        header = json.loads(b64url_decode(token.split(".")[0]))
        assert header == {"alg": "CONCRNT", "typ": "JWT"}

    def test_default_claims(self):
        claims = parse_bearer_token(issue_bearer_token(_KEY, now=_NOW, lifetime=60))
        assert claims["iat"] == str(_NOW)
        assert claims["nbf"] == str(_NOW)
        assert claims["exp"] == str(_NOW + 60)
        assert claims["jti"]

    def test_caller_claims_override(self):
        claims = parse_bearer_token(issue_bearer_token(_KEY, {"aud": "example.com", "exp": "1"}, now=_NOW))
        assert claims["aud"] == "example.com"
        assert claims["exp"] == "1"

    def test_unique_jti(self):
        a = parse_bearer_token(issue_bearer_token(_KEY, now=_NOW))
        b = parse_bearer_token(issue_bearer_token(_KEY, now=_NOW))
        assert a["jti"] != b["jti"]

    def test_bad_key(self):
        with pytest.raises(InvalidKeyError):
            issue_bearer_token("nope")

    def test_signer_recoverable(self):
        token = issue_bearer_token(_KEY, now=_NOW)
        assert recover_token_signer(token) == load_key(_KEY).ccid
        assert recover_token_signer(token, "cck") == load_key(_KEY).ckid


class TestValidate:
    def test_inside_window(self):
        token = issue_bearer_token(_KEY, now=_NOW, lifetime=60)
        assert validate_bearer_token(token, now=_NOW)
        assert validate_bearer_token(token, now=_NOW + 59)

    def test_expiry_is_exclusive(self):
        token = issue_bearer_token(_KEY, now=_NOW, lifetime=60)
        assert not validate_bearer_token(token, now=_NOW + 60)

    def test_not_yet_valid(self):
        token = issue_bearer_token(_KEY, now=_NOW)
        assert not validate_bearer_token(token, now=_NOW - 1)

    def test_missing_bounds_are_unbounded(self):
        header = b64url_encode(b'{"alg":"CONCRNT","typ":"JWT"}')
        body = b64url_encode(b'{"iss":"x"}')
        assert validate_bearer_token(f"{header}.{body}.sig", now=0)

    @pytest.mark.parametrize("token", ["", "a.b", "a.b.c.d", "a.!!!.c", "a.bnVsbA.c"])
    def test_malformed_is_invalid(self, token):
        assert not validate_bearer_token(token, now=_NOW)
        assert parse_bearer_token(token) == {}

    def test_non_numeric_exp_is_invalid(self):
        token = issue_bearer_token(_KEY, {"exp": "soon"}, now=_NOW)
        assert not validate_bearer_token(token, now=_NOW)

    def test_recover_from_malformed(self):
        assert recover_token_signer("a.b") is None
        assert recover_token_signer("a.b.AAAA") is None
