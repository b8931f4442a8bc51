"""
Tests for subkey delegation.

Covers:
  - enact documents signed by the root
  - revoke signer rules (root or immediate parent only)
  - validity window and revocation ordering
  - delegated bearer tokens
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from concrnt.core.exceptions import InvalidKeyError
from concrnt.identity.delegation import check_delegated_token, delegate, is_key_valid, revoke
from concrnt.identity.keys import load_key
from concrnt.identity.token import issue_bearer_token
from concrnt.models.core import Key
from concrnt.models.document import EnactDocument, RevokeDocument

ROOT = load_key("a" * 64)
SUB = load_key("b" * 64)
CHILD = load_key("c" * 64)
SIBLING = load_key("d" * 64)

T0 = datetime(2024, 6, 1, tzinfo=UTC)


def _key(
    subkey=SUB,
    *,
    parent: str | None = None,
    enacted_at: datetime = T0,
    revoke_doc: str | None = None,
    since: datetime = T0,
    until: datetime = T0 + timedelta(days=30),
) -> Key:
    enact = delegate(ROOT.private_key, subkey.ckid, parent=parent, signed_at=enacted_at)
    return Key(
        id=subkey.ckid,
        root=ROOT.ccid,
        parent=parent or ROOT.ccid,
        enactDocument=enact.document,
        enactSignature=enact.signature,
        revokeDocument=revoke_doc,
        revokeSignature="00" if revoke_doc else None,
        validSince=since,
        validUntil=until,
    )


class TestDelegate:
    def test_enact_document(self):
        signed = delegate(ROOT.private_key, SUB.ckid)
        doc = signed.parsed()
        assert isinstance(doc, EnactDocument)
        assert doc.signer == ROOT.ccid
        assert doc.target == SUB.ckid
        assert doc.root == ROOT.ccid
        assert doc.parent == ROOT.ccid
        assert signed.verify()

    def test_nested_parent(self):
        doc = delegate(ROOT.private_key, CHILD.ckid, parent=SUB.ckid).parsed()
        assert doc.parent == SUB.ckid


class TestRevoke:
    def test_root_may_revoke(self):
        signed = revoke(ROOT.private_key, SUB.ckid, key=_key())
        doc = signed.parsed()
        assert isinstance(doc, RevokeDocument)
        assert doc.signer == ROOT.ccid
        assert doc.target == SUB.ckid
        assert signed.verify()

    def test_parent_subkey_may_revoke(self):
        key = _key(CHILD, parent=SUB.ckid)
        signed = revoke(SUB.private_key, CHILD.ckid, signer=SUB.ckid, key=key)
        doc = signed.parsed()
        assert doc.signer == ROOT.ccid
        assert doc.key_id == SUB.ckid
        assert signed.verify()

    def test_sibling_may_not_revoke(self):
        key = _key(CHILD, parent=SUB.ckid)
        with pytest.raises(InvalidKeyError):
            revoke(SIBLING.private_key, CHILD.ckid, signer=SIBLING.ckid, key=key)

    def test_signer_must_match_private_key(self):
        with pytest.raises(InvalidKeyError):
            revoke(SIBLING.private_key, SUB.ckid, signer=ROOT.ccid)


class TestValidity:
    def test_inside_window(self):
        assert is_key_valid(_key(), T0 + timedelta(days=1))

    def test_before_valid_since(self):
        assert not is_key_valid(_key(), T0 - timedelta(seconds=1))

    def test_valid_until_is_exclusive(self):
        key = _key()
        assert not is_key_valid(key, key.valid_until)

    def test_accepts_epoch_seconds(self):
        assert is_key_valid(_key(), (T0 + timedelta(hours=1)).timestamp())

    def test_revoked_after_enact(self):
        later = revoke(ROOT.private_key, SUB.ckid, signed_at=T0 + timedelta(days=2))
        key = _key(revoke_doc=later.document)
        assert not is_key_valid(key, T0 + timedelta(days=1))

    def test_revoked_at_same_instant(self):
        same = revoke(ROOT.private_key, SUB.ckid, signed_at=T0)
        assert not is_key_valid(_key(revoke_doc=same.document), T0 + timedelta(days=1))

    def test_revoke_older_than_enact_ignored(self):
        # re-enacted after an earlier revocation
        older = revoke(ROOT.private_key, SUB.ckid, signed_at=T0 - timedelta(days=1))
        assert is_key_valid(_key(revoke_doc=older.document), T0 + timedelta(days=1))

    def test_unreadable_revoke_invalidates(self):
        assert not is_key_valid(_key(revoke_doc="{not json"), T0 + timedelta(days=1))

    def test_timestamps_without_offset_read_as_utc(self):
        key = Key.model_validate(
            _key().model_dump(by_alias=True)
            | {"validSince": "2024-06-01T00:00:00", "validUntil": "2024-07-01T00:00:00"}
        )
        assert key.valid_since == T0
        assert is_key_valid(key, T0 + timedelta(days=1))
        assert not is_key_valid(key, T0 - timedelta(seconds=1))

    def test_naive_signed_at_in_documents(self):
        later = revoke(ROOT.private_key, SUB.ckid, signed_at=T0 + timedelta(days=2))
        key = _key(revoke_doc=later.document.replace('Z"', '"'))
        key = key.model_copy(update={"enact_document": key.enact_document.replace('Z"', '"')})
        assert '"signedAt":"2024-06-01T00:00:00"' in key.enact_document
        assert not is_key_valid(key, datetime(2024, 6, 2))

    def test_unreadable_enact_invalid(self):
        key = _key().model_copy(update={"enact_document": "{}"})
        assert not is_key_valid(key, T0 + timedelta(days=1))


class TestDelegatedToken:
    def test_valid_subkey_token(self):
        now = T0 + timedelta(days=1)
        token = issue_bearer_token(SUB.private_key, {"iss": SUB.ckid}, now=now.timestamp())
        assert check_delegated_token(token, _key(), now)

    def test_token_from_other_key(self):
        now = T0 + timedelta(days=1)
        token = issue_bearer_token(SIBLING.private_key, now=now.timestamp())
        assert not check_delegated_token(token, _key(), now)

    def test_token_of_revoked_key(self):
        now = T0 + timedelta(days=3)
        revoked = revoke(ROOT.private_key, SUB.ckid, signed_at=T0 + timedelta(days=2))
        token = issue_bearer_token(SUB.private_key, now=now.timestamp())
        assert not check_delegated_token(token, _key(revoke_doc=revoked.document), now)

    def test_expired_token(self):
        now = T0 + timedelta(days=1)
        token = issue_bearer_token(SUB.private_key, now=now.timestamp(), lifetime=10)
        assert not check_delegated_token(token, _key(), now + timedelta(seconds=10))
