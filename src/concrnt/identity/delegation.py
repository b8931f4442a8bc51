"""
Subkey delegation: enact and revoke documents, and validity checks.

A root identity authorizes a subkey by signing an ``enact`` document whose
target is the subkey's CKID.  Validity ends when a ``revoke`` document,
signed by the root or by the subkey's immediate parent, is recorded with a
``signedAt`` at or after the enact, or when the clock leaves
``[validSince, validUntil)``.
"""

from __future__ import annotations

import logging
import time
from datetime import UTC, datetime

from concrnt.core.constants import CKID_PREFIX
from concrnt.core.exceptions import InvalidKeyError
from concrnt.identity.keys import load_key
from concrnt.identity.token import recover_token_signer, validate_bearer_token
from concrnt.models.core import Key
from concrnt.models.document import (
    EnactDocument,
    RevokeDocument,
    SignedDocument,
    as_utc,
    parse_document,
    sign_document,
)

logger = logging.getLogger(__name__)


def delegate(
    root_private_key: str,
    subkey_id: str,
    *,
    root: str | None = None,
    parent: str | None = None,
    signed_at: datetime | None = None,
) -> SignedDocument:
    """Sign an enact document authorizing *subkey_id*.

    *root* defaults to the CCID of *root_private_key*; *parent* defaults to
    *root* (a first-level subkey).
    """
    signer = load_key(root_private_key).ccid
    root = root or signer
    doc = EnactDocument(
        signer=signer,
        target=subkey_id,
        root=root,
        parent=parent or root,
    )
    if signed_at is not None:
        doc.signed_at = as_utc(signed_at)
    return sign_document(root_private_key, doc)


def revoke(
    signer_private_key: str,
    subkey_id: str,
    *,
    signer: str | None = None,
    key: Key | None = None,
    signed_at: datetime | None = None,
) -> SignedDocument:
    """Sign a revoke document for *subkey_id*.

    *signer* is the address the private key acts as: the root CCID, or the
    CKID of a parent subkey.  It defaults to the key's CCID.  When the
    subkey's *key* record is supplied, *signer* must be its root or immediate
    parent, otherwise :class:`InvalidKeyError`.
    """
    keypair = load_key(signer_private_key)
    signer = signer or keypair.ccid
    if signer not in (keypair.ccid, keypair.ckid):
        raise InvalidKeyError(f"private key does not belong to {signer}")
    if key is not None and signer not in (key.root, key.parent):
        raise InvalidKeyError(
            f"{signer} may not revoke {subkey_id}: only its root or parent can"
        )

    if signer.startswith(CKID_PREFIX):
        # a parent subkey signs on behalf of the root identity
        doc = RevokeDocument(signer=key.root if key else signer, key_id=signer, target=subkey_id)
    else:
        doc = RevokeDocument(signer=signer, target=subkey_id)
    if signed_at is not None:
        doc.signed_at = as_utc(signed_at)
    return sign_document(signer_private_key, doc)


def _as_datetime(now: float | datetime | None) -> datetime:
    if now is None:
        return datetime.now(UTC)
    if isinstance(now, datetime):
        return as_utc(now)
    return datetime.fromtimestamp(now, tz=UTC)


def is_key_valid(key: Key, now: float | datetime | None = None) -> bool:
    """Apply the subkey validity rule to a key record at *now*."""
    if not key.enact_document or not key.enact_signature:
        return False
    enact = parse_document(key.enact_document)
    if not isinstance(enact, EnactDocument):
        logger.debug("Key %s has an unreadable enact document", key.id)
        return False

    if key.revoke_document:
        revoked = parse_document(key.revoke_document)
        if not isinstance(revoked, RevokeDocument):
            # an unreadable revoke still counts against the key
            return False
        if revoked.signed_at >= enact.signed_at:
            return False

    current = _as_datetime(now)
    return key.valid_since <= current < key.valid_until


def check_delegated_token(
    token: str,
    key: Key,
    now: float | datetime | None = None,
) -> bool:
    """True iff *token* is in its window, was signed by *key*, and *key* is valid."""
    moment = _as_datetime(now)
    if not validate_bearer_token(token, now=moment.timestamp()):
        return False
    if recover_token_signer(token, CKID_PREFIX) != key.id:
        return False
    return is_key_valid(key, moment)
