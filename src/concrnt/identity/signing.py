"""
Recoverable secp256k1 signatures over keccak-256 digests.

Wire format is 130 hex chars: ``r (64) || s (64) || v (2)`` where ``v`` is
the recovery id.  Signatures are deterministic (RFC 6979) and low-S, so a
payload signed twice with the same key yields the same string.
"""

from __future__ import annotations

import logging

from coincurve import PrivateKey, PublicKey
from Crypto.Hash import keccak

from concrnt.core.constants import CCID_PREFIX, CKID_PREFIX
from concrnt.core.exceptions import InvalidKeyError
from concrnt.identity.keys import derive_address, is_valid_private_key

logger = logging.getLogger(__name__)

SIGNATURE_HEX_LENGTH = 130


def keccak256(payload: bytes | str) -> bytes:
    data = payload.encode("utf-8") if isinstance(payload, str) else payload
    return keccak.new(digest_bits=256, data=data).digest()


def sign_digest(private_key: str, digest: bytes) -> bytes:
    """Return the 65-byte ``r || s || recid`` signature of a 32-byte digest."""
    if not is_valid_private_key(private_key):
        raise InvalidKeyError()
    return PrivateKey(bytes.fromhex(private_key)).sign_recoverable(digest, hasher=None)


def sign(private_key: str, payload: bytes | str) -> str:
    """Sign keccak256(*payload*) and return the hex signature."""
    return sign_digest(private_key, keccak256(payload)).hex()


def recover_public_key(digest: bytes, signature: bytes) -> bytes | None:
    """Recover the compressed public key, or None when the signature is unusable."""
    if len(signature) != 65 or signature[64] > 3:
        return None
    try:
        pub = PublicKey.from_signature_and_message(signature, digest, hasher=None)
    except Exception:  # noqa: BLE001
        return None
    return pub.format(compressed=True)


def recover_address(payload: bytes | str, signature: str, hrp: str = CCID_PREFIX) -> str | None:
    """Return the address that produced *signature* over *payload*, or None."""
    try:
        raw = bytes.fromhex(signature)
    except (TypeError, ValueError):
        return None
    if len(raw) != 65:
        return None
    pub = recover_public_key(keccak256(payload), raw)
    if pub is None:
        return None
    return derive_address(pub, hrp)


def verify(payload: bytes | str, signature: str, expected_signer: str) -> bool:
    """True iff *signature* over *payload* recovers to *expected_signer*.

    The hrp of *expected_signer* selects CCID or CKID derivation.  Anything
    malformed, including an unknown hrp, fails closed.
    """
    if not isinstance(signature, str) or len(signature) != SIGNATURE_HEX_LENGTH:
        return False
    hrp = expected_signer[:3]
    if hrp not in (CCID_PREFIX, CKID_PREFIX):
        logger.debug("verify: unexpected key hrp in %r", expected_signer)
        return False
    return recover_address(payload, signature, hrp) == expected_signer
