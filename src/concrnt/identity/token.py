"""
Compact bearer credentials.

A token keeps the three-segment JWT shape so that servers can split it, but
the signature is a recoverable secp256k1 signature over
``keccak256(b64(header) + "." + b64(claims))``.  There is no fixed
verification key: the verifier recovers the signer's address.

  header  {"alg":"CONCRNT","typ":"JWT"}
  claims  {"jti","iat","nbf","exp","iss","aud","sub",...}  timestamps are decimal strings
  sig     base64url(r || s || recid)

All base64 is URL-safe with padding stripped.
"""

from __future__ import annotations

import base64
import binascii
import json
import time
import uuid
from typing import Any

from concrnt.core.constants import CCID_PREFIX, TOKEN_ALGORITHM, TOKEN_LIFETIME_SECONDS
from concrnt.core.exceptions import InvalidKeyError
from concrnt.identity.keys import derive_address, is_valid_private_key
from concrnt.identity.signing import keccak256, recover_public_key, sign_digest

HEADER = {"alg": TOKEN_ALGORITHM, "typ": "JWT"}


def b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def b64url_decode(segment: str) -> bytes:
    """Decode URL-safe or standard base64 with or without padding."""
    segment = segment.replace("+", "-").replace("/", "_")
    return base64.urlsafe_b64decode(segment + "=" * (-len(segment) % 4))


def _compact(obj: dict[str, Any]) -> bytes:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def issue_bearer_token(
    private_key: str,
    claims: dict[str, Any] | None = None,
    *,
    lifetime: int = TOKEN_LIFETIME_SECONDS,
    now: float | None = None,
) -> str:
    """Mint a signed token.  Caller-supplied *claims* override the defaults."""
    if not is_valid_private_key(private_key):
        raise InvalidKeyError()
    issued = int(now if now is not None else time.time())
    payload: dict[str, Any] = {
        "jti": str(uuid.uuid4()),
        "iat": str(issued),
        "nbf": str(issued),
        "exp": str(issued + lifetime),
    }
    payload.update(claims or {})

    body = b64url_encode(_compact(HEADER)) + "." + b64url_encode(_compact(payload))
    signature = sign_digest(private_key, keccak256(body))
    return body + "." + b64url_encode(signature)


def _decode_claims(token: str) -> dict[str, Any] | None:
    if not isinstance(token, str):
        return None
    parts = token.split(".")
    if len(parts) != 3:
        return None
    try:
        claims = json.loads(b64url_decode(parts[1]))
    except (binascii.Error, ValueError, UnicodeDecodeError):
        return None
    return claims if isinstance(claims, dict) else None


def parse_bearer_token(token: str) -> dict[str, Any]:
    """Return the claims of *token* without verifying it; ``{}`` when malformed."""
    return _decode_claims(token) or {}


def validate_bearer_token(token: str, now: float | None = None) -> bool:
    """True iff the claims decode and ``nbf <= now < exp``.

    No signature check: this is the client looking at its own credentials.
    A missing ``nbf`` means no lower bound and a missing ``exp`` means no
    expiry.  Never raises.
    """
    claims = _decode_claims(token)
    if claims is None:
        return False
    current = now if now is not None else time.time()
    try:
        if "nbf" in claims and current < int(claims["nbf"]):
            return False
        if "exp" in claims and current >= int(claims["exp"]):
            return False
    except (TypeError, ValueError):
        return False
    return True


def recover_token_signer(token: str, hrp: str = CCID_PREFIX) -> str | None:
    """Return the address that signed *token*, or None if it cannot be recovered."""
    if not isinstance(token, str):
        return None
    parts = token.split(".")
    if len(parts) != 3:
        return None
    try:
        signature = b64url_decode(parts[2])
    except (binascii.Error, ValueError):
        return None
    pub = recover_public_key(keccak256(parts[0] + "." + parts[1]), signature)
    if pub is None:
        return None
    return derive_address(pub, hrp)
