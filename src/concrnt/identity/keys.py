"""
Key material and address derivation.

Private keys are raw secp256k1 scalars encoded as 64 hex characters.  An
identity's address is ``bech32(hrp, ripemd160(sha256(compressed_pubkey)))``:

  con1...  CCID, a root identity (always 42 characters)
  cck1...  CKID, a delegated subkey
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass, field

from bech32 import bech32_decode, bech32_encode, convertbits
from coincurve import PrivateKey, PublicKey
from Crypto.Hash import RIPEMD160

from concrnt.core.constants import CCID_PREFIX, CKID_PREFIX, CURVE_ORDER, SUBKEY_SECRET_PREFIX
from concrnt.core.exceptions import InvalidKeyError

_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")
_SUBKEY_SECRET = re.compile(
    rf"{SUBKEY_SECRET_PREFIX}\s+([0-9a-f]{{64}})\s+([^@\s]+)@(\S+)"
)


@dataclass(frozen=True)
class KeyPair:
    """A loaded secp256k1 key.  The private half never appears in ``repr``."""

    private_key: str = field(repr=False)
    public_key: str  # uncompressed, 130 hex chars (04 || X || Y)

    @property
    def ccid(self) -> str:
        return compute_ccid(self.public_key)

    @property
    def ckid(self) -> str:
        return compute_ckid(self.public_key)


@dataclass(frozen=True)
class SubKey:
    """A delegated key bound to its root identity and that identity's home domain."""

    keypair: KeyPair
    ccid: str
    domain: str
    ckid: str


def is_valid_private_key(key: str) -> bool:
    """Return True if *key* is 64 hex chars encoding a scalar in ``[1, n)``."""
    if not isinstance(key, str) or not _HEX_KEY.match(key):
        return False
    scalar = int(key, 16)
    return 0 < scalar < CURVE_ORDER


def load_key(private_key: str) -> KeyPair:
    """Load a hex private key.  Raises :class:`InvalidKeyError` when out of range."""
    if not is_valid_private_key(private_key):
        raise InvalidKeyError("private key must be 64 hex chars encoding a scalar in [1, n)")
    priv = PrivateKey(bytes.fromhex(private_key))
    return KeyPair(
        private_key=private_key.lower(),
        public_key=priv.public_key.format(compressed=False).hex(),
    )


def generate_key() -> KeyPair:
    """Generate a fresh random key pair."""
    priv = PrivateKey()
    return KeyPair(
        private_key=priv.secret.hex(),
        public_key=priv.public_key.format(compressed=False).hex(),
    )


def derive_address(public_key: str | bytes, hrp: str) -> str:
    """Derive the bech32 address of *public_key* (compressed or uncompressed) under *hrp*."""
    raw = bytes.fromhex(public_key) if isinstance(public_key, str) else public_key
    compressed = PublicKey(raw).format(compressed=True)
    sha = hashlib.sha256(compressed).digest()
    digest = RIPEMD160.new(sha).digest()
    words = convertbits(digest, 8, 5)
    return bech32_encode(hrp, words)


def compute_ccid(public_key: str | bytes) -> str:
    return derive_address(public_key, CCID_PREFIX)


def compute_ckid(public_key: str | bytes) -> str:
    return derive_address(public_key, CKID_PREFIX)


def address_hrp(address: str) -> str | None:
    """Return the human-readable part of a well-formed bech32 address, else None."""
    hrp, data = bech32_decode(address)
    if hrp is None or data is None:
        return None
    return hrp


def is_ccid(value: str) -> bool:
    return len(value) == 42 and address_hrp(value) == CCID_PREFIX


def is_ckid(value: str) -> bool:
    return address_hrp(value) == CKID_PREFIX


def load_subkey(secret: str) -> SubKey | None:
    """Parse ``concurrent-subkey <privatekey> <ccid>@<domain>``.

    Returns None for anything that does not match or carries a bad scalar.
    """
    match = _SUBKEY_SECRET.search(secret.strip())
    if not match:
        return None
    private_key, ccid, domain = match.groups()
    try:
        keypair = load_key(private_key)
    except InvalidKeyError:
        return None
    return SubKey(keypair=keypair, ccid=ccid, domain=domain, ckid=keypair.ckid)


def format_subkey(keypair: KeyPair, ccid: str, domain: str) -> str:
    """Inverse of :func:`load_subkey`."""
    return f"{SUBKEY_SECRET_PREFIX} {keypair.private_key} {ccid}@{domain}"
