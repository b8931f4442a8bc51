"""Keys, addresses, signatures, bearer tokens, and subkey delegation.

``concrnt.identity.delegation`` depends on the document models and is not
re-exported here.
"""

from concrnt.identity.keys import (
    KeyPair,
    SubKey,
    compute_ccid,
    compute_ckid,
    derive_address,
    generate_key,
    is_ccid,
    is_ckid,
    is_valid_private_key,
    load_key,
    load_subkey,
)
from concrnt.identity.signing import recover_address, sign, verify
from concrnt.identity.token import (
    issue_bearer_token,
    parse_bearer_token,
    recover_token_signer,
    validate_bearer_token,
)

__all__ = [
    "KeyPair",
    "SubKey",
    "compute_ccid",
    "compute_ckid",
    "derive_address",
    "generate_key",
    "is_ccid",
    "is_ckid",
    "is_valid_private_key",
    "issue_bearer_token",
    "load_key",
    "load_subkey",
    "parse_bearer_token",
    "recover_address",
    "recover_token_signer",
    "sign",
    "validate_bearer_token",
    "verify",
]
