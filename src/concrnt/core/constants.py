"""concrnt constants: filesystem layout, protocol values, timeouts, and limits."""

from __future__ import annotations

from enum import IntEnum

# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------


class ExitCode(IntEnum):
    SUCCESS = 0
    ERROR = 1
    CONFIG_ERROR = 2
    KEY_ERROR = 3
    NETWORK_ERROR = 4
    NOT_FOUND = 5


# ---------------------------------------------------------------------------
# Filesystem layout
# ---------------------------------------------------------------------------

CONCRNT_DIR_NAME = ".concrnt"
CONFIG_FILENAME = "config.toml"

# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------

API_PATH = "/api/v1"
SOCKET_PATH = "/api/v1/socket"

CCID_PREFIX = "con"  # bech32 hrp of root identities
CKID_PREFIX = "cck"  # bech32 hrp of subkeys
SUBKEY_SECRET_PREFIX = "concurrent-subkey"

# secp256k1 group order
CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

TOKEN_ALGORITHM = "CONCRNT"
TOKEN_SUBJECT = "concrnt"
TOKEN_LIFETIME_SECONDS = 5 * 60

TRACE_HEADERS = ("trace-id", "traceparent")

# ---------------------------------------------------------------------------
# Timeouts and limits
# ---------------------------------------------------------------------------

DEFAULT_REQUEST_TIMEOUT = 5.0  # seconds per outbound fetch
DEFAULT_DOMAIN_RETRY_SECONDS = 30.0  # failed liveness checks are re-tried after this
DEFAULT_PAGE_SIZE = 16

DEFAULT_KEEPALIVE_INTERVAL = 5.0
DEFAULT_MAX_MISSED_PONGS = 3
DEFAULT_RECONNECT_DELAY = 1.0
