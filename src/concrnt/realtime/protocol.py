"""
Realtime channel wire protocol.

Frames are JSON text messages over ``wss://{domain}/api/v1/socket``.

Client -> server:
  {"type": "listen",   "channels": [timeline, ...]}
  {"type": "unlisten", "channels": [timeline, ...]}
  {"type": "ping"}

Server -> client:
  {"type": "pong"}
  {"type": <kind>, "action": <verb>, "timelineID": ..., "item": ..., "body": ...}
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import ValidationError

from concrnt.core.constants import (
    DEFAULT_KEEPALIVE_INTERVAL,
    DEFAULT_MAX_MISSED_PONGS,
    DEFAULT_RECONNECT_DELAY,
    SOCKET_PATH,
)
from concrnt.models.core import TimelineEvent

logger = logging.getLogger(__name__)


class FrameType(StrEnum):
    """Control frame types."""

    # Client -> server
    LISTEN = "listen"
    UNLISTEN = "unlisten"
    PING = "ping"

    # Server -> client
    PONG = "pong"


class EventKind(StrEnum):
    MESSAGE = "message"
    ASSOCIATION = "association"


class EventAction(StrEnum):
    CREATE = "create"
    DELETE = "delete"


@dataclass
class ProtocolSpec:
    """Protocol constants."""

    path: str = SOCKET_PATH
    keepalive_interval_seconds: float = DEFAULT_KEEPALIVE_INTERVAL
    max_missed_pongs: int = DEFAULT_MAX_MISSED_PONGS
    reconnect_delay_seconds: float = DEFAULT_RECONNECT_DELAY  # fixed, no backoff


def socket_url(domain: str, path: str = SOCKET_PATH) -> str:
    return f"wss://{domain}{path}"


def encode_listen(channels: Iterable[str]) -> str:
    return json.dumps({"type": FrameType.LISTEN.value, "channels": sorted(channels)})


def encode_unlisten(channels: Iterable[str]) -> str:
    return json.dumps({"type": FrameType.UNLISTEN.value, "channels": sorted(channels)})


def encode_ping() -> str:
    return json.dumps({"type": FrameType.PING.value})


def decode_frame(raw: str | bytes) -> dict[str, Any] | None:
    """Parse one inbound frame; None (logged) if it is not a JSON object."""
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("Dropping non-JSON realtime frame (%d bytes)", len(raw))
        return None
    if not isinstance(data, dict) or "type" not in data:
        logger.warning("Dropping realtime frame without a type")
        return None
    return data


def is_pong(frame: dict[str, Any]) -> bool:
    return frame.get("type") == FrameType.PONG


def parse_event(frame: dict[str, Any]) -> TimelineEvent | None:
    """Interpret a non-control frame as a timeline event; None if it does not fit."""
    try:
        return TimelineEvent.model_validate(frame)
    except ValidationError as exc:
        logger.warning(
            "Dropping malformed realtime event type=%r: %d error(s)",
            frame.get("type"),
            exc.error_count(),
        )
        return None
