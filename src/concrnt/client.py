"""
Client — high-level facade over Api, RealtimeSocket and the readers.

Usage::

    async with await Client.create(private_key, "example.com") as client:
        user = await client.get_user(client.ccid)
        timeline = await client.new_timeline()
        await timeline.init(["tl1@example.com"])
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from concrnt.api import Api
from concrnt.core.config import ConcrntConfig
from concrnt.core.exceptions import ConcrntError, InvalidKeyError
from concrnt.identity.keys import load_key, load_subkey
from concrnt.models.core import Association, Entity, Message, Profile, Timeline
from concrnt.readers.query import QueryTimelineReader
from concrnt.readers.subscription import Subscription
from concrnt.readers.timeline import TimelineReader
from concrnt.realtime.protocol import ProtocolSpec
from concrnt.realtime.socket import Connector, RealtimeSocket

logger = logging.getLogger(__name__)

PROFILE_SCHEMA = "https://schema.concrnt.world/p/main.json"
SOCKET_OPEN_TIMEOUT = 10.0


@dataclass
class User:
    """An entity joined with its resolved domain and main profile."""

    ccid: str
    domain: str
    entity: Entity
    profile: Profile | None = None

    @property
    def alias(self) -> str | None:
        return self.entity.alias

    @property
    def username(self) -> str | None:
        if self.profile is None or self.profile.document is None:
            return None
        body = getattr(self.profile.document, "body", None)
        return body.get("username") if isinstance(body, dict) else None


class Client:
    def __init__(
        self,
        api: Api,
        *,
        protocol: ProtocolSpec | None = None,
        connector: Connector | None = None,
    ) -> None:
        self.api = api
        self.user: User | None = None
        self._protocol = protocol
        self._connector = connector
        self._socket: RealtimeSocket | None = None

    def __repr__(self) -> str:
        return f"Client(host={self.host!r}, ccid={self.ccid!r})"

    @property
    def host(self) -> str:
        return self.api.host

    @property
    def ccid(self) -> str | None:
        return self.api.ccid

    @property
    def ckid(self) -> str | None:
        return self.api.ckid

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    async def create(
        cls,
        private_key: str,
        host: str,
        client_name: str = "concrnt-python",
        **kwargs: Any,
    ) -> Client:
        """Client acting as the root identity of *private_key*."""
        keypair = load_key(private_key)
        client = cls._build(
            host,
            api_kwargs={"private_key": keypair.private_key, "ccid": keypair.ccid, "client_name": client_name},
            **kwargs,
        )
        await client.reload_user()
        return client

    @classmethod
    async def create_from_subkey(
        cls, secret: str, client_name: str = "concrnt-python", **kwargs: Any
    ) -> Client:
        """Client acting through a delegated subkey."""
        subkey = load_subkey(secret)
        if subkey is None:
            raise InvalidKeyError("subkey secret is malformed")
        client = cls._build(
            subkey.domain,
            api_kwargs={
                "private_key": subkey.keypair.private_key,
                "ccid": subkey.ccid,
                "ckid": subkey.ckid,
                "client_name": client_name,
            },
            **kwargs,
        )
        await client.reload_user()
        return client

    @classmethod
    async def from_config(cls, config: ConcrntConfig, **kwargs: Any) -> Client:
        """Client described by a loaded configuration."""
        protocol = ProtocolSpec(
            keepalive_interval_seconds=config.realtime.keepalive_interval,
            max_missed_pongs=config.realtime.max_missed_pongs,
            reconnect_delay_seconds=config.realtime.reconnect_delay,
        )
        connector = kwargs.pop("connector", None)
        client = cls(Api.from_config(config, **kwargs), protocol=protocol, connector=connector)
        await client.reload_user()
        return client

    @classmethod
    def _build(
        cls,
        host: str,
        *,
        api_kwargs: dict[str, Any],
        protocol: ProtocolSpec | None = None,
        connector: Connector | None = None,
        **extra: Any,
    ) -> Client:
        api = Api(host, **api_kwargs, **extra)
        return cls(api, protocol=protocol, connector=connector)

    async def reload_user(self) -> None:
        if self.ccid is None:
            return
        try:
            self.user = await self.get_user(self.ccid)
        except ConcrntError as exc:
            logger.warning("Could not load own user %s: %s", self.ccid, exc)
            self.user = None

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_user(self, ccid: str, hint: str | None = None) -> User | None:
        entity = await self.api.get_entity(ccid, hint)
        if entity is None:
            return None
        profile = await self.api.get_profile_by_schema(ccid, PROFILE_SCHEMA)
        return User(ccid=ccid, domain=entity.domain, entity=entity, profile=profile)

    async def get_message(self, id: str, author: str, hint: str | None = None) -> Message | None:
        return await self.api.get_message_with_author(id, author, hint)

    async def get_association(self, id: str, owner: str) -> Association | None:
        return await self.api.get_association_with_owner(id, owner)

    async def get_timeline(self, id: str) -> Timeline | None:
        return await self.api.get_timeline(id)

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    async def new_socket(self, timeout: float = SOCKET_OPEN_TIMEOUT) -> RealtimeSocket:
        """The client's socket, created on first use and awaited open."""
        if self._socket is None:
            self._socket = RealtimeSocket(self.api, protocol=self._protocol, connector=self._connector)
        if not await self._socket.wait_open(timeout):
            logger.warning("Realtime socket to %s not open after %.1fs", self.host, timeout)
        return self._socket

    async def new_timeline(self) -> TimelineReader:
        return TimelineReader(self.api, await self.new_socket())

    async def new_subscription(self) -> Subscription:
        return Subscription(await self.new_socket())

    def new_query_timeline(self) -> QueryTimelineReader:
        return QueryTimelineReader(self.api)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:
        if self._socket is not None:
            await self._socket.close()
            self._socket = None
        await self.api.aclose()

    async def __aenter__(self) -> Client:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()
