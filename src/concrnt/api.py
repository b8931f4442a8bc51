"""
Api — resolver, object caches, and the REST surface of a concrnt domain.

One Api instance owns one ``httpx.AsyncClient``, one CredentialedTransport
and one ObjectCache per object kind.  Nothing here is process-global: two
Api instances never share cache state.

Reads of public objects (entities, messages, associations, profiles,
timelines) are gated on the target domain's liveness check and go out
without credentials.  Listings, key-value storage, collections and every
write go through the credentialed transport.

Public getters return ``T | None``.  The tri-state result (Found, NotFound,
Indeterminate) stays available on the caches themselves.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from concrnt import __version__
from concrnt.cache.store import (
    NOT_FOUND,
    CacheResult,
    Found,
    Indeterminate,
    ObjectCache,
    profile_key,
)
from concrnt.core.constants import (
    API_PATH,
    DEFAULT_DOMAIN_RETRY_SECONDS,
    DEFAULT_PAGE_SIZE,
    DEFAULT_REQUEST_TIMEOUT,
)
from concrnt.core.config import ConcrntConfig
from concrnt.core.exceptions import (
    ConfigError,
    DomainOfflineError,
    FetchError,
    InvalidKeyError,
    MalformedResponseError,
)
from concrnt.identity.keys import is_ccid, load_subkey
from concrnt.models.core import (
    Ack,
    Association,
    Collection,
    CollectionItem,
    Domain,
    Entity,
    Message,
    Profile,
    SignedContent,
    Timeline,
    TimelineItem,
)
from concrnt.models.document import (
    AckDocument,
    AffiliationDocument,
    AssociationDocument,
    DeleteDocument,
    DocumentBase,
    EnactDocument,
    MessageDocument,
    ProfileDocument,
    RevokeDocument,
    TimelineDocument,
    UnackDocument,
)
from concrnt.transport.auth import CredentialedTransport
from concrnt.transport.fetch import fetch_with_timeout, unwrap_envelope

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def _unix(value: datetime | float | int | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return str(int(value.timestamp()))
    return str(int(value))


def _list_of(model: type[M], content: Any, source: str) -> list[M]:
    """Validate a listing; any other shape raises MalformedResponseError."""
    if content is None:
        return []
    if not isinstance(content, list):
        raise MalformedResponseError(f"{source}: expected a list, got {type(content).__name__}")
    try:
        return [model.model_validate(raw) for raw in content]
    except ValidationError as exc:
        raise MalformedResponseError(f"{source}: {exc.error_count()} validation error(s)") from exc


class Api:
    """Client-side view of the network, anchored at a home domain."""

    def __init__(
        self,
        host: str,
        *,
        private_key: str | None = None,
        ccid: str | None = None,
        ckid: str | None = None,
        token: str | None = None,
        client_name: str = "concrnt-python",
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        domain_retry_seconds: float = DEFAULT_DOMAIN_RETRY_SECONDS,
        http: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.host = host
        self.client_name = client_name
        self._timeout = timeout
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(
            headers={"user-agent": f"{client_name} concrnt-client/{__version__}"}
        )
        self.transport = CredentialedTransport(
            self.http,
            host,
            private_key=private_key,
            ccid=ccid,
            ckid=ckid,
            token=token,
            timeout=timeout,
            clock=clock,
        )

        self.entities: ObjectCache[Entity] = ObjectCache("entity")
        self.messages: ObjectCache[Message] = ObjectCache("message")
        self.associations: ObjectCache[Association] = ObjectCache("association")
        self.profiles: ObjectCache[Profile] = ObjectCache("profile")
        self.timelines: ObjectCache[Timeline] = ObjectCache("timeline")
        self.domains: ObjectCache[Domain] = ObjectCache("domain", negative_ttl=domain_retry_seconds)

    @classmethod
    def from_config(cls, config: ConcrntConfig, **overrides: Any) -> Api:
        """Build an Api from a loaded configuration (root key, subkey, or guest)."""
        kwargs: dict[str, Any] = {
            "client_name": config.identity.client_name,
            "timeout": config.network.request_timeout,
            "domain_retry_seconds": config.network.domain_retry_seconds,
        }
        kwargs.update(overrides)
        if secret := config.subkey_secret():
            subkey = load_subkey(secret)
            if subkey is None:
                raise ConfigError("identity.subkey is malformed")
            return cls(
                subkey.domain,
                private_key=subkey.keypair.private_key,
                ccid=subkey.ccid,
                ckid=subkey.ckid,
                **kwargs,
            )
        token = config.identity.token.get_secret_value() if config.identity.token else None
        return cls(config.identity.host, private_key=config.private_key_hex(), token=token, **kwargs)

    def __repr__(self) -> str:
        return f"Api(host={self.host!r}, ccid={self.ccid!r})"

    @property
    def ccid(self) -> str | None:
        return self.transport.ccid

    @property
    def ckid(self) -> str | None:
        return self.transport.ckid

    async def aclose(self) -> None:
        if self._owns_http:
            await self.http.aclose()

    async def __aenter__(self) -> Api:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Request helpers
    # ------------------------------------------------------------------

    async def fetch_with_online_check(
        self, domain: str, path: str, *, params: dict[str, Any] | None = None
    ) -> httpx.Response:
        """Plain GET against *domain*, refused up front when its liveness check failed."""
        if await self.get_domain(domain) is None:
            raise DomainOfflineError(domain)
        return await fetch_with_timeout(
            self.http, domain, f"{API_PATH}{path}", params=params, timeout=self._timeout
        )

    async def _read(self, domain: str, path: str, params: dict[str, Any] | None = None) -> Any:
        return unwrap_envelope(await self.fetch_with_online_check(domain, path, params=params))

    async def _call(
        self,
        domain: str,
        path: str,
        *,
        method: str = "GET",
        json: Any = None,
        content: str | None = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        response = await self.transport.call(
            domain,
            f"{API_PATH}{path}",
            method=method,
            json=json,
            content=content,
            params=params,
        )
        return unwrap_envelope(response)

    async def _lookup(
        self,
        cache: ObjectCache[M],
        key: str,
        load: Callable[[], Awaitable[Any]],
        model: type[M],
    ) -> M | None:
        """Serve *key* from *cache*, fetching through *load* on a miss."""

        async def fetcher() -> CacheResult[M]:
            try:
                content = await load()
            except FetchError as exc:
                if exc.not_found:
                    return NOT_FOUND
                raise
            except MalformedResponseError as exc:
                return Indeterminate(str(exc))
            return self._decode(model, content)

        return self._value_of(cache, key, await cache.get(key, fetcher))

    @staticmethod
    def _decode(model: type[M], content: Any) -> CacheResult[M]:
        if content is None:
            return Indeterminate("empty content")
        try:
            value = model.model_validate(content)
        except ValidationError as exc:
            return Indeterminate(f"{model.__name__}: {exc.error_count()} validation error(s)")
        if isinstance(value, SignedContent) and value.document is None:
            return Indeterminate(f"{model.__name__} {value.id}: document did not decode")
        return Found(value)

    @staticmethod
    def _value_of(cache: ObjectCache[M], key: str, result: CacheResult[M]) -> M | None:
        if isinstance(result, Found):
            return result.value
        if isinstance(result, Indeterminate):
            logger.warning("Could not interpret %s %s: %s", cache.name, key, result.reason)
        return None

    def _require_signer(self) -> str:
        if not self.transport.can_sign or self.ccid is None:
            raise InvalidKeyError()
        return self.ccid

    # ------------------------------------------------------------------
    # Domains
    # ------------------------------------------------------------------

    async def get_domain(self, fqdn: str | None = None) -> Domain | None:
        """Liveness check plus metadata.  Failed checks are retried after a cool-down."""
        fqdn = fqdn or self.host

        async def check() -> CacheResult[Domain]:
            try:
                response = await fetch_with_timeout(
                    self.http, fqdn, f"{API_PATH}/domain", timeout=self._timeout
                )
                content = unwrap_envelope(response)
            except (FetchError, MalformedResponseError) as exc:
                logger.warning("Domain %s is unreachable: %s", fqdn, exc)
                return NOT_FOUND
            result = self._decode(Domain, content)
            if not isinstance(result, Found) or not result.value.ccid:
                logger.warning("Domain %s answered without an identity", fqdn)
                return NOT_FOUND
            return result

        return self._value_of(self.domains, fqdn, await self.domains.get(fqdn, check))

    async def get_domains(self, remote: str | None = None) -> list[Domain]:
        """Domains known to *remote* (default: home)."""
        content = await self._read(remote or self.host, "/domains")
        return _list_of(Domain, content, "/domains")

    # ------------------------------------------------------------------
    # Entities (resolver)
    # ------------------------------------------------------------------

    async def get_entity(self, ccid: str, hint: str | None = None) -> Entity | None:
        """Look up *ccid*, asking *hint* first and then the home domain.

        Returns None when the identity does not exist.  Raises
        :class:`DomainOfflineError` when the last domain tried was unreachable.
        """

        async def resolve() -> CacheResult[Entity]:
            candidates = [d for d in dict.fromkeys([hint, self.host]) if d]
            failure: FetchError | None = None
            for domain in candidates:
                try:
                    content = await self._read(domain, f"/entity/{ccid}")
                except FetchError as exc:
                    if exc.not_found:
                        failure = None
                        continue
                    logger.info("Entity lookup for %s on %s failed: %s", ccid, domain, exc)
                    failure = exc
                    continue
                except MalformedResponseError as exc:
                    return Indeterminate(str(exc))
                return self._decode(Entity, content)

            if failure is not None:
                last = candidates[-1]
                if isinstance(failure, DomainOfflineError):
                    raise failure
                raise DomainOfflineError(last, f"cannot reach {last} to resolve {ccid}") from failure
            return NOT_FOUND

        return self._value_of(self.entities, ccid, await self.entities.get(ccid, resolve))

    async def resolve_domain(self, ccid: str, hint: str | None = None) -> str | None:
        """The domain currently hosting *ccid*, or None if it does not exist."""
        entity = await self.get_entity(ccid, hint)
        return entity.domain if entity else None

    def invalidate_entity(self, ccid: str) -> None:
        self.entities.invalidate(ccid)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def get_message(self, id: str, host: str | None = None) -> Message | None:
        domain = host or self.host
        return await self._lookup(
            self.messages, id, lambda: self._read(domain, f"/message/{id}"), Message
        )

    async def get_message_with_author(
        self, id: str, author: str, hint: str | None = None
    ) -> Message | None:
        domain = await self.resolve_domain(author, hint)
        if domain is None:
            return None
        return await self.get_message(id, domain)

    def cache_message(self, message: Message | dict[str, Any]) -> Message | None:
        """Store a message delivered out of band.  Returns None if it does not decode."""
        result = self._decode(Message, message) if isinstance(message, dict) else Found(message)
        if not isinstance(result, Found):
            logger.debug("Not caching message: %s", getattr(result, "reason", ""))
            return None
        self.messages.put(result.value.id, result.value)
        for association in result.value.own_associations:
            self.associations.put(association.id, association)
        return result.value

    def invalidate_message(self, id: str) -> None:
        self.messages.invalidate(id)

    async def get_message_associations_by_target(
        self,
        target: str,
        target_author: str,
        *,
        schema: str | None = None,
        variant: str | None = None,
    ) -> list[Association]:
        domain = await self.resolve_domain(target_author)
        if domain is None:
            return []
        params = {k: v for k, v in (("schema", schema), ("variant", variant)) if v}
        content = await self._read(domain, f"/message/{target}/associations", params or None)
        associations = _list_of(Association, content, f"/message/{target}/associations")
        for association in associations:
            self.associations.put(association.id, association)
        return associations

    async def get_message_association_counts_by_target(
        self, target: str, target_author: str, *, schema: str | None = None
    ) -> dict[str, int]:
        domain = await self.resolve_domain(target_author)
        if domain is None:
            return {}
        params = {"schema": schema} if schema else None
        content = await self._read(domain, f"/message/{target}/associationcounts", params)
        if content is None:
            return {}
        try:
            return {str(k): int(v) for k, v in content.items()}
        except (AttributeError, TypeError, ValueError) as exc:
            raise MalformedResponseError(f"/message/{target}/associationcounts: {exc}") from exc

    # ------------------------------------------------------------------
    # Associations
    # ------------------------------------------------------------------

    async def get_association(self, id: str, host: str | None = None) -> Association | None:
        domain = host or self.host
        return await self._lookup(
            self.associations, id, lambda: self._read(domain, f"/association/{id}"), Association
        )

    async def get_association_with_owner(self, id: str, owner: str) -> Association | None:
        domain = await self.resolve_domain(owner)
        if domain is None:
            return None
        return await self.get_association(id, domain)

    def cache_association(self, association: Association | dict[str, Any]) -> Association | None:
        if isinstance(association, dict):
            result = self._decode(Association, association)
        else:
            result = Found(association)
        if not isinstance(result, Found):
            return None
        self.associations.put(result.value.id, result.value)
        return result.value

    def invalidate_association(self, id: str) -> None:
        self.associations.invalidate(id)

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def get_profile(self, id: str, owner: str) -> Profile | None:
        domain = await self.resolve_domain(owner)
        if domain is None:
            return None
        return await self._lookup(
            self.profiles, id, lambda: self._read(domain, f"/profile/{id}"), Profile
        )

    async def get_profile_by_schema(self, author: str, schema: str) -> Profile | None:
        domain = await self.resolve_domain(author)
        if domain is None:
            return None

        async def load() -> Any:
            content = await self._read(domain, "/profiles", {"author": author, "schema": schema})
            if content is not None and not isinstance(content, list):
                raise MalformedResponseError(f"/profiles: expected a list, got {type(content).__name__}")
            if not content:
                raise FetchError(f"https://{domain}{API_PATH}/profiles", "no profile", status=404)
            return content[0]

        return await self._lookup(self.profiles, profile_key(author, schema), load, Profile)

    def invalidate_profile(self, key: str) -> None:
        self.profiles.invalidate(key)

    # ------------------------------------------------------------------
    # Timelines
    # ------------------------------------------------------------------

    async def timeline_host(self, timeline_id: str) -> str | None:
        """Domain that hosts *timeline_id* (``<id>@<domain or ccid>``)."""
        _, _, owner = timeline_id.partition("@")
        if not owner:
            return self.host
        if is_ccid(owner):
            return await self.resolve_domain(owner)
        return owner

    async def get_timeline(self, id: str) -> Timeline | None:
        domain = await self.timeline_host(id)
        if domain is None:
            return None
        return await self._lookup(
            self.timelines, id, lambda: self._read(domain, f"/timeline/{id}"), Timeline
        )

    def invalidate_timeline(self, id: str) -> None:
        self.timelines.invalidate(id)

    async def get_timelines_by_schema(self, schema: str, remote: str | None = None) -> list[Timeline]:
        content = await self._read(remote or self.host, "/timelines", {"schema": schema})
        return _list_of(Timeline, content, "/timelines")

    async def _plan(self, timelines: Iterable[str]) -> dict[str, list[str]]:
        plan: dict[str, list[str]] = {}
        for timeline in timelines:
            try:
                domain = await self.timeline_host(timeline)
            except FetchError as exc:
                logger.warning("Skipping timeline %s: %s", timeline, exc)
                continue
            if domain is None:
                logger.warning("Skipping timeline %s: owner not found", timeline)
                continue
            plan.setdefault(domain, []).append(timeline)
        return plan

    async def _gather_items(
        self, timelines: Iterable[str], path: str, extra: dict[str, str], limit: int
    ) -> list[TimelineItem]:
        plan = await self._plan(timelines)
        domains = list(plan)
        results = await asyncio.gather(
            *[
                self._call(d, path, params={"timelines": ",".join(plan[d]), **extra})
                for d in domains
            ],
            return_exceptions=True,
        )

        items: list[TimelineItem] = []
        for domain, result in zip(domains, results, strict=True):
            if isinstance(result, Exception):
                logger.warning("Timeline read from %s failed: %s", domain, result)
                continue
            if not isinstance(result, list):
                if result is not None:
                    logger.warning(
                        "Timeline read from %s returned %s, not a list", domain, type(result).__name__
                    )
                continue
            for raw in result:
                try:
                    items.append(TimelineItem.model_validate(raw))
                except ValidationError:
                    logger.debug("Dropping malformed timeline item from %s", domain)

        items.sort(key=lambda i: i.cdate, reverse=True)
        seen: set[str] = set()
        unique = []
        for item in items:
            if item.resource_id in seen:
                continue
            seen.add(item.resource_id)
            unique.append(item)
        return unique[:limit]

    async def get_timeline_recent(
        self, timelines: Iterable[str], *, limit: int = DEFAULT_PAGE_SIZE
    ) -> list[TimelineItem]:
        """Newest items across *timelines*, merged newest first."""
        return await self._gather_items(timelines, "/timelines/recent", {}, limit)

    async def get_timeline_ranged(
        self,
        timelines: Iterable[str],
        *,
        until: datetime | float | None = None,
        since: datetime | float | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> list[TimelineItem]:
        """Items strictly older than *until* and newer than *since* (unix seconds)."""
        extra = {k: v for k, v in (("until", _unix(until)), ("since", _unix(since))) if v is not None}
        return await self._gather_items(timelines, "/timelines/range", extra, limit)

    async def query_timeline(
        self,
        id: str,
        *,
        schema: str | None = None,
        owner: str | None = None,
        author: str | None = None,
        until: datetime | float | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> list[TimelineItem]:
        domain = await self.timeline_host(id)
        if domain is None:
            return []
        params: dict[str, Any] = {"limit": limit}
        for name, value in (("schema", schema), ("owner", owner), ("author", author), ("until", _unix(until))):
            if value is not None:
                params[name] = value
        content = await self._call(domain, f"/timeline/{id}/query", params=params)
        return _list_of(TimelineItem, content, f"/timeline/{id}/query")

    # ------------------------------------------------------------------
    # Acks
    # ------------------------------------------------------------------

    async def get_acking(self, ccid: str) -> list[Ack]:
        """Entities *ccid* acknowledges."""
        domain = await self.resolve_domain(ccid)
        if domain is None:
            return []
        content = await self._read(domain, f"/entity/{ccid}/acking")
        return _list_of(Ack, content, f"/entity/{ccid}/acking")

    async def get_acker(self, ccid: str) -> list[Ack]:
        """Entities acknowledging *ccid*."""
        domain = await self.resolve_domain(ccid)
        if domain is None:
            return []
        content = await self._read(domain, f"/entity/{ccid}/acker")
        return _list_of(Ack, content, f"/entity/{ccid}/acker")

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def commit(
        self, document: DocumentBase, *, domain: str | None = None, option: str | None = None
    ) -> Any:
        """Sign *document* and submit it with ``POST /commit``."""
        signed = self.transport.sign_document(document)
        return await self._call(
            domain or self.host, "/commit", method="POST", json=signed.to_commit(option)
        )

    async def create_message(
        self,
        schema: str,
        body: Any,
        timelines: list[str],
        *,
        policy: str | None = None,
        policy_params: str | None = None,
    ) -> Any:
        signer = self._require_signer()
        doc = MessageDocument(
            signer=signer,
            schema=schema,
            body=body,
            timelines=timelines,
            policy=policy,
            policy_params=policy_params,
        )
        return await self.commit(doc)

    async def delete_message(self, target: str, host: str | None = None) -> Any:
        signer = self._require_signer()
        result = await self.commit(DeleteDocument(signer=signer, target=target), domain=host)
        self.invalidate_message(target)
        return result

    async def create_association(
        self,
        schema: str,
        body: Any,
        target: str,
        target_author: str,
        timelines: list[str],
        *,
        variant: str | None = None,
    ) -> Any:
        signer = self._require_signer()
        domain = await self.resolve_domain(target_author)
        doc = AssociationDocument(
            signer=signer,
            schema=schema,
            body=body,
            target=target,
            owner=target_author,
            variant=variant,
            timelines=timelines,
        )
        result = await self.commit(doc, domain=domain)
        self.invalidate_message(target)
        return result

    async def delete_association(self, association_id: str, target: str, target_author: str) -> Any:
        signer = self._require_signer()
        domain = await self.resolve_domain(target_author)
        result = await self.commit(DeleteDocument(signer=signer, target=association_id), domain=domain)
        self.invalidate_association(association_id)
        self.invalidate_message(target)
        return result

    async def upsert_profile(
        self,
        schema: str,
        body: Any,
        *,
        id: str | None = None,
        semantic_id: str | None = None,
    ) -> Any:
        signer = self._require_signer()
        doc = ProfileDocument(signer=signer, id=id, schema=schema, body=body, semantic_id=semantic_id)
        result = await self.commit(doc)
        self.invalidate_profile(profile_key(signer, schema))
        if id:
            self.invalidate_profile(id)
        return result

    async def upsert_timeline(
        self,
        schema: str,
        body: Any,
        *,
        id: str | None = None,
        owner: str | None = None,
        indexable: bool = False,
        domain_owned: bool = False,
        semantic_id: str | None = None,
    ) -> Any:
        signer = self._require_signer()
        doc = TimelineDocument(
            signer=signer,
            id=id,
            owner=owner,
            schema=schema,
            body=body,
            indexable=indexable,
            domain_owned=domain_owned,
            semantic_id=semantic_id,
        )
        result = await self.commit(doc)
        if id:
            self.invalidate_timeline(id)
        return result

    async def delete_timeline(self, id: str) -> Any:
        signer = self._require_signer()
        domain = await self.timeline_host(id)
        result = await self.commit(DeleteDocument(signer=signer, target=id), domain=domain)
        self.invalidate_timeline(id)
        return result

    async def ack(self, target: str) -> Any:
        signer = self._require_signer()
        return await self.commit(AckDocument(signer=signer, from_=signer, to=target))

    async def unack(self, target: str) -> Any:
        signer = self._require_signer()
        return await self.commit(UnackDocument(signer=signer, from_=signer, to=target))

    async def enact_subkey(self, subkey_id: str) -> Any:
        """Authorize *subkey_id* under this identity (``POST /key``)."""
        signer = self._require_signer()
        doc = EnactDocument(
            signer=signer,
            target=subkey_id,
            root=signer,
            parent=self.transport.issuer or signer,
        )
        signed = self.transport.sign_document(doc)
        return await self._call(self.host, "/key", method="POST", json=signed.to_commit())

    async def revoke_subkey(self, subkey_id: str) -> Any:
        """Revoke *subkey_id* (``DELETE /key``)."""
        signer = self._require_signer()
        signed = self.transport.sign_document(RevokeDocument(signer=signer, target=subkey_id))
        return await self._call(self.host, "/key", method="DELETE", json=signed.to_commit())

    async def register(self, info: dict[str, Any], *, invitation: str | None = None) -> Any:
        """Affiliate this identity with the home domain."""
        signer = self._require_signer()
        option: dict[str, Any] = {"info": json.dumps(info)}
        if invitation:
            option["invitation"] = invitation
        doc = AffiliationDocument(signer=signer, domain=self.host)
        result = await self.commit(doc, option=json.dumps(option))
        self.invalidate_entity(signer)
        return result

    # ------------------------------------------------------------------
    # Key-value storage
    # ------------------------------------------------------------------

    async def read_kv(self, key: str) -> str | None:
        try:
            content = await self._call(self.host, f"/kv/{key}")
        except FetchError as exc:
            if exc.not_found:
                return None
            raise
        return content or None

    async def write_kv(self, key: str, value: str) -> None:
        await self._call(self.host, f"/kv/{key}", method="PUT", content=value)

    # ------------------------------------------------------------------
    # Collections
    # ------------------------------------------------------------------

    @staticmethod
    def _split_collection_id(id: str, default: str) -> tuple[str, str]:
        key, _, domain = id.partition("@")
        return key, domain or default

    @staticmethod
    def _decode_item(raw: dict[str, Any]) -> CollectionItem:
        item = CollectionItem.model_validate(raw)
        if isinstance(item.payload, str):
            try:
                item.payload = json.loads(item.payload)
            except ValueError:
                pass
        return item

    async def get_collection(self, id: str) -> Collection | None:
        key, domain = self._split_collection_id(id, self.host)
        try:
            content = await self._call(domain, f"/collection/{key}")
        except FetchError as exc:
            if exc.not_found:
                return None
            raise
        collection = Collection.model_validate({**content, "id": id, "items": []})
        collection.items = [self._decode_item(i) for i in content.get("items") or []]
        return collection

    async def create_collection(self, schema: str, visible: bool = False) -> Collection:
        content = await self._call(
            self.host,
            "/collection",
            method="POST",
            json={"schema": schema, "visible": visible, "author": self.ccid},
        )
        return Collection.model_validate(content)

    async def update_collection(self, collection: Collection) -> Any:
        return await self._call(
            self.host,
            f"/collection/{collection.id}",
            method="PUT",
            json=collection.model_dump(by_alias=True, mode="json"),
        )

    async def delete_collection(self, id: str) -> None:
        await self._call(self.host, f"/collection/{id}", method="DELETE")

    async def add_collection_item(self, collection_id: str, payload: Any) -> CollectionItem:
        content = await self._call(
            self.host,
            f"/collection/{collection_id}",
            method="POST",
            json={"payload": json.dumps(payload)},
        )
        return self._decode_item(content)

    async def update_collection_item(self, collection_id: str, item: CollectionItem) -> Any:
        return await self._call(
            self.host,
            f"/collection/{collection_id}/{item.id}",
            method="PUT",
            json={"id": item.id, "payload": json.dumps(item.payload)},
        )

    async def delete_collection_item(self, collection_id: str, item_id: str) -> CollectionItem:
        content = await self._call(self.host, f"/collection/{collection_id}/{item_id}", method="DELETE")
        return self._decode_item(content)
