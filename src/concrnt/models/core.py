"""
Wire models for objects served by a domain.

Field names follow Python conventions; the JSON spelling is kept through
aliases.  Unknown fields are retained (``extra="allow"``) because servers
add fields ahead of clients.

Content objects (Message, Association, Profile, Timeline) carry the signed
document as the raw string that was signed (``raw_document``, wire name
``document``) and expose the decoded form as ``.document``.  A content
object whose document does not decode is treated as malformed upstream.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

from concrnt.models.document import Document, SignedDocument, as_utc, parse_document


class WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class SignedContent(WireModel):
    """Shared shape of objects that wrap exactly one signed document."""

    id: str
    author: str = ""
    schema_: str = Field(default="", alias="schema")
    raw_document: str = Field(alias="document")
    signature: str = ""
    cdate: datetime | None = None

    _document: Document | None = PrivateAttr(default=None)
    _decoded: bool = PrivateAttr(default=False)

    @property
    def document(self) -> Document | None:
        if not self._decoded:
            self._document = parse_document(self.raw_document)
            self._decoded = True
        return self._document

    @property
    def signed(self) -> SignedDocument:
        return SignedDocument(document=self.raw_document, signature=self.signature)


# ---------------------------------------------------------------------------
# Content objects
# ---------------------------------------------------------------------------


class Association(SignedContent):
    owner: str | None = None
    target: str = ""
    target_type: str | None = Field(default=None, alias="targetType")
    variant: str | None = None
    timelines: list[str] = Field(default_factory=list)


class Message(SignedContent):
    timelines: list[str] = Field(default_factory=list)
    policy: str | None = None
    policy_params: str | None = Field(default=None, alias="policyParams")
    associations: list[Association] = Field(default_factory=list)
    own_associations: list[Association] = Field(default_factory=list, alias="ownAssociations")


class Profile(SignedContent):
    associations: list[Association] = Field(default_factory=list)


class Timeline(SignedContent):
    owner: str | None = None
    indexable: bool = False
    domain_owned: bool = Field(default=False, alias="domainOwned")
    policy: str | None = None
    policy_params: str | None = Field(default=None, alias="policyParams")
    mdate: datetime | None = None


# ---------------------------------------------------------------------------
# Identity and directory records
# ---------------------------------------------------------------------------


class Entity(WireModel):
    ccid: str
    alias: str | None = None
    tag: str = ""
    domain: str
    cdate: datetime | None = None
    score: int = 0
    affiliation_document: str = Field(default="", alias="affiliationDocument")
    affiliation_signature: str = Field(default="", alias="affiliationSignature")
    tombstone_document: str | None = Field(default=None, alias="tombstoneDocument")
    tombstone_signature: str | None = Field(default=None, alias="tombstoneSignature")

    @property
    def is_tombstoned(self) -> bool:
        return bool(self.tombstone_document)


class Key(WireModel):
    """A subkey grant."""

    id: str
    root: str
    parent: str
    enact_document: str = Field(alias="enactDocument")
    enact_signature: str = Field(alias="enactSignature")
    revoke_document: str | None = Field(default=None, alias="revokeDocument")
    revoke_signature: str | None = Field(default=None, alias="revokeSignature")
    valid_since: datetime = Field(alias="validSince")
    valid_until: datetime = Field(alias="validUntil")

    @field_validator("valid_since", "valid_until")
    @classmethod
    def window_utc(cls, v: datetime) -> datetime:
        return as_utc(v)


class Domain(WireModel):
    fqdn: str
    ccid: str = ""
    csid: str | None = None
    tag: str = ""
    pubkey: str | None = None
    cdate: datetime | None = None
    score: int = 0
    meta: dict[str, Any] = Field(default_factory=dict)


class Ack(WireModel):
    from_: str = Field(alias="from")
    to: str
    raw_document: str = Field(default="", alias="document")
    signature: str = ""


# ---------------------------------------------------------------------------
# Timelines and realtime
# ---------------------------------------------------------------------------


class TimelineItem(WireModel):
    """Pointer row in a timeline; the object itself is fetched lazily."""

    resource_id: str = Field(alias="resourceID")
    timeline_id: str = Field(default="", alias="timelineID")
    cdate: datetime
    author: str | None = None
    owner: str | None = None
    last_update: datetime | None = Field(default=None, alias="lastUpdate")

    @property
    def kind(self) -> Literal["message", "association", "unknown"]:
        if self.resource_id.startswith("m"):
            return "message"
        if self.resource_id.startswith("a"):
            return "association"
        return "unknown"


class TimelineEvent(WireModel):
    """An inbound realtime event."""

    type: str
    action: str
    timeline_id: str = Field(default="", alias="timelineID")
    item: TimelineItem | None = None
    body: Any = None
    document: str | None = None
    signature: str | None = None

    @property
    def topic(self) -> str:
        if self.timeline_id:
            return self.timeline_id
        return self.item.timeline_id if self.item else ""


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------


class CollectionItem(WireModel):
    id: str
    collection: str = ""
    payload: Any = None


class Collection(WireModel):
    id: str
    visible: bool = False
    author: str = ""
    schema_: str = Field(default="", alias="schema")
    items: list[CollectionItem] = Field(default_factory=list)
