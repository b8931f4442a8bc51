"""
Signed documents.

Every write on the network is a document: a JSON object tagged by ``type``
that is serialized once, hashed, signed, and shipped next to its signature
as ``{document, signature}``.  The serialized string is the thing that was
signed, so it travels verbatim; the parsed model is for reading.

Serialization is compact JSON in field declaration order with ``None``
fields omitted.  Parsing goes through a single discriminated-union adapter
so a payload either becomes one of the known document types or is rejected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from concrnt.identity.signing import sign, verify

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Timestamps without an offset are read as UTC."""
    return value if value.tzinfo else value.replace(tzinfo=UTC)


class DocumentBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    signer: str
    key_id: str | None = Field(default=None, alias="keyID")
    meta: Any | None = None
    signed_at: datetime = Field(default_factory=utcnow, alias="signedAt")

    @field_validator("signed_at")
    @classmethod
    def signed_at_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @property
    def signing_key(self) -> str:
        """The address whose key must have produced the signature."""
        return self.key_id or self.signer


# ---------------------------------------------------------------------------
# Content documents
# ---------------------------------------------------------------------------


class MessageDocument(DocumentBase):
    type: Literal["message"] = "message"
    schema_: str = Field(alias="schema")
    body: Any = None
    timelines: list[str] = Field(default_factory=list)
    policy: str | None = None
    policy_params: str | None = Field(default=None, alias="policyParams")


class AssociationDocument(DocumentBase):
    type: Literal["association"] = "association"
    schema_: str = Field(alias="schema")
    body: Any = None
    target: str
    owner: str | None = None
    variant: str | None = None
    timelines: list[str] = Field(default_factory=list)


class ProfileDocument(DocumentBase):
    type: Literal["profile"] = "profile"
    id: str | None = None
    schema_: str = Field(alias="schema")
    body: Any = None
    semantic_id: str | None = Field(default=None, alias="semanticID")


class TimelineDocument(DocumentBase):
    type: Literal["timeline"] = "timeline"
    id: str | None = None
    owner: str | None = None
    schema_: str = Field(alias="schema")
    body: Any = None
    indexable: bool = False
    domain_owned: bool = Field(default=False, alias="domainOwned")
    semantic_id: str | None = Field(default=None, alias="semanticID")


class DeleteDocument(DocumentBase):
    type: Literal["delete"] = "delete"
    target: str


# ---------------------------------------------------------------------------
# Relationship documents
# ---------------------------------------------------------------------------


class AckDocument(DocumentBase):
    type: Literal["ack"] = "ack"
    from_: str = Field(alias="from")
    to: str


class UnackDocument(DocumentBase):
    type: Literal["unack"] = "unack"
    from_: str = Field(alias="from")
    to: str


class SubscribeDocument(DocumentBase):
    type: Literal["subscribe"] = "subscribe"
    subscription: str
    target: str


class UnsubscribeDocument(DocumentBase):
    type: Literal["unsubscribe"] = "unsubscribe"
    subscription: str
    target: str


# ---------------------------------------------------------------------------
# Key lifecycle and identity documents
# ---------------------------------------------------------------------------


class EnactDocument(DocumentBase):
    type: Literal["enact"] = "enact"
    target: str  # the subkey being authorized (CKID)
    root: str
    parent: str


class RevokeDocument(DocumentBase):
    type: Literal["revoke"] = "revoke"
    target: str


class AffiliationDocument(DocumentBase):
    type: Literal["affiliation"] = "affiliation"
    domain: str


Document = Annotated[
    MessageDocument
    | AssociationDocument
    | ProfileDocument
    | TimelineDocument
    | DeleteDocument
    | AckDocument
    | UnackDocument
    | SubscribeDocument
    | UnsubscribeDocument
    | EnactDocument
    | RevokeDocument
    | AffiliationDocument,
    Field(discriminator="type"),
]

_DOCUMENT_ADAPTER: TypeAdapter[Document] = TypeAdapter(Document)


def serialize_document(document: DocumentBase) -> str:
    """The canonical string that gets hashed and signed."""
    return document.model_dump_json(by_alias=True, exclude_none=True)


def parse_document(raw: str | bytes | dict[str, Any] | None) -> Document | None:
    """Decode a document; None when it is not one of the known shapes."""
    if raw is None:
        return None
    try:
        if isinstance(raw, dict):
            return _DOCUMENT_ADAPTER.validate_python(raw)
        return _DOCUMENT_ADAPTER.validate_json(raw)
    except ValidationError as exc:
        logger.debug("Rejected document: %d validation error(s)", exc.error_count())
        return None


@dataclass(frozen=True)
class SignedDocument:
    """A serialized document plus the hex signature over it."""

    document: str
    signature: str

    def parsed(self) -> Document | None:
        return parse_document(self.document)

    def verify(self) -> bool:
        doc = self.parsed()
        if doc is None:
            return False
        return verify(self.document, self.signature, doc.signing_key)

    def to_commit(self, option: str | None = None) -> dict[str, str]:
        body = {"document": self.document, "signature": self.signature}
        if option is not None:
            body["option"] = option
        return body


def sign_document(private_key: str, document: DocumentBase) -> SignedDocument:
    """Serialize *document* and sign it.  Raises InvalidKeyError on a bad key."""
    raw = serialize_document(document)
    return SignedDocument(document=raw, signature=sign(private_key, raw))
