"""
Credentialed transport — attaches the right bearer credential to each call.

Calls to the home domain carry a token this client signs itself.  Calls to
any other domain carry a *passport*: a credential the home domain issues on
request, vouching for this identity to that remote domain.  Both are kept
until :func:`validate_bearer_token` rejects them, then re-minted inside the
call that noticed.

Contract:
  - The private key never leaves this object (not in repr, logs, or caches)
  - At most one passport request per remote domain is in flight
  - No retries; failures propagate to the caller
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from concrnt.core.constants import API_PATH, DEFAULT_REQUEST_TIMEOUT, TOKEN_SUBJECT
from concrnt.core.exceptions import CredentialExpiredError, InvalidKeyError, MalformedResponseError
from concrnt.identity.keys import load_key, load_subkey
from concrnt.identity.token import issue_bearer_token, parse_bearer_token, validate_bearer_token
from concrnt.models.document import DocumentBase, SignedDocument, sign_document
from concrnt.transport.fetch import fetch_with_timeout, unwrap_envelope

logger = logging.getLogger(__name__)


class CredentialedTransport:
    """The sole entry point for authenticated requests."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        host: str,
        *,
        private_key: str | None = None,
        ccid: str | None = None,
        ckid: str | None = None,
        token: str | None = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._http = http
        self.host = host
        self._private_key = private_key
        self._timeout = timeout
        self._clock = clock

        if private_key is not None and ccid is None:
            ccid = load_key(private_key).ccid
        self.ccid = ccid
        self.ckid = ckid

        self._home_token: str | None = token
        self._passports: dict[str, str] = {}
        self._pending_passports: dict[str, asyncio.Task[str]] = {}

    @classmethod
    def from_subkey(
        cls, http: httpx.AsyncClient, secret: str, **kwargs: Any
    ) -> CredentialedTransport:
        subkey = load_subkey(secret)
        if subkey is None:
            raise InvalidKeyError("subkey secret is malformed")
        return cls(
            http,
            subkey.domain,
            private_key=subkey.keypair.private_key,
            ccid=subkey.ccid,
            ckid=subkey.ckid,
            **kwargs,
        )

    def __repr__(self) -> str:
        return f"CredentialedTransport(host={self.host!r}, ccid={self.ccid!r}, ckid={self.ckid!r})"

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def can_sign(self) -> bool:
        return self._private_key is not None

    @property
    def issuer(self) -> str | None:
        """The address that appears as ``iss``: the subkey if one is in use."""
        return self.ckid or self.ccid

    def sign_document(self, document: DocumentBase) -> SignedDocument:
        if self._private_key is None:
            raise InvalidKeyError()
        if self.ckid and document.key_id is None:
            document.key_id = self.ckid
        return sign_document(self._private_key, document)

    def mint(self, audience: str) -> str:
        """Sign a fresh token for *audience* without caching it."""
        if self._private_key is None:
            raise InvalidKeyError()
        return issue_bearer_token(
            self._private_key,
            {"iss": self.issuer, "aud": audience, "sub": TOKEN_SUBJECT},
            now=self._clock(),
        )

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def _is_fresh(self, token: str | None) -> bool:
        return token is not None and validate_bearer_token(token, now=self._clock())

    def home_token(self) -> str:
        """Return a valid home-domain token, signing a new one if needed."""
        if self._is_fresh(self._home_token):
            return self._home_token  # type: ignore[return-value]
        if self._private_key is None:
            if self._home_token is not None:
                raise CredentialExpiredError(self.host)
            raise InvalidKeyError()
        self._home_token = self.mint(self.host)
        logger.debug("Issued home token for %s", self.host)
        return self._home_token

    def token_claims(self) -> dict[str, Any]:
        """Decoded claims of the current home token (``{}`` if none)."""
        return parse_bearer_token(self._home_token) if self._home_token else {}

    async def passport(self, domain: str) -> str:
        """Return a valid passport for *domain*, asking the home domain once if needed."""
        cached = self._passports.get(domain)
        if self._is_fresh(cached):
            return cached  # type: ignore[return-value]
        if self._private_key is None:
            if cached is not None:
                raise CredentialExpiredError(domain)
            raise InvalidKeyError()

        task = self._pending_passports.get(domain)
        if task is None:
            task = asyncio.ensure_future(self._request_passport(domain))
            self._pending_passports[domain] = task
            task.add_done_callback(lambda t, d=domain: self._forget_pending(d, t))
        return await asyncio.shield(task)

    def _forget_pending(self, domain: str, task: asyncio.Task[str]) -> None:
        if self._pending_passports.get(domain) is task:
            del self._pending_passports[domain]

    async def _request_passport(self, domain: str) -> str:
        logger.info("Requesting passport for %s from %s", domain, self.host)
        response = await fetch_with_timeout(
            self._http,
            self.host,
            f"{API_PATH}/auth/passport/{domain}",
            headers={"authorization": f"Bearer {self.mint(self.host)}"},
            timeout=self._timeout,
        )
        passport = unwrap_envelope(response)
        if not isinstance(passport, str) or not passport:
            raise MalformedResponseError(f"passport response for {domain} carried no token")
        self._passports[domain] = passport
        return passport

    async def credential_for(self, domain: str) -> str:
        if domain == self.host:
            return self.home_token()
        return await self.passport(domain)

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    async def call(
        self,
        domain: str,
        path: str,
        *,
        method: str = "GET",
        headers: dict[str, str] | None = None,
        json: Any = None,
        content: str | bytes | None = None,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        """Perform an authenticated request against *domain*."""
        credential = await self.credential_for(domain)
        merged = dict(headers or {})
        merged["authorization"] = f"Bearer {credential}"
        return await fetch_with_timeout(
            self._http,
            domain,
            path,
            method=method,
            headers=merged,
            json=json,
            content=content,
            params=params,
            timeout=timeout if timeout is not None else self._timeout,
        )
