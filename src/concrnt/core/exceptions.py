"""concrnt exception hierarchy."""

from __future__ import annotations


class ConcrntError(Exception):
    """Base exception for all concrnt errors."""


class ConfigError(ConcrntError):
    """Raised when the configuration is invalid or cannot be read."""


class ConfigNotFoundError(ConfigError):
    """Raised when the configuration file does not exist."""


class IdentityError(ConcrntError):
    """Raised when key material or an identity cannot be used."""


class InvalidKeyError(IdentityError):
    """Raised when an operation needs a signing key and none (or a bad one) is configured."""

    def __init__(self, message: str = "no valid private key configured") -> None:
        super().__init__(message)


class CredentialExpiredError(ConcrntError):
    """Raised when a token or passport expired and there is no key to refresh it."""

    def __init__(self, domain: str = "") -> None:
        self.domain = domain
        super().__init__(f"credential for {domain or 'home domain'} expired")


class FetchError(ConcrntError):
    """Raised when an outbound request fails at the transport layer or with a non-2xx status.

    ``status`` is ``None`` for transport failures (DNS, refused, timeout).
    """

    def __init__(
        self,
        url: str,
        message: str,
        *,
        status: int | None = None,
        body: str = "",
        trace_id: str = "",
    ) -> None:
        self.url = url
        self.status = status
        self.body = body
        self.trace_id = trace_id
        detail = f"{message} ({url})"
        if trace_id:
            detail += f" [trace {trace_id}]"
        super().__init__(detail)

    @property
    def not_found(self) -> bool:
        return self.status == 404


class DomainOfflineError(FetchError):
    """Raised when the liveness check for a required domain failed."""

    def __init__(self, domain: str, message: str = "") -> None:
        self.domain = domain
        super().__init__(f"https://{domain}", message or f"domain {domain} is offline")


class MalformedResponseError(ConcrntError):
    """Raised when a response body does not follow the {status, content} envelope."""
