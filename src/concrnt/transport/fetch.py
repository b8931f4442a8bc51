"""
Timed fetch: the one HTTP primitive everything else goes through.

``domain + path`` becomes ``https://{domain}{path}``; every request is
bounded by ``asyncio.timeout``.  Transport failures, timeouts and non-2xx
statuses all surface as :class:`FetchError` carrying the URL, the status
(None for transport failures), the response text, and the server's trace id.
Nothing is retried here.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from concrnt.core.constants import DEFAULT_REQUEST_TIMEOUT, TRACE_HEADERS
from concrnt.core.exceptions import FetchError, MalformedResponseError

logger = logging.getLogger(__name__)


def build_url(domain: str | None, path: str) -> str:
    if not domain:
        return path
    return f"https://{domain}{path}"


def trace_id_of(response: httpx.Response) -> str:
    for name in TRACE_HEADERS:
        if value := response.headers.get(name):
            return value
    return ""


async def fetch_with_timeout(
    client: httpx.AsyncClient,
    domain: str | None,
    path: str,
    *,
    method: str = "GET",
    headers: dict[str, str] | None = None,
    json: Any = None,
    content: str | bytes | None = None,
    params: dict[str, Any] | None = None,
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
) -> httpx.Response:
    """Perform one request and return the 2xx response, or raise FetchError."""
    url = build_url(domain, path)
    logger.debug("%s %s", method, url)
    try:
        async with asyncio.timeout(timeout):
            response = await client.request(
                method,
                url,
                headers=headers,
                json=json,
                content=content,
                params=params,
            )
    except TimeoutError as exc:
        raise FetchError(url, f"request timed out after {timeout:g}s") from exc
    except httpx.HTTPError as exc:
        raise FetchError(url, f"{type(exc).__name__}: {exc}") from exc

    if not response.is_success:
        trace_id = trace_id_of(response)
        logger.debug("%s %s -> %d (trace %s)", method, url, response.status_code, trace_id or "-")
        raise FetchError(
            url,
            f"HTTP {response.status_code} {response.reason_phrase}".rstrip(),
            status=response.status_code,
            body=response.text,
            trace_id=trace_id,
        )
    return response


def unwrap_envelope(response: httpx.Response) -> Any:
    """Return ``content`` of a ``{"status": "ok", "content": ...}`` body.

    Raises :class:`MalformedResponseError` for anything else.
    """
    try:
        data = response.json()
    except ValueError as exc:
        raise MalformedResponseError(f"response from {response.url} is not JSON") from exc
    if not isinstance(data, dict) or data.get("status") != "ok" or "content" not in data:
        raise MalformedResponseError(
            f"response from {response.url} is not an ok envelope: status={data.get('status') if isinstance(data, dict) else None!r}"
        )
    return data["content"]
