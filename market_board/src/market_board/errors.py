"""Failure taxonomy for price fetches.

Transport problems (timeouts, connection errors, non-2xx statuses) are
:class:`TransientNetworkError` and are retried.  Structurally bad
responses are :class:`MalformedResponseError` and are not, since asking
again would return the same document.  "No price for this item" is not
an exception at all; callers see it as a missing entry.

Every error carries a short ``reason`` string suitable for logs and for
the ``fetch-error`` event payload.
"""

from __future__ import annotations

from typing import Optional


class PriceFetchError(Exception):
    """Base class for every failure raised while fetching prices."""

    def __init__(self, reason: str, *, url: Optional[str] = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.url = url


class TransientNetworkError(PriceFetchError):
    """Connection-level failure that may succeed on a later attempt."""


class RequestTimeoutError(TransientNetworkError):
    """The request exceeded the configured per-call timeout."""


class HttpStatusError(TransientNetworkError):
    """The upstream answered with a non-2xx status."""

    def __init__(self, status: int, *, url: Optional[str] = None) -> None:
        super().__init__(f"HTTP {status}", url=url)
        self.status = status


class MalformedResponseError(PriceFetchError):
    """The upstream answered, but the body cannot be used."""


class InvalidContentTypeError(MalformedResponseError):
    """Response content-type was not JSON."""


class ResponseTooLargeError(MalformedResponseError):
    """Declared or actual body size exceeded the configured cap."""

    def __init__(self, size: int, limit: int, *, url: Optional[str] = None) -> None:
        super().__init__(f"Response too large: {size} bytes (max: {limit} bytes)", url=url)
        self.size = size
        self.limit = limit


class InvalidJsonError(MalformedResponseError):
    """Body could not be decoded as JSON."""
