"""
Aggregator Exceptions

ConfigurationError is the only exception that escapes the core.
SourceError subclasses are raised inside a client's paging loop and are
converted into FetchOutcome values before leaving the client.
"""

from __future__ import annotations

from .contracts import ErrorKind, FetchError


class AggregatorError(Exception):
    """Base class for aggregator exceptions."""


class ConfigurationError(AggregatorError):
    """Invalid instance list or settings. Fatal to the whole run."""


class SourceError(AggregatorError):
    """Instance-scoped failure."""

    kind = ErrorKind.UNEXPECTED

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_fetch_error(self) -> FetchError:
        return FetchError(kind=self.kind, detail=self.detail)


class AuthenticationError(SourceError):
    kind = ErrorKind.AUTHENTICATION


class TransportError(SourceError):
    kind = ErrorKind.TRANSPORT


class RateLimitedError(TransportError):
    kind = ErrorKind.RATE_LIMITED


class MalformedResponseError(TransportError):
    kind = ErrorKind.MALFORMED_RESPONSE


class BudgetTimeoutError(SourceError):
    kind = ErrorKind.TIMEOUT
