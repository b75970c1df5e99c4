"""
Chat Aggregator Package

Fetches recent messages from several independently hosted chat instances
and merges them into one chronological timeline.

FLOW:
=====
config.json -> InstanceRegistry -> FetchCoordinator (one SourceClient per
instance, shared budget) -> merge() -> reporter

DESIGN PRINCIPLES:
==================
1. Instance failures are outcomes, not exceptions
2. Only ConfigurationError aborts a run, and only before any request
3. Merge output is deterministic for identical input
"""

from .contracts import (
    Credential,
    InstanceDescriptor,
    Message,
    Page,
    FetchError,
    FetchOutcome,
    FailureNotice,
    MergedTimeline,
    OutcomeKind,
    ErrorKind,
)

from .errors import (
    AggregatorError,
    ConfigurationError,
    SourceError,
    AuthenticationError,
    TransportError,
    RateLimitedError,
    MalformedResponseError,
    BudgetTimeoutError,
)

from .config import AggregatorSettings
from .registry import InstanceRegistry, validate_descriptors
from .client import SourceClient, ZulipClient
from .coordinator import FetchCoordinator
from .merger import merge

__version__ = "0.1.0"
