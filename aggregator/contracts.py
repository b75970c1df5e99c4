"""
Aggregator Contracts

Immutable data structures shared by the fetch, merge and report stages.

BOUNDARY: Aggregator Core
All remote data enters through these contracts.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Tuple, Optional
from datetime import datetime
from enum import Enum


# =============================================================================
# ENUMS
# =============================================================================

class OutcomeKind(Enum):
    """Classification of one instance's fetch attempt."""
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FAILURE = "failure"


class ErrorKind(Enum):
    """Machine-distinguishable failure kinds for an instance."""
    AUTHENTICATION = "authentication"
    TRANSPORT = "transport"
    MALFORMED_RESPONSE = "malformed_response"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    UNEXPECTED = "unexpected"


IMPORTANT_FLAGS = frozenset({"mentioned", "has_alert_word"})


# =============================================================================
# INSTANCE CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class Credential:
    """Basic-auth credential for one instance. Passed through unexamined."""
    user: str
    token: str = field(repr=False)

    def as_auth(self) -> Tuple[str, str]:
        return (self.user, self.token)


@dataclass(frozen=True)
class InstanceDescriptor:
    """One configured chat-service instance."""
    name: str
    base_address: str
    credential: Credential

    @classmethod
    def for_zulip(
        cls,
        name: str,
        user: str,
        token: str,
        base_address: Optional[str] = None
    ) -> 'InstanceDescriptor':
        """Build a descriptor, defaulting to the hosted zulipchat.com realm."""
        address = base_address or f"https://{name}.zulipchat.com"
        return cls(
            name=name,
            base_address=address.rstrip('/'),
            credential=Credential(user=user, token=token)
        )

    def api_url(self, endpoint: str) -> str:
        return f"{self.base_address}/api/v1/{endpoint.lstrip('/')}"


# =============================================================================
# MESSAGE CONTRACTS
# =============================================================================

@dataclass(frozen=True)
class Message:
    """
    One chat message as fetched from an instance.

    Identity is (source_name, id). Never mutated after creation.
    """
    source_name: str
    id: str
    author: str
    body: str
    timestamp: datetime

    # Display metadata
    recipient: str = ""
    topic: Optional[str] = None
    message_type: str = "stream"
    flags: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def key(self) -> Tuple[str, str]:
        return (self.source_name, self.id)

    @property
    def sort_key(self) -> Tuple[datetime, str, str]:
        return (self.timestamp, self.source_name, self.id)

    @property
    def is_important(self) -> bool:
        return any(flag in IMPORTANT_FLAGS for flag in self.flags)


@dataclass(frozen=True)
class Page:
    """One response worth of messages plus the cursor for the next request."""
    messages: Tuple[Message, ...]
    next_cursor: Optional[str] = None

    @property
    def is_last(self) -> bool:
        return self.next_cursor is None


# =============================================================================
# OUTCOME CONTRACTS
# =============================================================================

@dataclass(frozen=True)
class FetchError:
    """Failure detail. Errors are data, not exceptions."""
    kind: ErrorKind
    detail: str

    def __str__(self) -> str:
        return f"{self.kind.value}: {self.detail}"


@dataclass(frozen=True)
class FetchOutcome:
    """
    Result of one instance's fetch (success, partial or failure).

    INVARIANTS:
    ===========
    - SUCCESS carries no error
    - PARTIAL_FAILURE carries an error (messages may be empty)
    - FAILURE carries an error and no messages
    """
    instance_name: str
    kind: OutcomeKind
    messages: Tuple[Message, ...] = field(default_factory=tuple)
    error: Optional[FetchError] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        if self.kind == OutcomeKind.SUCCESS and self.error is not None:
            raise ValueError("Successful outcome must not carry an error")
        if self.kind != OutcomeKind.SUCCESS and self.error is None:
            raise ValueError(f"{self.kind.value} outcome must carry an error")
        if self.kind == OutcomeKind.FAILURE and self.messages:
            raise ValueError("Failed outcome must not carry messages")

    @classmethod
    def success(
        cls,
        instance_name: str,
        messages: Tuple[Message, ...],
        started_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None
    ) -> 'FetchOutcome':
        return cls(
            instance_name=instance_name,
            kind=OutcomeKind.SUCCESS,
            messages=tuple(messages),
            started_at=started_at,
            completed_at=completed_at
        )

    @classmethod
    def partial(
        cls,
        instance_name: str,
        messages: Tuple[Message, ...],
        error: FetchError,
        started_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None
    ) -> 'FetchOutcome':
        return cls(
            instance_name=instance_name,
            kind=OutcomeKind.PARTIAL_FAILURE,
            messages=tuple(messages),
            error=error,
            started_at=started_at,
            completed_at=completed_at
        )

    @classmethod
    def failure(
        cls,
        instance_name: str,
        error: FetchError,
        started_at: Optional[datetime] = None,
        completed_at: Optional[datetime] = None
    ) -> 'FetchOutcome':
        return cls(
            instance_name=instance_name,
            kind=OutcomeKind.FAILURE,
            error=error,
            started_at=started_at,
            completed_at=completed_at
        )

    @property
    def is_success(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS

    @property
    def duration_ms(self) -> Optional[float]:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds() * 1000


# =============================================================================
# MERGED OUTPUT CONTRACTS
# =============================================================================

@dataclass(frozen=True)
class FailureNotice:
    """An instance that did not fully succeed."""
    instance_name: str
    kind: OutcomeKind
    error: FetchError


@dataclass(frozen=True)
class MergedTimeline:
    """Globally ordered, deduplicated messages plus failure notices."""
    messages: Tuple[Message, ...] = field(default_factory=tuple)
    notices: Tuple[FailureNotice, ...] = field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        return not self.messages and not self.notices

    @property
    def sources(self) -> Tuple[str, ...]:
        """Instance names contributing at least one message, sorted."""
        return tuple(sorted({m.source_name for m in self.messages}))
