"""
Aggregator Settings

Tunables for one run. Loaded from the "settings" object of the config
file; CLI flags override individual values via with_overrides().
"""

from __future__ import annotations
from dataclasses import dataclass, fields, replace
from typing import Optional

from .errors import ConfigurationError


DEFAULT_USER_AGENT = "chat-aggregator/1.0"


@dataclass(frozen=True)
class AggregatorSettings:
    """Frozen run settings."""
    budget_seconds: float = 20.0
    request_timeout_seconds: float = 10.0
    page_size: int = 100
    max_messages: int = 200
    lookback_minutes: Optional[float] = None
    user_agent: str = DEFAULT_USER_AGENT

    def __post_init__(self):
        if self.budget_seconds <= 0:
            raise ConfigurationError("budget_seconds must be positive")
        if self.request_timeout_seconds <= 0:
            raise ConfigurationError("request_timeout_seconds must be positive")
        if self.page_size < 1:
            raise ConfigurationError("page_size must be at least 1")
        if self.max_messages < 1:
            raise ConfigurationError("max_messages must be at least 1")
        if self.lookback_minutes is not None and self.lookback_minutes <= 0:
            raise ConfigurationError("lookback_minutes must be positive")

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'AggregatorSettings':
        """Build settings from a config mapping, rejecting unknown keys."""
        if not data:
            return cls()
        if not isinstance(data, dict):
            raise ConfigurationError("settings must be a JSON object")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown settings: {', '.join(unknown)}")

        try:
            return cls(
                budget_seconds=float(data.get('budget_seconds', cls.budget_seconds)),
                request_timeout_seconds=float(
                    data.get('request_timeout_seconds', cls.request_timeout_seconds)
                ),
                page_size=int(data.get('page_size', cls.page_size)),
                max_messages=int(data.get('max_messages', cls.max_messages)),
                lookback_minutes=(
                    float(data['lookback_minutes'])
                    if data.get('lookback_minutes') is not None else None
                ),
                user_agent=str(data.get('user_agent', cls.user_agent)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid settings value: {e}") from e

    def with_overrides(self, **overrides) -> 'AggregatorSettings':
        """Return new settings with non-None overrides applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self
