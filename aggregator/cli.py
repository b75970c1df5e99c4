"""
Command-line entry point.

Loads config.json, fetches from every instance under one budget, merges
and prints the timeline. With --follow the fetch repeats and only messages
not printed before are shown.
"""

from __future__ import annotations
from typing import Dict, List, Mapping, Optional, Sequence, Tuple
from datetime import datetime, timedelta, timezone
import argparse
import time

from loguru import logger

from .config import AggregatorSettings
from .contracts import FetchOutcome, InstanceDescriptor, MergedTimeline
from .coordinator import FetchCoordinator
from .errors import ConfigurationError
from .log import configure_logging
from .merger import merge
from .registry import InstanceRegistry
from .reporter import render, write_lines


EXIT_OK = 0
EXIT_CONFIG_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Aggregate recent messages from several Zulip instances."
    )
    parser.add_argument("--config", default="config.json", help="Path to config.json.")
    parser.add_argument("--budget", type=float, help="Seconds allowed for the whole fetch phase.")
    window = parser.add_mutually_exclusive_group()
    window.add_argument("--since", help="Only messages at or after this ISO 8601 time.")
    window.add_argument("--lookback", type=float, help="Only messages from the last N minutes.")
    parser.add_argument("--limit", type=int, help="Maximum messages per instance.")
    parser.add_argument("--follow", type=float, metavar="SECONDS",
                        help="Repeat every SECONDS, printing only new messages.")
    parser.add_argument("--log-file", help="Also write debug logs to this file.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress to stderr.")
    return parser


def parse_since(value: str) -> datetime:
    """Parse ISO 8601; naive values are taken as local time."""
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError as e:
        raise ConfigurationError(f"Invalid --since value: {value!r}") from e
    return parsed.astimezone(timezone.utc)


def resolve_since(
    since: Optional[str],
    settings: AggregatorSettings,
    now: Optional[datetime] = None
) -> Optional[datetime]:
    if since:
        return parse_since(since)
    if settings.lookback_minutes is not None:
        now = now or datetime.now(tz=timezone.utc)
        return now - timedelta(minutes=settings.lookback_minutes)
    return None


def run_once(
    coordinator: FetchCoordinator,
    descriptors: Sequence[InstanceDescriptor],
    since: Optional[datetime] = None,
    since_by_instance: Optional[Mapping[str, datetime]] = None
) -> Tuple[Dict[str, FetchOutcome], MergedTimeline]:
    outcomes = coordinator.run_sync(
        descriptors, since=since, since_by_instance=since_by_instance
    )
    timeline = merge(outcomes)
    logger.info(
        f"Merged {len(timeline.messages)} message(s), "
        f"{len(timeline.notices)} failure notice(s)"
    )
    return outcomes, timeline


def unseen(timeline: MergedTimeline, seen: Dict[Tuple[str, str], datetime]) -> MergedTimeline:
    """Drop messages whose key is already in `seen`, recording the rest."""
    fresh = []
    for message in timeline.messages:
        if message.key not in seen:
            seen[message.key] = message.timestamp
            fresh.append(message)
    return MergedTimeline(messages=tuple(fresh), notices=timeline.notices)


def advance_bounds(
    bounds: Dict[str, datetime],
    outcomes: Mapping[str, FetchOutcome]
) -> None:
    """
    Move each instance's lower bound to its newest fetched message.

    Only fully successful outcomes advance: a partial outcome may be
    missing older pages, and a failed one returned nothing.
    """
    for name, outcome in outcomes.items():
        if outcome.is_success and outcome.messages:
            newest = max(m.timestamp for m in outcome.messages)
            if name not in bounds or newest > bounds[name]:
                bounds[name] = newest


def prune_seen(seen: Dict[Tuple[str, str], datetime], bounds: Mapping[str, datetime]) -> None:
    """Forget keys older than their instance's bound; those are never refetched."""
    for key, timestamp in list(seen.items()):
        bound = bounds.get(key[0])
        if bound is not None and timestamp < bound:
            del seen[key]


def follow(
    coordinator: FetchCoordinator,
    descriptors: Sequence[InstanceDescriptor],
    interval: float,
    since: Optional[datetime] = None,
    iterations: Optional[int] = None
) -> None:
    """Poll repeatedly; `iterations` bounds the loop (None = until interrupted)."""
    bounds: Dict[str, datetime] = {}
    seen: Dict[Tuple[str, str], datetime] = {}
    count = 0
    while iterations is None or count < iterations:
        if count:
            time.sleep(interval)
        outcomes, timeline = run_once(coordinator, descriptors, since, dict(bounds))
        write_lines(render(unseen(timeline, seen)))
        advance_bounds(bounds, outcomes)
        prune_seen(seen, bounds)
        count += 1


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging("INFO" if args.verbose else "WARNING", log_file=args.log_file)

    try:
        registry = InstanceRegistry.load(args.config)
        settings = registry.settings.with_overrides(
            budget_seconds=args.budget,
            max_messages=args.limit,
            lookback_minutes=args.lookback,
        )
        since = resolve_since(args.since, settings)
        coordinator = FetchCoordinator(settings)
        descriptors = registry.descriptors()

        if args.follow is not None:
            if args.follow <= 0:
                raise ConfigurationError("--follow interval must be positive")
            for descriptor in descriptors:
                print(f"watching {descriptor.name}")
            follow(coordinator, descriptors, args.follow, since)
        else:
            _, timeline = run_once(coordinator, descriptors, since)
            write_lines(render(timeline))

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG_ERROR
    except KeyboardInterrupt:
        print("\nStopped.")

    return EXIT_OK
