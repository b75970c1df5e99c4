"""
Timeline Merger

Combines per-instance outcomes into one MergedTimeline.

Pure function: no I/O, never fails. Ordering is (timestamp, source_name, id)
so identical input always yields an identical timeline.
"""

from __future__ import annotations
from typing import List, Mapping, Set, Tuple

from .contracts import (
    FetchOutcome, FailureNotice, MergedTimeline, Message, OutcomeKind
)


def merge(outcomes: Mapping[str, FetchOutcome]) -> MergedTimeline:
    """
    Merge outcomes into a globally ordered, deduplicated timeline.

    - Messages come from SUCCESS and PARTIAL_FAILURE outcomes
    - Exact (source_name, id) duplicates keep the first entry after sorting
    - Every outcome that is not SUCCESS yields one FailureNotice
    """
    collected: List[Message] = []
    notices: List[FailureNotice] = []

    for name, outcome in outcomes.items():
        if outcome.kind != OutcomeKind.FAILURE:
            collected.extend(outcome.messages)
        if outcome.kind != OutcomeKind.SUCCESS:
            notices.append(FailureNotice(
                instance_name=name,
                kind=outcome.kind,
                error=outcome.error
            ))

    collected.sort(key=lambda m: m.sort_key)

    seen: Set[Tuple[str, str]] = set()
    ordered: List[Message] = []
    for message in collected:
        if message.key in seen:
            continue
        seen.add(message.key)
        ordered.append(message)

    notices.sort(key=lambda n: n.instance_name)
    return MergedTimeline(messages=tuple(ordered), notices=tuple(notices))
