"""
Plain-text rendering of a MergedTimeline.

One line per message, important messages marked with '!', followed by
one line per failure notice.
"""

from __future__ import annotations
from typing import Iterable, List, Optional, TextIO
from datetime import tzinfo
import sys

from .contracts import Message, FailureNotice, MergedTimeline


def message_header(message: Message, tz: Optional[tzinfo] = None) -> str:
    """'[HH:MM:SS] @author -> recipient' in local time unless tz is given."""
    local = message.timestamp.astimezone(tz)
    recipient = message.recipient or "<unknown>"
    if message.topic:
        recipient = f"{recipient} > {message.topic}"
    return f"[{local.strftime('%H:%M:%S')}] @{message.author} -> {recipient}"


def format_message(message: Message, tz: Optional[tzinfo] = None) -> str:
    mark = "!" if message.is_important else " "
    return f"{mark} {message.source_name:<20} {message_header(message, tz)}: {message.body}"


def format_notice(notice: FailureNotice) -> str:
    return f"[{notice.instance_name}] {notice.kind.value}: {notice.error}"


def render(timeline: MergedTimeline, tz: Optional[tzinfo] = None) -> List[str]:
    lines = [format_message(m, tz) for m in timeline.messages]
    lines.extend(format_notice(n) for n in timeline.notices)
    return lines


def write_lines(lines: Iterable[str], stream: Optional[TextIO] = None) -> None:
    stream = stream or sys.stdout
    for line in lines:
        print(line, file=stream)
