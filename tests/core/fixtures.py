"""
Aggregator Test Fixtures

Explicit builders for messages, Zulip payloads and fake source clients.
No network access; HTTP goes through httpx.MockTransport.
"""

from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence
import asyncio
import time

import httpx

from aggregator.client import SourceClient
from aggregator.config import AggregatorSettings
from aggregator.contracts import InstanceDescriptor, Message, Page
from aggregator.errors import SourceError


# =============================================================================
# FIXED TIMESTAMPS (deterministic)
# =============================================================================

T1 = datetime(2026, 1, 1, 10, 0, 0, tzinfo=timezone.utc)
T1_5 = datetime(2026, 1, 1, 10, 2, 30, tzinfo=timezone.utc)
T2 = datetime(2026, 1, 1, 10, 5, 0, tzinfo=timezone.utc)
T3 = datetime(2026, 1, 1, 10, 10, 0, tzinfo=timezone.utc)


# =============================================================================
# CONTRACT BUILDERS
# =============================================================================

def make_descriptor(name: str, url: Optional[str] = None) -> InstanceDescriptor:
    return InstanceDescriptor.for_zulip(
        name=name,
        user=f"bot@{name}.example.com",
        token=f"token-{name}",
        base_address=url or f"https://{name}.example.com"
    )


def make_message(
    source: str,
    message_id: str,
    timestamp: datetime,
    author: str = "Alice",
    body: str = "hello",
    flags: Sequence[str] = ()
) -> Message:
    return Message(
        source_name=source,
        id=message_id,
        author=author,
        body=body,
        timestamp=timestamp,
        recipient="#general",
        topic="standup",
        flags=tuple(flags)
    )


# =============================================================================
# ZULIP PAYLOADS
# =============================================================================

def zulip_message(
    message_id: int,
    timestamp: datetime,
    sender: str = "Alice",
    content: str = "hello",
    stream: Optional[str] = "general",
    topic: str = "standup",
    flags: Sequence[str] = ("read",),
    users: Optional[List[str]] = None
) -> dict:
    if users is not None:
        return {
            "id": message_id,
            "sender_full_name": sender,
            "content": content,
            "timestamp": int(timestamp.timestamp()),
            "display_recipient": [{"full_name": u} for u in users],
            "subject": "",
            "type": "private",
            "flags": list(flags),
        }
    return {
        "id": message_id,
        "sender_full_name": sender,
        "content": content,
        "timestamp": int(timestamp.timestamp()),
        "display_recipient": stream,
        "subject": topic,
        "type": "stream",
        "flags": list(flags),
    }


def zulip_success(messages: List[dict], found_oldest: bool = True) -> dict:
    return {
        "result": "success",
        "msg": "",
        "messages": messages,
        "found_oldest": found_oldest,
        "found_newest": True,
    }


def zulip_error(msg: str, code: str) -> dict:
    return {"result": "error", "msg": msg, "code": code}


def mock_http(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def scripted_handler(responses: List[httpx.Response], requests: List[httpx.Request]):
    """Serve responses in order, recording every request."""
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return responses[len(requests) - 1]
    return handler


# =============================================================================
# FAKE SOURCE CLIENTS
# =============================================================================

class ScriptedClient(SourceClient):
    """Returns pages in order; a SourceError entry is raised instead."""

    def __init__(self, descriptor: InstanceDescriptor, pages: list, max_messages: int = 200):
        super().__init__(descriptor, max_messages=max_messages)
        self._pages = list(pages)
        self.calls = 0

    async def fetch_page(self, since, cursor, limit) -> Page:
        entry = self._pages[self.calls]
        self.calls += 1
        if isinstance(entry, SourceError):
            raise entry
        return entry


class HangingClient(SourceClient):
    """Never returns within any reasonable budget."""

    async def fetch_page(self, since, cursor, limit) -> Page:
        await asyncio.sleep(60)
        return Page(messages=())


class RaisingClient(SourceClient):
    """Violates the fetch contract by raising."""

    async def fetch(self, since=None):
        raise RuntimeError("client bug")

    async def fetch_page(self, since, cursor, limit) -> Page:
        return Page(messages=())


def factory_for(builders: Dict[str, Callable[[InstanceDescriptor], SourceClient]], calls: Optional[list] = None):
    """Client factory dispatching on instance name."""
    def factory(descriptor: InstanceDescriptor, http_client, settings: AggregatorSettings) -> SourceClient:
        if calls is not None:
            calls.append(descriptor.name)
        return builders[descriptor.name](descriptor)
    return factory


def pages_of(source: str, *batches: Sequence[tuple]) -> List[Page]:
    """Build pages from (id, timestamp) batches; every page but the last has a cursor."""
    pages = []
    for index, batch in enumerate(batches):
        messages = tuple(make_message(source, mid, ts) for mid, ts in batch)
        cursor = None if index == len(batches) - 1 else f"cursor-{index + 1}"
        pages.append(Page(messages=messages, next_cursor=cursor))
    return pages


class StubbornClient(SourceClient):
    """Swallows cancellation and keeps working for `hold_seconds`."""

    def __init__(self, descriptor: InstanceDescriptor, hold_seconds: float = 3.0):
        super().__init__(descriptor)
        self._hold_seconds = hold_seconds

    async def fetch_page(self, since, cursor, limit) -> Page:
        deadline = time.monotonic() + self._hold_seconds
        while time.monotonic() < deadline:
            try:
                await asyncio.sleep(0.05)
            except asyncio.CancelledError:
                continue
        return Page(messages=())
