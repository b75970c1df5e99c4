"""
Source Clients

Fetch recent messages from one chat instance.

PRINCIPLES:
===========
1. fetch() never raises for instance-scoped faults
2. Failed fetches are first-class outcomes
3. Pages gathered before a failure are kept (PartialFailure)
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from typing import List, Optional
from datetime import datetime, timezone

import httpx
from loguru import logger

from .config import AggregatorSettings
from .contracts import (
    InstanceDescriptor, Message, Page, FetchError, FetchOutcome, ErrorKind
)
from .errors import (
    SourceError, AuthenticationError, TransportError, RateLimitedError,
    MalformedResponseError
)


AUTH_ERROR_CODES = frozenset({
    "UNAUTHORIZED",
    "INVALID_API_KEY",
    "USER_DEACTIVATED",
    "REALM_DEACTIVATED",
})
RATE_LIMIT_CODE = "RATE_LIMIT_HIT"


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class SourceClient(ABC):
    """
    Base client for one instance.

    Subclasses implement fetch_page(); the paging loop and the conversion
    of faults into FetchOutcome live here.
    """

    def __init__(self, descriptor: InstanceDescriptor, max_messages: int = 200):
        self._descriptor = descriptor
        self._max_messages = max_messages

    @property
    def name(self) -> str:
        return self._descriptor.name

    @property
    def descriptor(self) -> InstanceDescriptor:
        return self._descriptor

    @abstractmethod
    async def fetch_page(
        self,
        since: Optional[datetime],
        cursor: Optional[str],
        limit: int
    ) -> Page:
        """
        Retrieve one page of at most `limit` messages.

        Raises SourceError (or an httpx error) on failure.
        """

    async def fetch(self, since: Optional[datetime] = None) -> FetchOutcome:
        """
        Fetch all messages at or after `since` (or the most recent ones).

        Returns:
            - Success with every message when all pages were retrieved
            - PartialFailure with the gathered messages when a later page failed
            - Failure when the first page failed
        """
        if since is not None and since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)

        started_at = utcnow()
        collected: List[Message] = []
        pages = 0
        cursor = None

        try:
            while True:
                remaining = self._max_messages - len(collected)
                if remaining <= 0:
                    break
                page = await self.fetch_page(since, cursor, remaining)
                pages += 1
                collected.extend(page.messages)
                logger.debug(
                    f"[{self.name}] page {pages}: {len(page.messages)} message(s)"
                )
                if page.is_last:
                    break
                cursor = page.next_cursor

        except SourceError as e:
            return self._error_outcome(e.to_fetch_error(), collected, pages, started_at)

        except httpx.TimeoutException as e:
            error = FetchError(ErrorKind.TRANSPORT, f"Request timed out: {e}")
            return self._error_outcome(error, collected, pages, started_at)

        except httpx.HTTPError as e:
            error = FetchError(ErrorKind.TRANSPORT, str(e) or type(e).__name__)
            return self._error_outcome(error, collected, pages, started_at)

        collected.sort(key=lambda m: m.sort_key)
        logger.info(f"[{self.name}] fetched {len(collected)} message(s) in {pages} page(s)")
        return FetchOutcome.success(
            self.name, tuple(collected), started_at=started_at, completed_at=utcnow()
        )

    def _error_outcome(
        self,
        error: FetchError,
        collected: List[Message],
        pages: int,
        started_at: datetime
    ) -> FetchOutcome:
        completed_at = utcnow()
        if pages == 0:
            logger.warning(f"[{self.name}] fetch failed: {error}")
            return FetchOutcome.failure(
                self.name, error, started_at=started_at, completed_at=completed_at
            )

        collected.sort(key=lambda m: m.sort_key)
        logger.warning(
            f"[{self.name}] fetch failed after {pages} page(s), "
            f"keeping {len(collected)} message(s): {error}"
        )
        return FetchOutcome.partial(
            self.name, tuple(collected), error,
            started_at=started_at, completed_at=completed_at
        )


class ZulipClient(SourceClient):
    """
    Pages backwards through GET /api/v1/messages.

    The first request anchors at the newest message; each following request
    anchors at the oldest id seen so far, excluding the anchor itself.
    """

    def __init__(
        self,
        descriptor: InstanceDescriptor,
        http_client: httpx.AsyncClient,
        settings: Optional[AggregatorSettings] = None
    ):
        settings = settings or AggregatorSettings()
        super().__init__(descriptor, max_messages=settings.max_messages)
        self._http = http_client
        self._settings = settings

    async def fetch_page(
        self,
        since: Optional[datetime],
        cursor: Optional[str],
        limit: int
    ) -> Page:
        params = {
            'anchor': cursor or 'newest',
            'num_before': min(limit, self._settings.page_size),
            'num_after': 0,
            'apply_markdown': 'false',
            'narrow': '[]',
        }
        if cursor:
            params['include_anchor'] = 'false'

        response = await self._http.get(
            self._descriptor.api_url('messages'),
            params=params,
            auth=self._descriptor.credential.as_auth(),
            timeout=self._settings.request_timeout_seconds,
        )
        payload = self._decode(response)

        raw_messages = payload.get('messages')
        if not isinstance(raw_messages, list):
            raise MalformedResponseError("Response has no 'messages' list")

        messages = [self._parse_message(raw) for raw in raw_messages]
        in_window = [m for m in messages if since is None or m.timestamp >= since]

        next_cursor = None
        reached_since = len(in_window) < len(messages)
        if messages and not payload.get('found_oldest', False) and not reached_since:
            next_cursor = str(min(int(m.id) for m in messages))

        return Page(messages=tuple(in_window), next_cursor=next_cursor)

    def _decode(self, response: httpx.Response) -> dict:
        """Check status and the result envelope, returning the JSON body."""
        try:
            payload = response.json()
        except ValueError:
            payload = None

        status = response.status_code
        api_msg = self._api_message(payload)

        if status in (401, 403):
            raise AuthenticationError(f"HTTP {status}{api_msg}")
        if status == 429:
            retry_after = response.headers.get('retry-after')
            suffix = f" (retry after {retry_after}s)" if retry_after else ""
            raise RateLimitedError(f"HTTP 429{api_msg}{suffix}")

        if isinstance(payload, dict) and payload.get('result') == 'error':
            raise self._api_error(payload)

        if not response.is_success:
            raise TransportError(f"HTTP {status}{api_msg}")

        if not isinstance(payload, dict) or payload.get('result') != 'success':
            raise MalformedResponseError("Response is not a success envelope")

        return payload

    def _api_error(self, payload: dict) -> SourceError:
        code = str(payload.get('code', ''))
        detail = f"api call failed: {payload.get('msg', 'unknown error')} ({code or 'no code'})"
        if code in AUTH_ERROR_CODES:
            return AuthenticationError(detail)
        if code == RATE_LIMIT_CODE:
            return RateLimitedError(detail)
        return TransportError(detail)

    @staticmethod
    def _api_message(payload) -> str:
        if isinstance(payload, dict) and payload.get('msg'):
            return f": {payload['msg']}"
        return ""

    def _parse_message(self, raw) -> Message:
        try:
            message_type = str(raw.get('type', 'stream'))
            topic = raw.get('subject') if message_type == 'stream' else None
            return Message(
                source_name=self.name,
                id=str(int(raw['id'])),
                author=str(raw['sender_full_name']),
                body=str(raw.get('content', '')),
                timestamp=datetime.fromtimestamp(int(raw['timestamp']), tz=timezone.utc),
                recipient=format_recipient(raw.get('display_recipient')),
                topic=topic or None,
                message_type=message_type,
                flags=tuple(str(f) for f in raw.get('flags', ())),
            )
        except (AttributeError, KeyError, TypeError, ValueError, OverflowError, OSError) as e:
            raise MalformedResponseError(f"Unusable message entry: {e!r}") from e


def format_recipient(display_recipient) -> str:
    """Render Zulip's display_recipient as '#stream' or '@A,@B'."""
    if isinstance(display_recipient, str):
        return f"#{display_recipient}"
    if isinstance(display_recipient, list):
        if not display_recipient:
            return "<no users>"
        return ",".join(f"@{user['full_name']}" for user in display_recipient)
    raise TypeError(f"Unexpected display_recipient: {display_recipient!r}")


def create_zulip_client(
    descriptor: InstanceDescriptor,
    http_client: httpx.AsyncClient,
    settings: AggregatorSettings
) -> SourceClient:
    """Default client factory used by the coordinator."""
    return ZulipClient(descriptor, http_client, settings)
