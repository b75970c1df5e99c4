"""
Fetch Coordinator

Runs one source client per configured instance, concurrently, under a
shared wall-clock budget.

DESIGN:
=======
1. Validate instance names before any network activity
2. One asyncio task per instance; none share mutable state
3. Outcomes are written once per instance name after the join
4. Unfinished tasks at budget expiry are cancelled -> Failure(timeout)
5. Tasks that ignore cancellation are detached, never awaited by the caller
"""

from __future__ import annotations
from concurrent.futures import Future
from typing import Callable, Dict, Mapping, Optional, Sequence, Set
from datetime import datetime
import asyncio
import threading

import httpx
from loguru import logger

from .client import SourceClient, create_zulip_client, utcnow
from .config import AggregatorSettings
from .contracts import InstanceDescriptor, FetchOutcome, FetchError, ErrorKind
from .errors import ConfigurationError, BudgetTimeoutError
from .registry import validate_descriptors


CANCEL_GRACE_SECONDS = 0.5

ClientFactory = Callable[[InstanceDescriptor, httpx.AsyncClient, AggregatorSettings], SourceClient]


class FetchCoordinator:
    """
    Drives every source client to completion within one budget.

    GUARANTEES:
    ===========
    1. Exactly one outcome per descriptor, in descriptor order
    2. One slow or failing instance never delays the others past the budget
    3. Duplicate or empty names abort the run before any request
    """

    def __init__(
        self,
        settings: Optional[AggregatorSettings] = None,
        client_factory: ClientFactory = create_zulip_client,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._settings = settings or AggregatorSettings()
        self._client_factory = client_factory
        self._http_client = http_client
        self._background: Set[asyncio.Task] = set()

    async def run(
        self,
        descriptors: Sequence[InstanceDescriptor],
        budget: Optional[float] = None,
        since: Optional[datetime] = None,
        since_by_instance: Optional[Mapping[str, datetime]] = None
    ) -> Dict[str, FetchOutcome]:
        """
        Fetch from all instances concurrently.

        Args:
            descriptors: instances to query (names must be unique)
            budget: seconds for the whole fetch phase (defaults to settings)
            since: optional lower time bound passed to every client
            since_by_instance: per-name lower bounds, overriding `since`

        Returns:
            Mapping from instance name to its outcome, in descriptor order.

        Stragglers keep running on the current loop after this returns;
        use run_sync() to leave them behind entirely.
        """
        descriptors = validate_descriptors(descriptors)
        budget = self._settings.budget_seconds if budget is None else budget
        if budget <= 0:
            raise ConfigurationError("Budget must be positive")

        if not descriptors:
            return {}

        bounds = {
            d.name: (since_by_instance or {}).get(d.name, since) for d in descriptors
        }

        if self._http_client is not None:
            return await self._run_with(self._http_client, descriptors, budget, bounds, set())

        http_client = httpx.AsyncClient(
            headers={'User-Agent': self._settings.user_agent},
            timeout=self._settings.request_timeout_seconds,
            follow_redirects=True
        )
        stragglers: Set[asyncio.Task] = set()
        try:
            return await self._run_with(http_client, descriptors, budget, bounds, stragglers)
        finally:
            if stragglers:
                # Stragglers still hold the client; close it once they finish.
                closer = asyncio.create_task(self._close_when_done(stragglers, http_client))
                self._background.add(closer)
                closer.add_done_callback(self._background.discard)
            else:
                await http_client.aclose()

    def run_sync(
        self,
        descriptors: Sequence[InstanceDescriptor],
        budget: Optional[float] = None,
        since: Optional[datetime] = None,
        since_by_instance: Optional[Mapping[str, datetime]] = None
    ) -> Dict[str, FetchOutcome]:
        """
        Synchronous version of run.

        The event loop lives on a daemon thread. The outcome mapping is
        returned as soon as run() finishes; the thread then drains any
        stragglers in the background and their results are ignored.
        """
        result: Future = Future()

        def drive():
            loop = asyncio.new_event_loop()
            try:
                try:
                    outcomes = loop.run_until_complete(
                        self.run(descriptors, budget, since, since_by_instance)
                    )
                except BaseException as e:
                    result.set_exception(e)
                else:
                    result.set_result(outcomes)

                leftover = asyncio.all_tasks(loop)
                if leftover:
                    loop.run_until_complete(asyncio.wait(leftover))
                loop.run_until_complete(loop.shutdown_asyncgens())
            finally:
                loop.close()

        threading.Thread(target=drive, name="fetch-coordinator", daemon=True).start()
        return result.result()

    async def _close_when_done(self, stragglers: Set[asyncio.Task], http_client: httpx.AsyncClient):
        await asyncio.wait(stragglers)
        logger.debug(f"{len(stragglers)} detached fetch(es) finished; closing HTTP client")
        await http_client.aclose()

    async def _run_with(
        self,
        http_client: httpx.AsyncClient,
        descriptors: Sequence[InstanceDescriptor],
        budget: float,
        bounds: Mapping[str, Optional[datetime]],
        stragglers: Set[asyncio.Task]
    ) -> Dict[str, FetchOutcome]:
        started_at = utcnow()
        tasks: Dict[str, asyncio.Task] = {}
        for descriptor in descriptors:
            client = self._client_factory(descriptor, http_client, self._settings)
            tasks[descriptor.name] = asyncio.create_task(
                client.fetch(bounds[descriptor.name]), name=f"fetch:{descriptor.name}"
            )

        logger.info(f"Fetching from {len(tasks)} instance(s) with a {budget:.1f}s budget")
        _, pending = await asyncio.wait(tasks.values(), timeout=budget)

        for task in pending:
            task.cancel()
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=CANCEL_GRACE_SECONDS)
            if still_running:
                logger.warning(f"Detaching {len(still_running)} fetch(es) that ignored cancellation")
                stragglers.update(still_running)

        outcomes: Dict[str, FetchOutcome] = {}
        for name, task in tasks.items():
            if task in pending:
                outcomes[name] = self._timeout_outcome(name, budget, started_at)
            else:
                outcomes[name] = self._completed_outcome(name, task, started_at)
        return outcomes

    def _completed_outcome(
        self,
        name: str,
        task: asyncio.Task,
        started_at: datetime
    ) -> FetchOutcome:
        if task.cancelled():
            return FetchOutcome.failure(
                name,
                FetchError(ErrorKind.UNEXPECTED, "Fetch was cancelled"),
                started_at=started_at,
                completed_at=utcnow()
            )

        error = task.exception()
        if error is not None:
            logger.opt(exception=error).error(f"[{name}] client raised instead of returning an outcome")
            return FetchOutcome.failure(
                name,
                FetchError(ErrorKind.UNEXPECTED, f"{type(error).__name__}: {error}"),
                started_at=started_at,
                completed_at=utcnow()
            )

        return task.result()

    def _timeout_outcome(self, name: str, budget: float, started_at: datetime) -> FetchOutcome:
        logger.warning(f"[{name}] did not finish within {budget:.1f}s")
        return FetchOutcome.failure(
            name,
            BudgetTimeoutError(f"No response within {budget:.1f}s budget").to_fetch_error(),
            started_at=started_at,
            completed_at=utcnow()
        )
