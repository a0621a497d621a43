# ============================================================================
# src/notarial_intake/core/scheduler.py
# ============================================================================
"""
Concurrency Scheduler

Dispatches page extraction jobs under per-lane concurrency ceilings:

    context   identifications, marriage certificates   1 at a time
    registry  registry extracts, deeds                  2 at a time
    plans     floor plans                               2 at a time

Each lane runs N workers that take jobs in submission order. Right before a
job is dispatched the current canonical record is snapshotted and sent
along, so a page always sees everything merged before it was sent. Workers
of a sequential lane additionally wait until their own result has been
merged before taking the next job; that way the second identification of a
batch sees the flags the first one set.

One CancellationToken per batch stops every worker and in-flight call.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from ..constants.document_types import (
    DEFAULT_LANE_LIMITS,
    LANE_CONFIG_KEYS,
    SEQUENTIAL_LANES,
    SUBTYPE_LANES,
    REGISTRY_LANE,
    DocumentSubtype,
)
from ..utils.exceptions import (
    ExtractionError,
    ExtractionServerError,
    ExtractionTimeout,
    SessionExpired,
)
from .reorder_buffer import PageOutcome

logger = logging.getLogger(__name__)


class CancellationToken:
    """Batch-wide cancellation signal."""

    def __init__(self):
        self._cancelled = False
        self.reason: Optional[str] = None
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "cancelled") -> bool:
        """Cancel once; returns False if it was already cancelled."""
        if self._cancelled:
            return False
        self._cancelled = True
        self.reason = reason
        logger.info(f"Batch cancelled: {reason}")
        for callback in list(self._callbacks):
            callback()
        return True

    def add_callback(self, callback: Callable[[], None]) -> None:
        if self._cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)


@dataclass
class ExtractionJob:
    """One page waiting for extraction."""
    index: int
    page: Any
    subtype: DocumentSubtype
    document_id: Optional[str] = None


Dispatch = Callable[[ExtractionJob, Dict[str, Any]], Awaitable[Any]]


class ConcurrencyScheduler:
    """
    Runs extraction jobs lane by lane with bounded concurrency.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.lane_limits = {
            lane: max(1, int(self.config.get(key, DEFAULT_LANE_LIMITS[lane])))
            for lane, key in LANE_CONFIG_KEYS.items()
        }
        self.timeout = float(self.config.get('extraction_timeout', 120.0))
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def lane_for(subtype: DocumentSubtype) -> str:
        return SUBTYPE_LANES.get(subtype, REGISTRY_LANE)

    async def run(
        self,
        jobs: List[ExtractionJob],
        dispatch: Dispatch,
        snapshot_provider: Callable[[], Dict[str, Any]],
        on_complete: Callable[[PageOutcome], None],
        token: CancellationToken,
        wait_applied: Optional[Callable[[int], Awaitable[None]]] = None,
    ) -> None:
        """
        Run all jobs to completion or cancellation.

        Args:
            jobs: Jobs in submission order
            dispatch: Coroutine performing one extraction
            snapshot_provider: Returns the current record snapshot
            on_complete: Receives every outcome (success or failure) not
                discarded by cancellation
            token: Batch cancellation token
            wait_applied: Awaits the merge of a given index; required for
                sequential lanes to see their predecessor's result
        """
        queues: Dict[str, Deque[ExtractionJob]] = {}
        for job in sorted(jobs, key=lambda j: j.index):
            queues.setdefault(self.lane_for(job.subtype), deque()).append(job)

        tasks: List[asyncio.Task] = []
        for lane, queue in queues.items():
            workers = min(self.lane_limits.get(lane, 1), len(queue))
            for _ in range(workers):
                tasks.append(asyncio.create_task(
                    self._lane_worker(lane, queue, dispatch, snapshot_provider, on_complete, token, wait_applied)
                ))

        if not tasks:
            return

        def _cancel_all():
            for task in tasks:
                if not task.done():
                    task.cancel()

        token.add_callback(_cancel_all)
        try:
            results = await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            token.remove_callback(_cancel_all)

        for result in results:
            if isinstance(result, Exception):
                raise result

    async def _lane_worker(
        self,
        lane: str,
        queue: Deque[ExtractionJob],
        dispatch: Dispatch,
        snapshot_provider: Callable[[], Dict[str, Any]],
        on_complete: Callable[[PageOutcome], None],
        token: CancellationToken,
        wait_applied: Optional[Callable[[int], Awaitable[None]]],
    ) -> None:
        sequential = lane in SEQUENTIAL_LANES
        while queue and not token.cancelled:
            job = queue.popleft()
            outcome = await self._execute(job, dispatch, snapshot_provider, token)
            if outcome is None or token.cancelled:
                self.logger.debug(f"Discarding late outcome for {job.page.name}")
                return
            on_complete(outcome)
            if sequential and wait_applied is not None:
                await wait_applied(job.index)

    async def _execute(
        self,
        job: ExtractionJob,
        dispatch: Dispatch,
        snapshot_provider: Callable[[], Dict[str, Any]],
        token: CancellationToken,
    ) -> Optional[PageOutcome]:
        page_name = job.page.name
        snapshot = snapshot_provider()
        try:
            result = await asyncio.wait_for(dispatch(job, snapshot), timeout=self.timeout)
            return PageOutcome(index=job.index, job=job, result=result)
        except asyncio.TimeoutError:
            error: Exception = ExtractionTimeout(
                f"Extraction of {page_name} exceeded {self.timeout:.0f}s",
                page_name=page_name,
                timeout_seconds=self.timeout,
            )
            self.logger.warning(str(error))
        except SessionExpired:
            self.logger.error(f"Session expired while extracting {page_name}")
            token.cancel("session_expired")
            return None
        except ExtractionError as e:
            error = e
            self.logger.warning(f"Extraction failed for {page_name}: {e}")
        except Exception as e:
            self.logger.exception(f"Unexpected error extracting {page_name}")
            error = ExtractionServerError(str(e), page_name=page_name)

        return PageOutcome(index=job.index, job=job, error=error)
