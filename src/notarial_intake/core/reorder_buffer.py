# ============================================================================
# src/notarial_intake/core/reorder_buffer.py
# ============================================================================
"""
Reorder Buffer

Extraction calls finish in any order; merges must happen in submission
order so that the final record does not depend on network timing. Every
page outcome (success or failure) is submitted under its submission index
and applied only once all lower indices have been applied.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class PageOutcome:
    """Result slot for one submitted page."""
    index: int
    job: Any
    result: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.result is not None


class ReorderBuffer:
    """
    In-order application of out-of-order completions.

    Example:
        buffer = ReorderBuffer(apply=merge_outcome)
        buffer.submit(1, outcome_1)   # held, index 0 missing
        buffer.submit(0, outcome_0)   # applies 0 then 1
    """

    def __init__(self, apply: Callable[[PageOutcome], None], start: int = 0):
        self._apply = apply
        self.next_to_apply = start
        self.pending: Dict[int, PageOutcome] = {}
        self.closed = False
        self._waiters: Dict[int, List[asyncio.Future]] = {}

    def submit(self, index: int, outcome: PageOutcome) -> int:
        """
        Hand in the outcome for ``index`` and apply everything now in order.

        Returns:
            Number of outcomes applied by this call
        """
        if self.closed:
            logger.debug(f"Dropping outcome {index}: buffer discarded")
            return 0
        if index < self.next_to_apply or index in self.pending:
            logger.warning(f"Ignoring duplicate outcome for index {index}")
            return 0

        self.pending[index] = outcome
        applied = 0
        while not self.closed and self.next_to_apply in self.pending:
            item = self.pending.pop(self.next_to_apply)
            self.next_to_apply += 1
            try:
                self._apply(item)
            finally:
                applied += 1
                self._release_waiters()
        return applied

    def is_applied(self, index: int) -> bool:
        return index < self.next_to_apply

    async def wait_applied(self, index: int) -> None:
        """Wait until ``index`` has been applied (or the buffer discarded)."""
        if self.closed or self.is_applied(index):
            return
        future = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(index, []).append(future)
        await future

    def discard(self) -> None:
        """Drop everything still pending; later submissions are ignored."""
        if self.pending:
            logger.info(f"Discarding {len(self.pending)} pending outcome(s)")
        self.closed = True
        self.pending.clear()
        for futures in self._waiters.values():
            for future in futures:
                if not future.done():
                    future.set_result(None)
        self._waiters.clear()

    @property
    def drained(self) -> bool:
        return not self.pending

    def _release_waiters(self) -> None:
        for index in [i for i in self._waiters if i < self.next_to_apply]:
            for future in self._waiters.pop(index):
                if not future.done():
                    future.set_result(None)
