"""Cursor-based batch iteration and progress reporting.

Batches are fetched with "items after the last seen cursor" queries rather
than skip/offset, so a resumed run neither repeats nor skips items when the
catalog changes between runs.
"""

import logging
import time
from collections import deque
from typing import Callable, Deque, Iterator, List, Optional

from catalogsync.pipeline.models import CatalogItem
from catalogsync.storage import CatalogStore
from catalogsync.storage.sqlite_store import Filter

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_THROUGHPUT_WINDOW = 50


def iter_item_batches(
    store: CatalogStore,
    filter_: Filter = None,
    batch_size: int = 1000,
    after: Optional[int] = None,
) -> Iterator[List[CatalogItem]]:
    """Yield batches of matching items in ascending cursor order.

    Args:
        store: Catalog store to read from.
        filter_: Document filter applied to every batch query.
        batch_size: Maximum items per batch.
        after: Resume cursor; only items with a greater ``seq`` are read.

    Yields:
        Non-empty lists of items. The next query starts after the last
        item of the previous batch.
    """
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")

    cursor = after
    while True:
        batch = store.find_items(filter_, after=cursor, limit=batch_size)
        if not batch:
            return
        yield batch
        cursor = batch[-1].seq


class ProgressTracker:
    """Per-item progress with an ETA from rolling throughput.

    The ETA uses only the last ``window`` completions so it follows the
    current speed rather than the run average.
    """

    def __init__(
        self,
        total: int,
        window: int = DEFAULT_THROUGHPUT_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.total = max(total, 0)
        self.current = 0
        self._clock = clock
        self._started = clock()
        self._stamps: Deque[float] = deque(maxlen=max(window, 2))
        self._stamps.append(self._started)

    def rate(self) -> float:
        """Items per second over the rolling window."""
        if len(self._stamps) < 2:
            return 0.0
        elapsed = self._stamps[-1] - self._stamps[0]
        if elapsed <= 0:
            return 0.0
        return (len(self._stamps) - 1) / elapsed

    def eta_seconds(self) -> Optional[float]:
        rate = self.rate()
        if rate <= 0:
            return None
        return max(self.total - self.current, 0) / rate

    def update(self, label: str = "") -> str:
        """Mark one more item done and log a progress line.

        Returns:
            The formatted progress message.
        """
        self.current += 1
        self._stamps.append(self._clock())

        percentage = (self.current / self.total * 100) if self.total else 100.0
        eta = self.eta_seconds()
        eta_text = f"{eta:.0f}s" if eta is not None else "?"
        if len(label) > 30:
            label = label[:27] + "..."

        message = (
            f"[{self.current}/{self.total}] {percentage:.1f}% | ETA: {eta_text} | {label}"
        )
        logger.info(
            message,
            extra={
                "index": self.current,
                "total": self.total,
                "eta_seconds": round(eta, 1) if eta is not None else None,
            },
        )
        return message
