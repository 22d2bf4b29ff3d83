"""Client-side merge of a historical snapshot with a live sample stream."""
import logging
from collections import deque
from typing import Callable, Iterable, List, Optional

from seriesflow.backends import wall_clock_ms
from seriesflow.query import RangeQueryService
from seriesflow.series import Sample, canonical_key

logger = logging.getLogger(__name__)


class LiveMergeWindow:
    """
    Bounded, time-ordered buffer for one series plus its displayed window.

    The buffer holds at most ``capacity`` samples and evicts the oldest
    first. The displayed window is every buffered sample no older than
    the selected duration; it is recomputed after each mutation and on
    each duration change, costing O(buffer size) per update.

    Live samples are appended in arrival order and are expected to carry
    monotonically increasing timestamps. A regression is logged and
    counted in ``out_of_order`` but not re-sorted.
    """

    def __init__(
        self,
        query_service: RangeQueryService,
        key: str,
        capacity: int = 10_000,
        clock: Callable[[], int] = wall_clock_ms
    ):
        self.query_service = query_service
        self.key = canonical_key(key)
        self.capacity = capacity
        self.clock = clock
        self.duration_ms: Optional[int] = None
        self.out_of_order = 0
        self.view: List[Sample] = []
        self._buffer: deque = deque(maxlen=capacity)

    def __len__(self) -> int:
        return len(self._buffer)

    @property
    def buffer(self) -> List[Sample]:
        return list(self._buffer)

    def select(self, duration_ms: int) -> List[Sample]:
        """Select a duration, seed from history for [now - D, now], return the view."""
        if duration_ms <= 0:
            raise ValueError(f"Duration must be positive, got {duration_ms}")
        self.duration_ms = duration_ms
        now = self.clock()
        snapshot = self.query_service.query(self.key, now - duration_ms, now)
        self.seed(snapshot.points)
        return self.view

    def set_key(self, key: str) -> List[Sample]:
        """Switch series: discard the buffer and re-seed with the current duration."""
        self.key = canonical_key(key)
        self.reset()
        if self.duration_ms is not None:
            return self.select(self.duration_ms)
        return self.view

    def seed(self, history: Iterable[Sample]):
        """Merge a historical snapshot into the buffer; buffered samples win on conflict."""
        merged = {s.timestamp_ms: s for s in history}
        for sample in self._buffer:
            merged[sample.timestamp_ms] = sample
        ordered = sorted(merged.values(), key=lambda s: s.timestamp_ms)
        self._buffer = deque(ordered[-self.capacity:], maxlen=self.capacity)
        self.refresh()

    def append(self, sample: Sample):
        """Append one live sample, evicting the oldest when full."""
        if self._buffer:
            last = self._buffer[-1]
            if sample.timestamp_ms == last.timestamp_ms:
                self._buffer[-1] = sample
                self.refresh()
                return
            if sample.timestamp_ms < last.timestamp_ms:
                self.out_of_order += 1
                logger.warning(
                    f"Live sample for '{self.key}' at {sample.timestamp_ms} "
                    f"precedes last buffered {last.timestamp_ms}"
                )
        self._buffer.append(sample)
        self.refresh()

    def reset(self):
        self._buffer = deque(maxlen=self.capacity)
        self.out_of_order = 0
        self.refresh()

    def displayed(self, now_ms: Optional[int] = None) -> List[Sample]:
        """Buffered samples with ts >= now - D. Does not mutate the buffer."""
        if self.duration_ms is None:
            return list(self._buffer)
        now = self.clock() if now_ms is None else now_ms
        cutoff = now - self.duration_ms
        return [s for s in self._buffer if s.timestamp_ms >= cutoff]

    def refresh(self) -> List[Sample]:
        """Recompute the displayed window against the current time."""
        self.view = self.displayed()
        return self.view
