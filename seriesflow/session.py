"""Per-consumer session: one ingestion loop, one live subscription, one window."""
import logging
import threading
from typing import Callable, Dict, List, Optional, Union

from seriesflow.backends import wall_clock_ms
from seriesflow.broadcast import LiveBroadcast, Subscription
from seriesflow.ingestion import IngestionLoop
from seriesflow.query import RangeQueryService
from seriesflow.series import Sample, canonical_key
from seriesflow.window import LiveMergeWindow

logger = logging.getLogger(__name__)


class ConsumerSession:
    """
    Keeps a displayed window current for one entity and duration.

    All window mutations happen under the session lock, from either the
    caller (range/entity changes) or the pump thread (live samples).
    """

    def __init__(
        self,
        entity: str,
        duration: Union[str, int],
        query_service: RangeQueryService,
        broadcast: LiveBroadcast,
        loop_factory: Callable[[str], IngestionLoop],
        capacity: int = 10_000,
        ranges: Optional[Dict[str, int]] = None,
        clock: Callable[[], int] = wall_clock_ms
    ):
        """
        Args:
            entity: Entity name to watch
            duration: Range label (e.g. "6h") or a duration in milliseconds
            query_service: History source for seeding
            broadcast: Live channel to subscribe to
            loop_factory: Builds the ingestion loop for a series key
            capacity: Live window buffer bound
            ranges: Range label to seconds
            clock: Millisecond clock
        """
        self.broadcast = broadcast
        self.ranges = dict(ranges or {})
        self.loop_factory = loop_factory
        self.window = LiveMergeWindow(query_service, entity, capacity=capacity, clock=clock)
        self.duration_ms = self.resolve_duration(duration)

        self.loop: Optional[IngestionLoop] = None
        self._subscription: Optional[Subscription] = None
        self._lock = threading.RLock()
        self._closed = threading.Event()
        self._pump_thread: Optional[threading.Thread] = None

    @property
    def key(self) -> str:
        return self.window.key

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    @property
    def status(self) -> str:
        return "live" if self.snapshot() else "awaiting data"

    def start(self) -> "ConsumerSession":
        with self._lock:
            self._attach(self.window.key)
            self.window.select(self.duration_ms)
        self._pump_thread = threading.Thread(
            target=self._pump, name=f"session-pump-{self.key}", daemon=True
        )
        self._pump_thread.start()
        logger.info(f"Session started for '{self.key}' ({self.duration_ms}ms window)")
        return self

    def _attach(self, key: str):
        # Subscribe before seeding so no live sample falls between the two
        self._subscription = self.broadcast.subscribe(key)
        self.loop = self.loop_factory(key)
        self.loop.start()

    def _detach(self):
        if self.loop is not None:
            self.loop.stop()
            self.loop = None
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    def _pump(self):
        while not self._closed.is_set():
            subscription = self._subscription
            if subscription is None or subscription.closed:
                self._closed.wait(0.05)
                continue
            sample = subscription.get(timeout=0.5)
            if sample is None:
                continue
            with self._lock:
                if not self._closed.is_set() and subscription is self._subscription:
                    self.window.append(sample)

    def resolve_duration(self, duration: Union[str, int]) -> int:
        """Milliseconds for a range label or a raw millisecond duration."""
        if isinstance(duration, str):
            if duration not in self.ranges:
                raise ValueError(
                    f"Unknown range '{duration}'. Available ranges: {list(self.ranges)}"
                )
            return self.ranges[duration] * 1000
        return int(duration)

    def select_range(self, duration: Union[str, int]) -> List[Sample]:
        """Change the displayed duration and re-seed from history."""
        duration_ms = self.resolve_duration(duration)
        with self._lock:
            self._ensure_open()
            self.duration_ms = duration_ms
            return list(self.window.select(duration_ms))

    def set_entity(self, entity: str) -> List[Sample]:
        """Switch to another entity, discarding the buffer and restarting sampling."""
        key = canonical_key(entity)
        with self._lock:
            self._ensure_open()
            if key == self.window.key:
                return list(self.window.view)
            logger.info(f"Session switching from '{self.window.key}' to '{key}'")
            self._detach()
            self._attach(key)
            return list(self.window.set_key(key))

    def snapshot(self) -> List[Sample]:
        with self._lock:
            return list(self.window.view)

    def refresh(self) -> List[Sample]:
        """Recompute the displayed window against the current time."""
        with self._lock:
            return list(self.window.refresh())

    def close(self):
        """Stop sampling and detach; the window is not mutated afterwards."""
        with self._lock:
            if self._closed.is_set():
                return
            self._closed.set()
            self._detach()
        if self._pump_thread is not None and self._pump_thread is not threading.current_thread():
            self._pump_thread.join(1.0)
        logger.info(f"Session for '{self.key}' closed")

    def _ensure_open(self):
        if self._closed.is_set():
            raise RuntimeError("Session is closed")

    def __enter__(self):
        return self.start()

    def __exit__(self, *exc):
        self.close()
