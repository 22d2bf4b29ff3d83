"""Periodic sampling loop feeding the series store and live subscribers."""
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeout
from typing import Callable, Dict, Optional

from seriesflow.backends import wall_clock_ms
from seriesflow.broadcast import LiveBroadcast
from seriesflow.errors import SampleTimeout, StoreError
from seriesflow.metrics import SelfMetrics
from seriesflow.series import Sample, canonical_key
from seriesflow.sources import SampleSource
from seriesflow.store import SeriesStore

logger = logging.getLogger(__name__)


class IngestionLoop:
    """
    Samples one series key on a fixed interval.

    Each tick reads the source with a timeout, appends the reading to the
    store stamped with the ingestion clock, then publishes it live. The
    next tick is scheduled one interval after the read resolves or times
    out, so reads for the same key never overlap by schedule.
    """

    def __init__(
        self,
        key: str,
        source: SampleSource,
        store: SeriesStore,
        broadcast: Optional[LiveBroadcast] = None,
        interval_s: float = 60.0,
        read_timeout_s: float = 3.0,
        clock: Callable[[], int] = wall_clock_ms,
        self_metrics: Optional[SelfMetrics] = None
    ):
        self.key = canonical_key(key)
        self.source = source
        self.store = store
        self.broadcast = broadcast
        self.interval_s = interval_s
        self.read_timeout_s = read_timeout_s
        self.clock = clock
        self.self_metrics = self_metrics

        self.tick_count = 0
        self.last_sample: Optional[Sample] = None
        self.start_time = time.time()

        self._stop = threading.Event()
        self._tick_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        # One read in flight per key; later ticks queue behind a stalled read
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"ingest-{self.key}"
        )

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def _read(self) -> float:
        future = self._executor.submit(self.source.read_current_value, self.key)
        try:
            value, _observed_at = future.result(timeout=self.read_timeout_s)
        except FuturesTimeout:
            raise SampleTimeout(
                f"Reading '{self.key}' exceeded {self.read_timeout_s}s"
            ) from None
        return value

    def tick(self) -> Optional[Sample]:
        """Execute one sampling cycle. Returns the stored sample, if any."""
        tick_start = time.time()
        outcome = "ok"
        sample = None

        try:
            value = self._read()
        except SampleTimeout as e:
            logger.warning(f"Skipping tick: {e}")
            outcome = "timeout"
        except Exception as e:
            if self._stop.is_set():
                # Executor already shut down by stop()
                logger.debug(f"Read for '{self.key}' abandoned: {e}")
                outcome = "stopped"
            else:
                logger.warning(f"Skipping tick: source failed for '{self.key}': {e}")
                outcome = "source_error"
        else:
            with self._tick_lock:
                if self._stop.is_set():
                    logger.debug(f"Discarding reading for stopped loop '{self.key}'")
                    outcome = "stopped"
                else:
                    sample = Sample(self.clock(), float(value))
                    try:
                        self.store.append(self.key, sample.timestamp_ms, sample.value)
                    except StoreError as e:
                        logger.error(
                            f"Append failed for '{self.key}' ({e.kind.value}): {e}",
                            exc_info=True
                        )
                        outcome = "store_error"
                        sample = None
                    else:
                        if self.broadcast:
                            self.broadcast.publish(self.key, sample)
                        self.last_sample = sample

        self.tick_count += 1
        if self.self_metrics:
            self.self_metrics.record_tick(outcome, time.time() - tick_start)

        return sample

    def run(self):
        """Run ticks until stopped."""
        logger.info(
            f"Starting ingestion loop for '{self.key}' "
            f"(interval {self.interval_s}s, timeout {self.read_timeout_s}s)"
        )
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Error in tick for '{self.key}': {e}", exc_info=True)

            if self._stop.wait(self.interval_s):
                break
        logger.info(f"Ingestion loop for '{self.key}' exited after {self.tick_count} ticks")

    def start(self):
        """Start the loop in a daemon thread."""
        if self._thread is not None:
            raise RuntimeError(f"Ingestion loop for '{self.key}' already started")
        self.start_time = time.time()
        self._thread = threading.Thread(
            target=self.run, name=f"ingest-loop-{self.key}", daemon=True
        )
        self._thread.start()

    def stop(self, join_timeout: Optional[float] = None):
        """Cancel the pending tick. No append or publish happens after this returns."""
        with self._tick_lock:
            if self._stop.is_set():
                return
            self._stop.set()
        logger.info(f"Stopping ingestion loop for '{self.key}'")
        self._executor.shutdown(wait=False, cancel_futures=True)
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(join_timeout if join_timeout is not None else self.read_timeout_s + 1)


class LoopRegistry:
    """At most one ingestion loop per series key."""

    def __init__(self, factory: Callable[[str], IngestionLoop]):
        self.factory = factory
        self.loops: Dict[str, IngestionLoop] = {}
        self._lock = threading.Lock()

    def ensure(self, name: str) -> IngestionLoop:
        key = canonical_key(name)
        with self._lock:
            loop = self.loops.get(key)
            if loop is None or loop.stopped:
                loop = self.factory(key)
                self.loops[key] = loop
                loop.start()
        return loop

    def stop(self, name: str):
        with self._lock:
            loop = self.loops.pop(canonical_key(name), None)
        if loop:
            loop.stop()

    def stop_all(self):
        with self._lock:
            loops = list(self.loops.values())
            self.loops.clear()
        for loop in loops:
            loop.stop()
