"""Time-series storage backends.

A backend offers exactly four things: create a series with a retention
window and labels, append a point (replacing any point already stored at
that timestamp), read a closed time range, and raise ``StoreError``
subclasses whose ``kind`` tells callers what went wrong. Anything that
offers these primitives can sit behind ``SeriesStore``.
"""
import bisect
import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List

import redis
from redis.exceptions import ResponseError

from seriesflow.config import StoreConfig
from seriesflow.errors import (
    SeriesAlreadyExists,
    SeriesNotFound,
    StoreError,
    StoreUnavailable,
)
from seriesflow.series import Sample

logger = logging.getLogger(__name__)


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


class TimeSeriesBackend(ABC):
    """Storage primitives for scalar series."""

    @abstractmethod
    def create(self, key: str, retention_ms: int, labels: Dict[str, str]) -> None:
        """Create a series. Raises SeriesAlreadyExists if present."""

    @abstractmethod
    def add(self, key: str, timestamp_ms: int, value: float) -> None:
        """Append a point, last write wins. Raises SeriesNotFound if absent."""

    @abstractmethod
    def range(self, key: str, from_ms: int, to_ms: int) -> List[Sample]:
        """Points with from_ms <= ts <= to_ms, ascending. Raises SeriesNotFound."""

    def close(self) -> None:
        pass


class _MemorySeries:
    __slots__ = ("retention_ms", "labels", "timestamps", "values")

    def __init__(self, retention_ms: int, labels: Dict[str, str]):
        self.retention_ms = retention_ms
        self.labels = dict(labels)
        self.timestamps: List[int] = []
        self.values: Dict[int, float] = {}

    def trim(self, now_ms: int):
        cutoff = now_ms - self.retention_ms
        idx = bisect.bisect_left(self.timestamps, cutoff)
        if idx:
            for ts in self.timestamps[:idx]:
                del self.values[ts]
            del self.timestamps[:idx]


class InMemoryBackend(TimeSeriesBackend):
    """Process-local backend with wall-clock retention.

    Writes are serialized per backend by a single lock, which matches the
    per-key serialization a real store provides.
    """

    def __init__(self, clock: Callable[[], int] = wall_clock_ms):
        self._clock = clock
        self._series: Dict[str, _MemorySeries] = {}
        self._lock = threading.Lock()

    def create(self, key: str, retention_ms: int, labels: Dict[str, str]) -> None:
        with self._lock:
            if key in self._series:
                raise SeriesAlreadyExists(f"Series '{key}' already exists", key=key)
            self._series[key] = _MemorySeries(retention_ms, labels)

    def add(self, key: str, timestamp_ms: int, value: float) -> None:
        with self._lock:
            series = self._series.get(key)
            if series is None:
                raise SeriesNotFound(f"Series '{key}' does not exist", key=key)
            if timestamp_ms not in series.values:
                bisect.insort(series.timestamps, timestamp_ms)
            series.values[timestamp_ms] = float(value)
            series.trim(self._clock())

    def range(self, key: str, from_ms: int, to_ms: int) -> List[Sample]:
        with self._lock:
            series = self._series.get(key)
            if series is None:
                raise SeriesNotFound(f"Series '{key}' does not exist", key=key)
            series.trim(self._clock())
            lo = bisect.bisect_left(series.timestamps, from_ms)
            hi = bisect.bisect_right(series.timestamps, to_ms)
            return [Sample(ts, series.values[ts]) for ts in series.timestamps[lo:hi]]

    def labels(self, key: str) -> Dict[str, str]:
        with self._lock:
            series = self._series.get(key)
            if series is None:
                raise SeriesNotFound(f"Series '{key}' does not exist", key=key)
            return dict(series.labels)


def classify_redis_error(error: Exception, key: str = None) -> StoreError:
    """Translate a redis-py exception into a tagged StoreError."""
    if isinstance(error, (redis.ConnectionError, redis.TimeoutError)):
        return StoreUnavailable(str(error), key=key)
    if isinstance(error, ResponseError):
        message = str(error).lower()
        if "does not exist" in message:
            return SeriesNotFound(str(error), key=key)
        if "already exists" in message:
            return SeriesAlreadyExists(str(error), key=key)
    return StoreError(str(error), key=key)


class RedisTimeSeriesBackend(TimeSeriesBackend):
    """Backend over the RedisTimeSeries module (TS.CREATE / TS.ADD / TS.RANGE)."""

    def __init__(self, client: "redis.Redis", key_prefix: str = "weather:ts:"):
        self._client = client
        self._ts = client.ts()
        self.key_prefix = key_prefix

    @classmethod
    def from_config(cls, config: StoreConfig) -> "RedisTimeSeriesBackend":
        client = redis.Redis(
            host=config.host,
            port=config.port,
            password=config.password,
            db=config.db,
        )
        logger.info(f"Redis TimeSeries backend at {config.host}:{config.port}/{config.db}")
        return cls(client, key_prefix=config.key_prefix)

    def _redis_key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def create(self, key: str, retention_ms: int, labels: Dict[str, str]) -> None:
        try:
            self._ts.create(self._redis_key(key), retention_msecs=retention_ms, labels=labels)
        except redis.RedisError as e:
            raise classify_redis_error(e, key) from e

    def add(self, key: str, timestamp_ms: int, value: float) -> None:
        redis_key = self._redis_key(key)
        try:
            # TS.ADD would create a missing key without retention or labels
            if not self._client.exists(redis_key):
                raise SeriesNotFound(f"Series '{key}' does not exist", key=key)
            self._ts.add(redis_key, timestamp_ms, value, duplicate_policy="last")
        except redis.RedisError as e:
            raise classify_redis_error(e, key) from e

    def range(self, key: str, from_ms: int, to_ms: int) -> List[Sample]:
        try:
            rows = self._ts.range(self._redis_key(key), from_ms, to_ms)
        except redis.RedisError as e:
            raise classify_redis_error(e, key) from e
        return [Sample(int(ts), float(value)) for ts, value in rows]

    def close(self) -> None:
        self._client.close()


def create_backend(config: StoreConfig, clock: Callable[[], int] = wall_clock_ms) -> TimeSeriesBackend:
    """Create the backend named by the store configuration."""
    if config.backend == "memory":
        return InMemoryBackend(clock=clock)
    return RedisTimeSeriesBackend.from_config(config)
