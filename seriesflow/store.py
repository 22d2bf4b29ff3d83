"""Retention-bounded, last-write-wins storage of samples per series key."""
import logging
from typing import Optional

from seriesflow.backends import TimeSeriesBackend
from seriesflow.errors import ErrorKind, StoreError
from seriesflow.metrics import SelfMetrics
from seriesflow.series import SeriesRange, canonical_key, series_labels

logger = logging.getLogger(__name__)


class SeriesStore:
    """
    Append/query engine over a time-series backend.

    Series are provisioned lazily: the first append to an unseen key
    creates it with the configured retention and standard labels, then
    retries the append once. Losing a creation race is success.
    """

    def __init__(
        self,
        backend: TimeSeriesBackend,
        retention_ms: int = 86_400_000,
        metric: str = "value",
        self_metrics: Optional[SelfMetrics] = None
    ):
        """
        Initialize the store.

        Args:
            backend: Storage primitives (create / add / range)
            retention_ms: Retention window for newly created series
            metric: Value of the ``metric`` label on created series
            self_metrics: Optional prometheus self-metrics
        """
        self.backend = backend
        self.retention_ms = retention_ms
        self.metric = metric
        self.self_metrics = self_metrics

    def append(self, key: str, timestamp_ms: int, value: float) -> None:
        """Append a sample, creating the series on first write."""
        key = canonical_key(key)
        try:
            self.backend.add(key, timestamp_ms, value)
        except StoreError as e:
            if e.kind is not ErrorKind.NOT_FOUND:
                raise
            self._create(key)
            self.backend.add(key, timestamp_ms, value)

        if self.self_metrics:
            self.self_metrics.record_append()

    def _create(self, key: str) -> None:
        try:
            self.backend.create(key, self.retention_ms, series_labels(key, self.metric))
        except StoreError as e:
            if e.kind is not ErrorKind.ALREADY_EXISTS:
                raise
            logger.debug(f"Series '{key}' created concurrently, continuing")
            return

        logger.info(f"Created series '{key}' (retention {self.retention_ms}ms)")
        if self.self_metrics:
            self.self_metrics.record_series_created()

    def query(self, key: str, from_ms: int, to_ms: int) -> SeriesRange:
        """Samples with from_ms <= ts <= to_ms, ascending; empty if the series is absent."""
        key = canonical_key(key)
        try:
            points = self.backend.range(key, from_ms, to_ms)
        except StoreError as e:
            if e.kind is not ErrorKind.NOT_FOUND:
                raise
            points = []
        return SeriesRange(key, from_ms, to_ms, points)
