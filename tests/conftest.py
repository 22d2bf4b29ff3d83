"""Shared fixtures: manual clock, in-memory store and scripted sample sources."""
import threading

import pytest

from seriesflow.backends import InMemoryBackend
from seriesflow.broadcast import LiveBroadcast
from seriesflow.query import RangeQueryService
from seriesflow.sources import SampleSource
from seriesflow.store import SeriesStore


class ManualClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, now_ms: int = 1_700_000_000_000):
        self.now_ms = now_ms

    def __call__(self) -> int:
        return self.now_ms

    def advance(self, ms: int):
        self.now_ms += ms


class FixedSource(SampleSource):
    """Returns scripted values in order, repeating the last one."""

    def __init__(self, *values, clock=None):
        super().__init__(seed=0)
        self.values = list(values) or [21.0]
        self.calls = []
        self._clock = clock or (lambda: 0)

    def read_current_value(self, series_id):
        self.calls.append(series_id)
        index = min(len(self.calls) - 1, len(self.values) - 1)
        return self.values[index], self._clock()


class BlockingSource(SampleSource):
    """Blocks until released, then returns ``value``."""

    def __init__(self, value: float = 30.0):
        super().__init__(seed=0)
        self.value = value
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls = []

    def read_current_value(self, series_id):
        self.calls.append(series_id)
        self.started.set()
        self.release.wait(5)
        return self.value, 0


class FailingSource(SampleSource):
    def read_current_value(self, series_id):
        raise ConnectionError("sensor offline")


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def backend(clock):
    return InMemoryBackend(clock=clock)


@pytest.fixture
def store(backend):
    return SeriesStore(backend, retention_ms=86_400_000)


@pytest.fixture
def query_service(store):
    return RangeQueryService(store, default_entity="Singapore")


@pytest.fixture
def broadcast():
    return LiveBroadcast(queue_size=16)
