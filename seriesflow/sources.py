"""Sample sources standing in for a real sensor feed."""
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, Tuple

import numpy as np

from seriesflow.backends import wall_clock_ms
from seriesflow.config import IngestionConfig
from seriesflow.series import canonical_key


class SampleSource(ABC):
    """Base class for sample sources."""

    def __init__(self, seed: int = 42, clock: Callable[[], int] = wall_clock_ms):
        # Initialize RNG with deterministic seed
        self.rng = np.random.default_rng(seed)
        self.clock = clock
        self._lock = threading.Lock()

    @abstractmethod
    def read_current_value(self, series_id: str) -> Tuple[float, int]:
        """Return (value, observed_at_ms) for the series."""
        pass


class UniformSource(SampleSource):
    """Readings of ``base`` plus a whole-number offset in [0, spread]."""

    def __init__(self, base: float = 25.0, spread: float = 5.0, **kwargs):
        super().__init__(**kwargs)
        self.base = base
        self.spread = spread

    def read_current_value(self, series_id: str) -> Tuple[float, int]:
        with self._lock:
            offset = round(self.rng.random() * self.spread)
        return float(self.base + offset), self.clock()


class RandomWalkSource(SampleSource):
    """Per-series random walk starting at ``base``."""

    def __init__(self, base: float = 25.0, step: float = 0.2, **kwargs):
        super().__init__(**kwargs)
        self.base = base
        self.step = step
        self.state: Dict[str, float] = {}

    def read_current_value(self, series_id: str) -> Tuple[float, int]:
        key = canonical_key(series_id)
        with self._lock:
            current = self.state.get(key, self.base)
            current += self.rng.normal(0, self.step)
            self.state[key] = current
        return float(current), self.clock()


def make_source(config: IngestionConfig, clock: Callable[[], int] = wall_clock_ms) -> SampleSource:
    """Factory function to create the configured sample source."""
    if config.source == "random_walk":
        return RandomWalkSource(base=config.base, step=config.step, seed=config.seed, clock=clock)
    return UniformSource(base=config.base, spread=config.spread, seed=config.seed, clock=clock)
