"""Data structures for scalar series samples."""
from dataclasses import dataclass, field
from typing import Dict, List


@dataclass(frozen=True)
class Sample:
    """A single reading: one value per millisecond timestamp."""
    timestamp_ms: int
    value: float

    def to_dict(self) -> Dict[str, float]:
        return {"ts": self.timestamp_ms, "value": self.value}


@dataclass
class SeriesRange:
    """Result of a range query, points ascending by timestamp."""
    series_key: str
    from_ms: int
    to_ms: int
    points: List[Sample] = field(default_factory=list)


def canonical_key(name: str) -> str:
    """Canonicalize an entity name into a series key."""
    return name.strip().lower()


def series_labels(key: str, metric: str = "value") -> Dict[str, str]:
    """Static labels attached to a series when it is created."""
    return {"entity": key, "metric": metric}
