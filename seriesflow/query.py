"""Bounded time-window queries against the series store."""
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from seriesflow.errors import InvalidRange
from seriesflow.series import SeriesRange
from seriesflow.store import SeriesStore


def parse_instant(value: str) -> int:
    """Parse an ISO-8601 instant into epoch milliseconds (naive means UTC)."""
    if not value:
        raise InvalidRange("Missing instant")
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        raise InvalidRange(f"Invalid ISO-8601 instant: {value!r}") from None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


class RangeQueryService:
    """Validates range requests and forwards them to the store. No caching."""

    def __init__(self, store: SeriesStore, default_entity: str = "Singapore"):
        self.store = store
        self.default_entity = default_entity

    def query(self, key: Optional[str], from_ms: int, to_ms: int) -> SeriesRange:
        if from_ms > to_ms:
            raise InvalidRange(f"Range start {from_ms} is after end {to_ms}")
        return self.store.query((key or "").strip() or self.default_entity, from_ms, to_ms)

    def get_series(self, key: Optional[str], from_iso: str, to_iso: str) -> Dict[str, Any]:
        """Query by ISO-8601 bounds, returning a JSON-ready payload."""
        result = self.query(key, parse_instant(from_iso), parse_instant(to_iso))
        return {
            "key": result.series_key,
            "from": from_iso,
            "to": to_iso,
            "points": [p.to_dict() for p in result.points],
        }
