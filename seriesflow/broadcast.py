"""Per-key publish/subscribe channel for live samples."""
import logging
import threading
from collections import deque
from typing import Dict, Optional, Set

from seriesflow.metrics import SelfMetrics
from seriesflow.series import Sample, canonical_key

logger = logging.getLogger(__name__)


class Subscription:
    """Bounded queue of live samples for one subscriber.

    When full, the oldest undelivered sample is dropped.
    """

    def __init__(self, broadcast: "LiveBroadcast", key: str, maxsize: int):
        self.key = key
        self.dropped = 0
        self._broadcast = broadcast
        self._queue: deque = deque(maxlen=maxsize)
        self._cond = threading.Condition()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, sample: Sample) -> bool:
        """Enqueue a sample. Returns False if a queued sample was dropped."""
        with self._cond:
            if self._closed:
                return True
            dropped = len(self._queue) == self._queue.maxlen
            if dropped:
                self.dropped += 1
            self._queue.append(sample)
            self._cond.notify()
        return not dropped

    def get(self, timeout: Optional[float] = None) -> Optional[Sample]:
        """Next sample, or None on timeout or once closed."""
        with self._cond:
            if not self._queue and not self._closed:
                self._cond.wait(timeout)
            if self._queue:
                return self._queue.popleft()
            return None

    def drain(self):
        """Pop every queued sample without blocking."""
        with self._cond:
            items = list(self._queue)
            self._queue.clear()
        return items

    def close(self):
        """Detach from the channel and wake any blocked reader."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._queue.clear()
            self._cond.notify_all()
        self._broadcast._detach(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()


class LiveBroadcast:
    """Fan-out of samples to every active subscription of a series key."""

    def __init__(self, queue_size: int = 256, self_metrics: Optional[SelfMetrics] = None):
        self.queue_size = queue_size
        self.self_metrics = self_metrics
        self._subscribers: Dict[str, Set[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, key: str) -> Subscription:
        key = canonical_key(key)
        subscription = Subscription(self, key, self.queue_size)
        with self._lock:
            self._subscribers.setdefault(key, set()).add(subscription)
            count = len(self._subscribers[key])
        logger.info(f"Live subscriber attached to '{key}' ({count} active)")
        if self.self_metrics:
            self.self_metrics.set_subscribers(key, count)
        return subscription

    def unsubscribe(self, subscription: Subscription):
        subscription.close()

    def _detach(self, subscription: Subscription):
        with self._lock:
            subscribers = self._subscribers.get(subscription.key)
            if not subscribers or subscription not in subscribers:
                return
            subscribers.discard(subscription)
            count = len(subscribers)
            if not subscribers:
                del self._subscribers[subscription.key]
        logger.info(f"Live subscriber detached from '{subscription.key}' ({count} active)")
        if self.self_metrics:
            self.self_metrics.set_subscribers(subscription.key, count)

    def publish(self, key: str, sample: Sample) -> int:
        """Deliver a sample to all subscribers of the key. Returns the number reached."""
        key = canonical_key(key)
        with self._lock:
            targets = list(self._subscribers.get(key, ()))
        for subscription in targets:
            if not subscription.put(sample) and self.self_metrics:
                self.self_metrics.record_dropped()
        return len(targets)

    def subscriber_count(self, key: str = None) -> int:
        with self._lock:
            if key is None:
                return sum(len(s) for s in self._subscribers.values())
            return len(self._subscribers.get(canonical_key(key), ()))
