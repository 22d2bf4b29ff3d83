"""Tests for consumer sessions wiring sampling, live delivery and the window."""
import time

import pytest
from conftest import FixedSource

from seriesflow.ingestion import IngestionLoop
from seriesflow.series import Sample
from seriesflow.session import ConsumerSession


def wait_for(predicate, timeout=3.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def make_session(store, query_service, broadcast, clock, entity="Singapore", value=26.0):
    def loop_factory(key):
        return IngestionLoop(
            key, FixedSource(value), store, broadcast,
            interval_s=60, read_timeout_s=1, clock=clock
        )

    return ConsumerSession(
        entity, 3_600_000, query_service, broadcast, loop_factory, clock=clock
    )


def test_session_shows_history_and_live(store, query_service, broadcast, clock):
    store.append("singapore", clock() - 60_000, 24.0)
    clock.advance(1)

    with make_session(store, query_service, broadcast, clock) as session:
        assert wait_for(lambda: len(session.snapshot()) == 2)
        assert [s.value for s in session.snapshot()] == [24.0, 26.0]
        assert session.status == "live"

        clock.advance(1000)
        broadcast.publish("singapore", Sample(clock(), 27.0))
        assert wait_for(lambda: len(session.snapshot()) == 3)


def test_session_awaiting_data(store, query_service, broadcast, clock):
    def loop_factory(key):
        loop = IngestionLoop(key, FixedSource(1.0), store, broadcast, interval_s=60, read_timeout_s=1)
        loop.start = lambda: None
        return loop

    session = ConsumerSession(
        "singapore", 3_600_000, query_service, broadcast, loop_factory, clock=clock
    ).start()
    try:
        assert session.snapshot() == []
        assert session.status == "awaiting data"
    finally:
        session.close()


def test_set_entity_restarts_for_new_key(store, query_service, broadcast, clock):
    session = make_session(store, query_service, broadcast, clock).start()
    try:
        assert wait_for(lambda: len(session.snapshot()) == 1)
        old_loop = session.loop

        clock.advance(10)
        session.set_entity("London")

        assert session.key == "london"
        assert old_loop.stopped
        assert broadcast.subscriber_count("singapore") == 0
        assert broadcast.subscriber_count("london") == 1
        assert wait_for(lambda: len(session.snapshot()) == 1)
        assert store.query("london", 0, clock()).points == session.snapshot()
    finally:
        session.close()


def test_select_range_reseeds(store, query_service, broadcast, clock):
    store.append("singapore", clock() - 5 * 3_600_000, 20.0)
    session = make_session(store, query_service, broadcast, clock).start()
    try:
        assert wait_for(lambda: len(session.snapshot()) == 1)
        view = session.select_range(6 * 3_600_000)
        assert [s.value for s in view] == [20.0, 26.0]
    finally:
        session.close()


def test_select_range_by_label(store, query_service, broadcast, clock):
    session = ConsumerSession(
        "singapore", "1h", query_service, broadcast, lambda key: None,
        ranges={"1h": 3600, "24h": 86400}, clock=clock
    )
    assert session.duration_ms == 3_600_000

    store.append("singapore", clock() - 20 * 3_600_000, 19.0)
    view = session.select_range("24h")

    assert session.duration_ms == 86_400_000
    assert [s.value for s in view] == [19.0]


def test_unknown_range_label_rejected(query_service, broadcast, clock):
    session = ConsumerSession(
        "singapore", 60_000, query_service, broadcast, lambda key: None,
        ranges={"1h": 3600}, clock=clock
    )

    with pytest.raises(ValueError):
        session.select_range("2h")
    with pytest.raises(ValueError):
        ConsumerSession("singapore", "7d", query_service, broadcast, lambda key: None)
    assert session.duration_ms == 60_000


def test_close_stops_loop_and_detaches(store, query_service, broadcast, clock):
    session = make_session(store, query_service, broadcast, clock).start()
    assert wait_for(lambda: len(session.snapshot()) == 1)
    loop = session.loop

    session.close()
    before = session.window.buffer
    broadcast.publish("singapore", Sample(clock() + 1, 99.0))
    time.sleep(0.1)

    assert loop.stopped
    assert session.closed
    assert broadcast.subscriber_count("singapore") == 0
    assert session.window.buffer == before
