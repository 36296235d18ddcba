"""Tests for change-detected publishing, the liveness lease, and output mirroring."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest

from hublink.core.contracts import TransportError
from hublink.core.publisher import HubLogHandler, MirrorSink, Publisher


def _publisher(transport, clock, state: dict[str, Any], **kwargs: Any) -> Publisher:
    return Publisher(transport, lambda: dict(state), clock=clock, **kwargs)


@pytest.mark.asyncio
async def test_tick_publishes_only_when_state_changes(transport, clock) -> None:
    state = {"ready": False}
    publisher = _publisher(transport, clock, state)

    assert await publisher.tick() is True
    assert await publisher.tick() is False
    state["ready"] = True
    assert await publisher.tick() is True
    assert await publisher.tick() is False

    assert [event["state"] for event in transport.of_type("state")] == [
        {"ready": False},
        {"ready": True},
    ]


@pytest.mark.asyncio
async def test_structurally_equal_state_is_not_republished(transport, clock) -> None:
    state: dict[str, Any] = {"a": 1, "b": [1, 2]}
    publisher = Publisher(transport, lambda: state, clock=clock)

    await publisher.tick()
    state = {"b": [1, 2], "a": 1}
    assert await publisher.tick() is False
    assert len(transport.of_type("state")) == 1


@pytest.mark.asyncio
async def test_publishing_is_allowed_before_the_first_ping(transport, clock) -> None:
    publisher = _publisher(transport, clock, {"v": 1})
    clock.advance(1000)
    assert publisher.lease_expired() is False
    assert await publisher.tick() is True


@pytest.mark.asyncio
async def test_liveness_lease_gates_publishing(transport, clock) -> None:
    state = {"v": 0}
    publisher = _publisher(transport, clock, state)
    await publisher.on_ping()
    assert transport.sent == [{"type": "pong"}]

    clock.advance(3.0)
    state["v"] = 1
    assert await publisher.tick() is True

    clock.advance(4.0)
    state["v"] = 2
    sent_before = len(transport.sent)
    assert await publisher.tick() is False
    assert await publisher.publish_event({"type": "message", "text": "hi"}) is False
    assert len(transport.sent) == sent_before

    # A new ping answers immediately and the suppressed state goes out next tick.
    await publisher.on_ping()
    assert transport.sent[-1] == {"type": "pong"}
    assert await publisher.tick() is True
    assert transport.sent[-1]["state"] == {"v": 2}


@pytest.mark.asyncio
async def test_pong_bypasses_an_expired_lease(transport, clock) -> None:
    publisher = _publisher(transport, clock, {})
    await publisher.on_ping()
    clock.advance(60.0)
    assert publisher.lease_expired()
    await publisher.on_ping()
    assert transport.of_type("pong") == [{"type": "pong"}, {"type": "pong"}]
    assert not publisher.lease_expired()


@pytest.mark.asyncio
async def test_failed_publish_is_retried_on_next_tick(transport, clock) -> None:
    publisher = _publisher(transport, clock, {"v": 1})
    transport.fail_next = 1

    with pytest.raises(TransportError):
        await publisher.tick()
    assert transport.sent == []
    assert await publisher.tick() is True
    assert len(transport.of_type("state")) == 1

    health = await publisher.health()
    assert health.details["failed_total"] == 1
    assert health.details["published_total"] == 1


@pytest.mark.asyncio
async def test_reset_forces_republish_of_unchanged_state(transport, clock) -> None:
    publisher = _publisher(transport, clock, {"v": 1})
    await publisher.tick()
    publisher.reset()
    assert await publisher.tick() is True
    assert len(transport.of_type("state")) == 2


@pytest.mark.asyncio
async def test_publish_state_is_unconditional_but_remembered(transport, clock) -> None:
    publisher = _publisher(transport, clock, {"v": 1})
    await publisher.publish_state()
    await publisher.publish_state()
    assert await publisher.tick() is False
    assert len(transport.of_type("state")) == 2


@pytest.mark.asyncio
async def test_periodic_loop_publishes_and_stops(transport, clock) -> None:
    publisher = _publisher(transport, clock, {"v": 1}, interval=0.01)
    await publisher.start()
    await asyncio.wait_for(transport.delivered.wait(), timeout=1.0)
    await publisher.stop()

    assert len(transport.of_type("state")) == 1


@pytest.mark.asyncio
async def test_mirrored_log_records_are_published(transport, clock) -> None:
    sink = MirrorSink(maxsize=8)
    publisher = _publisher(transport, clock, {}, interval=60.0, mirror=sink)
    await publisher.start()

    root = logging.getLogger()
    logger = logging.getLogger("acme.module")
    handler = HubLogHandler(sink)
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)
    logger.setLevel(logging.INFO)
    try:
        logger.info("working")
        logger.error("broken")
        logging.getLogger("hublink.core.test").error("never mirrored")
        for _ in range(50):
            if len(transport.sent) >= 2:
                break
            await asyncio.sleep(0.01)
    finally:
        root.removeHandler(handler)
        await publisher.stop()

    assert transport.of_type("stdout") == [{"type": "stdout", "data": "working"}]
    assert transport.of_type("stderr") == [{"type": "stderr", "data": "broken"}]


def test_mirror_sink_drops_when_full() -> None:
    sink = MirrorSink(maxsize=1)
    sink.write("stdout", "first")
    sink.write("stdout", "second")
    sink.write("stdout", "")
    assert sink.qsize() == 1
    assert sink.dropped_total == 1
