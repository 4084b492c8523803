import asyncio

import pytest

from tokentrader.infrastructure.events.event_bus import EventBus


def test_sync_subscriber_receives_topic_and_payload():
    bus = EventBus()
    seen = []
    bus.subscribe("order.completed", lambda topic, payload: seen.append((topic, payload)))
    bus.publish("order.completed", {"id": "tx_1"})
    bus.publish("order.failed", {"id": "tx_2"})
    assert seen == [("order.completed", {"id": "tx_1"})]


def test_wildcard_sees_every_topic():
    bus = EventBus()
    topics = []
    bus.subscribe("*", lambda topic, payload: topics.append(topic))
    bus.publish("position.opened")
    bus.publish("position.closed", {})
    assert topics == ["position.opened", "position.closed"]


def test_failing_subscriber_does_not_reach_publisher():
    bus = EventBus()
    seen = []

    def broken(topic, payload):
        raise RuntimeError("boom")

    bus.subscribe("signal.generated", broken)
    bus.subscribe("signal.generated", lambda topic, payload: seen.append(payload))
    bus.publish("signal.generated", {"token": "SOL"})
    assert seen == [{"token": "SOL"}]


def test_unsubscribe():
    bus = EventBus()
    seen = []
    sub = bus.subscribe("risk.rejected", lambda topic, payload: seen.append(payload))
    assert bus.subscriber_count("risk.rejected") == 1
    sub.cancel()
    bus.unsubscribe(sub)
    bus.publish("risk.rejected", {})
    assert seen == []
    assert bus.subscriber_count() == 0


@pytest.mark.asyncio
async def test_async_subscribers_run_and_drain():
    bus = EventBus()
    seen = []

    async def handler(topic, payload):
        await asyncio.sleep(0.01)
        seen.append(payload["n"])

    async def broken(topic, payload):
        raise ValueError("bad")

    bus.subscribe("portfolio.updated", handler)
    bus.subscribe("portfolio.updated", broken)
    bus.publish("portfolio.updated", {"n": 1})
    bus.publish("portfolio.updated", {"n": 2})
    assert seen == []

    await bus.drain()
    assert sorted(seen) == [1, 2]


def test_async_subscriber_without_loop_is_dropped():
    bus = EventBus()
    called = []

    async def handler(topic, payload):
        called.append(payload)

    bus.subscribe("order.queued", handler)
    bus.publish("order.queued", {"id": "tx_1"})
    assert called == []
