# tests/unit/integrations/test_event_bus.py
from crosslist.integrations.events import SyncEventBus, SyncStatusEvent


def event(**overrides):
    values = dict(listing_id=1, platform="ebay", sync_status="synced", status="active")
    values.update(overrides)
    return SyncStatusEvent(**values)


async def test_sync_and_async_subscribers_receive_events():
    bus = SyncEventBus()
    received = []

    async def async_handler(e):
        received.append(("async", e.platform))

    bus.subscribe(lambda e: received.append(("sync", e.platform)))
    bus.subscribe(async_handler)

    await bus.publish(event())

    assert received == [("sync", "ebay"), ("async", "ebay")]


async def test_failing_subscriber_does_not_stop_others():
    bus = SyncEventBus()
    received = []

    def broken(e):
        raise RuntimeError("subscriber down")

    bus.subscribe(broken)
    bus.subscribe(received.append)

    await bus.publish_many([event(), event(platform="reverb")])

    assert [e.platform for e in received] == ["ebay", "reverb"]


async def test_unsubscribe():
    bus = SyncEventBus()
    received = []
    unsubscribe = bus.subscribe(received.append)

    unsubscribe()
    await bus.publish(event())

    assert received == []
