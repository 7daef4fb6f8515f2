import asyncio

import pytest

from kiram_chat.core.exceptions import StoreUnavailable
from kiram_chat.services.live_subscription import LiveSubscription
from kiram_chat.utils.realtime_bus import conversation_channel

pytestmark = pytest.mark.anyio


async def next_item(queue, timeout=1.0):
    return await asyncio.wait_for(queue.get(), timeout)


async def test_message_snapshots_follow_sends(service):
    await service.get_or_create_conversation("U1", "U2")
    snapshots = asyncio.Queue()
    sub = await service.subscribe_messages("U1_U2", snapshots.put_nowait)
    try:
        assert await next_item(snapshots) == []
        await service.send_message("U1_U2", "U1", "U2", "first")
        assert [m.content for m in await next_item(snapshots)] == ["first"]
        await service.send_message("U1_U2", "U2", "U1", "second")
        assert [m.content for m in await next_item(snapshots)] == ["first", "second"]
    finally:
        await sub.aclose()


async def test_async_callbacks_are_awaited(service):
    await service.get_or_create_conversation("U1", "U2")
    seen = asyncio.Queue()

    async def on_snapshot(items):
        await seen.put(len(items))

    sub = await service.subscribe_messages("U1_U2", on_snapshot)
    try:
        assert await next_item(seen) == 0
        await service.send_message("U1_U2", "U1", "U2", "hi")
        assert await next_item(seen) == 1
    finally:
        await sub.aclose()


async def test_no_callbacks_after_cancel(service, bus):
    await service.get_or_create_conversation("U1", "U2")
    snapshots = asyncio.Queue()
    sub = await service.subscribe_messages("U1_U2", snapshots.put_nowait)
    await next_item(snapshots)

    sub.cancel()
    assert sub.cancelled
    await service.send_message("U1_U2", "U1", "U2", "nobody listening")
    await asyncio.sleep(0.05)
    assert snapshots.empty()

    await sub.aclose()
    assert bus.subscriber_count(conversation_channel("U1_U2")) == 0


async def test_conversation_snapshots_are_filtered_and_ordered(service):
    snapshots = asyncio.Queue()
    sub = await service.subscribe_conversations("tenant", snapshots.put_nowait)
    try:
        assert await next_item(snapshots) == []
        await service.get_or_create_conversation("tenant", "landlord-a")
        assert [c.conversation_id for c in await next_item(snapshots)] == ["landlord-a_tenant"]

        await service.get_or_create_conversation("landlord-a", "landlord-b")
        await service.get_or_create_conversation("tenant", "landlord-b")
        latest = await next_item(snapshots)
        while len(latest) < 2:
            latest = await next_item(snapshots)

        await service.send_message("landlord-a_tenant", "landlord-a", "tenant", "keys are ready")
        await service.wait_for_pending()
        while True:
            latest = await next_item(snapshots)
            if latest[0].last_message == "keys are ready" and latest[0].unread_for("tenant") == 1:
                break
        assert [c.conversation_id for c in latest] == ["landlord-a_tenant", "landlord-b_tenant"]
    finally:
        await sub.aclose()


async def test_load_failure_goes_to_on_error_and_subscription_survives(bus):
    attempts = []

    async def flaky_loader():
        attempts.append(1)
        if len(attempts) == 1:
            raise StoreUnavailable("primary stepped down")
        return ["ok"]

    snapshots, errors = asyncio.Queue(), asyncio.Queue()
    sub = await LiveSubscription.start(bus, "conversation:X_Y", flaky_loader, snapshots.put_nowait, errors.put_nowait)
    try:
        error = await next_item(errors)
        assert isinstance(error, StoreUnavailable)
        assert not sub.cancelled

        await bus.publish("conversation:X_Y", "{}")
        assert await next_item(snapshots) == ["ok"]
    finally:
        await sub.aclose()


async def test_bus_errors_are_reported_without_teardown(bus):
    errors = asyncio.Queue()
    snapshots = asyncio.Queue()

    async def loader():
        return []

    sub = await LiveSubscription.start(bus, "user:U1", loader, snapshots.put_nowait, errors.put_nowait)
    try:
        await next_item(snapshots)
        await sub._on_bus_error(ConnectionError("redis went away"))
        error = await next_item(errors)
        assert isinstance(error, StoreUnavailable)
        assert error.retryable

        await bus.publish("user:U1", "{}")
        assert await next_item(snapshots) == []
    finally:
        await sub.aclose()


async def test_unexpected_loader_error_is_reported_as_unavailable(bus):
    attempts = []

    async def broken_once_loader():
        attempts.append(1)
        if len(attempts) == 1:
            raise ValueError("malformed message document")
        return ["ok"]

    snapshots, errors = asyncio.Queue(), asyncio.Queue()
    sub = await LiveSubscription.start(bus, "conversation:X_Y", broken_once_loader, snapshots.put_nowait, errors.put_nowait)
    try:
        error = await next_item(errors)
        assert isinstance(error, StoreUnavailable)
        assert "malformed message document" in error.detail
        assert not sub.cancelled

        await bus.publish("conversation:X_Y", "{}")
        assert await next_item(snapshots) == ["ok"]
        assert len(attempts) == 2
    finally:
        await sub.aclose()
