"""
Unit tests for NotificationRelay.
"""

from unittest.mock import AsyncMock

import pytest

from autotrader.core.event_bus import Event, EventType
from autotrader.notification.relay import (
    RELAYED_EVENTS,
    InMemoryNotificationChannel,
    NotificationRelay,
)


@pytest.fixture
def channel():
    return InMemoryNotificationChannel()


@pytest.fixture
def relay(event_bus, channel):
    return NotificationRelay(event_bus, channel)


class TestNotificationRelay:
    """Test event forwarding to the notification channel."""

    @pytest.mark.asyncio
    async def test_start_subscribes_to_user_events(self, relay, event_bus):
        await relay.start()

        for event_type in RELAYED_EVENTS:
            assert event_bus.subscriber_count(event_type) == 1
        assert event_bus.subscriber_count(EventType.SIGNAL_RECEIVED) == 0

        await relay.stop()

        for event_type in RELAYED_EVENTS:
            assert event_bus.subscriber_count(event_type) == 0

    @pytest.mark.asyncio
    async def test_forwards_with_owner(self, relay, channel):
        await relay._on_event(Event(
            event_type=EventType.TRADE_PLACED,
            data={"owner_id": "user-a", "amount": 10.0},
            source="test",
            owner_id="user-a",
        ))

        assert channel.sent == [
            ("user-a", "trade_placed", {"owner_id": "user-a", "amount": 10.0})
        ]
        assert relay.relayed_count == 1

    @pytest.mark.asyncio
    async def test_owner_from_payload(self, relay, channel):
        await relay._on_event(Event(
            event_type=EventType.SESSION_CLOSED,
            data={"owner_id": "user-b", "reason": "idle_timeout"},
            source="test",
        ))

        assert channel.for_owner("user-b") == [
            ("session_closed", {"owner_id": "user-b", "reason": "idle_timeout"})
        ]

    @pytest.mark.asyncio
    async def test_global_events_not_relayed(self, relay, channel):
        await relay._on_event(Event(
            event_type=EventType.TRADE_FAILED,
            data={"error": "boom"},
            source="test",
        ))

        assert channel.sent == []
        assert relay.relayed_count == 0

    @pytest.mark.asyncio
    async def test_channel_failure_logged(self, event_bus):
        channel = InMemoryNotificationChannel()
        channel.emit = AsyncMock(side_effect=ConnectionError("socket gone"))
        relay = NotificationRelay(event_bus, channel)

        await relay._on_event(Event(
            event_type=EventType.TRADE_PLACED,
            data={},
            source="test",
            owner_id="user-a",
        ))

        channel.emit.assert_awaited_once()
        assert relay.relayed_count == 0

    @pytest.mark.asyncio
    async def test_custom_event_types(self, event_bus, channel):
        relay = NotificationRelay(event_bus, channel, event_types=(EventType.ERROR,))
        await relay.start()

        assert event_bus.subscriber_count(EventType.ERROR) == 1
        assert event_bus.subscriber_count(EventType.TRADE_PLACED) == 0

        await relay.stop()

    @pytest.mark.asyncio
    async def test_delivery_through_running_bus(self, relay, event_bus, channel):
        await event_bus.start()
        await relay.start()

        await event_bus.publish(Event(
            event_type=EventType.USER_ON_TRADING_PAGE,
            data={"owner_id": "user-a", "url": "https://x/demo-quick-high-low"},
            source="test",
            owner_id="user-a",
        ))
        await event_bus.stop()
        await relay.stop()

        assert [name for name, _ in channel.for_owner("user-a")] == ["user_on_trading_page"]
