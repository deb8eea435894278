"""
User notification relay.

Forwards user-keyed bus events to the external notification channel as
`emit(owner_id, event_name, payload)`. Delivery itself (sockets, push) is
the channel's business; a failing channel is logged and never disturbs the
bus or other subscribers.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

from ..core.event_bus import Event, EventBus, EventType
from ..core.event_processor import EventProcessor


RELAYED_EVENTS = (
    EventType.SESSION_CREATED,
    EventType.SESSION_CLOSED,
    EventType.USER_ON_TRADING_PAGE,
    EventType.TRADE_PLACED,
    EventType.TRADE_FAILED,
    EventType.STAKING_UPDATED,
)


class NotificationChannel(ABC):
    """Per-user notification delivery provided by the transport layer."""

    @abstractmethod
    async def emit(self, owner_id: str, event_name: str, payload: Dict[str, Any]) -> None:
        """Deliver one event to one user."""


class InMemoryNotificationChannel(NotificationChannel):
    """Records emitted notifications; used by tests and local runs."""

    def __init__(self):
        self.sent: List[Tuple[str, str, Dict[str, Any]]] = []

    async def emit(self, owner_id: str, event_name: str, payload: Dict[str, Any]) -> None:
        self.sent.append((owner_id, event_name, payload))

    def for_owner(self, owner_id: str) -> List[Tuple[str, Dict[str, Any]]]:
        return [(name, payload) for oid, name, payload in self.sent if oid == owner_id]


class NotificationRelay(EventProcessor):
    """
    Subscribes to user-keyed events and forwards them to a NotificationChannel.

    Events without an owner_id are global and are not relayed.

    Examples:
        >>> channel = InMemoryNotificationChannel()
        >>> relay = NotificationRelay(bus, channel)
        >>> await relay.start()
    """

    def __init__(
        self,
        event_bus: EventBus,
        channel: NotificationChannel,
        event_types: Optional[Tuple[EventType, ...]] = None,
    ):
        super().__init__(event_bus)
        self.channel = channel
        self.event_types = event_types or RELAYED_EVENTS
        self._relayed = 0

    def _register_handlers(self) -> None:
        for event_type in self.event_types:
            self.event_bus.subscribe(event_type, self._on_event)

    def _unregister_handlers(self) -> None:
        for event_type in self.event_types:
            self.event_bus.unsubscribe(event_type, self._on_event)

    async def _on_event(self, event: Event) -> None:
        owner_id = event.owner_id or event.data.get("owner_id")
        if not owner_id:
            return

        try:
            await self.channel.emit(owner_id, event.event_type.value, event.data)
            self._relayed += 1
        except Exception as e:
            logger.error(
                f"Failed to notify {owner_id} of {event.event_type.value}: {e}"
            )

    @property
    def relayed_count(self) -> int:
        return self._relayed
