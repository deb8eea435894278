"""
Event Bus System for the autotrader

This module carries every notification the core produces: session lifecycle
changes, trade placements and failures, staking updates, and the inbound
signal/result events the transport layer publishes.

Events flow through a bounded asyncio queue so a slow subscriber applies
backpressure to publishers instead of growing memory without limit.
"""

from enum import Enum
from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass
from datetime import datetime, timezone
import asyncio
from loguru import logger


class EventType(Enum):
    """
    Enumeration of all event types in the autotrader.

    Event values are the names used on the notification channel, so
    `EventType.TRADE_PLACED.value` is exactly what a user-facing client sees.

    Examples:
        >>> EventType.TRADE_PLACED
        <EventType.TRADE_PLACED: 'trade_placed'>

        >>> EventType.SESSION_CLOSED.value
        'session_closed'
    """

    SIGNAL_RECEIVED = "signal_received"
    """
    Emitted by the transport layer when a new signal arrives.

    Payload: signal (Signal). Consumed by the trading orchestrator, which
    fans the signal out to every eligible live session.
    """

    RESULT_RECEIVED = "result_received"
    """
    Emitted by the transport layer when a signal's outcome is known.

    Payload: result (TradeResult). Drives one staking transition per
    eligible live user.
    """

    SESSION_CREATED = "session_created"
    """Emitted after a user's browser context and page are ready. Payload: owner_id."""

    SESSION_CLOSED = "session_closed"
    """
    Emitted once per session teardown, whether explicit, idle expiry, mass
    shutdown or the page closing underneath us. Payload: owner_id, reason.
    """

    USER_ON_TRADING_PAGE = "user_on_trading_page"
    """Emitted when navigation lands on the venue trading page. Payload: owner_id, url, location."""

    TRADE_PLACED = "trade_placed"
    """
    Emitted after the placement protocol committed a direction.

    Payload: owner_id, trade_id, amount, signal, timestamp.
    """

    TRADE_FAILED = "trade_failed"
    """Emitted when a placement attempt failed. Payload: owner_id, trade_id, error."""

    STAKING_UPDATED = "staking_updated"
    """Emitted after a result moved a user's staking state. Payload: owner_id, level, loss_streak."""

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return f"<EventType.{self.name}: '{self.value}'>"


@dataclass
class Event:
    """
    Event data structure for the event bus system.

    Attributes:
        event_type (EventType): The type of event being emitted
        data (Dict[str, Any]): Event payload
        source (str): Component that emitted the event
        owner_id (str, optional): User the event concerns, None for global events
        timestamp (datetime): When the event was created

    Examples:
        >>> event = Event(
        ...     event_type=EventType.SESSION_CREATED,
        ...     data={'owner_id': 'u1'},
        ...     source='SessionPoolManager',
        ...     owner_id='u1'
        ... )
        >>> event.owner_id
        'u1'
    """

    event_type: EventType
    data: Dict[str, Any]
    source: str
    owner_id: Optional[str] = None
    timestamp: datetime = None

    def __post_init__(self):
        """
        Validate event data and set timestamp if not provided.

        Raises:
            TypeError: If event_type is not EventType or data is not dict
        """
        if not isinstance(self.event_type, EventType):
            raise TypeError(
                f"event_type must be EventType enum, got {type(self.event_type).__name__}"
            )

        if not isinstance(self.data, dict):
            raise TypeError(
                f"data must be dict, got {type(self.data).__name__}"
            )

        if self.timestamp is None:
            self.timestamp = datetime.now(timezone.utc)

    def __str__(self) -> str:
        return f"Event({self.event_type.name} from {self.source} at {self.timestamp})"


class EventBus:
    """
    Central event bus for publish-subscribe event handling.

    Subscribers register per EventType. `publish()` enqueues for the async
    processing loop, which supports both sync and async handlers with a
    per-handler timeout.

    Examples:
        >>> bus = EventBus(queue_size=100)
        >>> await bus.start()
        >>>
        >>> async def on_trade(event: Event):
        ...     print(event.data['amount'])
        >>>
        >>> bus.subscribe(EventType.TRADE_PLACED, on_trade)
        >>> await bus.publish(Event(EventType.TRADE_PLACED, {'amount': 10.0}, 'test'))
        >>> await bus.stop()
    """

    def __init__(self, queue_size: int = 1000, handler_timeout: float = 1.0):
        """
        Initialize the event bus.

        Args:
            queue_size (int): Maximum number of queued events before publishers wait
            handler_timeout (float): Seconds each handler may run per event

        Raises:
            ValueError: If queue_size or handler_timeout is not positive
        """
        if queue_size <= 0:
            raise ValueError(f"queue_size must be positive, got {queue_size}")
        if handler_timeout <= 0:
            raise ValueError(f"handler_timeout must be positive, got {handler_timeout}")

        self._subscribers: Dict[EventType, List[Callable[[Event], Any]]] = {
            event_type: [] for event_type in EventType
        }
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._handler_timeout = handler_timeout
        self._running: bool = False
        self._task: Optional[asyncio.Task] = None

    def subscribe(self, event_type: EventType, callback: Callable[[Event], Any]) -> None:
        """
        Subscribe to a specific event type.

        Raises:
            TypeError: If event_type is not an EventType enum member
        """
        if not isinstance(event_type, EventType):
            raise TypeError(f"event_type must be EventType enum, got {type(event_type)}")

        if callback not in self._subscribers[event_type]:
            self._subscribers[event_type].append(callback)

    def unsubscribe(self, event_type: EventType, callback: Callable[[Event], Any]) -> None:
        """Unsubscribe a callback; unknown callbacks are ignored."""
        if callback in self._subscribers[event_type]:
            self._subscribers[event_type].remove(callback)

    def subscriber_count(self, event_type: EventType) -> int:
        """Number of subscribers registered for an event type."""
        return len(self._subscribers[event_type])

    def clear_subscribers(self, event_type: EventType = None) -> None:
        """Clear subscribers for one event type, or all when event_type is None."""
        if event_type is None:
            for event_type in EventType:
                self._subscribers[event_type].clear()
        else:
            self._subscribers[event_type].clear()

    async def publish(self, event: Event) -> None:
        """
        Enqueue an event for asynchronous dispatch.

        While the bus is running a full queue makes the caller wait. Before
        start() or after stop() nothing drains the queue, so events that do
        not fit are dropped with a warning rather than blocking forever.

        Raises:
            TypeError: If event is not an Event instance
        """
        if not isinstance(event, Event):
            raise TypeError(f"event must be Event instance, got {type(event)}")

        if not self._running and self._queue.full():
            logger.warning(
                f"Event bus not running and queue full, dropping {event.event_type.value}"
            )
            return

        await self._queue.put(event)

    async def start(self) -> None:
        """Start the async event processing loop. Idempotent."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._process_events())

    async def _process_events(self) -> None:
        """Read events from the queue and dispatch until stopped and drained."""
        while True:
            event = None
            try:
                event = await asyncio.wait_for(self._queue.get(), timeout=0.1)
                await self._dispatch(event)

            except asyncio.TimeoutError:
                if not self._running and self._queue.empty():
                    break
                continue
            except Exception as e:
                logger.error(f"Error processing event: {e}")
            finally:
                if event is not None:
                    self._queue.task_done()

    async def _dispatch(self, event: Event) -> None:
        """
        Dispatch an event to all subscribers with timeout protection.

        Async handlers are awaited directly; sync handlers run in a worker
        thread. Each handler is bounded by handler_timeout.
        """
        handlers = list(self._subscribers[event.event_type])

        logger.debug(
            f"Dispatching event {event.event_type.value} to {len(handlers)} handler(s)"
        )

        for callback in handlers:
            name = getattr(callback, "__name__", repr(callback))
            try:
                if asyncio.iscoroutinefunction(callback):
                    await asyncio.wait_for(callback(event), timeout=self._handler_timeout)
                else:
                    await asyncio.wait_for(
                        asyncio.to_thread(callback, event),
                        timeout=self._handler_timeout
                    )
            except asyncio.TimeoutError:
                logger.warning(
                    f"Handler {name} for event {event.event_type.value} "
                    f"exceeded {self._handler_timeout}s timeout"
                )
            except Exception as e:
                logger.error(
                    f"Error in event subscriber {name} "
                    f"for {event.event_type.value}: {e}"
                )

    async def stop(self) -> None:
        """
        Stop the processing loop after draining queued events (5s limit).

        Safe to call when not running.
        """
        if not self._running:
            return

        self._running = False

        try:
            await asyncio.wait_for(self._queue.join(), timeout=5.0)
        except asyncio.TimeoutError:
            logger.warning("Event queue did not drain within 5s timeout")

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def queue_size(self) -> int:
        """Number of events waiting to be dispatched."""
        return self._queue.qsize()
