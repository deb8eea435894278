"""
Event Processor base class.

An EventProcessor is a long-lived component that reacts to bus events. The
trading orchestrator (signal/result events) and the notification relay
(user-keyed events) both build on it; the application starts them in
registration order and stops them in reverse.
"""

from abc import ABC, abstractmethod
from loguru import logger
from .event_bus import EventBus


class EventProcessor(ABC):
    """
    Abstract base class for event processors.

    Lifecycle:
    1. Construction with EventBus dependency injection
    2. start() - runs _on_start() then registers handlers
    3. Handlers respond to events dispatched by the bus
    4. stop() - unregisters handlers then runs _on_stop()

    start() and stop() are idempotent.

    Attributes:
        event_bus (EventBus): The event bus for pub/sub communication

    Examples:
        >>> class ResultLogger(EventProcessor):
        ...     def _register_handlers(self):
        ...         self.event_bus.subscribe(EventType.RESULT_RECEIVED, self._on_result)
        ...
        ...     def _unregister_handlers(self):
        ...         self.event_bus.unsubscribe(EventType.RESULT_RECEIVED, self._on_result)
        ...
        ...     async def _on_result(self, event: Event):
        ...         logger.info(event.data["result"])
    """

    def __init__(self, event_bus: EventBus):
        self.event_bus = event_bus
        self._is_started = False

    async def start(self) -> None:
        """
        Start the processor and register event handlers.

        Raises:
            Exception: Re-raised from _on_start() or handler registration
        """
        if self._is_started:
            logger.debug(f"{self.__class__.__name__} already started")
            return

        logger.info(f"Starting {self.__class__.__name__}")

        try:
            await self._on_start()
            self._register_handlers()
            self._is_started = True
            logger.info(f"{self.__class__.__name__} started successfully")
        except Exception as e:
            logger.error(f"Failed to start {self.__class__.__name__}: {e}")
            raise

    async def stop(self) -> None:
        """
        Stop the processor and unregister event handlers.

        Errors during cleanup are logged; the processor is marked stopped
        regardless.
        """
        if not self._is_started:
            logger.debug(f"{self.__class__.__name__} already stopped")
            return

        logger.info(f"Stopping {self.__class__.__name__}")

        try:
            self._unregister_handlers()
            await self._on_stop()
            logger.info(f"{self.__class__.__name__} stopped successfully")
        except Exception as e:
            logger.error(f"Error during {self.__class__.__name__} shutdown: {e}")
        finally:
            self._is_started = False

    @abstractmethod
    def _register_handlers(self) -> None:
        """Subscribe handlers to the bus. Called by start() after _on_start()."""
        pass

    @abstractmethod
    def _unregister_handlers(self) -> None:
        """Unsubscribe the handlers added in _register_handlers()."""
        pass

    async def _on_start(self) -> None:
        """Startup hook, runs before handler registration."""
        pass

    async def _on_stop(self) -> None:
        """Shutdown hook, runs after handler unregistration."""
        pass

    @property
    def is_running(self) -> bool:
        return self._is_started
