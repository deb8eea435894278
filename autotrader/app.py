"""
Application wiring.

TradingApp builds the event bus, session pool, staking engine, placement
executor, trading orchestrator and notification relay from Settings, and
owns their start/stop order. The transport layer holds one TradingApp and
feeds it raw signal and result payloads.

Examples:
    >>> app = TradingApp.from_config("config.yaml", users=store, trades=store,
    ...                              channel=socket_channel)
    >>> await app.start()
    >>> await app.pool.create_session("user-1")
    >>> await app.submit_signal({"ticker": "EURUSD", "signal": "buy"})
    >>> await app.stop()
"""

import asyncio
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from loguru import logger
from playwright.async_api import async_playwright

from .browser.session_pool import SessionPoolManager
from .core.config import Settings, load_settings
from .core.event_bus import Event, EventBus, EventType
from .core.event_processor import EventProcessor
from .core.logging_config import configure_logging
from .core.models import Signal, TradeResult
from .core.state_store import TradeSink, UserRepository
from .data.signal_parser import parse_result, parse_signal
from .execution.placement import PlacementExecutor
from .notification.relay import NotificationChannel, NotificationRelay
from .processors.trading_orchestrator import TradingOrchestrator
from .strategy.staking import StakingEngine


class TradingApp:
    """
    Composition root and lifecycle owner.

    Processors start in registration order and stop in reverse. Stopping
    also closes every browser session and the shared browser.
    """

    def __init__(
        self,
        settings: Settings,
        users: UserRepository,
        trades: TradeSink,
        channel: Optional[NotificationChannel] = None,
        playwright_factory: Callable[[], Any] = async_playwright,
        reap_interval_seconds: float = 60.0,
    ):
        self.settings = settings
        self.event_bus = EventBus(
            queue_size=settings.event_bus.queue_size,
            handler_timeout=settings.event_bus.handler_timeout_seconds,
        )
        self.pool = SessionPoolManager(
            self.event_bus, settings.pool, playwright_factory=playwright_factory
        )
        self.orchestrator = TradingOrchestrator(
            self.event_bus,
            self.pool,
            users,
            trades,
            staking=StakingEngine(),
            executor=PlacementExecutor(
                settings.locators,
                venue_default_duration=settings.trading.venue_default_duration_seconds,
            ),
        )

        self._processors: List[EventProcessor] = [self.orchestrator]
        if channel is not None:
            self._processors.append(NotificationRelay(self.event_bus, channel))

        self._reap_interval = reap_interval_seconds
        self._reaper: Optional[asyncio.Task] = None

    @classmethod
    def from_config(
        cls,
        config_path: Optional[Union[str, Path]] = None,
        env_file: Optional[Union[str, Path]] = None,
        **kwargs: Any,
    ) -> "TradingApp":
        """Load settings, configure logging and build the app."""
        settings = load_settings(config_path, env_file)
        configure_logging(settings.logging)
        return cls(settings, **kwargs)

    async def start(self) -> None:
        """Start the bus, every processor and the idle-session reaper."""
        await self.event_bus.start()
        for processor in self._processors:
            await processor.start()
        self._reaper = asyncio.create_task(self._reap_loop())
        logger.info(f"TradingApp started with {len(self._processors)} processor(s)")

    async def stop(self) -> None:
        """Stop processors in reverse order, close all sessions, stop the bus."""
        if self._reaper is not None:
            self._reaper.cancel()
            try:
                await self._reaper
            except asyncio.CancelledError:
                pass
            self._reaper = None

        for processor in reversed(self._processors):
            await processor.stop()

        await self.pool.close_all()
        await self.event_bus.stop()
        logger.info("TradingApp stopped")

    async def _reap_loop(self) -> None:
        while True:
            await asyncio.sleep(self._reap_interval)
            try:
                await self.pool.reap_idle()
            except Exception as e:
                logger.error(f"Idle session reaping failed: {e}")

    async def submit_signal(self, payload: Dict[str, Any]) -> Signal:
        """
        Normalise a raw signal payload and publish it for broadcast.

        Raises:
            SignalFormatError: If the payload is invalid
        """
        signal = parse_signal(
            payload, default_duration=self.settings.trading.venue_default_duration_seconds
        )
        await self.event_bus.publish(Event(
            event_type=EventType.SIGNAL_RECEIVED,
            data={"signal": signal},
            source="TradingApp",
        ))
        return signal

    async def submit_result(self, payload: Dict[str, Any]) -> TradeResult:
        """
        Normalise a raw result payload and publish it for staking updates.

        Raises:
            SignalFormatError: If the payload is invalid
        """
        result = parse_result(payload)
        await self.event_bus.publish(Event(
            event_type=EventType.RESULT_RECEIVED,
            data={"result": result},
            source="TradingApp",
        ))
        return result

    def status(self) -> Dict[str, Any]:
        """Pool and trading counters for health endpoints."""
        return {
            "sessions": self.pool.stats().model_dump(),
            "trading": self.orchestrator.stats,
            "event_queue": self.event_bus.queue_size,
        }
