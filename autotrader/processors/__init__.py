"""
Event Processors for the autotrader

- TradingOrchestrator: Fans signals out to live sessions and applies
  results to staking state

Examples:
    >>> from autotrader.core.event_bus import EventBus
    >>> from autotrader.processors import TradingOrchestrator
    >>>
    >>> bus = EventBus()
    >>> await bus.start()
    >>> orchestrator = TradingOrchestrator(bus, pool, store, store)
    >>> await orchestrator.start()
    >>> # SIGNAL_RECEIVED / RESULT_RECEIVED events are now handled
    >>> await orchestrator.stop()
    >>> await bus.stop()
"""

from .trading_orchestrator import TradingOrchestrator

__all__ = ["TradingOrchestrator"]
