"""
Core module for event-driven architecture.

This module provides the foundational components for the trading system:
- EventBus / Event / EventType: Publish-subscribe event system
- EventProcessor: Base class for event processors
- StateStore: In-memory user and trade collaborators
- Settings: Validated configuration
"""

from .event_bus import Event, EventBus, EventType
from .event_processor import EventProcessor

__all__ = [
    "Event",
    "EventBus",
    "EventType",
    "EventProcessor",
]
