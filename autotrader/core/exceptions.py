"""
Exception hierarchy for the autotrader.

Every error the core raises derives from AutoTraderError so callers at the
transport boundary can catch one type. Per-user errors raised during a
signal fan-out never leave the orchestrator; they are logged, counted and
written to the failed trade record instead.
"""

from typing import List, Optional


class AutoTraderError(Exception):
    """Base class for all autotrader errors."""
    pass


class ConfigError(AutoTraderError):
    """
    Raised when config.yaml or environment overrides are missing or invalid.

    This exception indicates a configuration problem that must be resolved
    before the application can start.
    """
    pass


class CapacityExceeded(AutoTraderError):
    """Raised when a new browser session would exceed the pool cap."""

    def __init__(self, cap: int):
        self.cap = cap
        super().__init__(f"Maximum browser sessions reached ({cap})")


class SessionNotFound(AutoTraderError):
    """Raised when an operation targets an owner without a live session."""

    def __init__(self, owner_id: str):
        self.owner_id = owner_id
        super().__init__(f"Browser session not found for user {owner_id}")


class SessionCreationError(AutoTraderError):
    """
    Raised when the shared browser or a per-user context cannot be created.

    Creation failures usually mean resource exhaustion on the host and are
    never retried automatically.
    """
    pass


class NavigationFailure(AutoTraderError):
    """Raised when a session fails to load a venue page."""

    def __init__(self, owner_id: str, url: str, reason: str):
        self.owner_id = owner_id
        self.url = url
        super().__init__(f"Navigation to {url} failed for user {owner_id}: {reason}")


class PlacementError(AutoTraderError):
    """Base class for failures inside the trade placement protocol."""

    def __init__(self, step: str, message: str):
        self.step = step
        super().__init__(message)


class LocatorNotFound(PlacementError):
    """
    Raised when every locator strategy of a placement step failed to resolve.

    Attributes:
        step: Protocol step that failed ('amount', 'expiry' or 'direction')
        selectors: Selectors tried, in order
    """

    def __init__(self, step: str, selectors: Optional[List[str]] = None):
        self.selectors = list(selectors or [])
        super().__init__(
            step,
            f"No locator resolved for step '{step}' "
            f"({len(self.selectors)} strategies tried)"
        )


class PlacementAborted(PlacementError):
    """Raised when a required placement step failed and the trade was not placed."""
    pass


class StakeComputationError(AutoTraderError):
    """Raised when a stake cannot be computed from a user's settings."""
    pass


class SignalFormatError(AutoTraderError, ValueError):
    """Raised when an inbound signal or result payload cannot be normalised."""
    pass
