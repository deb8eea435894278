"""
Trading records with validation.

This module defines the records the autotrader reads and writes:
- TradingSettings / StakingState / UserRecord: per-user configuration and
  martingale state owned by the user collaborator
- Signal / TradeResult: immutable inbound instructions
- TradeRecord: append-only history entry written once per placement attempt
- Session: runtime handle onto one user's isolated browser context
- BroadcastResult / PoolStats / StakingStatus: aggregate views
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, model_validator


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class LocationState(str, Enum):
    """Where a session's page currently is relative to the trading page."""

    OFF_TARGET = "off_target"
    ON_TARGET_DEMO = "on_target_demo"
    ON_TARGET_REAL = "on_target_real"

    @property
    def is_tradable(self) -> bool:
        return self is not LocationState.OFF_TARGET


class TradingSettings(BaseModel):
    """
    Per-user trading configuration.

    Attributes:
        base_amount: Stake at staking level 0
        max_amount: Hard cap on any single stake
        is_auto_trading: Whether broadcast signals are placed for this user
        martingale_enabled: Whether stakes grow after losses
        default_duration_seconds: Expiry used when none is given

    Examples:
        >>> settings = TradingSettings(base_amount=10.0, max_amount=1000.0)
        >>> settings.martingale_enabled
        True
    """

    base_amount: float = Field(default=1.0, gt=0, description="Stake at level 0")
    max_amount: float = Field(default=1000.0, gt=0, description="Per-trade stake cap")
    is_auto_trading: bool = Field(default=False, description="Auto-trading toggle")
    martingale_enabled: bool = Field(default=True, description="Martingale toggle")
    default_duration_seconds: int = Field(
        default=300,
        gt=0,
        description="Expiry used when none is given"
    )


class StakingState(BaseModel):
    """
    Martingale state for one user.

    Only the staking engine produces new instances; everything else treats
    the state as read-only.

    Examples:
        >>> state = StakingState()
        >>> state.current_level, state.multiplier, state.max_steps
        (0, 2.0, 6)
    """

    current_level: int = Field(default=0, ge=0, description="Current martingale step")
    loss_streak: int = Field(default=0, ge=0, description="Consecutive losses")
    multiplier: float = Field(default=2.0, gt=1, description="Stake growth per step")
    max_steps: int = Field(default=6, ge=0, description="Highest reachable step")
    last_outcome: Optional[Literal["win", "loss"]] = None

    @model_validator(mode="after")
    def validate_level_bound(self) -> "StakingState":
        """Ensure current_level never exceeds max_steps."""
        if self.current_level > self.max_steps:
            raise ValueError(
                f"Invalid StakingState: current_level ({self.current_level}) "
                f"exceeds max_steps ({self.max_steps})"
            )
        return self


class UserRecord(BaseModel):
    """
    User record as exposed by the user collaborator.

    trading_settings and staking_state are optional so structurally
    incomplete records can be represented; stake computation rejects them.
    """

    owner_id: str = Field(min_length=1)
    email: str = ""
    is_active: bool = True
    trading_settings: Optional[TradingSettings] = None
    staking_state: Optional[StakingState] = None

    @property
    def label(self) -> str:
        return self.email or self.owner_id


class Signal(BaseModel):
    """
    Immutable directional trade instruction broadcast to all eligible users.

    Examples:
        >>> signal = Signal(signal_id="SIG_EURUSD_1", asset="EURUSD",
        ...                 direction="call", duration_seconds=300)
        >>> signal.direction
        'call'
    """

    model_config = {"frozen": True}

    signal_id: str = Field(min_length=1)
    asset: str = Field(min_length=1)
    direction: Literal["call", "put"]
    duration_seconds: int = Field(gt=0)


class TradeResult(BaseModel):
    """Outcome of a signal, applied to staking state of live users."""

    model_config = {"frozen": True}

    signal_id: Optional[str] = None
    outcome: Literal["win", "loss"]


class StakingSnapshot(BaseModel):
    """Staking state captured on a trade record at placement time."""

    model_config = {"frozen": True}

    level: int = Field(ge=0)
    loss_streak: int = Field(ge=0)
    multiplier: float
    base_amount: float
    martingale_applied: bool


class TradeRecord(BaseModel):
    """
    Append-only trade history entry, one per placement attempt.

    Failed attempts carry a short diagnostic in `error`.
    """

    model_config = {"frozen": True}

    trade_id: str = Field(min_length=1)
    owner_id: str = Field(min_length=1)
    signal_id: Optional[str] = None
    direction: Literal["call", "put"]
    amount: float = Field(ge=0)
    asset: str
    duration_seconds: int = Field(gt=0)
    staking_snapshot: Optional[StakingSnapshot] = None
    status: Literal["pending", "placed", "failed"] = "pending"
    source: Literal["manual", "auto"] = "auto"
    placed_at: datetime = Field(default_factory=utcnow)
    error: Optional[str] = None
    page_url: Optional[str] = None


class BroadcastResult(BaseModel):
    """Aggregate outcome of one signal fan-out."""

    placed: int = 0
    errors: int = 0
    skipped: int = 0


class PoolStats(BaseModel):
    """Snapshot of the session pool."""

    total: int
    alive_count: int
    on_tradable_page_count: int
    cap: int


class StakingStatus(BaseModel):
    """Staking status query result for one user."""

    current_level: int
    loss_streak: int
    max_steps: int
    next_multiplier: float
    next_stake: float


@dataclass
class Session:
    """
    Runtime handle onto one user's isolated browser context.

    Owned by the session pool. The orchestrator only borrows `page` for the
    duration of a call.

    Attributes:
        owner_id: User the session belongs to
        context: Playwright BrowserContext (separate cookies and storage)
        page: Playwright Page used as the control handle
        created_at: When the session was opened
        last_activity_at: Last observed navigation or explicit action
        location_state: Classification of the last observed main-frame URL
        alive: False once teardown has started
        current_url: Last observed main-frame URL
    """

    owner_id: str
    context: Any
    page: Any
    created_at: datetime = field(default_factory=utcnow)
    last_activity_at: datetime = field(default_factory=utcnow)
    location_state: LocationState = LocationState.OFF_TARGET
    alive: bool = True
    current_url: str = ""

    def touch(self) -> None:
        """Record activity on the session."""
        self.last_activity_at = utcnow()
