"""
Martingale staking engine.

Stake sizing is a small deterministic state machine per user:

    level 0 --loss--> level 1 --loss--> ... --loss--> level max_steps
       ^                                                   |
       +------------- win (any level) / loss at cap -------+

The stake at level n is base_amount * multiplier ** n, clamped to the
user's cap and rounded to cents. A loss at the cap resets to level 0
instead of staying there, so a losing run never keeps betting the maximum.

Everything here is synchronous and free of I/O; callers persist the
returned state.
"""

from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP
from typing import Optional

from loguru import logger

from ..core.exceptions import StakeComputationError
from ..core.models import (
    StakingSnapshot,
    StakingState,
    StakingStatus,
    TradingSettings,
    UserRecord,
)


CENT = Decimal("0.01")


def round_stake(amount: float, cap_amount: Optional[float] = None) -> float:
    """
    Round an amount to cents, never exceeding cap_amount.

    Rounds half-up; if that pushes the value over the cap (a cap with more
    than two decimals), the cap itself is rounded down instead.

    Examples:
        >>> round_stake(10.005)
        10.01
        >>> round_stake(10.009, cap_amount=10.005)
        10.0
    """
    rounded = Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP)
    if cap_amount is not None:
        cap = Decimal(str(cap_amount))
        if rounded > cap:
            rounded = cap.quantize(CENT, rounding=ROUND_DOWN)
    return float(rounded)


def next_stake(
    state: StakingState,
    base_amount: float,
    cap_amount: float,
    martingale_enabled: bool = True,
) -> float:
    """
    Compute the stake for the next trade.

    Args:
        state: Current staking state
        base_amount: Stake at level 0
        cap_amount: Maximum stake
        martingale_enabled: When False the base amount is returned as-is

    Returns:
        round2(min(cap_amount, base_amount * multiplier ** current_level))

    Examples:
        >>> next_stake(StakingState(current_level=2), 10.0, 1000.0)
        40.0
        >>> next_stake(StakingState(current_level=6), 10.0, 100.0)
        100.0
        >>> next_stake(StakingState(current_level=3), 10.0, 100.0, martingale_enabled=False)
        10.0
    """
    if not martingale_enabled:
        return base_amount

    try:
        raw = base_amount * (state.multiplier ** state.current_level)
    except OverflowError:
        raw = cap_amount
    return round_stake(min(cap_amount, raw), cap_amount)


def apply_outcome(state: StakingState, outcome: str) -> StakingState:
    """
    Return the staking state after a trade outcome.

    Win resets to level 0. Loss below the cap steps up one level; loss at
    the cap resets to level 0.

    Raises:
        ValueError: If outcome is not 'win' or 'loss'

    Examples:
        >>> apply_outcome(StakingState(current_level=3, loss_streak=3), "win").current_level
        0
        >>> apply_outcome(StakingState(current_level=1, loss_streak=1), "loss").current_level
        2
        >>> apply_outcome(StakingState(current_level=6, loss_streak=6), "loss").current_level
        0
    """
    if outcome == "win":
        return state.model_copy(
            update={"current_level": 0, "loss_streak": 0, "last_outcome": "win"}
        )

    if outcome == "loss":
        if state.current_level < state.max_steps:
            return state.model_copy(update={
                "current_level": state.current_level + 1,
                "loss_streak": state.loss_streak + 1,
                "last_outcome": "loss",
            })
        return state.model_copy(
            update={"current_level": 0, "loss_streak": 0, "last_outcome": "loss"}
        )

    raise ValueError(f"outcome must be 'win' or 'loss', got {outcome!r}")


class StakingEngine:
    """
    User-level facade over the staking functions.

    Reads settings and state off a UserRecord so callers do not repeat the
    structural checks.

    Examples:
        >>> engine = StakingEngine()
        >>> user = UserRecord(owner_id="u1",
        ...                   trading_settings=TradingSettings(base_amount=10.0),
        ...                   staking_state=StakingState())
        >>> engine.stake_for(user)
        10.0
    """

    def _require(self, user: UserRecord) -> tuple[TradingSettings, StakingState]:
        settings = user.trading_settings
        state = user.staking_state
        if settings is None or state is None:
            raise StakeComputationError(
                f"Missing trading settings or staking state for user {user.owner_id}"
            )
        return settings, state

    def stake_for(self, user: UserRecord, base_amount: Optional[float] = None) -> float:
        """
        Stake for the user's next trade.

        Args:
            user: User record with settings and staking state
            base_amount: Overrides the configured base (manual trades)

        Raises:
            StakeComputationError: If settings/state are missing or the
                computed amount is not positive
        """
        settings, state = self._require(user)
        base = settings.base_amount if base_amount is None else base_amount

        amount = next_stake(
            state,
            base,
            settings.max_amount,
            martingale_enabled=settings.martingale_enabled,
        )

        if amount is None or amount <= 0:
            raise StakeComputationError(
                f"Invalid trade amount {amount} for user {user.owner_id}"
            )
        return amount

    def apply(self, user: UserRecord, outcome: str) -> StakingState:
        """
        Apply an outcome to the user's staking state and return the new state.

        The caller assigns the result back onto the user and persists it.
        """
        _, state = self._require(user)
        new_state = apply_outcome(state, outcome)

        if outcome == "win":
            logger.info(f"User {user.label} WON, staking reset to level 0")
        elif new_state.current_level == 0:
            logger.warning(
                f"User {user.label} LOST at max level ({state.max_steps}), resetting to 0"
            )
        else:
            logger.info(
                f"User {user.label} LOST, staking raised to level {new_state.current_level}"
            )
        return new_state

    def snapshot(self, user: UserRecord) -> StakingSnapshot:
        """Staking snapshot for a trade record."""
        settings, state = self._require(user)
        return StakingSnapshot(
            level=state.current_level,
            loss_streak=state.loss_streak,
            multiplier=state.multiplier,
            base_amount=settings.base_amount,
            martingale_applied=settings.martingale_enabled,
        )

    def status(self, user: UserRecord) -> StakingStatus:
        """Current level, next multiplier and next stake for a user."""
        settings, state = self._require(user)
        next_multiplier = (
            state.multiplier ** state.current_level
            if settings.martingale_enabled else 1.0
        )
        return StakingStatus(
            current_level=state.current_level,
            loss_streak=state.loss_streak,
            max_steps=state.max_steps,
            next_multiplier=next_multiplier,
            next_stake=self.stake_for(user),
        )
