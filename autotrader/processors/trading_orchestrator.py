"""
Trading Orchestrator for the autotrader

This module turns signals into trades and results into staking updates:
- Signal fan-out: one concurrent placement per eligible live session
- Placement: stake from the staking engine, 3-step protocol on the page,
  one trade record per attempt
- Result reconciliation: one staking transition per eligible live user

The orchestrator listens for SIGNAL_RECEIVED and RESULT_RECEIVED on the
event bus and exposes the same operations as direct async methods.

Failure isolation:
    A single user's failure during a fan-out is caught at the user boundary,
    logged, counted and written to that user's failed trade record. It never
    reaches the caller or affects other users.
"""

import asyncio
import time
import uuid
from typing import Any, Dict, Optional, Set

from loguru import logger

from ..browser.session_pool import SessionPoolManager
from ..core.event_bus import Event, EventBus, EventType
from ..core.event_processor import EventProcessor
from ..core.exceptions import SessionNotFound, StakeComputationError
from ..core.models import (
    BroadcastResult,
    Signal,
    StakingStatus,
    TradeRecord,
    TradeResult,
    UserRecord,
    utcnow,
)
from ..core.state_store import TradeSink, UserRepository
from ..execution.placement import PlacementExecutor
from ..strategy.staking import StakingEngine


PLACED = "placed"
FAILED = "error"
SKIPPED = "skipped"


class TradingOrchestrator(EventProcessor):
    """
    Fans signals out to live sessions and reconciles results.

    Per-user serialisation:
        A user whose placement for an earlier signal is still running is in
        the in-flight set and is skipped for the new signal. Separately, each
        user has an asyncio.Lock that placements, manual trades and result
        updates all wait on, so a staking update never interleaves with a
        placement and a placement always sizes from the latest state.

    Examples:
        >>> orchestrator = TradingOrchestrator(bus, pool, store, store)
        >>> await orchestrator.start()
        >>> result = await orchestrator.broadcast_signal(signal)
        >>> result.placed, result.errors
        (3, 0)
        >>> await orchestrator.process_result(TradeResult(outcome="loss"))
    """

    def __init__(
        self,
        event_bus: EventBus,
        session_pool: SessionPoolManager,
        users: UserRepository,
        trades: TradeSink,
        staking: Optional[StakingEngine] = None,
        executor: Optional[PlacementExecutor] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            event_bus (EventBus): Bus for inbound signals/results and outbound
                trade and staking events
            session_pool (SessionPoolManager): Source of live sessions and pages
            users (UserRepository): User record collaborator
            trades (TradeSink): Trade history collaborator
            staking (StakingEngine, optional): Stake sizing
            executor (PlacementExecutor, optional): Placement protocol
        """
        super().__init__(event_bus)
        self.session_pool = session_pool
        self.users = users
        self.trades = trades
        self.staking = staking or StakingEngine()
        self.executor = executor or PlacementExecutor()

        self._user_locks: Dict[str, asyncio.Lock] = {}
        self._placing: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._broadcasts = 0
        self._placed = 0
        self._errors = 0

    def _register_handlers(self) -> None:
        self.event_bus.subscribe(EventType.SIGNAL_RECEIVED, self._on_signal_received)
        self.event_bus.subscribe(EventType.RESULT_RECEIVED, self._on_result_received)
        self.event_bus.subscribe(EventType.SESSION_CLOSED, self._on_session_closed)
        logger.debug(
            "TradingOrchestrator registered for SIGNAL_RECEIVED/RESULT_RECEIVED/SESSION_CLOSED"
        )

    def _unregister_handlers(self) -> None:
        self.event_bus.unsubscribe(EventType.SIGNAL_RECEIVED, self._on_signal_received)
        self.event_bus.unsubscribe(EventType.RESULT_RECEIVED, self._on_result_received)
        self.event_bus.unsubscribe(EventType.SESSION_CLOSED, self._on_session_closed)

    async def _on_stop(self) -> None:
        """Let in-flight broadcasts and result updates finish."""
        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} in-flight task(s)")
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _on_signal_received(self, event: Event) -> None:
        # Broadcasts outlive the bus handler timeout, so run them as tasks.
        signal = event.data.get("signal")
        if isinstance(signal, dict):
            signal = Signal.model_validate(signal)
        if not isinstance(signal, Signal):
            logger.warning(f"SIGNAL_RECEIVED without a valid signal: {event.data}")
            return
        self._spawn(self.broadcast_signal(signal))

    async def _on_result_received(self, event: Event) -> None:
        result = event.data.get("result")
        if isinstance(result, dict):
            result = TradeResult.model_validate(result)
        if not isinstance(result, TradeResult):
            logger.warning(f"RESULT_RECEIVED without a valid result: {event.data}")
            return
        self._spawn(self.process_result(result))

    async def _on_session_closed(self, event: Event) -> None:
        owner_id = event.owner_id or event.data.get("owner_id")
        lock = self._user_locks.get(owner_id)
        if lock is not None and not lock.locked() and owner_id not in self._placing:
            del self._user_locks[owner_id]

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _lock_for(self, owner_id: str) -> asyncio.Lock:
        lock = self._user_locks.get(owner_id)
        if lock is None:
            lock = asyncio.Lock()
            self._user_locks[owner_id] = lock
        return lock

    @staticmethod
    def _new_trade_id(source: str, owner_id: str) -> str:
        return f"{source}_{int(time.time() * 1000)}_{owner_id[:5]}_{uuid.uuid4().hex[:6]}"

    async def broadcast_signal(self, signal: Signal) -> BroadcastResult:
        """
        Place a signal for every eligible live session concurrently.

        Returns only after every per-user branch has finished.

        Args:
            signal (Signal): Signal to place

        Returns:
            BroadcastResult: Counts of placed, failed and skipped users
        """
        owner_ids = self.session_pool.live_owner_ids()
        logger.info(
            f"Broadcasting {signal.direction.upper()} {signal.asset} "
            f"{signal.duration_seconds}s ({signal.signal_id}) to {len(owner_ids)} session(s)"
        )

        if not owner_ids:
            logger.warning("No live sessions, nothing to place")
            return BroadcastResult()

        outcomes = await asyncio.gather(
            *(self._place_for_user(owner_id, signal) for owner_id in owner_ids)
        )

        result = BroadcastResult(
            placed=outcomes.count(PLACED),
            errors=outcomes.count(FAILED),
            skipped=outcomes.count(SKIPPED),
        )
        self._broadcasts += 1
        self._placed += result.placed
        self._errors += result.errors

        logger.info(
            f"Broadcast {signal.signal_id} complete. Placed: {result.placed}, "
            f"Errors: {result.errors}, Skipped: {result.skipped}, "
            f"Users checked: {len(owner_ids)}"
        )
        return result

    async def _place_for_user(self, owner_id: str, signal: Signal) -> str:
        if owner_id in self._placing:
            logger.warning(
                f"Placement still in flight for {owner_id}, skipping {signal.signal_id}"
            )
            return SKIPPED

        self._placing.add(owner_id)
        try:
            async with self._lock_for(owner_id):
                user = await self.users.get_user(owner_id)
                if user is None:
                    logger.warning(f"User {owner_id} not found, skipping")
                    return SKIPPED

                if not user.is_active:
                    logger.info(f"User {user.label} is inactive, skipping")
                    return SKIPPED

                if user.trading_settings is not None and not user.trading_settings.is_auto_trading:
                    logger.info(f"Auto-trading is off for {user.label}, skipping")
                    return SKIPPED

                record = await self._attempt(user, signal, source="auto")
                return PLACED if record.status == "placed" else FAILED

        except Exception as e:
            logger.error(f"Trade placement failed for {owner_id}: {e}")
            return FAILED
        finally:
            self._placing.discard(owner_id)

    async def _attempt(
        self,
        user: UserRecord,
        signal: Signal,
        source: str,
        stake: Optional[float] = None,
        raise_errors: bool = False,
    ) -> TradeRecord:
        """
        Compute the stake, run the protocol and persist exactly one record.

        With raise_errors the failure is re-raised after the failed record
        has been stored.
        """
        owner_id = user.owner_id
        trade_id = self._new_trade_id(source, owner_id)
        amount = 0.0
        snapshot = None
        report = None
        failure: Optional[Exception] = None

        try:
            amount = stake if stake is not None else self.staking.stake_for(user)
            snapshot = self.staking.snapshot(user)
            page = self.session_pool.get_handle(owner_id)
            if page is None:
                raise SessionNotFound(owner_id)
            self.session_pool.touch(owner_id)

            logger.info(
                f"User {user.label} -> {signal.direction.upper()} on {signal.asset} "
                f"for ${amount}"
            )
            report = await self.executor.execute(page, signal, amount)
        except Exception as e:
            failure = e
            logger.error(f"Trade {trade_id} failed for {user.label}: {e}")

        record = TradeRecord(
            trade_id=trade_id,
            owner_id=owner_id,
            signal_id=signal.signal_id,
            direction=signal.direction,
            amount=amount,
            asset=signal.asset,
            duration_seconds=signal.duration_seconds,
            staking_snapshot=snapshot,
            status="failed" if failure is not None else "placed",
            source=source,
            placed_at=utcnow(),
            error=f"{type(failure).__name__}: {failure}" if failure is not None else None,
            page_url=report.page_url if report is not None else None,
        )
        await self.trades.append(record)

        if failure is None:
            await self._publish(EventType.TRADE_PLACED, owner_id, {
                "owner_id": owner_id,
                "trade_id": trade_id,
                "amount": amount,
                "signal": signal.model_dump(),
                "source": source,
                "timestamp": record.placed_at,
            })
        else:
            await self._publish(EventType.TRADE_FAILED, owner_id, {
                "owner_id": owner_id,
                "trade_id": trade_id,
                "error": record.error,
            })
            if raise_errors:
                raise failure

        return record

    async def place_manual_trade(
        self,
        owner_id: str,
        direction: str,
        amount: float,
        asset: str = "EURUSD",
        duration_seconds: Optional[int] = None,
    ) -> TradeRecord:
        """
        Place a one-off trade requested by the user.

        `amount` is the base stake; martingale scaling applies on top of it
        when enabled. Unlike broadcasts, failures propagate to the caller
        (after the failed record has been stored).

        Raises:
            ValueError: If direction or amount is invalid
            SessionNotFound: If the user has no live session
            StakeComputationError: If the user record is unusable or the
                stake exceeds the user's maximum
        """
        direction = (direction or "").lower()
        if direction not in ("call", "put"):
            raise ValueError("Invalid direction. Use CALL or PUT.")
        if not amount or amount <= 0:
            raise ValueError("Invalid amount")

        if self.session_pool.get_handle(owner_id) is None:
            raise SessionNotFound(owner_id)

        user = await self.users.get_user(owner_id)
        if user is None:
            raise StakeComputationError(f"User {owner_id} not found")

        stake = self.staking.stake_for(user, base_amount=amount)
        max_amount = user.trading_settings.max_amount
        if stake > max_amount:
            raise StakeComputationError(
                f"Amount ${stake} exceeds maximum trade amount (${max_amount})"
            )

        duration = duration_seconds or user.trading_settings.default_duration_seconds
        signal = Signal(
            signal_id=f"MANUAL_{int(time.time() * 1000)}",
            asset=asset,
            direction=direction,
            duration_seconds=duration,
        )

        lock = self._lock_for(owner_id)
        async with lock:
            return await self._attempt(
                user, signal, source="manual", stake=stake, raise_errors=True
            )

    async def sync_settings(self, user: UserRecord) -> bool:
        """
        Push the user's base stake into their amount field, best effort.

        A missing session is a no-op. Failures are logged, never raised.

        Returns:
            bool: True if the amount field was updated
        """
        page = self.session_pool.get_handle(user.owner_id)
        if page is None:
            logger.info(f"User {user.label} has no live session to sync")
            return False
        self.session_pool.touch(user.owner_id)

        if user.trading_settings is None:
            logger.warning(f"User {user.label} has no trading settings to sync")
            return False

        amount = user.trading_settings.base_amount
        try:
            await self.executor.set_amount(page, amount)
            logger.info(f"Synced trading amount ${amount} for {user.label}")
            return True
        except Exception as e:
            logger.error(f"Failed to sync settings for {user.label}: {e}")
            return False

    def schedule_settings_sync(self, user: UserRecord) -> asyncio.Task:
        """Run sync_settings() in the background and return its task."""
        return self._spawn(self.sync_settings(user))

    async def process_result(self, result: TradeResult) -> int:
        """
        Apply a result to the staking state of every eligible live user.

        Users without a live session at this moment are not updated.

        Returns:
            int: Number of users whose staking state changed
        """
        owner_ids = self.session_pool.live_owner_ids()
        logger.info(
            f"Processing result {result.outcome.upper()} "
            f"({result.signal_id or 'no signal id'}) for {len(owner_ids)} session(s)"
        )

        updated = await asyncio.gather(
            *(self._apply_result(owner_id, result) for owner_id in owner_ids)
        )
        return sum(1 for u in updated if u)

    async def _apply_result(self, owner_id: str, result: TradeResult) -> bool:
        try:
            self.session_pool.touch(owner_id)
            async with self._lock_for(owner_id):
                user = await self.users.get_user(owner_id)
                if user is None or user.trading_settings is None:
                    return False
                if not user.trading_settings.martingale_enabled:
                    return False

                user.staking_state = self.staking.apply(user, result.outcome)
                await self.users.save_user(user)

            await self._publish(EventType.STAKING_UPDATED, owner_id, {
                "owner_id": owner_id,
                "signal_id": result.signal_id,
                "outcome": result.outcome,
                "level": user.staking_state.current_level,
                "loss_streak": user.staking_state.loss_streak,
            })
            return True
        except Exception as e:
            logger.error(f"Error processing result for user {owner_id}: {e}")
            return False

    async def staking_status(self, owner_id: str) -> StakingStatus:
        """
        Staking status query for one user.

        Raises:
            StakeComputationError: If the user is unknown or has no settings
        """
        user = await self.users.get_user(owner_id)
        if user is None:
            raise StakeComputationError(f"User {owner_id} not found")
        return self.staking.status(user)

    async def _publish(self, event_type: EventType, owner_id: str, data: Dict[str, Any]) -> None:
        try:
            await self.event_bus.publish(Event(
                event_type=event_type,
                data=data,
                source="TradingOrchestrator",
                owner_id=owner_id,
            ))
        except Exception as e:
            logger.error(f"Failed to publish {event_type.value} for {owner_id}: {e}")

    @property
    def stats(self) -> Dict[str, int]:
        """Cumulative broadcast counters."""
        return {
            "broadcasts": self._broadcasts,
            "placed": self._placed,
            "errors": self._errors,
        }
