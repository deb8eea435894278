"""
Inbound signal and result payload normalisation.

Two payload shapes reach the system:

- External (charting alerts): {"ticker": "EURUSD", "signal": "buy", ...}
  and {"ticker": "EURUSD", "signal": "WIN ..."} for results
- Internal (admin tools): {"asset", "direction", "time"} and {"outcome"}

Both are normalised into the immutable Signal / TradeResult models.
"""

import time
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..core.exceptions import SignalFormatError
from ..core.models import Signal, TradeResult


DIRECTION_ALIASES = {
    "buy": "call",
    "call": "call",
    "sell": "put",
    "put": "put",
}


def _new_signal_id(asset: str) -> str:
    return f"SIG_{asset}_{int(time.time() * 1000)}"


def parse_signal(payload: Dict[str, Any], default_duration: int = 300) -> Signal:
    """
    Build a Signal from an external or internal payload.

    Args:
        payload: Raw decoded payload
        default_duration: Duration used for external payloads, which carry none

    Returns:
        Signal: Normalised signal, with a generated signal_id if none was given

    Raises:
        SignalFormatError: If required fields are missing or invalid

    Examples:
        >>> parse_signal({"ticker": "EURUSD", "signal": "BUY"}).direction
        'call'
        >>> parse_signal({"asset": "EURUSD", "direction": "put", "time": "60"}).duration_seconds
        60
    """
    if not isinstance(payload, dict):
        raise SignalFormatError(f"Signal payload must be an object, got {type(payload).__name__}")

    if payload.get("ticker") and payload.get("signal"):
        asset = payload["ticker"]
        direction = DIRECTION_ALIASES.get(str(payload["signal"]).strip().lower())
        duration: Any = default_duration
    else:
        asset = payload.get("asset")
        raw_direction = payload.get("direction")
        direction = (
            DIRECTION_ALIASES.get(str(raw_direction).strip().lower())
            if raw_direction else None
        )
        duration = payload.get("time")

    if not asset or not direction or not duration:
        raise SignalFormatError("Missing required fields or invalid signal format")

    try:
        duration_seconds = int(duration)
    except (TypeError, ValueError) as e:
        raise SignalFormatError(f"Invalid signal duration: {duration!r}") from e

    signal_id = payload.get("signalId") or payload.get("signal_id") or _new_signal_id(asset)

    try:
        return Signal(
            signal_id=str(signal_id),
            asset=str(asset),
            direction=direction,
            duration_seconds=duration_seconds,
        )
    except ValidationError as e:
        raise SignalFormatError(f"Invalid signal: {e}") from e


def parse_result(payload: Dict[str, Any]) -> TradeResult:
    """
    Build a TradeResult from an external or internal payload.

    External results are matched by substring, so "WIN (TP hit)" counts as a win.

    Raises:
        SignalFormatError: If no win/loss outcome can be found

    Examples:
        >>> parse_result({"ticker": "EURUSD", "signal": "LOSS"}).outcome
        'loss'
        >>> parse_result({"signalId": "SIG_1", "outcome": "win"}).signal_id
        'SIG_1'
    """
    if not isinstance(payload, dict):
        raise SignalFormatError(f"Result payload must be an object, got {type(payload).__name__}")

    outcome: Optional[str] = None
    if payload.get("signal"):
        raw = str(payload["signal"]).upper()
        if "WIN" in raw:
            outcome = "win"
        elif "LOSS" in raw:
            outcome = "loss"
    else:
        raw_outcome = payload.get("outcome")
        outcome = str(raw_outcome).lower() if raw_outcome else None

    if outcome not in ("win", "loss"):
        raise SignalFormatError('Invalid outcome. Must contain "WIN" or "LOSS"')

    signal_id = payload.get("signalId") or payload.get("signal_id")
    return TradeResult(signal_id=signal_id, outcome=outcome)
