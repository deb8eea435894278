"""
Strategy module for stake sizing.

This module implements:
- Martingale stake computation with cap and cent rounding
- Win/loss staking state transitions with reset-after-cap
"""

from .staking import StakingEngine, apply_outcome, next_stake

__all__ = ["StakingEngine", "apply_outcome", "next_stake"]
