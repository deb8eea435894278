"""
Execution module for trade placement.

This module handles:
- Amount entry, expiry selection and direction click on the venue page
- Ordered selector fallback chains with per-attempt timeouts
"""

from .placement import PlacementExecutor, PlacementReport

__all__ = ["PlacementExecutor", "PlacementReport"]
