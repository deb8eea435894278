"""
Browser module for automated venue sessions.

This module handles:
- One shared Chromium process per application
- Isolated per-user contexts and pages
- Page location tracking from navigation events
"""

from .session_pool import SessionPoolManager

__all__ = ["SessionPoolManager"]
