"""
Data module for inbound payloads.

This module handles:
- External and internal signal payload shapes
- Result payloads (win/loss)
"""
