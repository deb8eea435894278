"""
Notification module for per-user events.

This module provides:
- NotificationChannel interface implemented by the transport layer
- NotificationRelay forwarding bus events to the channel
"""
