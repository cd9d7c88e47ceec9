"""
Event system for change data capture (CDC).

This module provides:
- Change event dispatcher (table routing and typed-event conversion)
- Broadcast hub with one channel per event category
"""

from app.events.dispatcher import ChangeEventDispatcher, TableCategory, TableRouter
from app.events.hub import BroadcastHub, EventCategory, get_event_hub

__all__ = [
    "BroadcastHub",
    "ChangeEventDispatcher",
    "EventCategory",
    "TableCategory",
    "TableRouter",
    "get_event_hub",
]
