"""Concurrency utilities for in-process event fan-out."""

from infrastructure.concurrency.broadcast import BroadcastChannel, Subscription

__all__ = ["BroadcastChannel", "Subscription"]
