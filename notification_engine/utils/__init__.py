"""Concurrency and retry helpers."""

from __future__ import annotations

from .backoff import BackoffPolicy
from .keyed_lock import KeyedLock
from .scheduler import AsyncioTaskScheduler, TaskScheduler
from .singleflight import SingleFlight

__all__ = ["AsyncioTaskScheduler", "BackoffPolicy", "KeyedLock", "SingleFlight", "TaskScheduler"]
