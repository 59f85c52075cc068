"""Rolling-window send counters backing daily/weekly notification caps."""

from __future__ import annotations

from .counter import (
    InMemorySendCounter,
    RedisSendCounter,
    SendCounter,
    build_send_counter,
)

__all__ = ["InMemorySendCounter", "RedisSendCounter", "SendCounter", "build_send_counter"]
