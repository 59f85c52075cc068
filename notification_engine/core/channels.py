"""Delivery channels known to the engine."""

from __future__ import annotations

from enum import StrEnum

from notification_engine.core.exceptions import UnsupportedChannelError


class Channel(StrEnum):
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    IN_APP = "in_app"


_ALIASES = {"inapp": Channel.IN_APP, "in-app": Channel.IN_APP}


def parse_channel(value: str | Channel) -> Channel:
    """Normalize a channel name, raising UnsupportedChannelError for unknown ones.

    Accepts ``inApp`` / ``in-app`` spellings for the in-app channel.
    """
    if isinstance(value, Channel):
        return value
    normalized = value.strip().lower()
    if normalized in _ALIASES:
        return _ALIASES[normalized]
    try:
        return Channel(normalized)
    except ValueError:
        raise UnsupportedChannelError(value) from None


def parse_channels(values: list[str] | tuple[str, ...]) -> list[Channel]:
    """Normalize a channel list, preserving order and dropping duplicates."""
    seen: list[Channel] = []
    for value in values:
        channel = parse_channel(value)
        if channel not in seen:
            seen.append(channel)
    return seen
