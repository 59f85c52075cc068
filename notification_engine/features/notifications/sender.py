"""Sender protocol and the channel-to-provider registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from notification_engine.core.channels import Channel, parse_channel
from notification_engine.core.exceptions import UnsupportedChannelError

if TYPE_CHECKING:
    from notification_engine.core.recipients import RecipientIdentity
    from notification_engine.features.templates.schemas import RenderedContent


@dataclass(frozen=True, slots=True)
class SendResult:
    """Result of an accepted provider call.

    Attributes:
        provider_message_id: Id the provider will reference in callbacks
        status: Provider-reported status string (informational)
        response: Raw provider response kept on the tracking row
    """

    provider_message_id: str | None
    status: str = "accepted"
    response: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class Sender(Protocol):
    """Transport adapter for one channel.

    Implementations return a SendResult when the provider accepted the
    message and classify every failure as ProviderTransientError or
    ProviderPermanentError. Any other exception is treated as transient.
    """

    async def send(
        self,
        channel: Channel,
        provider: str,
        rendered_content: RenderedContent,
        recipient: RecipientIdentity,
    ) -> SendResult: ...


class SenderRegistry:
    """Maps a channel to its ``(provider, sender)`` pair.

    Example:
        registry = SenderRegistry()
        registry.register("email", "sendgrid", SendGridSender(...))
        provider, sender = registry.resolve(Channel.EMAIL)
    """

    def __init__(self) -> None:
        self._routes: dict[Channel, tuple[str, Sender]] = {}

    def register(self, channel: str | Channel, provider: str, sender: Sender) -> None:
        self._routes[parse_channel(channel)] = (provider, sender)

    def resolve(self, channel: str | Channel) -> tuple[str, Sender]:
        """Raises UnsupportedChannelError when no sender is registered."""
        channel = parse_channel(channel)
        try:
            return self._routes[channel]
        except KeyError:
            raise UnsupportedChannelError(channel) from None

    def __contains__(self, channel: object) -> bool:
        return channel in self._routes

    @property
    def channels(self) -> list[Channel]:
        return list(self._routes)
