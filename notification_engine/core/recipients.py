"""Recipient identity and per-channel addressing."""

from __future__ import annotations

from dataclasses import dataclass

import phonenumbers
from phonenumbers import NumberParseException

from notification_engine.core.channels import Channel

# Identity field each channel delivers to
ADDRESS_FIELDS: dict[Channel, str] = {
    Channel.EMAIL: "email",
    Channel.SMS: "phone",
    Channel.PUSH: "device_token",
    Channel.IN_APP: "user_id",
}


def normalize_phone(number: str) -> str:
    """E.164 form of an international phone number.

    Punctuation and spacing are dropped, so ``+1 (555) 000-1234`` and
    ``+15550001234`` normalize to the same value. Numbers must carry their
    ``+<country code>`` prefix.

    Raises:
        ValueError: The value cannot be parsed as a phone number.
    """
    try:
        parsed = phonenumbers.parse(number.strip(), None)
    except NumberParseException as exc:
        msg = f"Invalid phone number {number!r}: {exc}"
        raise ValueError(msg) from exc
    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


@dataclass(frozen=True, slots=True)
class RecipientIdentity:
    """Who a notification is for.

    Each channel reads one identifier: email uses ``email``, sms uses
    ``phone``, push uses ``device_token`` and in-app uses ``user_id``.
    """

    user_id: str | None = None
    email: str | None = None
    phone: str | None = None
    device_token: str | None = None

    def address_for(self, channel: Channel) -> str | None:
        return getattr(self, ADDRESS_FIELDS[channel])

    def suppression_keys(self, channel: Channel) -> list[str]:
        """Identifiers checked against the suppression list for a channel."""
        keys = [self.address_for(channel), self.user_id]
        return [k for k in dict.fromkeys(keys) if k]

    @property
    def rate_key(self) -> str | None:
        """Key used for daily/weekly cap counting."""
        if self.user_id:
            return f"user:{self.user_id}"
        for value in (self.email, self.phone, self.device_token):
            if value:
                return f"addr:{value.strip().lower()}"
        return None
