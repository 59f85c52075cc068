"""Exception hierarchy for the notification engine.

Every error the engine raises derives from ``AppException`` so that a thin
HTTP or RPC wrapper can render it as an RFC 7807 problem document without
knowing about individual error classes.
"""

from __future__ import annotations

from typing import Any


class AppException(Exception):
    """Base application exception.

    Attributes:
        status_code: HTTP-equivalent status code for the error.
        detail: Human-readable error message.
        type: Error type identifier (used in RFC 7807 problem details).
        title: Short, human-readable summary of the problem type.
        instance: URI reference that identifies the specific occurrence of the problem.
        extra: Additional context-specific information about the error.
    """

    def __init__(
        self,
        status_code: int,
        detail: str,
        type: str = "about:blank",
        title: str | None = None,
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.status_code = status_code
        self.detail = detail
        self.type = type
        self.title = title or self._default_title(status_code)
        self.instance = instance
        self.extra = extra or {}
        super().__init__(detail)

    @staticmethod
    def _default_title(status_code: int) -> str:
        titles = {
            400: "Bad Request",
            401: "Unauthorized",
            404: "Not Found",
            409: "Conflict",
            422: "Unprocessable Entity",
            429: "Too Many Requests",
            500: "Internal Server Error",
            502: "Bad Gateway",
            503: "Service Unavailable",
        }
        return titles.get(status_code, "Error")

    def to_problem(self) -> dict[str, Any]:
        """Render the exception as an RFC 7807 problem mapping."""
        problem: dict[str, Any] = {
            "type": self.type,
            "title": self.title,
            "status": self.status_code,
            "detail": self.detail,
        }
        if self.instance:
            problem["instance"] = self.instance
        problem.update(self.extra)
        return problem


class NotificationEngineError(AppException):
    """Base class for all engine errors."""


class NotFoundError(NotificationEngineError):
    """Unknown template, version, notification or tracking record.

    Example:
        raise NotFoundError("Template", {"id": template_id})
    """

    def __init__(self, model_name: str, identifier: dict[str, Any]) -> None:
        self.model_name = model_name
        self.identifier = identifier
        id_str = ", ".join(f"{k}={v!r}" for k, v in identifier.items())
        super().__init__(
            status_code=404,
            detail=f"{model_name} not found with {id_str}",
            type="not-found",
            extra={"model": model_name, **{k: str(v) for k, v in identifier.items()}},
        )


class ConflictError(NotificationEngineError):
    """Duplicate key (template name, version, suppression entry)."""

    def __init__(self, detail: str, extra: dict[str, Any] | None = None) -> None:
        super().__init__(status_code=409, detail=detail, type="conflict", extra=extra)


class InvalidTransitionError(NotificationEngineError):
    """A delivery tracking record received an event its state cannot accept."""

    def __init__(self, current: str, event: str) -> None:
        self.current = current
        self.event = event
        super().__init__(
            status_code=409,
            detail=f"Cannot apply '{event}' to delivery in state '{current}'",
            type="invalid-transition",
            extra={"current": current, "event": event},
        )


class UnsupportedLanguageError(NotificationEngineError):
    """The template does not declare the requested language."""

    def __init__(self, template: str, language: str) -> None:
        self.language = language
        super().__init__(
            status_code=422,
            detail=f"Template {template!r} does not support language {language!r}",
            type="unsupported-language",
            extra={"template": template, "language": language},
        )


class UnsupportedChannelError(NotificationEngineError):
    """The template (or the engine) does not declare the requested channel."""

    def __init__(self, channel: str, template: str | None = None) -> None:
        self.channel = channel
        detail = (
            f"Template {template!r} does not support channel {channel!r}"
            if template
            else f"Unknown channel {channel!r}"
        )
        super().__init__(
            status_code=422,
            detail=detail,
            type="unsupported-channel",
            extra={"template": template, "channel": channel},
        )


class MissingVariableError(NotificationEngineError):
    """Recipient variables lack keys the compiled template requires."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = sorted(missing)
        super().__init__(
            status_code=422,
            detail=f"Missing required variables: {', '.join(self.missing)}",
            type="missing-variable",
            extra={"missing": self.missing},
        )


class SchemaValidationError(NotificationEngineError):
    """Input failed structural validation."""

    def __init__(self, detail: str, errors: list[str] | None = None) -> None:
        self.errors = errors or []
        super().__init__(
            status_code=422,
            detail=detail,
            type="schema-validation",
            extra={"errors": self.errors},
        )


class SuppressedError(NotificationEngineError):
    """A suppression list entry blocks the channel.

    Policy outcomes are recorded on tracking rows during dispatch; this error
    only surfaces through ``PolicyGate.ensure_allowed``.
    """

    def __init__(self, channel: str, reason: str) -> None:
        self.channel = channel
        self.reason = reason
        super().__init__(
            status_code=409,
            detail=f"Channel {channel!r} is suppressed ({reason})",
            type="suppressed",
            extra={"channel": channel, "reason": reason},
        )


class PreferenceBlockedError(NotificationEngineError):
    """User preferences or rate caps block the channel."""

    def __init__(self, channel: str, reason: str) -> None:
        self.channel = channel
        self.reason = reason
        super().__init__(
            status_code=409,
            detail=f"Channel {channel!r} is blocked by preferences ({reason})",
            type="preference-blocked",
            extra={"channel": channel, "reason": reason},
        )


class SignatureVerificationError(NotificationEngineError):
    """A provider callback carried a missing or wrong HMAC signature."""

    def __init__(self, provider: str, detail: str = "Invalid webhook signature") -> None:
        self.provider = provider
        super().__init__(
            status_code=401,
            detail=detail,
            type="invalid-signature",
            extra={"provider": provider},
        )


class ProviderError(NotificationEngineError):
    """Base class for errors reported by a Sender."""

    retryable = False

    def __init__(
        self,
        detail: str,
        *,
        code: str | None = None,
        provider_response: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.provider_response = provider_response
        super().__init__(
            status_code=502,
            detail=detail,
            type="provider-error",
            extra={"code": code},
        )


class ProviderTransientError(ProviderError):
    """Retryable provider failure (5xx, throttling, timeout)."""

    retryable = True


class ProviderPermanentError(ProviderError):
    """Non-retryable provider failure (4xx, invalid address).

    ``bounce`` is set when the provider accepted the message and rejected it
    afterwards, which lands the delivery in ``bounced`` instead of ``failed``.
    """

    def __init__(
        self,
        detail: str,
        *,
        code: str | None = None,
        provider_response: dict[str, Any] | None = None,
        bounce: bool = False,
    ) -> None:
        self.bounce = bounce
        super().__init__(detail, code=code, provider_response=provider_response)


__all__ = [
    "AppException",
    "ConflictError",
    "InvalidTransitionError",
    "MissingVariableError",
    "NotFoundError",
    "NotificationEngineError",
    "PreferenceBlockedError",
    "ProviderError",
    "ProviderPermanentError",
    "ProviderTransientError",
    "SchemaValidationError",
    "SignatureVerificationError",
    "SuppressedError",
    "UnsupportedChannelError",
    "UnsupportedLanguageError",
]
