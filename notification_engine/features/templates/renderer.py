"""Jinja2 rendering for compiled templates with validation and sandboxing."""

from __future__ import annotations

import json
import math
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from jinja2 import TemplateError, TemplateSyntaxError
from jinja2.sandbox import SandboxedEnvironment
from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from notification_engine.core.channels import Channel
from notification_engine.core.exceptions import MissingVariableError, SchemaValidationError
from notification_engine.features.templates.schemas import RenderedContent
from notification_engine.infra.logging import get_lazy_logger

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    from notification_engine.core.settings.templates import TemplateSettings
    from notification_engine.features.templates.schemas import CompiledTemplateView


# ============================================================================
# Payload normalization
# ============================================================================


def normalize_payload(payload: Any, *, where: str) -> dict[str, str]:
    """Turn a version content payload into ``{field: template_source}``.

    A bare string is the message body. Mappings must hold string values.
    """
    if isinstance(payload, str):
        return {"body": payload}
    if isinstance(payload, dict) and payload and all(
        isinstance(k, str) and isinstance(v, str) for k, v in payload.items()
    ):
        return dict(payload)
    msg = f"Payload at {where} must be a string or a non-empty mapping of strings"
    raise SchemaValidationError(msg, errors=[where])


def iter_payloads(content: Mapping[str, Any]) -> Iterator[tuple[str, str, Any]]:
    """Yield ``(channel, language, payload)`` for every payload in version content."""
    for channel, by_language in content.items():
        if not isinstance(by_language, dict):
            msg = f"Content for channel {channel!r} must be a mapping of language to payload"
            raise SchemaValidationError(msg, errors=[channel])
        for language, payload in by_language.items():
            if language == "required_variables":
                continue
            yield channel, language, payload


# ============================================================================
# SMS segmentation
# ============================================================================

_GSM7 = frozenset(
    "@£$¥èéùìòÇ\nØø\rÅåΔ_ΦΓΛΩΠΨΣΘΞÆæßÉ !\"#¤%&'()*+,-./0123456789:;<=>?"
    "¡ABCDEFGHIJKLMNOPQRSTUVWXYZÄÖÑÜ§¿abcdefghijklmnopqrstuvwxyzäöñüà"
    "^{}\\[~]|€"
)


def is_gsm7(text: str) -> bool:
    return all(ch in _GSM7 for ch in text)


def sms_segment_limits(text: str) -> tuple[int, int]:
    """``(single, per_part)`` character limits for the text's encoding."""
    return (160, 153) if is_gsm7(text) else (70, 67)


def count_sms_segments(text: str) -> int:
    """Number of SMS parts the carrier will bill for ``text``.

    GSM-7 fits 160 characters in one part and 153 per part when
    concatenated; anything else is sent as UCS-2 with 70 / 67.
    """
    if not text:
        return 1
    single, per_part = sms_segment_limits(text)
    if len(text) <= single:
        return 1
    return math.ceil(len(text) / per_part)


def truncate_sms(text: str, max_segments: int) -> str:
    single, per_part = sms_segment_limits(text)
    limit = single if max_segments == 1 else per_part * max_segments
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


# ============================================================================
# Filters
# ============================================================================


def format_date(value: Any, fmt: str = "short") -> str:
    """Format a date/datetime (or ISO string) as short, long, time, iso or strftime."""
    if value in (None, ""):
        return ""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value)
        except ValueError:
            return value
    if not isinstance(value, date):
        return str(value)
    if fmt == "short":
        return value.strftime("%Y-%m-%d")
    if fmt == "long":
        return value.strftime("%A, %B %d, %Y").replace(" 0", " ")
    if fmt == "time":
        return value.strftime("%H:%M") if isinstance(value, datetime) else ""
    if fmt == "iso":
        return value.isoformat()
    return value.strftime(fmt)


_CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£", "JPY": "¥", "INR": "₹"}


def format_currency(amount: Any, currency: str = "USD") -> str:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        return str(amount)
    code = currency.upper()
    places = 0 if code == "JPY" else 2
    formatted = f"{value:,.{places}f}"
    symbol = _CURRENCY_SYMBOLS.get(code)
    return f"{symbol}{formatted}" if symbol else f"{formatted} {code}"


def _is_html_field(name: str) -> bool:
    return name == "html" or name.endswith("_html")


_WHITESPACE_RUN = re.compile(r"[ \t]+\n")


# ============================================================================
# Renderer
# ============================================================================


class TemplateRenderer:
    """Sandboxed Jinja2 renderer for compiled templates.

    Plain-text fields render without escaping; ``html`` fields escape
    variables. Both environments are sandboxed, so template authors cannot
    reach Python internals through attribute access.
    """

    def __init__(self, settings: TemplateSettings | None = None) -> None:
        if settings is None:
            from notification_engine.core.settings import get_template_settings

            settings = get_template_settings()
        self.settings = settings
        self._lazy = get_lazy_logger(self.__class__.__name__)
        self._text_env = self._build_env(autoescape=False)
        self._html_env = self._build_env(autoescape=settings.autoescape_html)

    @staticmethod
    def _build_env(*, autoescape: bool) -> SandboxedEnvironment:
        env = SandboxedEnvironment(autoescape=autoescape, trim_blocks=True, lstrip_blocks=True)
        env.filters["json"] = json.dumps
        env.filters["format_date"] = format_date
        env.filters["format_currency"] = format_currency
        return env

    # ------------------------------------------------------------------
    # Authoring-time checks
    # ------------------------------------------------------------------

    def check_syntax(self, content: Mapping[str, Any]) -> None:
        """Parse every template string in version content.

        Raises:
            SchemaValidationError: Malformed content or Jinja2 syntax errors,
                one entry per offending field.
        """
        errors: list[str] = []
        for channel, language, payload in iter_payloads(content):
            for field, source in normalize_payload(payload, where=f"{channel}.{language}").items():
                try:
                    self._text_env.parse(source)
                except TemplateSyntaxError as exc:
                    errors.append(f"{channel}.{language}.{field}: line {exc.lineno}: {exc.message}")
        if errors:
            msg = "Template content has syntax errors"
            raise SchemaValidationError(msg, errors=errors)

    @staticmethod
    def check_variable_schema(schema: dict[str, Any]) -> None:
        try:
            Draft202012Validator.check_schema(schema)
        except SchemaError as exc:
            msg = f"variable_schema is not a valid JSON Schema: {exc.message}"
            raise SchemaValidationError(msg, errors=[exc.message]) from exc

    # ------------------------------------------------------------------
    # Recipient-time rendering
    # ------------------------------------------------------------------

    def validate_variables(
        self,
        required: list[str],
        variables: Mapping[str, Any],
        variable_schema: dict[str, Any] | None = None,
    ) -> None:
        """Check presence of required keys, then the JSON Schema.

        Names match exactly and case-sensitively; extra keys are ignored.
        """
        missing = [name for name in required if name not in variables]
        if missing:
            raise MissingVariableError(missing)

        if variable_schema:
            validator = Draft202012Validator(variable_schema)
            errors = sorted(
                validator.iter_errors(dict(variables)),
                key=lambda e: list(e.absolute_path),
            )
            if errors:
                messages = [
                    f"{'/'.join(str(p) for p in err.absolute_path) or '<root>'}: {err.message}"
                    for err in errors
                ]
                msg = "Variables do not match the template's variable schema"
                raise SchemaValidationError(msg, errors=messages)

    def render(
        self,
        compiled: CompiledTemplateView,
        variables: Mapping[str, Any],
        variable_schema: dict[str, Any] | None = None,
    ) -> RenderedContent:
        """Render a compiled template for one recipient.

        ``variable_schema`` defaults to the schema snapshotted at compile time.

        Raises:
            MissingVariableError: A required variable is absent.
            SchemaValidationError: Variables violate variable_schema, or a
                template expression failed while rendering.
        """
        if variable_schema is None:
            variable_schema = compiled.variable_schema
        self.validate_variables(compiled.required_variables, variables, variable_schema)
        fields = self.render_fields(compiled.compiled_content, variables)
        return self._finish(compiled.channel, fields)

    def render_source(
        self,
        channel: str,
        sources: Mapping[str, str],
        variables: Mapping[str, Any],
    ) -> RenderedContent:
        """Render ad-hoc field sources that did not come from a compiled template."""
        return self._finish(channel, self.render_fields(sources, variables))

    def render_fields(self, sources: Mapping[str, str], variables: Mapping[str, Any]) -> dict[str, str]:
        rendered: dict[str, str] = {}
        for field, source in sources.items():
            env = self._html_env if _is_html_field(field) else self._text_env
            try:
                rendered[field] = env.from_string(source).render(**variables)
            except TemplateError as exc:
                msg = f"Failed to render field {field!r}: {exc}"
                raise SchemaValidationError(msg, errors=[f"{field}: {exc}"]) from exc
        return rendered

    def _finish(self, channel: str, fields: dict[str, str]) -> RenderedContent:
        if channel != Channel.SMS or "body" not in fields:
            return RenderedContent(channel=channel, fields=fields)

        body = _WHITESPACE_RUN.sub("\n", fields["body"]).strip()
        segments = count_sms_segments(body)
        truncated = False
        if segments > self.settings.sms_max_segments:
            body = truncate_sms(body, self.settings.sms_max_segments)
            truncated = True
            self._lazy.debug(
                lambda: f"sms body truncated from {segments} to {self.settings.sms_max_segments} segments"
            )
            segments = count_sms_segments(body)
        return RenderedContent(
            channel=channel,
            fields={**fields, "body": body},
            segments=segments,
            truncated=truncated,
        )
