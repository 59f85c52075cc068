"""Unit tests for template rendering, validation and SMS segmentation."""

from __future__ import annotations

from datetime import UTC, date, datetime
from uuid import uuid4

import pytest

from notification_engine.core.exceptions import MissingVariableError, SchemaValidationError
from notification_engine.core.settings import TemplateSettings
from notification_engine.features.templates.renderer import (
    TemplateRenderer,
    count_sms_segments,
    format_currency,
    format_date,
    normalize_payload,
    truncate_sms,
)
from notification_engine.features.templates.schemas import CompiledTemplateView


def _compiled(channel: str = "email", required: list[str] | None = None, schema=None, **content: str):
    return CompiledTemplateView(
        template_id=uuid4(),
        version=1,
        language="en",
        channel=channel,
        compiled_content=content or {"body": "Hi {{ name }}"},
        required_variables=required if required is not None else ["name"],
        variable_schema=schema,
        compiled_at=datetime(2025, 1, 1, tzinfo=UTC),
    )


@pytest.fixture
def renderer() -> TemplateRenderer:
    return TemplateRenderer(TemplateSettings(sms_max_segments=3))


@pytest.mark.unit
class TestRender:
    def test_renders_every_field(self, renderer):
        compiled = _compiled(subject="Hello {{ name }}", body="Your order {{ order_id }} shipped")
        rendered = renderer.render(compiled, {"name": "Ada", "order_id": "A-1"})

        assert rendered.channel == "email"
        assert rendered.fields == {"subject": "Hello Ada", "body": "Your order A-1 shipped"}
        assert rendered.segments is None

    def test_missing_required_variable(self, renderer):
        with pytest.raises(MissingVariableError) as exc_info:
            renderer.render(_compiled(required=["name", "code"]), {"code": "x"})
        assert exc_info.value.missing == ["name"]

    def test_variable_names_are_case_sensitive(self, renderer):
        with pytest.raises(MissingVariableError):
            renderer.render(_compiled(), {"Name": "Ada"})

    def test_extra_variables_are_ignored(self, renderer):
        rendered = renderer.render(_compiled(), {"name": "Ada", "unused": 1})
        assert rendered.get("body") == "Hi Ada"

    def test_variable_schema_enforced(self, renderer):
        schema = {
            "type": "object",
            "properties": {"amount": {"type": "number"}},
            "required": ["amount"],
        }
        compiled = _compiled(required=[], schema=schema, body="Total {{ amount }}")

        assert renderer.render(compiled, {"amount": 9.5}).get("body") == "Total 9.5"
        with pytest.raises(SchemaValidationError) as exc_info:
            renderer.render(compiled, {"amount": "lots"})
        assert exc_info.value.errors[0].startswith("amount:")

    def test_html_fields_escape_text_fields_do_not(self, renderer):
        compiled = _compiled(html="<p>{{ name }}</p>", body="{{ name }}")
        rendered = renderer.render(compiled, {"name": "<b>Ada</b>"})

        assert rendered.get("html") == "<p>&lt;b&gt;Ada&lt;/b&gt;</p>"
        assert rendered.get("body") == "<b>Ada</b>"

    def test_sandbox_blocks_attribute_escape(self, renderer):
        compiled = _compiled(required=[], body="{{ ''.__class__.__mro__[1].__subclasses__() }}")
        with pytest.raises(SchemaValidationError, match="Failed to render"):
            renderer.render(compiled, {})

    def test_filters(self, renderer):
        compiled = _compiled(
            required=[],
            body="{{ total | format_currency('EUR') }} on {{ when | format_date('short') }}",
        )
        rendered = renderer.render(compiled, {"total": 1234.5, "when": date(2025, 3, 9)})
        assert rendered.get("body") == "€1,234.50 on 2025-03-09"

    def test_render_source_for_ad_hoc_content(self, renderer):
        rendered = renderer.render_source("push", {"title": "Hi", "body": "{{ n }} new"}, {"n": 3})
        assert rendered.fields == {"title": "Hi", "body": "3 new"}


@pytest.mark.unit
class TestAuthoringChecks:
    def test_syntax_errors_are_collected(self, renderer):
        content = {
            "email": {"en": {"subject": "{{ name", "body": "ok"}},
            "sms": {"en": "{% if %}"},
        }
        with pytest.raises(SchemaValidationError) as exc_info:
            renderer.check_syntax(content)
        assert len(exc_info.value.errors) == 2
        assert exc_info.value.errors[0].startswith("email.en.subject")

    def test_required_variables_key_is_not_a_language(self, renderer):
        renderer.check_syntax({"email": {"en": "Hi {{ name }}", "required_variables": ["name"]}})

    def test_invalid_variable_schema(self, renderer):
        with pytest.raises(SchemaValidationError, match="not a valid JSON Schema"):
            renderer.check_variable_schema({"type": "not-a-type"})

    @pytest.mark.parametrize("payload", [None, {}, {"body": 3}, ["Hi"]])
    def test_normalize_rejects_bad_payloads(self, payload):
        with pytest.raises(SchemaValidationError):
            normalize_payload(payload, where="email.en")

    def test_normalize_string_is_body(self):
        assert normalize_payload("Hi", where="sms.en") == {"body": "Hi"}


@pytest.mark.unit
class TestSmsSegments:
    @pytest.mark.parametrize(
        ("text", "segments"),
        [
            ("", 1),
            ("a" * 160, 1),
            ("a" * 161, 2),
            ("a" * 306, 2),
            ("a" * 307, 3),
            ("é" * 160, 1),  # é is in the GSM-7 alphabet
            ("ł" * 70, 1),
            ("ł" * 71, 2),
        ],
    )
    def test_count(self, text, segments):
        assert count_sms_segments(text) == segments

    def test_sms_render_reports_segments(self, renderer):
        rendered = renderer.render(_compiled(channel="sms", body="Hi {{ name }}"), {"name": "Ada"})
        assert rendered.segments == 1
        assert rendered.truncated is False

    def test_sms_body_truncated_to_limit(self):
        renderer = TemplateRenderer(TemplateSettings(sms_max_segments=1))
        rendered = renderer.render(_compiled(channel="sms", required=[], body="x" * 400), {})

        assert rendered.truncated is True
        assert rendered.segments == 1
        assert len(rendered.get("body")) == 160
        assert rendered.get("body").endswith("...")

    def test_truncate_leaves_short_text(self):
        assert truncate_sms("short", 1) == "short"


@pytest.mark.unit
class TestFormatting:
    def test_format_currency(self):
        assert format_currency(1234.5) == "$1,234.50"
        assert format_currency(1500, "JPY") == "¥1,500"
        assert format_currency(10, "CHF") == "10.00 CHF"
        assert format_currency("n/a") == "n/a"

    def test_format_date(self):
        when = datetime(2025, 3, 9, 14, 5, tzinfo=UTC)
        assert format_date(when) == "2025-03-09"
        assert format_date(when, "time") == "14:05"
        assert format_date("2025-03-09T14:05:00+00:00", "iso") == "2025-03-09T14:05:00+00:00"
        assert format_date(None) == ""
        assert format_date("not a date") == "not a date"
