"""Tests for core exceptions."""

from notification_engine.core import exceptions as exc


def test_app_exception_defaults_title() -> None:
    error = exc.AppException(status_code=400, detail="bad")
    assert error.title == "Bad Request"
    assert error.extra == {}


def test_not_found_error_fields() -> None:
    error = exc.NotFoundError("Template", {"name": "welcome"})
    assert error.status_code == 404
    assert error.type == "not-found"
    assert error.title == "Not Found"
    assert "name='welcome'" in error.detail
    assert error.extra["model"] == "Template"


def test_missing_variable_error_sorts_names() -> None:
    error = exc.MissingVariableError(["order_id", "name"])
    assert error.missing == ["name", "order_id"]
    assert error.status_code == 422
    assert "name, order_id" in error.detail


def test_invalid_transition_error_extra() -> None:
    error = exc.InvalidTransitionError("bounced", "open")
    assert error.status_code == 409
    assert error.extra == {"current": "bounced", "event": "open"}


def test_unsupported_channel_error_mentions_template() -> None:
    assert "welcome" in exc.UnsupportedChannelError("sms", "welcome").detail
    assert exc.UnsupportedChannelError("fax").detail == "Unknown channel 'fax'"


def test_provider_errors_are_classified() -> None:
    transient = exc.ProviderTransientError("503 from upstream", code="503")
    permanent = exc.ProviderPermanentError("mailbox unknown", code="550", bounce=True)

    assert transient.retryable is True
    assert permanent.retryable is False
    assert permanent.bounce is True
    assert isinstance(permanent, exc.NotificationEngineError)


def test_signature_error_is_unauthorized() -> None:
    error = exc.SignatureVerificationError("sendgrid")
    assert error.status_code == 401
    assert error.title == "Unauthorized"


def test_to_problem_renders_rfc7807_mapping() -> None:
    error = exc.SchemaValidationError("bad variables", errors=["amount: not a number"])
    problem = error.to_problem()

    assert problem["type"] == "schema-validation"
    assert problem["status"] == 422
    assert problem["title"] == "Unprocessable Entity"
    assert problem["errors"] == ["amount: not a number"]
    assert "instance" not in problem
