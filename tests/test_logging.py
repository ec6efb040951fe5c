import pytest

from authservice.logging import (
    _add_correlation_id,
    _redact_pii,
    correlation_id_var,
    get_correlation_id,
    set_correlation_id,
)


@pytest.fixture(autouse=True)
def clear_correlation_id():
    token = correlation_id_var.set(None)
    yield
    correlation_id_var.reset(token)


def test_secrets_fully_masked():
    event = _redact_pii(
        None,
        "info",
        {
            "event": "login",
            "password": "password123",
            "token": "eyJhbGciOiJIUzI1NiJ9.e30.sig",
            "two_fa_code": "123456",
            "Authorization": "Bearer abc",
        },
    )
    assert event["password"] == "***"
    assert event["token"] == "***"
    assert event["two_fa_code"] == "***"
    assert event["Authorization"] == "***"
    assert event["event"] == "login"


def test_emails_keep_domain_only():
    event = _redact_pii(None, "info", {"event": "x", "email": "alice@example.com"})
    assert event["email"] == "al***@example.com"
    event = _redact_pii(None, "info", {"event": "x", "recipient_email": "not-an-address"})
    assert event["recipient_email"] == "***"


def test_status_fields_and_other_keys_untouched():
    event = _redact_pii(
        None,
        "info",
        {
            "event": "request_error",
            "error_code": "invalid_token",
            "status_code": 401,
            "reason": "challenge_consumed",
            "jti": "abc",
            "password": None,
        },
    )
    assert event == {
        "event": "request_error",
        "error_code": "invalid_token",
        "status_code": 401,
        "reason": "challenge_consumed",
        "jti": "abc",
        "password": None,
    }


def test_correlation_id_added_when_bound():
    assert _add_correlation_id(None, "info", {"event": "x"}) == {"event": "x"}
    cid = set_correlation_id("req-123")
    assert cid == "req-123"
    assert get_correlation_id() == "req-123"
    assert _add_correlation_id(None, "info", {"event": "x"})["correlation_id"] == "req-123"


def test_set_correlation_id_generates_when_missing():
    cid = set_correlation_id()
    assert cid
    assert get_correlation_id() == cid
