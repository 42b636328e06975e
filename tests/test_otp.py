"""Unit tests for auth/otp.py -- one-time code lifecycle.

Covers:
- request -> verify succeeds once, then OTPNotFound (single use)
- re-requesting replaces the code: the first one now fails with OTPMismatch
- mismatch keeps the entry so the right code still works afterwards
- non-ASCII digits are a plain mismatch
- expiry after ttl, entry removed on that verify
- delivery failure surfaces DeliveryFailure but keeps the code valid
- identifiers are normalized (email case, phone punctuation)
- sweep removes only expired codes
"""

import pytest

from auth.otp import OTPService, normalize_identifier
from core.errors import DeliveryFailure, OTPExpired, OTPMismatch, OTPNotFound
from kvstore import MemoryStore


@pytest.fixture
def store():
    return MemoryStore(namespace="otp")


@pytest.fixture
def service(store, notifier, clock):
    return OTPService(store, notifier, ttl_seconds=600, code_length=6, clock=clock)


def test_code_shape_and_delivery(service, notifier):
    record = service.request_code("email", "a@x.com")
    assert len(record.code) == 6 and record.code.isdigit()
    channel, recipient, subject, body = notifier.sent[-1]
    assert (channel, recipient) == ("email", "a@x.com")
    assert record.code in body
    assert "10 minutes" in body


def test_verify_is_single_use(service):
    code = service.request_code("email", "a@x.com").code
    service.verify_code("email", "a@x.com", code)
    with pytest.raises(OTPNotFound):
        service.verify_code("email", "a@x.com", code)


def test_never_requested(service):
    with pytest.raises(OTPNotFound):
        service.verify_code("phone", "9848022338", "123456")


def test_rerequest_invalidates_previous_code(service):
    first = service.request_code("email", "a@x.com").code
    second = service.request_code("email", "a@x.com").code
    while second == first:
        second = service.request_code("email", "a@x.com").code
    with pytest.raises(OTPMismatch):
        service.verify_code("email", "a@x.com", first)
    service.verify_code("email", "a@x.com", second)


def test_mismatch_keeps_code_pending(service):
    code = service.request_code("phone", "9848022338").code
    wrong = "000000" if code != "000000" else "111111"
    with pytest.raises(OTPMismatch):
        service.verify_code("phone", "9848022338", wrong)
    service.verify_code("phone", "9848022338", code)


def test_expired_code_is_removed(service, store, clock):
    code = service.request_code("email", "a@x.com").code
    clock.advance(601)
    with pytest.raises(OTPExpired):
        service.verify_code("email", "a@x.com", code)
    assert len(store) == 0
    with pytest.raises(OTPNotFound):
        service.verify_code("email", "a@x.com", code)


def test_code_valid_until_ttl(service, clock):
    code = service.request_code("email", "a@x.com").code
    clock.advance(600)
    service.verify_code("email", "a@x.com", code)


def test_delivery_failure_keeps_code(service, notifier, store):
    notifier.fail = True
    with pytest.raises(DeliveryFailure):
        service.request_code("phone", "9848022338")
    assert len(store) == 1
    code = store.get("phone:9848022338")["code"]
    service.verify_code("phone", "9848022338", code)


def test_identifiers_are_normalized(service):
    code = service.request_code("email", "  A@X.com ").code
    service.verify_code("email", "a@x.com", code)

    code = service.request_code("phone", "98480-22338").code
    service.verify_code("phone", "9848022338", f" {code} ")


def test_channels_are_independent(service):
    email_code = service.request_code("email", "a@x.com").code
    service.request_code("phone", "9848022338")
    service.verify_code("email", "a@x.com", email_code)


def test_unknown_channel(service):
    with pytest.raises(ValueError):
        service.request_code("fax", "123")


def test_sweep_removes_only_expired(service, store, clock):
    service.request_code("email", "old@x.com")
    clock.advance(300)
    service.request_code("email", "new@x.com")
    clock.advance(301)
    assert service.sweep() == 1
    assert store.get("email:old@x.com") is None
    assert store.get("email:new@x.com") is not None


@pytest.mark.parametrize(
    ("channel", "raw", "expected"),
    [("email", " Sai@VNR.in ", "sai@vnr.in"), ("phone", "+91 98480 22338", "919848022338")],
)
def test_normalize_identifier(channel, raw, expected):
    assert normalize_identifier(channel, raw) == expected


def test_non_ascii_digits_are_a_mismatch(service):
    code = service.request_code("email", "a@x.com").code
    with pytest.raises(OTPMismatch):
        service.verify_code("email", "a@x.com", "١٢٣٤٥٦")
    service.verify_code("email", "a@x.com", code)
