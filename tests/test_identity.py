# tests/test_identity.py
import pytest

from common.utils import (
    CONFLICT_ERROR,
    is_real_user_question,
    is_valid_session_id,
    normalize_phone,
    is_valid_phone,
    resolve_identifiers,
    similarity,
)

UUID_A = "0b0f6d4e-8a5b-4f0e-9a57-3c1d2e4f5a6b"
UUID_B = "7c9e6679-7425-40de-944b-e07fc1f90ae7"


def test_session_values_win_over_requested():
    ids, err = resolve_identifiers(
        {"session_id": "session_123", "org_id": UUID_A, "tenant_id": UUID_B},
        {"session_id": "s1", "org_id": "o1", "tenant_id": "t1"},
    )
    assert err is None
    assert ids == {"org_id": "o1", "tenant_id": "t1", "session_id": "s1"}


def test_requested_uuid_used_when_session_has_none():
    ids, err = resolve_identifiers({"org_id": UUID_A, "tenant_id": UUID_B}, {})
    assert err is None
    assert ids["org_id"] == UUID_A and ids["tenant_id"] == UUID_B
    assert len(ids["session_id"]) == 32


def test_malformed_org_id_is_a_validation_error():
    _, err = resolve_identifiers({"org_id": "acme", "tenant_id": UUID_B}, {})
    assert err["error"] == "Invalid organization ID format"


def test_duplicate_ids_yield_conflict():
    _, err = resolve_identifiers({}, {"session_id": "x1", "org_id": "x1", "tenant_id": "t1"})
    assert err["error"] == CONFLICT_ERROR


@pytest.mark.parametrize("sid", ["session_abc", "abc", "a" * 31, "0123456789abcdef0123456789abcdef"])
def test_dummy_session_ids_rejected(sid):
    assert not is_valid_session_id(sid)


def test_phone_normalisation():
    assert normalize_phone("+1 (415) 555-0123") == "+14155550123"
    assert normalize_phone("919876543210") == "+919876543210"
    assert is_valid_phone("+14155550123")
    assert not is_valid_phone("+0123")


@pytest.mark.parametrize("text,expected", [
    ("What is the price of Skyline Towers?", True),
    ("thank you", False),
    ("hi", False),
    ("ok", True),
    ("a", False),
    ('{Trigger msg: Say "hello"}', False),
])
def test_real_question_filter(text, expected):
    assert is_real_user_question(text) is expected


def test_similarity_handles_spacing_and_typos():
    assert similarity("skyline towers", "skylinetowers") >= 0.7
    assert similarity("skyline towers", "skyline tower") > 0.8
    assert similarity("skylin towrs", "skyline towers") > 0.6
    assert similarity("skyline towers", "green meadows") < 0.6
