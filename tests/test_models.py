import json

import pytest

from auth import signed_token
from auth.errors import MalformedInputError, VerificationError
from auth.models import AuthorizationState, OAuth2TokenRecord, generate_nonce


def test_nonces_are_hex_and_unique() -> None:
    nonces = {generate_nonce() for _ in range(50)}

    assert len(nonces) == 50
    for nonce in nonces:
        assert len(nonce) == 32
        int(nonce, 16)


def test_state_without_correlation_is_the_nonce() -> None:
    state = AuthorizationState.mint()

    assert state.encode() == state.nonce
    assert AuthorizationState.decode(state.encode()).nonce == state.nonce


def test_correlated_state_round_trips_ids_with_separator() -> None:
    state = AuthorizationState.mint(correlation_id="user_with_underscores")

    decoded = AuthorizationState.decode(state.encode(), correlated=True)

    assert decoded.nonce == state.nonce
    assert decoded.correlation_id == "user_with_underscores"


@pytest.mark.parametrize("value", [None, "", "   ", "abcdef", "abcdef_", "_12345"])
def test_malformed_correlated_state_is_rejected(value) -> None:
    with pytest.raises(MalformedInputError):
        AuthorizationState.decode(value, correlated=True)


def test_state_matches_only_equal_nonce() -> None:
    state = AuthorizationState(nonce="abc123")

    assert state.matches(AuthorizationState(nonce="abc123", created_at=0.0)) is True
    assert state.matches(AuthorizationState(nonce="abc124")) is False
    assert state.matches(AuthorizationState(nonce="")) is False


def test_state_matches_requires_equal_correlation_id() -> None:
    issued = AuthorizationState(nonce="abc123", correlation_id="12345")

    assert issued.matches(AuthorizationState(nonce="abc123", correlation_id="12345")) is True
    assert issued.matches(AuthorizationState(nonce="abc123", correlation_id="99999")) is False
    assert issued.matches(AuthorizationState(nonce="abc123")) is False
    assert AuthorizationState(nonce="abc123").matches(issued) is False


def test_sealed_state_round_trips() -> None:
    state = AuthorizationState(nonce="abc123", created_at=1000.5, correlation_id="octo_cat")

    assert AuthorizationState.unseal(state.seal("key"), "key") == state


def test_sealed_state_rejects_other_key() -> None:
    sealed = AuthorizationState(nonce="abc123", correlation_id="12345").seal("key")

    with pytest.raises(VerificationError):
        AuthorizationState.unseal(sealed, "other-key")


@pytest.mark.parametrize(
    "payload",
    [
        {"t": 1.0},
        {"n": "", "t": 1.0},
        {"n": "abc123"},
        {"n": "abc123", "t": True},
        {"n": "abc123", "t": 1.0, "c": 12345},
    ],
)
def test_unseal_rejects_incomplete_payload(payload) -> None:
    with pytest.raises(MalformedInputError):
        AuthorizationState.unseal(signed_token.encode(payload, "key"), "key")


@pytest.mark.parametrize("value", [None, "", "   "])
def test_unseal_rejects_missing_cookie(value) -> None:
    with pytest.raises(MalformedInputError):
        AuthorizationState.unseal(value, "key")


def test_state_expiry() -> None:
    state = AuthorizationState(nonce="abc123", created_at=1000.0)

    assert state.is_expired(600, now=1600.0) is False
    assert state.is_expired(600, now=1600.1) is True


def test_token_record_expiry() -> None:
    record = OAuth2TokenRecord(
        access_token="token",
        token_type="Bearer",
        expires_in=3600,
        issued_at=1000.0,
    )

    assert record.expires_at == 4600.0
    assert record.is_expired(now=4600.0) is False
    assert record.is_expired(now=4601.0) is True
    assert record.remaining_seconds(now=1600.0) == 3000
    assert record.remaining_seconds(now=5000.0) == 0


def test_token_record_from_payload_defaults() -> None:
    record = OAuth2TokenRecord.from_payload({"access_token": "token"}, issued_at=10.0)

    assert record.token_type == "bearer"
    assert record.expires_in == 0
    assert record.refresh_token is None
    assert record.issued_at == 10.0


def test_token_record_accepts_string_expires_in() -> None:
    record = OAuth2TokenRecord.from_payload({"access_token": "token", "expires_in": "3599"})

    assert record.expires_in == 3599


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"access_token": ""},
        {"access_token": "token", "expires_in": "soon"},
        {"access_token": "token", "expires_in": True},
        {"access_token": "token", "token_type": 5},
    ],
)
def test_token_record_rejects_bad_payload(payload) -> None:
    with pytest.raises(MalformedInputError):
        OAuth2TokenRecord.from_payload(payload)


def test_token_record_json_keeps_issue_time() -> None:
    record = OAuth2TokenRecord(
        access_token="token",
        token_type="Bearer",
        expires_in=60,
        refresh_token="refresh",
        issued_at=1234.5,
    )

    restored = OAuth2TokenRecord.from_json(record.to_json())

    assert restored == record


@pytest.mark.parametrize(
    "raw",
    ["not json", "[]", json.dumps({"access_token": "token", "expires_in": 60})],
)
def test_token_record_from_json_rejects_bad_records(raw) -> None:
    with pytest.raises(MalformedInputError):
        OAuth2TokenRecord.from_json(raw)
