from datetime import datetime, timedelta, timezone

import pytest

from jose import jwt

from conftest import SECRET_KEY, FakeUtcClock, make_principal
from models.helpers import TokenKind
from security.tokens import TokenCodec, TokenService
from utils.exceptions import ExpiredTokenError, InvalidTokenError


@pytest.fixture
def service(utc_clock):
    return TokenService(TokenCodec(SECRET_KEY), clock=utc_clock)


@pytest.fixture
def principal():
    return make_principal(7, "alice", "alice@example.com")


def test_issued_access_token_validates_and_carries_claims(service, principal):
    token = service.issue(principal)

    claims = service.validate(token, "alice@example.com")

    assert claims.sub == "alice@example.com"
    assert claims.id == 7
    assert claims.roles == ["USER"]
    assert claims.type == TokenKind.ACCESS
    assert claims.exp - claims.iat == 15 * 60
    assert claims.jti


def test_access_token_expires_after_configured_duration(service, principal, utc_clock):
    token = service.issue(principal)

    utc_clock.advance(minutes=16)

    with pytest.raises(ExpiredTokenError):
        service.validate(token, "alice@example.com")


def test_token_is_expired_exactly_at_expiry(service, principal, utc_clock):
    token = service.issue(principal)

    utc_clock.advance(minutes=15, seconds=-1)
    service.validate(token, "alice@example.com")

    utc_clock.advance(seconds=1)
    with pytest.raises(ExpiredTokenError):
        service.validate(token, "alice@example.com")


def test_refresh_token_lives_longer_than_access_token(service, principal, utc_clock):
    access = service.issue(principal, TokenKind.ACCESS)
    refresh = service.issue(principal, TokenKind.REFRESH)

    utc_clock.advance(days=6)

    with pytest.raises(ExpiredTokenError):
        service.validate(access, "alice@example.com", kind=TokenKind.ACCESS)
    assert service.validate(refresh, "alice@example.com", kind=TokenKind.REFRESH).type == TokenKind.REFRESH

    utc_clock.advance(days=1)
    with pytest.raises(ExpiredTokenError):
        service.validate(refresh, "alice@example.com", kind=TokenKind.REFRESH)


def test_token_signed_with_another_key_is_invalid_not_expired(service, principal, utc_clock):
    foreign = TokenService(TokenCodec("some-other-key"), clock=utc_clock)
    token = foreign.issue(principal)

    utc_clock.advance(days=30)

    with pytest.raises(InvalidTokenError):
        service.validate(token, "alice@example.com")


def test_subject_mismatch_is_invalid_even_when_expired(service, principal, utc_clock):
    token = service.issue(principal)

    utc_clock.advance(hours=1)

    with pytest.raises(InvalidTokenError):
        service.validate(token, "mallory@example.com")


def test_swapped_payload_fails_signature_check(service, principal):
    alice_token = service.issue(principal)
    mallory_token = service.issue(make_principal(8, "mallory", "mallory@example.com"))

    header, _, signature = alice_token.split(".")
    forged = ".".join([header, mallory_token.split(".")[1], signature])

    with pytest.raises(InvalidTokenError):
        service.extract_subject(forged)
    with pytest.raises(InvalidTokenError):
        service.validate(forged, "mallory@example.com")


def test_wrong_token_kind_is_invalid(service, principal):
    refresh = service.issue(principal, TokenKind.REFRESH)

    with pytest.raises(InvalidTokenError):
        service.validate(refresh, "alice@example.com", kind=TokenKind.ACCESS)


@pytest.mark.parametrize("token", ["", "not-a-token", "a.b.c"])
def test_malformed_tokens_are_invalid(service, token):
    with pytest.raises(InvalidTokenError):
        service.extract_subject(token)


def test_correctly_signed_token_with_missing_claims_is_invalid(service):
    token = jwt.encode({"sub": "alice@example.com"}, SECRET_KEY, algorithm="HS256")

    with pytest.raises(InvalidTokenError):
        service.extract_subject(token)


def test_extract_subject_ignores_expiry(service, principal, utc_clock):
    token = service.issue(principal)

    utc_clock.advance(days=1)

    assert service.extract_subject(token) == "alice@example.com"


def test_issue_pair(service, principal):
    pair = service.issue_pair(principal)

    assert pair.user_id == 7
    assert pair.token_type == "Bearer"
    assert pair.expires_in == 900
    assert pair.access_token != pair.refresh_token
    assert service.validate(pair.access_token, principal.email, kind=TokenKind.ACCESS).type == TokenKind.ACCESS
    assert service.validate(pair.refresh_token, principal.email, kind=TokenKind.REFRESH).type == TokenKind.REFRESH


def test_every_token_has_a_unique_id(service, principal):
    first = service.validate(service.issue(principal), principal.email)
    second = service.validate(service.issue(principal), principal.email)

    assert first.jti != second.jti


def test_custom_expiry_durations(utc_clock, principal):
    service = TokenService(
        TokenCodec(SECRET_KEY),
        access_token_expires=timedelta(minutes=1),
        refresh_token_expires=timedelta(hours=1),
        clock=utc_clock,
    )

    assert service.expires_in(TokenKind.ACCESS) == timedelta(minutes=1)
    assert service.expires_in(TokenKind.REFRESH) == timedelta(hours=1)


def test_codec_requires_a_key():
    with pytest.raises(ValueError):
        TokenCodec("")


def test_token_issued_mid_second_lives_for_the_full_duration(principal):
    clock = FakeUtcClock(datetime(2024, 1, 15, 10, 30, 0, 900_000, tzinfo=timezone.utc))
    service = TokenService(TokenCodec(SECRET_KEY), clock=clock)
    token = service.issue(principal)

    clock.advance(minutes=14, seconds=59, milliseconds=500)
    service.validate(token, "alice@example.com")

    clock.advance(seconds=1)
    with pytest.raises(ExpiredTokenError):
        service.validate(token, "alice@example.com")
