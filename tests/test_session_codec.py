"""
Unit tests for the signed-token codec
"""
from datetime import timedelta

import pytest
from jose import jwt

from conftest import TEST_SECRET, FakeClock
from praxis_bff.exceptions import ConfigurationError, InvalidTokenError
from praxis_bff.session_codec import SessionCodec


PAYLOAD = {
    "user": {"id": "user_1", "email": "a@example.com", "first_name": "Ada", "email_verified": True},
    "access_token": "at",
    "refresh_token": "rt",
    "organizations": [{"id": "org_1", "name": "Team", "domains": [], "metadata": {"personal": "true"}}],
    "current_organization_id": "org_1",
    "last_activity": 1700000000000,
    "expires_at": 1700604800000,
    "remember_me": False,
}


def test_round_trip_returns_payload_field_for_field(codec):
    token = codec.encode(PAYLOAD, timedelta(hours=1))

    assert isinstance(token, str)
    assert token.count(".") == 2
    assert codec.decode(token) == PAYLOAD


def test_token_carries_algorithm_and_expiry(codec, clock):
    token = codec.encode({"a": 1}, timedelta(hours=2))

    assert jwt.get_unverified_header(token)["alg"] == "HS256"
    claims = jwt.get_unverified_claims(token)
    assert claims["exp"] == int(clock.now + 7200)
    assert claims["iat"] == int(clock.now)


@pytest.mark.parametrize("secret", [None, "", "too-short"])
def test_encode_requires_long_enough_secret(secret):
    codec = SessionCodec(secret)

    with pytest.raises(ConfigurationError):
        codec.encode({"a": 1}, timedelta(minutes=5))


def test_decode_requires_secret():
    with pytest.raises(ConfigurationError):
        SessionCodec(None).decode("a.b.c")


def test_every_byte_of_signed_input_is_tamper_evident(codec):
    token = codec.encode({"user": "alice", "role": "admin"}, timedelta(hours=1))
    signed_input_length = token.rindex(".")

    for i in range(signed_input_length):
        replacement = "A" if token[i] != "A" else "B"
        tampered = token[:i] + replacement + token[i + 1:]
        with pytest.raises(InvalidTokenError):
            codec.decode(tampered)


def test_tampered_signature_is_rejected(codec):
    token = codec.encode({"user": "alice"}, timedelta(hours=1))
    head, signature = token.rsplit(".", 1)
    flipped = ("A" if signature[0] != "A" else "B") + signature[1:]

    with pytest.raises(InvalidTokenError):
        codec.decode(f"{head}.{flipped}")


def test_token_signed_with_other_secret_is_rejected(codec):
    other = SessionCodec("another-secret-that-is-also-32-characters-long")
    token = other.encode({"user": "mallory"}, timedelta(hours=1))

    with pytest.raises(InvalidTokenError):
        codec.decode(token)


@pytest.mark.parametrize("garbage", ["", "not-a-token", "a.b", "a.b.c", "....", "eyJhbGciOiJIUzI1NiJ9.e30."])
def test_malformed_tokens_are_rejected(codec, garbage):
    with pytest.raises(InvalidTokenError):
        codec.decode(garbage)


def test_token_with_one_millisecond_ttl_expires():
    # Signed ten seconds ago with a 1ms lifetime: long expired by now.
    codec = SessionCodec(TEST_SECRET, clock=FakeClock(start=FakeClock().now - 10))
    token = codec.encode({"user": "alice"}, timedelta(milliseconds=1))

    with pytest.raises(InvalidTokenError, match="expired"):
        SessionCodec(TEST_SECRET).decode(token)


def test_token_with_unexpected_algorithm_is_rejected(codec):
    forged = jwt.encode({"user": "alice"}, TEST_SECRET, algorithm="HS512")

    with pytest.raises(InvalidTokenError):
        codec.decode(forged)
