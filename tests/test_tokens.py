"""Tests for HS256 access token issue and verification."""

import base64
import hashlib
import hmac
import json
import time
import uuid
from datetime import timedelta

import pytest

from chirpy.service.tokens import (
    ALLOWED_ALGORITHMS,
    AccessTokenCodec,
    BadSignature,
    InvalidSubject,
    MalformedToken,
    SigningError,
    TokenError,
    TokenExpired,
)

SECRET = "unit-test-signing-key-0123456789abcdef"


def _b64(data: dict) -> str:
    raw = json.dumps(data, separators=(",", ":")).encode()
    return base64.urlsafe_b64encode(raw).decode().rstrip("=")


def _forge(header: dict, payload: dict, key: str = SECRET) -> str:
    signing_input = f"{_b64(header)}.{_b64(payload)}"
    sig = hmac.new(key.encode(), signing_input.encode(), hashlib.sha256).digest()
    return f"{signing_input}.{base64.urlsafe_b64encode(sig).decode().rstrip('=')}"


def _claims(token: str) -> dict:
    payload = token.split(".")[1]
    return json.loads(base64.urlsafe_b64decode(payload + "=" * (-len(payload) % 4)))


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def codec():
    return AccessTokenCodec(SECRET)


@pytest.fixture
def identity():
    return uuid.uuid4()


class TestIssueAndVerify:
    def test_round_trip_returns_identity(self, codec, identity):
        token = codec.issue(identity, 60)

        assert codec.verify(token) == identity

    def test_claims_carry_issuer_and_lifetime(self, identity):
        clock = FakeClock()
        codec = AccessTokenCodec(SECRET, clock=clock)

        claims = _claims(codec.issue(identity, 90))

        assert claims == {
            "iss": "chirpy",
            "iat": 1_700_000_000,
            "exp": 1_700_000_090,
            "sub": str(identity),
        }

    def test_timedelta_ttl(self, identity):
        codec = AccessTokenCodec(SECRET, clock=FakeClock())

        claims = _claims(codec.issue(identity, timedelta(minutes=5)))

        assert claims["exp"] - claims["iat"] == 300

    def test_header_names_hs256(self, codec, identity):
        header_b64 = codec.issue(identity, 60).split(".")[0]
        header = json.loads(base64.urlsafe_b64decode(header_b64 + "=" * (-len(header_b64) % 4)))

        assert header == {"alg": "HS256", "typ": "JWT"}
        assert ALLOWED_ALGORITHMS == frozenset({"HS256"})

    def test_empty_secret_cannot_sign(self, identity):
        with pytest.raises(SigningError):
            AccessTokenCodec("").issue(identity, 60)


class TestVerifyFailures:
    def test_other_key_is_bad_signature(self, codec, identity):
        token = codec.issue(identity, 60)

        with pytest.raises(BadSignature):
            AccessTokenCodec("a-completely-different-signing-key").verify(token)

    def test_expired_after_short_ttl(self, codec, identity):
        token = codec.issue(identity, 0.001)
        time.sleep(1)

        with pytest.raises(TokenExpired):
            codec.verify(token)

    def test_expiry_is_inclusive_and_honours_leeway(self, identity):
        clock = FakeClock()
        strict = AccessTokenCodec(SECRET, clock=clock)
        lenient = AccessTokenCodec(SECRET, clock=clock, leeway_seconds=30)
        token = strict.issue(identity, 60)

        clock.now += 60
        with pytest.raises(TokenExpired):
            strict.verify(token)
        assert lenient.verify(token) == identity

    @pytest.mark.parametrize("alg", ["none", "None", "RS256", "HS512", None])
    def test_algorithm_outside_allow_list_is_rejected(self, identity, alg):
        now = int(time.time())
        token = _forge(
            {"alg": alg, "typ": "JWT"},
            {"iss": "chirpy", "iat": now, "exp": now + 60, "sub": str(identity)},
        )

        with pytest.raises(BadSignature):
            AccessTokenCodec(SECRET).verify(token)

    def test_unsigned_token_is_rejected(self, identity):
        now = int(time.time())
        claims = {"iss": "chirpy", "iat": now, "exp": now + 60, "sub": str(identity)}
        token = f"{_b64({'alg': 'none', 'typ': 'JWT'})}.{_b64(claims)}."

        with pytest.raises(BadSignature):
            AccessTokenCodec(SECRET).verify(token)

    def test_tampered_payload_is_bad_signature(self, codec, identity):
        header, _, sig = codec.issue(identity, 60).split(".")
        now = int(time.time())
        payload = _b64(
            {"iss": "chirpy", "iat": now, "exp": now + 9999, "sub": str(uuid.uuid4())}
        )

        with pytest.raises(BadSignature):
            codec.verify(f"{header}.{payload}.{sig}")

    @pytest.mark.parametrize(
        "token",
        ["", "abc", "a.b", "a.b.c.d", "!!!.???.***"],
    )
    def test_malformed_structure(self, codec, token):
        with pytest.raises(MalformedToken):
            codec.verify(token)

    def test_wrong_issuer_is_malformed(self, identity):
        now = int(time.time())
        token = _forge(
            {"alg": "HS256", "typ": "JWT"},
            {"iss": "someone-else", "iat": now, "exp": now + 60, "sub": str(identity)},
        )

        with pytest.raises(MalformedToken):
            AccessTokenCodec(SECRET).verify(token)

    @pytest.mark.parametrize("position", [0, 1, 2])
    def test_non_ascii_segment_is_malformed(self, codec, identity, position):
        segments = codec.issue(identity, 60).split(".")
        segments[position] = segments[position] + "é"

        with pytest.raises(MalformedToken):
            codec.verify(".".join(segments))

    def test_non_ascii_signature_only(self, codec):
        with pytest.raises(MalformedToken):
            codec.verify("eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9.e30.é")

    def test_issued_in_the_future_is_malformed(self, identity):
        clock = FakeClock()
        codec = AccessTokenCodec(SECRET, clock=clock)
        token = codec.issue(identity, 600)

        clock.now -= 120
        with pytest.raises(MalformedToken):
            codec.verify(token)

    def test_future_iat_within_leeway_is_accepted(self, identity):
        clock = FakeClock()
        issuer = AccessTokenCodec(SECRET, clock=clock)
        token = issuer.issue(identity, 600)

        clock.now -= 20
        lenient = AccessTokenCodec(SECRET, clock=clock, leeway_seconds=30)
        assert lenient.verify(token) == identity

    def test_non_numeric_iat_is_malformed(self, identity):
        now = int(time.time())
        token = _forge(
            {"alg": "HS256", "typ": "JWT"},
            {"iss": "chirpy", "iat": "yesterday", "exp": now + 60, "sub": str(identity)},
        )

        with pytest.raises(MalformedToken):
            AccessTokenCodec(SECRET).verify(token)

    def test_missing_exp_is_malformed(self, identity):
        token = _forge(
            {"alg": "HS256", "typ": "JWT"},
            {"iss": "chirpy", "sub": str(identity)},
        )

        with pytest.raises(MalformedToken):
            AccessTokenCodec(SECRET).verify(token)

    @pytest.mark.parametrize("sub", ["not-a-uuid", "", 42, None])
    def test_subject_must_be_uuid(self, sub):
        now = int(time.time())
        payload = {"iss": "chirpy", "iat": now, "exp": now + 60}
        if sub is not None:
            payload["sub"] = sub
        token = _forge({"alg": "HS256", "typ": "JWT"}, payload)

        with pytest.raises(InvalidSubject):
            AccessTokenCodec(SECRET).verify(token)

    def test_failures_share_a_base_class(self):
        for exc_type in (MalformedToken, BadSignature, TokenExpired, InvalidSubject):
            assert issubclass(exc_type, TokenError)
