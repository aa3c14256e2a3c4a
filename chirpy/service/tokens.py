"""Stateless HS256 access tokens.

Tokens are compact JWS strings (``header.payload.signature``) carrying the
registered claims ``iss``, ``iat``, ``exp`` and ``sub``. Nothing is stored
server-side: a token is valid while its signature checks out and ``exp`` has
not passed, and it cannot be revoked before then.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import time
import uuid
from datetime import timedelta
from typing import Any, Callable, Optional, Union

from chirpy.logging import get_logger

logger = get_logger(__name__)

SIGNING_ALGORITHM = "HS256"
# Only HMAC-SHA256 is accepted. "none" and asymmetric algorithms are refused
# before any signature work so a forged header cannot pick the verifier.
ALLOWED_ALGORITHMS = frozenset({SIGNING_ALGORITHM})

TTL = Union[int, float, timedelta]


class TokenError(Exception):
    """Base class for access token verification failures."""


class MalformedToken(TokenError):
    pass


class BadSignature(TokenError):
    pass


class TokenExpired(TokenError):
    pass


class InvalidSubject(TokenError):
    pass


class SigningError(RuntimeError):
    """The token could not be signed."""


def _encode_segment(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


def _decode_segment(segment: str) -> bytes:
    padding = "=" * ((4 - len(segment) % 4) % 4)
    return base64.urlsafe_b64decode(segment + padding)


def _ttl_seconds(ttl: TTL) -> float:
    if isinstance(ttl, timedelta):
        return ttl.total_seconds()
    return float(ttl)


class AccessTokenCodec:
    """Issue and verify access tokens with a single symmetric key."""

    def __init__(
        self,
        secret: str,
        *,
        issuer: str = "chirpy",
        leeway_seconds: float = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._secret = secret.encode() if secret else b""
        self.issuer = issuer
        self.leeway_seconds = leeway_seconds
        self._clock = clock

    def _sign(self, signing_input: str) -> str:
        return _encode_segment(
            hmac.new(self._secret, signing_input.encode(), hashlib.sha256).digest()
        )

    def issue(self, identity: uuid.UUID, ttl: TTL) -> str:
        if not self._secret:
            raise SigningError("signing key is empty")
        now = self._clock()
        payload = {
            "iss": self.issuer,
            "iat": int(now),
            "exp": int(now + _ttl_seconds(ttl)),
            "sub": str(identity),
        }
        header = {"alg": SIGNING_ALGORITHM, "typ": "JWT"}
        try:
            header_enc = _encode_segment(
                json.dumps(header, separators=(",", ":")).encode()
            )
            payload_enc = _encode_segment(
                json.dumps(payload, separators=(",", ":")).encode()
            )
        except (TypeError, ValueError) as exc:
            raise SigningError(f"claims not serializable: {exc}") from exc
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def verify(self, token: str) -> uuid.UUID:
        """Return the token's subject, or raise a :class:`TokenError`."""
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
        except (AttributeError, ValueError):
            raise MalformedToken("token must have three segments")
        if not token.isascii():
            raise MalformedToken("token contains non-ASCII characters")

        header = self._decode_json(header_b64, "header")
        alg = header.get("alg")
        if alg not in ALLOWED_ALGORITHMS:
            logger.warning("access_token_algorithm_rejected", alg=str(alg))
            raise BadSignature(f"unexpected signing algorithm: {alg!r}")

        if not self._secret:
            raise BadSignature("signing key is empty")
        expected_sig = self._sign(f"{header_b64}.{payload_b64}")
        if not hmac.compare_digest(expected_sig, sig_b64):
            raise BadSignature("signature mismatch")

        payload = self._decode_json(payload_b64, "payload")
        if payload.get("iss") != self.issuer:
            raise MalformedToken("unexpected issuer")
        exp = self._numeric_claim(payload, "exp")
        if self._clock() >= exp + self.leeway_seconds:
            raise TokenExpired("token expired")
        if "iat" in payload:
            iat = self._numeric_claim(payload, "iat")
            if iat > self._clock() + self.leeway_seconds:
                raise MalformedToken("token issued in the future")

        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject:
            raise InvalidSubject("subject claim missing")
        try:
            return uuid.UUID(subject)
        except ValueError:
            raise InvalidSubject("subject is not a user id")

    @staticmethod
    def _decode_json(segment: str, part: str) -> dict[str, Any]:
        try:
            data = json.loads(_decode_segment(segment))
        except (binascii.Error, ValueError):
            raise MalformedToken(f"{part} is not valid base64 JSON")
        if not isinstance(data, dict):
            raise MalformedToken(f"{part} must be a JSON object")
        return data

    @staticmethod
    def _numeric_claim(payload: dict[str, Any], name: str) -> float:
        raw: Optional[Any] = payload.get(name)
        if isinstance(raw, bool) or not isinstance(raw, (int, float)):
            raise MalformedToken(f"{name} claim missing or not numeric")
        return float(raw)
