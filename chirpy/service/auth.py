from __future__ import annotations

import asyncio
import hmac
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Mapping, Optional, Protocol

from chirpy.config import Settings
from chirpy.logging import get_logger
from chirpy.service.credentials import (
    API_KEY_PREFIX,
    BEARER_PREFIX,
    HeaderError,
    extract_token,
)
from chirpy.service.errors import BadRequestError, NotFoundError, ServerError
from chirpy.service.passwords import HashingError, PasswordHasher
from chirpy.service.refresh_tokens import EntropyError, generate_refresh_token
from chirpy.service.results import (
    AuthFailure,
    AuthFailureKind,
    AuthResult,
    AuthSuccess,
)
from chirpy.service.tokens import (
    AccessTokenCodec,
    BadSignature,
    InvalidSubject,
    MalformedToken,
    SigningError,
    TokenError,
    TokenExpired,
)
from chirpy.storage.errors import ConstraintViolation, StoreUnavailable
from chirpy.storage.models import RefreshToken, User, utcnow

logger = get_logger(__name__)

_TOKEN_FAILURES = (
    (MalformedToken, AuthFailureKind.TOKEN_MALFORMED),
    (BadSignature, AuthFailureKind.TOKEN_BAD_SIGNATURE),
    (TokenExpired, AuthFailureKind.TOKEN_EXPIRED),
    (InvalidSubject, AuthFailureKind.TOKEN_INVALID_SUBJECT),
)


class AuthStore(Protocol):
    def create_user(self, email: str) -> User: ...

    def save_password(
        self, user_id: uuid.UUID, password_hash: str, password_algo: str
    ) -> None: ...

    def get_password_record(self, user_id: uuid.UUID) -> Optional[tuple[str, str]]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def get_user(self, user_id: uuid.UUID) -> Optional[User]: ...

    def update_user(self, user_id: uuid.UUID, email: str) -> Optional[User]: ...

    def upgrade_chirpy_red(self, user_id: uuid.UUID) -> Optional[User]: ...

    def store_refresh_token(
        self, token: str, user_id: uuid.UUID, expires_at: datetime
    ) -> RefreshToken: ...

    def lookup_identity_by_refresh_token(self, token: str) -> Optional[uuid.UUID]: ...

    def revoke_refresh_token(self, token: str) -> bool: ...


@dataclass(frozen=True)
class LoginGrant:
    user: User
    access_token: str
    refresh_token: str


def _token_failure_kind(exc: TokenError) -> AuthFailureKind:
    for exc_type, kind in _TOKEN_FAILURES:
        if isinstance(exc, exc_type):
            return kind
    return AuthFailureKind.TOKEN_MALFORMED


class AuthService:
    """Password login plus the access/refresh token pair.

    Access tokens are stateless and verified by signature alone. Refresh
    tokens are opaque and live in the store, which is the only place a
    revocation is recorded.
    """

    def __init__(
        self,
        store: AuthStore,
        settings: Settings,
        *,
        hasher: Optional[PasswordHasher] = None,
        codec: Optional[AccessTokenCodec] = None,
    ) -> None:
        self.store: AuthStore = store
        self.settings = settings
        self.hasher = hasher or PasswordHasher()
        self.codec = codec or AccessTokenCodec(
            settings.jwt_secret,
            issuer=settings.jwt_issuer,
            leeway_seconds=settings.token_leeway_seconds,
        )
        self.logger = logger
        # Verified against when the email is unknown, so a miss costs one
        # verify like a wrong password does
        self._dummy_hash = self.hasher.hash(secrets.token_urlsafe(16))

    def _fail(
        self, event: str, kind: AuthFailureKind, diagnostic: str, **fields
    ) -> AuthFailure:
        failure = AuthFailure(kind, diagnostic)
        if kind is AuthFailureKind.INTERNAL_FAILURE:
            self.logger.error(event, **failure.log_fields(), **fields)
        else:
            self.logger.info(event, **failure.log_fields(), **fields)
        return failure

    def access_token_ttl(self, requested: Optional[int]) -> int:
        """Seconds an access token minted at login stays valid.

        ``None``, ``0`` and anything above the configured ceiling become the
        ceiling. Negative values are rejected.
        """
        ceiling = self.settings.access_token_max_ttl_seconds
        if requested is not None and requested < 0:
            raise BadRequestError(
                "expires_in_seconds must not be negative",
                detail={"field": "expires_in_seconds"},
            )
        if not requested or requested > ceiling:
            return ceiling
        return requested

    async def _hash_password(self, password: str) -> str:
        try:
            return await asyncio.to_thread(self.hasher.hash, password)
        except HashingError as exc:
            self.logger.error("password_hash_failed", error=str(exc))
            raise ServerError("internal error") from exc

    async def register_user(self, email: str, password: str) -> User:
        password_hash = await self._hash_password(password)
        user = self.store.create_user(email)
        self.store.save_password(user.id, password_hash, self.hasher.algorithm)
        self.logger.info("user_registered", user_id=str(user.id))
        return user

    async def update_credentials(
        self, user_id: uuid.UUID, email: str, password: str
    ) -> User:
        password_hash = await self._hash_password(password)
        user = self.store.update_user(user_id, email)
        if not user:
            raise NotFoundError("user not found", detail={"user_id": str(user_id)})
        self.store.save_password(user.id, password_hash, self.hasher.algorithm)
        self.logger.info("user_credentials_updated", user_id=str(user.id))
        return user

    async def login(
        self,
        email: str,
        password: str,
        expires_in_seconds: Optional[int] = None,
    ) -> AuthResult[LoginGrant]:
        ttl = self.access_token_ttl(expires_in_seconds)
        try:
            user = self.store.get_user_by_email(email)
            record = self.store.get_password_record(user.id) if user else None
        except StoreUnavailable as exc:
            return self._fail("login_failed", AuthFailureKind.INTERNAL_FAILURE, str(exc))

        diagnostic: Optional[str] = None
        if user is None:
            diagnostic = "unknown email"
        elif record is None:
            diagnostic = "password record missing"
        elif record[1] != self.hasher.algorithm:
            diagnostic = f"unsupported password algorithm {record[1]!r}"
        stored_hash = record[0] if diagnostic is None else self._dummy_hash
        matched = await asyncio.to_thread(self.hasher.verify, password, stored_hash)
        if diagnostic is None and not matched:
            diagnostic = "password mismatch"
        if diagnostic is not None:
            return self._fail(
                "login_failed", AuthFailureKind.CREDENTIAL_INVALID, diagnostic
            )

        try:
            access_token = self.codec.issue(user.id, ttl)
            refresh_token = generate_refresh_token()
            self.store.store_refresh_token(
                refresh_token,
                user.id,
                expires_at=utcnow() + timedelta(days=self.settings.refresh_token_ttl_days),
            )
        except (SigningError, EntropyError, StoreUnavailable, ConstraintViolation) as exc:
            return self._fail(
                "login_failed",
                AuthFailureKind.INTERNAL_FAILURE,
                f"{type(exc).__name__}: {exc}",
                user_id=str(user.id),
            )
        self.logger.info("login_succeeded", user_id=str(user.id), ttl_seconds=ttl)
        return AuthSuccess(LoginGrant(user, access_token, refresh_token))

    async def refresh(self, headers: Mapping[str, str]) -> AuthResult[str]:
        """Mint a new access token from the refresh token in ``headers``.

        The refresh token itself is left as is and can be used again until
        it expires or is revoked.
        """
        try:
            token = extract_token(headers, BEARER_PREFIX)
        except HeaderError as exc:
            return self._fail(
                "refresh_token_rejected",
                AuthFailureKind.HEADER_MISSING_OR_MALFORMED,
                str(exc),
            )
        try:
            identity = self.store.lookup_identity_by_refresh_token(token)
        except StoreUnavailable as exc:
            return self._fail(
                "refresh_token_rejected", AuthFailureKind.INTERNAL_FAILURE, str(exc)
            )
        if identity is None:
            return self._fail(
                "refresh_token_rejected",
                AuthFailureKind.TOKEN_REVOKED_OR_UNKNOWN,
                "refresh token unknown, expired or revoked",
            )
        try:
            access_token = self.codec.issue(
                identity, self.settings.refresh_access_token_ttl_seconds
            )
        except SigningError as exc:
            return self._fail(
                "refresh_token_rejected", AuthFailureKind.INTERNAL_FAILURE, str(exc)
            )
        self.logger.info("access_token_refreshed", user_id=str(identity))
        return AuthSuccess(access_token)

    async def revoke(self, headers: Mapping[str, str]) -> AuthResult[None]:
        """Revoke the refresh token in ``headers``. Repeating it is harmless."""
        try:
            token = extract_token(headers, BEARER_PREFIX)
        except HeaderError as exc:
            return self._fail(
                "refresh_token_revoke_rejected",
                AuthFailureKind.HEADER_MISSING_OR_MALFORMED,
                str(exc),
            )
        try:
            revoked = self.store.revoke_refresh_token(token)
        except StoreUnavailable as exc:
            return self._fail(
                "refresh_token_revoke_failed",
                AuthFailureKind.INTERNAL_FAILURE,
                str(exc),
            )
        if revoked:
            self.logger.info("refresh_token_revoked")
        else:
            self.logger.info("refresh_token_revoke_noop")
        return AuthSuccess(None)

    async def authenticate(self, headers: Mapping[str, str]) -> AuthResult[uuid.UUID]:
        try:
            token = extract_token(headers, BEARER_PREFIX)
        except HeaderError as exc:
            return self._fail(
                "access_token_rejected",
                AuthFailureKind.HEADER_MISSING_OR_MALFORMED,
                str(exc),
            )
        try:
            identity = self.codec.verify(token)
        except TokenError as exc:
            return self._fail("access_token_rejected", _token_failure_kind(exc), str(exc))
        return AuthSuccess(identity)

    async def authenticate_api_key(self, headers: Mapping[str, str]) -> AuthResult[None]:
        try:
            key = extract_token(headers, API_KEY_PREFIX)
        except HeaderError as exc:
            return self._fail(
                "api_key_rejected",
                AuthFailureKind.HEADER_MISSING_OR_MALFORMED,
                str(exc),
            )
        expected = self.settings.polka_key
        if not expected:
            return self._fail(
                "api_key_rejected",
                AuthFailureKind.INTERNAL_FAILURE,
                "no api key configured",
            )
        if not hmac.compare_digest(key.encode(), expected.encode()):
            return self._fail(
                "api_key_rejected",
                AuthFailureKind.CREDENTIAL_INVALID,
                "api key mismatch",
            )
        return AuthSuccess(None)
