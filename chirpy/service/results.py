"""Outcome types for the authentication flows.

An :class:`AuthFailure` keeps two views apart. ``kind`` and ``diagnostic``
are for logs only. :meth:`AuthFailure.public` and
:meth:`AuthFailure.to_service_error` are what a client may see, and every
credential problem collapses into a single "unauthorized" there so responses
cannot be used as an oracle (e.g. to find out which emails exist).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar, Union

from chirpy.service.errors import AuthenticationError, ServerError, ServiceError

T = TypeVar("T")


class AuthFailureKind(str, Enum):
    CREDENTIAL_INVALID = "credential_invalid"
    TOKEN_MALFORMED = "token_malformed"
    TOKEN_BAD_SIGNATURE = "token_bad_signature"
    TOKEN_EXPIRED = "token_expired"
    TOKEN_INVALID_SUBJECT = "token_invalid_subject"
    TOKEN_REVOKED_OR_UNKNOWN = "token_revoked_or_unknown"
    HEADER_MISSING_OR_MALFORMED = "header_missing_or_malformed"
    INTERNAL_FAILURE = "internal_failure"


class PublicOutcome(str, Enum):
    UNAUTHORIZED = "unauthorized"
    SERVER_ERROR = "server_error"


@dataclass(frozen=True)
class AuthSuccess(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class AuthFailure:
    kind: AuthFailureKind
    diagnostic: str = ""

    @property
    def ok(self) -> bool:
        return False

    def public(self) -> PublicOutcome:
        if self.kind is AuthFailureKind.INTERNAL_FAILURE:
            return PublicOutcome.SERVER_ERROR
        return PublicOutcome.UNAUTHORIZED

    def to_service_error(self) -> ServiceError:
        if self.public() is PublicOutcome.SERVER_ERROR:
            return ServerError("internal error")
        return AuthenticationError("unauthorized")

    def log_fields(self) -> dict[str, str]:
        return {"failure_kind": self.kind.value, "diagnostic": self.diagnostic}


AuthResult = Union[AuthSuccess[T], AuthFailure]


__all__ = [
    "AuthFailure",
    "AuthFailureKind",
    "AuthResult",
    "AuthSuccess",
    "PublicOutcome",
]
