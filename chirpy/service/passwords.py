from __future__ import annotations

from argon2 import PasswordHasher as _Argon2Hasher
from argon2 import Type
from argon2.exceptions import (
    HashingError as _Argon2HashingError,
    InvalidHashError,
    VerificationError,
    VerifyMismatchError,
)

from chirpy.logging import get_logger

logger = get_logger(__name__)

PASSWORD_ALGO = "argon2id"


class HashingError(RuntimeError):
    """The hash could not be computed (entropy or allocation failure)."""


class PasswordHasher:
    """Salted one-way password hashing with argon2id.

    Cost parameters are argon2-cffi's defaults (RFC 9106 low-memory profile).
    Every hash is self-describing, so stored hashes keep verifying if the
    defaults move in a later release.
    """

    algorithm = PASSWORD_ALGO

    def __init__(self) -> None:
        self._hasher = _Argon2Hasher(type=Type.ID)

    def hash(self, password: str) -> str:
        try:
            return self._hasher.hash(password)
        except _Argon2HashingError as exc:
            logger.error("password_hash_failed", error=str(exc))
            raise HashingError("password hashing failed") from exc

    def verify(self, password: str, password_hash: str) -> bool:
        """Return True only when ``password`` matches ``password_hash``.

        Malformed or foreign hashes count as a mismatch.
        """
        try:
            return self._hasher.verify(password_hash, password)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError):
            logger.warning("password_hash_unusable")
            return False
