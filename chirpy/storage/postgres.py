from __future__ import annotations

import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

import psycopg
from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool, PoolTimeout

from chirpy.logging import get_logger
from chirpy.storage.errors import ConstraintViolation, StoreUnavailable
from chirpy.storage.models import RefreshToken, User

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id UUID PRIMARY KEY,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        email TEXT NOT NULL UNIQUE,
        hashed_password TEXT NOT NULL DEFAULT 'unset',
        password_algo TEXT NOT NULL DEFAULT '',
        is_chirpy_red BOOLEAN NOT NULL DEFAULT false
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS refresh_tokens (
        token TEXT PRIMARY KEY,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        user_id UUID NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        expires_at TIMESTAMPTZ NOT NULL,
        revoked_at TIMESTAMPTZ
    )
    """,
)


class PostgresStore:
    """Postgres-backed store for users, password hashes and refresh tokens."""

    def __init__(self, dsn: str, *, min_size: int = 1, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    @contextmanager
    def _connect(self) -> Iterator[psycopg.Connection]:
        try:
            with self.pool.connection() as conn:
                yield conn
        except (psycopg.OperationalError, PoolTimeout) as exc:
            self.logger.warning("postgres_unavailable", error=str(exc))
            raise StoreUnavailable(str(exc)) from exc

    def _ensure_schema(self) -> None:
        """Create the ``users`` and ``refresh_tokens`` tables if they are missing."""

        with self._connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)

    @staticmethod
    def _user_from_row(row: dict) -> User:
        return User(
            id=row["id"],
            email=row["email"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            is_chirpy_red=bool(row.get("is_chirpy_red", False)),
        )

    @staticmethod
    def _refresh_token_from_row(row: dict) -> RefreshToken:
        return RefreshToken(
            token=row["token"],
            user_id=row["user_id"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            expires_at=row["expires_at"],
            revoked_at=row.get("revoked_at"),
        )

    # users
    def create_user(self, email: str) -> User:
        user = User.new(email)
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO users (id, email, created_at, updated_at)
                    VALUES (%s, %s, %s, %s)
                    """,
                    (user.id, user.email, user.created_at, user.updated_at),
                )
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        return user

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = %s", (email,)
            ).fetchone()
        if not row:
            return None
        return self._user_from_row(row)

    def get_user(self, user_id: uuid.UUID) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE id = %s", (user_id,)
            ).fetchone()
        if not row:
            return None
        return self._user_from_row(row)

    def update_user(self, user_id: uuid.UUID, email: str) -> Optional[User]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    UPDATE users SET email = %s, updated_at = now()
                    WHERE id = %s
                    RETURNING *
                    """,
                    (email, user_id),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        if not row:
            return None
        return self._user_from_row(row)

    def upgrade_chirpy_red(self, user_id: uuid.UUID) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE users SET is_chirpy_red = true, updated_at = now()
                WHERE id = %s
                RETURNING *
                """,
                (user_id,),
            ).fetchone()
        if not row:
            return None
        return self._user_from_row(row)

    def save_password(
        self, user_id: uuid.UUID, password_hash: str, password_algo: str
    ) -> None:
        with self._connect() as conn:
            updated = conn.execute(
                """
                UPDATE users
                SET hashed_password = %s, password_algo = %s, updated_at = now()
                WHERE id = %s
                """,
                (password_hash, password_algo, user_id),
            ).rowcount
        if not updated:
            raise ConstraintViolation(
                "user not found for credentials", {"user_id": str(user_id)}
            )

    def get_password_record(self, user_id: uuid.UUID) -> Optional[tuple[str, str]]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT hashed_password, password_algo FROM users WHERE id = %s",
                (user_id,),
            ).fetchone()
        if not row or not row["password_algo"]:
            return None
        return str(row["hashed_password"]), str(row["password_algo"])

    # refresh tokens
    def store_refresh_token(
        self, token: str, user_id: uuid.UUID, expires_at: datetime
    ) -> RefreshToken:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    """
                    INSERT INTO refresh_tokens (token, user_id, created_at, updated_at, expires_at)
                    VALUES (%s, %s, now(), now(), %s)
                    RETURNING *
                    """,
                    (token, user_id, expires_at),
                ).fetchone()
        except errors.ForeignKeyViolation:
            raise ConstraintViolation("user does not exist", {"user_id": str(user_id)})
        except errors.UniqueViolation:
            raise ConstraintViolation("refresh token already exists")
        return self._refresh_token_from_row(row)

    def get_refresh_token(self, token: str) -> Optional[RefreshToken]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM refresh_tokens WHERE token = %s", (token,)
            ).fetchone()
        if not row:
            return None
        return self._refresh_token_from_row(row)

    def lookup_identity_by_refresh_token(self, token: str) -> Optional[uuid.UUID]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT user_id FROM refresh_tokens
                WHERE token = %s AND revoked_at IS NULL AND expires_at > now()
                """,
                (token,),
            ).fetchone()
        if not row:
            return None
        return row["user_id"]

    def revoke_refresh_token(self, token: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                """
                UPDATE refresh_tokens
                SET revoked_at = now(), updated_at = now()
                WHERE token = %s AND revoked_at IS NULL
                RETURNING token
                """,
                (token,),
            ).fetchone()
        return row is not None

    def close(self) -> None:
        self.pool.close()
