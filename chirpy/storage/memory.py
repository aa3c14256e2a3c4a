from __future__ import annotations

import json
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from chirpy.logging import get_logger
from chirpy.storage.errors import ConstraintViolation, StoreUnavailable
from chirpy.storage.models import RefreshToken, User, utcnow


class MemoryStore:
    """Dictionary-backed store, snapshotted to a JSON file after each write."""

    def __init__(self, fs_root: str = "/tmp/chirpy") -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[uuid.UUID, User] = {}
        self.credentials: Dict[uuid.UUID, tuple[str, str]] = {}
        self.refresh_tokens: Dict[str, RefreshToken] = {}
        # RLock so helpers can be called while a write already holds it
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root)
        self.fs_root.mkdir(parents=True, exist_ok=True)
        self._load_state()

    def _state_path(self) -> Path:
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "memory_store.json"

    @staticmethod
    def _serialize_datetime(dt: Optional[datetime]) -> Optional[str]:
        return dt.isoformat() if dt is not None else None

    @staticmethod
    def _deserialize_datetime(raw: Optional[str]) -> Optional[datetime]:
        return datetime.fromisoformat(raw) if raw else None

    # users
    def create_user(self, email: str) -> User:
        with self._data_lock:
            if any(existing.email == email for existing in self.users.values()):
                raise ConstraintViolation("email already exists", {"field": "email"})
            user = User.new(email)
            self.users[user.id] = user
            self._persist_state()
            return user

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            return next((u for u in self.users.values() if u.email == email), None)

    def get_user(self, user_id: uuid.UUID) -> Optional[User]:
        with self._data_lock:
            return self.users.get(user_id)

    def update_user(self, user_id: uuid.UUID, email: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            if any(
                other.email == email and other.id != user_id
                for other in self.users.values()
            ):
                raise ConstraintViolation("email already exists", {"field": "email"})
            user.email = email
            user.updated_at = utcnow()
            self._persist_state()
            return user

    def upgrade_chirpy_red(self, user_id: uuid.UUID) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            user.is_chirpy_red = True
            user.updated_at = utcnow()
            self._persist_state()
            return user

    def save_password(
        self, user_id: uuid.UUID, password_hash: str, password_algo: str
    ) -> None:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation(
                    "user not found for credentials", {"user_id": str(user_id)}
                )
            self.credentials[user_id] = (password_hash, password_algo)
            self._persist_state()

    def get_password_record(self, user_id: uuid.UUID) -> Optional[tuple[str, str]]:
        with self._data_lock:
            return self.credentials.get(user_id)

    # refresh tokens
    def store_refresh_token(
        self, token: str, user_id: uuid.UUID, expires_at: datetime
    ) -> RefreshToken:
        with self._data_lock:
            if user_id not in self.users:
                raise ConstraintViolation(
                    "user does not exist", {"user_id": str(user_id)}
                )
            if token in self.refresh_tokens:
                raise ConstraintViolation("refresh token already exists")
            record = RefreshToken.new(token, user_id, expires_at)
            self.refresh_tokens[token] = record
            self._persist_state()
            return record

    def get_refresh_token(self, token: str) -> Optional[RefreshToken]:
        with self._data_lock:
            return self.refresh_tokens.get(token)

    def lookup_identity_by_refresh_token(self, token: str) -> Optional[uuid.UUID]:
        with self._data_lock:
            record = self.refresh_tokens.get(token)
            if not record or not record.is_active():
                return None
            return record.user_id

    def revoke_refresh_token(self, token: str) -> bool:
        with self._data_lock:
            record = self.refresh_tokens.get(token)
            if not record or record.revoked_at is not None:
                return False
            now = utcnow()
            record.revoked_at = now
            record.updated_at = now
            self._persist_state()
            return True

    def close(self) -> None:
        return None

    def _persist_state(self) -> None:
        state = {
            "users": [self._serialize_user(u) for u in self.users.values()],
            "credentials": [
                {
                    "user_id": str(user_id),
                    "password_hash": creds[0],
                    "password_algo": creds[1],
                }
                for user_id, creds in self.credentials.items()
            ],
            "refresh_tokens": [
                self._serialize_refresh_token(rt) for rt in self.refresh_tokens.values()
            ],
        }
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            raise StoreUnavailable(f"failed to persist in-memory state: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.users = {}
        for raw in data.get("users", []):
            user = self._deserialize_user(raw)
            self.users[user.id] = user
        self.credentials = {
            uuid.UUID(entry["user_id"]): (
                entry["password_hash"],
                entry.get("password_algo", ""),
            )
            for entry in data.get("credentials", [])
        }
        self.refresh_tokens = {}
        for raw in data.get("refresh_tokens", []):
            record = self._deserialize_refresh_token(raw)
            self.refresh_tokens[record.token] = record
        self.logger.info(
            "memory_store_loaded",
            users=len(self.users),
            refresh_tokens=len(self.refresh_tokens),
        )
        return True

    def _serialize_user(self, user: User) -> dict:
        return {
            "id": str(user.id),
            "email": user.email,
            "created_at": self._serialize_datetime(user.created_at),
            "updated_at": self._serialize_datetime(user.updated_at),
            "is_chirpy_red": user.is_chirpy_red,
        }

    def _deserialize_user(self, data: dict) -> User:
        return User(
            id=uuid.UUID(data["id"]),
            email=data["email"],
            created_at=self._deserialize_datetime(data["created_at"]),
            updated_at=self._deserialize_datetime(data.get("updated_at"))
            or self._deserialize_datetime(data["created_at"]),
            is_chirpy_red=data.get("is_chirpy_red", False),
        )

    def _serialize_refresh_token(self, record: RefreshToken) -> dict:
        return {
            "token": record.token,
            "user_id": str(record.user_id),
            "created_at": self._serialize_datetime(record.created_at),
            "updated_at": self._serialize_datetime(record.updated_at),
            "expires_at": self._serialize_datetime(record.expires_at),
            "revoked_at": self._serialize_datetime(record.revoked_at),
        }

    def _deserialize_refresh_token(self, data: dict) -> RefreshToken:
        return RefreshToken(
            token=data["token"],
            user_id=uuid.UUID(data["user_id"]),
            created_at=self._deserialize_datetime(data["created_at"]),
            updated_at=self._deserialize_datetime(data["updated_at"]),
            expires_at=self._deserialize_datetime(data["expires_at"]),
            revoked_at=self._deserialize_datetime(data.get("revoked_at")),
        )
