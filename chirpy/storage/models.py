from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    id: uuid.UUID
    email: str
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    is_chirpy_red: bool = False

    @classmethod
    def new(cls, email: str) -> "User":
        now = utcnow()
        return cls(id=uuid.uuid4(), email=email, created_at=now, updated_at=now)


@dataclass
class RefreshToken:
    token: str
    user_id: uuid.UUID
    created_at: datetime
    updated_at: datetime
    expires_at: datetime
    revoked_at: Optional[datetime] = None

    @classmethod
    def new(cls, token: str, user_id: uuid.UUID, expires_at: datetime) -> "RefreshToken":
        now = utcnow()
        return cls(
            token=token,
            user_id=user_id,
            created_at=now,
            updated_at=now,
            expires_at=expires_at,
        )

    def is_active(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return self.revoked_at is None and self.expires_at > now
