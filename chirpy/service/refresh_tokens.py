from __future__ import annotations

import secrets

REFRESH_TOKEN_BYTES = 32


class EntropyError(RuntimeError):
    """The OS random source could not provide bytes."""


def generate_refresh_token() -> str:
    """Return 256 bits from the OS CSPRNG as 64 lowercase hex characters.

    Uniqueness is left to the store's primary key.
    """
    try:
        return secrets.token_hex(REFRESH_TOKEN_BYTES)
    except (OSError, NotImplementedError) as exc:
        raise EntropyError("random source unavailable") from exc
