from __future__ import annotations

from typing import Any, Dict, Optional


class ConstraintViolation(Exception):
    """Raised when a uniqueness or foreign-key constraint is violated."""

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class StoreUnavailable(Exception):
    """The backing store could not be reached or failed mid-operation."""


__all__ = ["ConstraintViolation", "StoreUnavailable"]
