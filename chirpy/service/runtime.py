from __future__ import annotations

import threading
from typing import Optional, Union
from urllib.parse import urlparse

from chirpy.config import get_settings, reset_settings_cache
from chirpy.logging import get_logger
from chirpy.service.auth import AuthService
from chirpy.storage.memory import MemoryStore
from chirpy.storage.postgres import PostgresStore

logger = get_logger(__name__)


def _database_target(url: Optional[str]) -> str:
    """``host:port/dbname`` of a connection URL, without user or password."""
    try:
        parsed = urlparse(url or "")
        port = parsed.port
    except ValueError:
        return "<unparseable>"
    host = parsed.hostname or "localhost"
    if port:
        host = f"{host}:{port}"
    return f"{host}{parsed.path}"


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self):
        self.settings = get_settings()
        store_type = "memory" if self.settings.use_memory_store else "postgres"
        logger.info(
            "runtime_init_started",
            store_type=store_type,
            test_mode=self.settings.test_mode,
        )

        try:
            self.store: Union[MemoryStore, PostgresStore] = (
                MemoryStore(fs_root=self.settings.shared_fs_root)
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                database=_database_target(self.settings.database_url),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise

        self.auth = AuthService(self.store, self.settings)
        logger.info(
            "runtime_initialized",
            store_type=store_type,
            jwt_issuer=self.settings.jwt_issuer,
            polka_configured=bool(self.settings.polka_key),
        )

    def close(self) -> None:
        self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton.

    The first check skips the lock once the runtime exists; the second one
    under the lock keeps two threads from both building it.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None:
            runtime.close()
        reset_settings_cache()
        settings = get_settings()
        if not settings.test_mode:
            raise RuntimeError("runtime reset is only allowed in TEST_MODE")
        runtime = Runtime()
        return runtime
