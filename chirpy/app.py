from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from chirpy.api.error_handling import register_exception_handlers
from chirpy.api.routes import router
from chirpy.logging import bind_request_id, get_logger

logger = get_logger(__name__)

__version__ = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the runtime on startup and close its store on shutdown."""
    from chirpy.service.runtime import get_runtime

    runtime = get_runtime()
    logger.info("app_started", version=__version__)

    yield

    try:
        runtime.close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="Chirpy", version=__version__, lifespan=lifespan)


@app.middleware("http")
async def add_request_id(request, call_next):
    """Tag every log line of a request with its request ID.

    The ID comes from ``X-Request-ID`` when the client sends one and is
    generated otherwise. It is echoed back in the same response header.
    """
    request_id = bind_request_id(request.headers.get("X-Request-ID"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Cache-Control", "no-store")
    return response


register_exception_handlers(app)
app.include_router(router)
