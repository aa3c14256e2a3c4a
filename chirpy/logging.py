from __future__ import annotations

import logging
import os
import re
import uuid
from typing import Any, Dict, Optional

import structlog

# Field names whose values are credentials and never logged
_CREDENTIAL_KEYS = frozenset(
    {
        "password",
        "password_hash",
        "authorization",
        "api_key",
        "polka_key",
        "token",
        "access_token",
        "refresh_token",
        "jwt_secret",
        "token_secret",
    }
)

_AUTH_HEADER_VALUE = re.compile(r"\b(Bearer|ApiKey) +\S+")
_ACCESS_TOKEN = re.compile(r"\beyJ[\w-]*\.[\w-]+\.[\w-]*")
_REFRESH_TOKEN = re.compile(r"\b[0-9a-f]{64}\b")


def _truthy(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


def bind_request_id(request_id: Optional[str] = None) -> str:
    """Start a fresh log context for one request and return its ID.

    Every log line emitted while serving the request carries ``request_id``.
    """
    rid = request_id or str(uuid.uuid4())
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=rid)
    return rid


def scrub_credentials(text: str) -> str:
    """Replace bearer/API-key header values and token shapes in ``text``."""
    text = _AUTH_HEADER_VALUE.sub(r"\1 [redacted]", text)
    text = _ACCESS_TOKEN.sub("[access_token]", text)
    return _REFRESH_TOKEN.sub("[refresh_token]", text)


def redact_credentials(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Processor dropping credential values before a line is rendered.

    Known credential fields are replaced outright. Other string values are
    scrubbed, since exception text can echo a header or a token.
    """
    for key, value in event_dict.items():
        if key.lower() in _CREDENTIAL_KEYS:
            event_dict[key] = "[redacted]"
        elif isinstance(value, str):
            event_dict[key] = scrub_credentials(value)
    return event_dict


def _configure_structlog(log_level: str, json_output: bool) -> None:
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_credentials,
        structlog.processors.StackInfoRenderer(),
    ]
    if json_output:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# LOG_DEV_MODE forces the console renderer regardless of LOG_JSON
_configure_structlog(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    json_output=_truthy("LOG_JSON", "true") and not _truthy("LOG_DEV_MODE", "false"),
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
