"""structlog setup shared by every sessionauth module.

Configured once at import from ``LOG_LEVEL``, ``LOG_JSON`` and
``LOG_DEV_MODE``. Credentials never reach a sink: passwords and secrets are
dropped, bearer tokens are replaced with a short fingerprint and emails keep
only their domain.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

# Bound by callers (e.g. a request handler) to tag the log lines of one call
operation_id_var: ContextVar[Optional[str]] = ContextVar("operation_id", default=None)


def get_operation_id() -> Optional[str]:
    return operation_id_var.get()


def bind_operation_id(operation_id: Optional[str] = None) -> str:
    """Set the operation id for the current context, generating one if needed."""
    op_id = operation_id or uuid.uuid4().hex
    operation_id_var.set(op_id)
    return op_id


def token_fingerprint(token: Optional[str]) -> str:
    """Short, non-reversible identifier for a token, safe to log."""
    if not token:
        return "none"
    return hashlib.sha256(token.encode("utf-8")).hexdigest()[:12]


def mask_email(email: str) -> str:
    local, sep, domain = email.rpartition("@")
    if not sep:
        return "***"
    return f"{local[:1]}***@{domain}"


def _add_operation_id(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    op_id = get_operation_id()
    if op_id and "operation_id" not in event_dict:
        event_dict["operation_id"] = op_id
    return event_dict


_DROP_KEYS = ("password", "secret", "authorization", "api_key")
_ALREADY_SAFE = ("_fingerprint", "_hash")


def _redact_credentials(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Processor removing credentials and PII from an event before rendering."""
    for key, value in list(event_dict.items()):
        lowered = key.lower()
        if lowered.endswith(_ALREADY_SAFE) or not isinstance(value, str):
            continue
        if any(marker in lowered for marker in _DROP_KEYS):
            event_dict[key] = "[redacted]"
        elif "token" in lowered:
            event_dict[key] = f"fp:{token_fingerprint(value)}"
        elif "email" in lowered:
            event_dict[key] = mask_email(value)
    return event_dict


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def configure_logging(
    level: Optional[str] = None,
    *,
    json_output: Optional[bool] = None,
    development_mode: Optional[bool] = None,
) -> None:
    """(Re)configure structlog; unspecified options come from the environment.

    Args:
        level: DEBUG, INFO, WARNING or ERROR (``LOG_LEVEL``, default INFO)
        json_output: render JSON lines (``LOG_JSON``, default true)
        development_mode: coloured console output (``LOG_DEV_MODE``)
    """
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    if json_output is None:
        json_output = _env_flag("LOG_JSON", True)
    if development_mode is None:
        development_mode = _env_flag("LOG_DEV_MODE", False)

    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _add_operation_id,
        _redact_credentials,
        structlog.processors.StackInfoRenderer(),
    ]
    if development_mode or not json_output:
        processors.append(structlog.dev.ConsoleRenderer(colors=development_mode))
    else:
        processors.extend(
            [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level, logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


# Upstream driver errors often quote DSNs, SQL or credentials
_UPSTREAM_LEAK_PATTERNS = [
    re.compile(r"(?i)\b(redis|rediss|postgres(?:ql)?)://\S+"),
    re.compile(r"(?i)\b(select|insert|update|delete)\b.{0,80}"),
    re.compile(r"(?i)(password|secret|token|key)\s*[:=]\s*\S+"),
]
_MAX_ERROR_LENGTH = 500


def sanitize_error_message(error: str, *, replacement: str = "[redacted]") -> str:
    """Strip connection strings, queries and credentials from a driver error."""
    if not error or not isinstance(error, str):
        return "An error occurred"
    for pattern in _UPSTREAM_LEAK_PATTERNS:
        error = pattern.sub(replacement, error)
    if len(error) > _MAX_ERROR_LENGTH:
        error = error[: _MAX_ERROR_LENGTH - 3] + "..."
    return error
