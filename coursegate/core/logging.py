"""
Logging for the activation core.

Every line written while one code submission runs carries the same
activation_id (bound with activation_scope), so a failed activation can be
followed from the email check to the ledger update. Records are rendered as
JSON in production and as one short line elsewhere. log_event attaches the
stage, the message id of an error and the code digest as record fields.

Raw activation codes never reach these helpers; callers pass the
obfuscated digest.
"""

import json
import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Optional
from uuid import uuid4

activation_id_ctx_var: ContextVar[Optional[str]] = ContextVar("activation_id", default=None)


def get_activation_id(default: Optional[str] = None) -> Optional[str]:
    """activation_id of the submission running in this context, if any."""
    aid = activation_id_ctx_var.get()
    return aid if aid is not None else default


def new_activation_id() -> str:
    return uuid4().hex


@contextmanager
def activation_scope(activation_id: Optional[str] = None):
    """Bind an activation_id for the duration of one submission."""
    aid = activation_id or new_activation_id()
    token = activation_id_ctx_var.set(aid)
    try:
        yield aid
    finally:
        activation_id_ctx_var.reset(token)


def _format_timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace('+00:00', 'Z')


class ActivationIdFilter(logging.Filter):
    """Tag records logged outside log_event with the bound submission."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "activation_id", None) is None:
            record.activation_id = get_activation_id()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": _format_timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "activation_id": getattr(record, "activation_id", None),
        }
        for field in ("stage", "error_code", "code_digest", "tier"):
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value
        return json.dumps(payload, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        aid = getattr(record, "activation_id", None)
        aid_part = f" [aid={aid[:8]}]" if aid else ""
        ts = _format_timestamp(record)
        return f"{ts} {record.levelname} [coursegate]{aid_part} {record.getMessage()}"


def configure_logging(env: str = "development") -> None:
    """Configure structured logging based on environment."""
    logger = logging.getLogger("coursegate")
    logger.setLevel(logging.INFO)

    formatter: logging.Formatter
    if env.lower() == "production":
        formatter = JsonFormatter()
    else:
        formatter = PrettyFormatter()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(ActivationIdFilter())

    logger.handlers = [handler]
    logger.propagate = True

    # SQLAlchemy is chatty at INFO when echo is enabled
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def _safe_truncate(value, limit: int = 500):
    try:
        text = str(value)
    except Exception:
        return "<unserializable>"
    if len(text) <= limit:
        return text
    return text[:limit] + "...<truncated>"


def log_event(
    level: str,
    msg: str,
    *,
    activation_id: Optional[str] = None,
    stage: Optional[str] = None,
    error_code: Optional[str] = None,
    code_digest: Optional[str] = None,
    extra: Optional[Dict[str, object]] = None,
):
    """Structured logging helper with safe truncation and activation correlation."""

    logger = logging.getLogger("coursegate")
    if not logger.handlers:
        # Ensure logging configured in edge cases (tests)
        configure_logging(os.getenv("ENV", "development"))

    payload = {
        "activation_id": activation_id or get_activation_id(),
    }
    if stage:
        payload["stage"] = stage
    if error_code:
        payload["error_code"] = error_code
    if code_digest:
        payload["code_digest"] = code_digest
    if extra:
        for k, v in extra.items():
            payload[k] = _safe_truncate(v)

    log_fn = getattr(logger, level, logger.info)
    log_fn(msg, extra=payload)
