from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import os
import re
from datetime import datetime, timezone
from typing import Any, Mapping

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest


_LOG_CONTEXT: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "log_context", default={}
)

_LOG_FORMAT = "json"
_LOG_LEVEL = logging.INFO

_CONTEXT_KEYS = (
    "diary_id",
    "photo_id",
    "batch_id",
    "file_name",
    "backend",
)

_SENSITIVE_KEYS = (
    "secret",
    "token",
    "signature",
    "authorization",
    "password",
    "apikey",
    "api_key",
)

_HEADER_RE = re.compile(
    r"(?i)(apikey|signature|secret|token|authorization)([:=]\s*)([^\s,;]+)"
)
_JSON_RE = re.compile(
    r"(?i)(\"(?:secret|token|apikey|authorization)\"\s*:\s*)\"[^\"]*\""
)
_BEARER_RE = re.compile(r"(?i)(bearer\s+)([A-Za-z0-9._\-]+)")


def _redact_value(key: str | None, value: Any) -> Any:
    if key and any(token in key.lower() for token in _SENSITIVE_KEYS):
        return "***"
    if isinstance(value, str):
        redacted = _BEARER_RE.sub(lambda match: f"{match.group(1)}***", value)
        redacted = _HEADER_RE.sub(
            lambda match: f"{match.group(1)}{match.group(2)}***",
            redacted,
        )
        redacted = _JSON_RE.sub(
            lambda match: f"{match.group(1)}\"***\"",
            redacted,
        )
        return redacted
    if isinstance(value, Mapping):
        return {k: _redact_value(k, v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        iterable = list(value)
        return type(value)(_redact_value(None, item) for item in iterable)  # type: ignore[call-arg]
    return value


def _current_context() -> dict[str, Any]:
    return dict(_LOG_CONTEXT.get({}))


def bind_context(**updates: Any) -> contextvars.Token[dict[str, Any]]:
    ctx = _current_context()
    for key, value in updates.items():
        if value is None:
            ctx.pop(key, None)
        else:
            ctx[key] = value
    return _LOG_CONTEXT.set(ctx)


@contextlib.contextmanager
def context(**updates: Any):
    token = bind_context(**updates)
    try:
        yield
    finally:
        _LOG_CONTEXT.reset(token)


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - trivial
        context = _current_context()
        for key, value in context.items():
            if not hasattr(record, key):
                setattr(record, key, value)
        for key in _CONTEXT_KEYS:
            if not hasattr(record, key):
                setattr(record, key, None)
        return True


_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "message",
    }
)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
        }
        message = record.getMessage()
        base["msg"] = _redact_value("msg", message)
        for key in _CONTEXT_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                base[key] = _redact_value(key, value)
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            if key in base:
                continue
            if value is None and key in _CONTEXT_KEYS:
                continue
            base[key] = _redact_value(key, value)
        if record.exc_info:
            base["error_type"] = getattr(record.exc_info[0], "__name__", "Exception")
            if _LOG_FORMAT == "pretty":
                base["stack"] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=False, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%fZ")
        message = _redact_value("msg", record.getMessage())
        parts = [f"[{ts}]", record.levelname.ljust(5), str(message)]
        extras: list[str] = []
        for key in _CONTEXT_KEYS:
            value = getattr(record, key, None)
            if value:
                extras.append(f"{key}={_redact_value(key, value)}")
        if extras:
            parts.append("(" + " ".join(extras) + ")")
        if record.exc_info:
            parts.append("\n" + self.formatException(record.exc_info))
        return " ".join(parts)


def setup_logging(*, stream: Any | None = None) -> None:
    global _LOG_FORMAT, _LOG_LEVEL
    format_name = os.getenv("LOG_FORMAT", "json").strip().lower()
    level_name = os.getenv("LOG_LEVEL", "INFO").strip().upper()
    formatter: logging.Formatter
    if format_name == "pretty":
        formatter = PrettyFormatter()
    else:
        format_name = "json"
        formatter = JsonFormatter()
    _LOG_FORMAT = format_name
    _LOG_LEVEL = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)
    handler.addFilter(ContextFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_LOG_LEVEL)
    # httpx logs every request at INFO including signed URLs
    logging.getLogger("httpx").setLevel(max(_LOG_LEVEL, logging.WARNING))


def is_pretty_format() -> bool:
    return _LOG_FORMAT == "pretty"


def log_exc(ctx: str, err: BaseException) -> None:
    logger = logging.getLogger("observability")
    extra = {"error_type": type(err).__name__, "error": str(err)}
    if is_pretty_format():
        logger.error(ctx, exc_info=err, extra=extra)
    else:
        logger.error(ctx, extra=extra)


REGISTRY = CollectorRegistry()

_PHOTO_UPLOADS_TOTAL = Counter(
    "photo_uploads_total",
    "Per-file photo upload outcomes",
    labelnames=("status",),
    registry=REGISTRY,
)
_PHOTO_UPLOAD_BATCHES_TOTAL = Counter(
    "photo_upload_batches_total",
    "Settled photo upload batches",
    labelnames=("outcome",),
    registry=REGISTRY,
)
_PHOTO_BATCH_DURATION = Histogram(
    "photo_batch_duration_seconds",
    "Duration of a photo upload batch from compression to settle",
    registry=REGISTRY,
)
_PHOTO_COMPRESSION_BYTES_SAVED_TOTAL = Counter(
    "photo_compression_bytes_saved_total",
    "Bytes removed by client-side compression",
    registry=REGISTRY,
)
_PHOTO_DELETES_TOTAL = Counter(
    "photo_deletes_total",
    "Photo deletion outcomes",
    labelnames=("status",),
    registry=REGISTRY,
)


def record_photo_upload(success: bool) -> None:
    _PHOTO_UPLOADS_TOTAL.labels(status="ok" if success else "failed").inc()


def record_upload_batch(*, successful: int, failed: int, duration: float) -> None:
    if failed == 0:
        outcome = "complete"
    elif successful == 0:
        outcome = "failed"
    else:
        outcome = "partial"
    _PHOTO_UPLOAD_BATCHES_TOTAL.labels(outcome=outcome).inc()
    if duration >= 0:
        _PHOTO_BATCH_DURATION.observe(duration)


def record_compression(original_size: int, compressed_size: int) -> None:
    saved = original_size - compressed_size
    if saved <= 0:
        return
    _PHOTO_COMPRESSION_BYTES_SAVED_TOTAL.inc(saved)


def record_photo_delete(success: bool) -> None:
    _PHOTO_DELETES_TOTAL.labels(status="ok" if success else "failed").inc()


def render_metrics() -> bytes:
    return generate_latest(REGISTRY)


__all__ = [
    "bind_context",
    "context",
    "log_exc",
    "record_compression",
    "record_photo_delete",
    "record_photo_upload",
    "record_upload_batch",
    "render_metrics",
    "setup_logging",
]
