"""Structured lifecycle logging for ingestion, indexing and retrieval."""

from __future__ import annotations

import logging
import os
import platform
import sys
import time
import traceback
from contextlib import contextmanager
from typing import Any, Iterator, Optional

LOGGER = logging.getLogger("docrag.telemetry")

_ENV_KEYS_TO_LOG: tuple[str, ...] = (
    "DATABASE_URL",
    "BLOB_STORE",
    "BLOB_STORE_DIR",
    "VECTOR_STORE",
    "VECTOR_COLLECTION",
    "CHROMA_PERSIST_DIR",
    "EMBEDDING_BACKEND",
    "EMBEDDING_MODEL_PATH",
    "EMBEDDING_DEVICE",
    "PARSE_TIMEOUT_SECONDS",
    "LOG_DIR",
)


def _format_exception(error: BaseException) -> str:
    return "".join(traceback.format_exception(error.__class__, error, error.__traceback__))


def log_event(
    logger: Optional[logging.Logger],
    step: str,
    *,
    level: str = "info",
    document_id: str | None = None,
    duration_ms: float | None = None,
    exc: BaseException | str | None = None,
    details: dict[str, Any] | None = None,
    extra: dict[str, Any] | None = None,
    **payload: Any,
) -> None:
    """Emit a structured log event with the agreed-upon schema."""

    logger = logger or LOGGER
    event: dict[str, Any] = {"step": step, "module": logger.name}
    if document_id:
        event["document_id"] = document_id
    if duration_ms is not None:
        event["duration_ms"] = round(duration_ms, 3)
    if details is not None:
        event["details"] = details
    if extra:
        event.update(extra)
    event.update(payload)

    exc_info = None
    if exc is not None:
        if isinstance(exc, BaseException):
            event["exc"] = _format_exception(exc)
            exc_info = (exc.__class__, exc, exc.__traceback__)
        else:
            event["exc"] = str(exc)

    log_method = getattr(logger, level.lower(), logger.info)
    log_method(event, exc_info=exc_info)


def emit_app_startup_event() -> None:
    env_values = {key: os.getenv(key) for key in _ENV_KEYS_TO_LOG if os.getenv(key) is not None}
    details = {
        "env": env_values,
        "python": sys.version.split()[0],
        "platform": platform.platform(),
    }
    log_event(LOGGER, "app.startup", details=details, extra={"pid": os.getpid()})


def emit_document_event(
    step: str,
    *,
    document_id: str,
    filename: str | None = None,
    size_bytes: int | None = None,
    duration_ms: float | None = None,
    file_format: str | None = None,
    language: str | None = None,
    pages: int | None = None,
    chunks: int | None = None,
    error_code: str | None = None,
    logger: Optional[logging.Logger] = None,
) -> None:
    details = {
        "filename": filename,
        "size_bytes": size_bytes,
        "format": file_format,
        "language": language,
        "pages": pages,
        "chunks": chunks,
    }
    if error_code:
        details["error_code"] = error_code
    level = "warning" if error_code else "info"
    log_event(
        logger or LOGGER,
        step,
        level=level,
        document_id=document_id,
        duration_ms=duration_ms,
        details=details,
    )


def emit_embeddings_event(
    *, model: str, count: int, duration_ms: float, errors: list[str] | None = None
) -> None:
    details = {
        "model": model,
        "count": count,
        "errors": errors or [],
        "per_item_ms": round(duration_ms / count, 3) if count else None,
    }
    log_event(LOGGER, "embeddings.compute", duration_ms=duration_ms, details=details)


def emit_vectorstore_event(
    step: str,
    *,
    collection: str,
    count: int,
    document_id: str | None = None,
    error: BaseException | None = None,
) -> None:
    details = {"collection": collection, "count": count}
    level = "error" if error else "info"
    log_event(LOGGER, step, level=level, document_id=document_id, details=details, exc=error)


def emit_lexical_event(step: str, *, details: dict[str, Any], duration_ms: float | None = None) -> None:
    log_event(LOGGER, step, duration_ms=duration_ms, details=details)


def emit_retriever_event(
    *,
    query: str,
    limit: int,
    source: str,
    results: list[dict[str, Any]],
    duration_ms: float,
) -> None:
    details = {
        "query_preview": query[:120],
        "limit": limit,
        "source": source,
        "results": results,
    }
    log_event(LOGGER, "retriever.search", duration_ms=duration_ms, details=details)


def emit_exception(
    *,
    module: str,
    error: BaseException,
    document_id: str | None = None,
    suggestion: str | None = None,
) -> None:
    details = {"module": module}
    if suggestion:
        details["suggestion"] = suggestion
    log_event(
        LOGGER,
        "exception",
        level="error",
        document_id=document_id,
        details=details,
        exc=error,
    )


@contextmanager
def traced_duration(step: str, *, logger: Optional[logging.Logger] = None, **fields: Any) -> Iterator[None]:
    start = time.perf_counter()
    log_event(logger or LOGGER, f"{step}.start", details=fields)
    try:
        yield
    except Exception as error:
        log_event(logger or LOGGER, f"{step}.error", level="error", details=fields, exc=error)
        raise
    finally:
        end = time.perf_counter()
        log_event(
            logger or LOGGER,
            f"{step}.complete",
            duration_ms=(end - start) * 1000.0,
            details=fields,
        )


__all__ = [
    "emit_app_startup_event",
    "emit_document_event",
    "emit_embeddings_event",
    "emit_exception",
    "emit_lexical_event",
    "emit_retriever_event",
    "emit_vectorstore_event",
    "log_event",
    "traced_duration",
]
