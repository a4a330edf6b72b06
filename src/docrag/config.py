"""Runtime configuration resolved from environment variables."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

LOGGER = logging.getLogger(__name__)

MIB = 1024 * 1024


def _str_from_env(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _int_from_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Invalid integer for %s: %s; using default %s", name, value, default)
        return default


def _optional_float_from_env(name: str) -> Optional[float]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    try:
        parsed = float(value)
    except ValueError:
        LOGGER.warning("Invalid float for %s: %s; ignoring", name, value)
        return None
    return parsed if parsed > 0 else None


@dataclass(slots=True)
class Settings:
    database_url: str = "sqlite:///data/docrag.db"
    blob_store: str = "filesystem"
    blob_store_dir: str = "data/blobs"
    max_upload_bytes: int = 50 * MIB
    pdf_max_bytes: int = 40 * MIB
    pdf_max_pages: int = 2000
    chunk_chars: int = 1000
    chunk_overlap_chars: int = 200
    text_page_chars: int = 2000
    csv_rows_per_page: int = 100
    parse_timeout_seconds: Optional[float] = None
    search_max_keywords: int = 5
    search_default_limit: int = 8
    vector_store: str = "none"
    vector_collection: str = "document_chunks"
    chroma_persist_dir: str = "chroma_db"
    chroma_distance_metric: str = "cosine"
    embedding_backend: str = "sentence-transformers"
    embedding_model_path: Optional[str] = None
    embedding_device: Optional[str] = None
    embedding_dimension: int = 384
    log_dir: str = "logs"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            database_url=_str_from_env("DATABASE_URL", defaults.database_url),
            blob_store=_str_from_env("BLOB_STORE", defaults.blob_store).lower(),
            blob_store_dir=_str_from_env("BLOB_STORE_DIR", defaults.blob_store_dir),
            max_upload_bytes=_int_from_env("MAX_UPLOAD_BYTES", defaults.max_upload_bytes),
            pdf_max_bytes=_int_from_env("PDF_MAX_BYTES", defaults.pdf_max_bytes),
            pdf_max_pages=_int_from_env("PDF_MAX_PAGES", defaults.pdf_max_pages),
            chunk_chars=_int_from_env("CHUNK_CHARS", defaults.chunk_chars),
            chunk_overlap_chars=_int_from_env("CHUNK_OVERLAP_CHARS", defaults.chunk_overlap_chars),
            text_page_chars=_int_from_env("TEXT_PAGE_CHARS", defaults.text_page_chars),
            csv_rows_per_page=_int_from_env("CSV_ROWS_PER_PAGE", defaults.csv_rows_per_page),
            parse_timeout_seconds=_optional_float_from_env("PARSE_TIMEOUT_SECONDS"),
            search_max_keywords=_int_from_env("SEARCH_MAX_KEYWORDS", defaults.search_max_keywords),
            search_default_limit=_int_from_env("SEARCH_DEFAULT_LIMIT", defaults.search_default_limit),
            vector_store=_str_from_env("VECTOR_STORE", defaults.vector_store).lower(),
            vector_collection=_str_from_env("VECTOR_COLLECTION", defaults.vector_collection),
            chroma_persist_dir=_str_from_env("CHROMA_PERSIST_DIR", defaults.chroma_persist_dir),
            chroma_distance_metric=_str_from_env(
                "CHROMA_DISTANCE_METRIC", defaults.chroma_distance_metric
            ),
            embedding_backend=_str_from_env("EMBEDDING_BACKEND", defaults.embedding_backend).lower(),
            embedding_model_path=os.getenv("EMBEDDING_MODEL_PATH") or None,
            embedding_device=os.getenv("EMBEDDING_DEVICE") or None,
            embedding_dimension=_int_from_env("EMBEDDING_DIMENSION", defaults.embedding_dimension),
            log_dir=_str_from_env("LOG_DIR", defaults.log_dir),
            log_level=_str_from_env("LOG_LEVEL", defaults.log_level).upper(),
        )


@lru_cache()
def get_settings() -> Settings:
    """Return the process-wide settings instance."""

    return Settings.from_env()


def reset_settings_cache() -> None:
    """Clear the cached settings (primarily for testing)."""

    get_settings.cache_clear()  # type: ignore[attr-defined]
