"""Shared fixtures: a fresh SQLite database and in-memory blob store per test."""
from __future__ import annotations

import os
import tempfile
import zlib
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence

import pytest

os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="docrag-logs-"))

from docrag.config import reset_settings_cache  # noqa: E402
from docrag.embeddings import HashingEmbedder, reset_embedding_model_cache  # noqa: E402
from docrag.ingest.pipeline import DocumentParser, ParserConfig  # noqa: E402
from docrag.services.documents import DocumentService, reset_document_service_cache  # noqa: E402
from docrag.storage.blobs import InMemoryBlobStore  # noqa: E402
from docrag.storage.database import create_db_engine, create_schema, create_session_factory  # noqa: E402
from docrag.storage.documents import DocumentStore  # noqa: E402
from docrag.storage.lexical import LexicalIndex  # noqa: E402
from docrag.vectorstore import MockVectorStore, VectorIndexClient, reset_vector_client_cache  # noqa: E402


def _escape_pdf_text(text: str) -> str:
    return text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def build_pdf(
    pages: Sequence[str],
    *,
    info: Optional[Dict[str, str]] = None,
    encrypt: bool = False,
    compress: bool = False,
    version: str = "1.4",
) -> bytes:
    """Build a minimal PDF with one page per entry; newlines become separate text lines."""

    objects: List[bytes] = []
    page_ids = [4 + 2 * index for index in range(len(pages))]

    objects.append(b"<< /Type /Catalog /Pages 2 0 R >>")
    kids = " ".join(f"{page_id} 0 R" for page_id in page_ids)
    objects.append(f"<< /Type /Pages /Kids [{kids}] /Count {len(pages)} >>".encode("latin-1"))
    objects.append(b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>")

    for index, text in enumerate(pages):
        content_id = page_ids[index] + 1
        objects.append(
            (
                "<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
                f"/Resources << /Font << /F1 3 0 R >> >> /Contents {content_id} 0 R >>"
            ).encode("latin-1")
        )
        operators = ["BT", "/F1 12 Tf", "72 720 Td"]
        for line_number, line in enumerate(text.split("\n")):
            if line_number:
                operators.append("0 -16 Td")
            operators.append(f"({_escape_pdf_text(line)}) Tj")
        operators.append("ET")
        stream = "\n".join(operators).encode("latin-1")
        filters = b""
        if compress:
            stream = zlib.compress(stream)
            filters = b" /Filter /FlateDecode"
        objects.append(
            b"<< /Length " + str(len(stream)).encode("ascii") + filters + b" >>\nstream\n" + stream + b"\nendstream"
        )

    info_id = None
    if info:
        entries = " ".join(f"/{key} ({_escape_pdf_text(value)})" for key, value in info.items())
        objects.append(f"<< {entries} >>".encode("latin-1"))
        info_id = len(objects)

    output = bytearray(f"%PDF-{version}\n".encode("ascii"))
    offsets: List[int] = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(output))
        output += f"{number} 0 obj\n".encode("ascii") + body + b"\nendobj\n"

    xref_offset = len(output)
    output += f"xref\n0 {len(objects) + 1}\n".encode("ascii")
    output += b"0000000000 65535 f \n"
    for offset in offsets:
        output += f"{offset:010d} 00000 n \n".encode("ascii")

    trailer = f"<< /Size {len(objects) + 1} /Root 1 0 R"
    if info_id:
        trailer += f" /Info {info_id} 0 R"
    if encrypt:
        trailer += " /Encrypt << /Filter /Standard /V 1 /R 2 >>"
    trailer += " >>"
    output += f"trailer\n{trailer}\nstartxref\n{xref_offset}\n%%EOF\n".encode("ascii")
    return bytes(output)


class FailingEmbedder:
    """Embedder whose every call fails, like an unreachable model server."""

    def __init__(self) -> None:
        self.calls = 0

    def embed(self, text: str) -> List[float]:
        self.calls += 1
        raise RuntimeError("embedding backend offline")


class RecordingEmbedder(HashingEmbedder):
    """Hashing embedder that remembers every text it embedded."""

    def __init__(self, dimension: int = 64) -> None:
        super().__init__(dimension)
        self.texts: List[str] = []

    def embed(self, text: str) -> List[float]:
        self.texts.append(text)
        return super().embed(text)


@pytest.fixture(autouse=True)
def _reset_caches() -> Iterator[None]:
    yield
    reset_settings_cache()
    reset_embedding_model_cache()
    reset_vector_client_cache()
    reset_document_service_cache()


@pytest.fixture
def pdf_factory() -> Callable[..., bytes]:
    return build_pdf


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'docrag.db'}"


@pytest.fixture
def engine(database_url: str):
    engine = create_db_engine(database_url)
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def lexical_index(engine) -> LexicalIndex:
    index = LexicalIndex(engine)
    index.create_schema()
    return index


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def parser_config() -> ParserConfig:
    return ParserConfig(chunk_chars=200, overlap_chars=40, text_page_chars=600)


@pytest.fixture
def document_parser(parser_config: ParserConfig) -> DocumentParser:
    return DocumentParser(parser_config)


@pytest.fixture
def vector_client() -> VectorIndexClient:
    return VectorIndexClient(MockVectorStore(), RecordingEmbedder(), collection_name="test_chunks")


@pytest.fixture
def document_store(session_factory, blob_store, lexical_index, document_parser) -> DocumentStore:
    return DocumentStore(
        session_factory,
        blob_store,
        lexical_index,
        document_parser,
        max_upload_bytes=1024 * 1024,
    )


@pytest.fixture
def service_factory(engine, session_factory, blob_store, parser_config):
    def _build(vector_client: Optional[VectorIndexClient] = None) -> DocumentService:
        return DocumentService(
            engine=engine,
            session_factory=session_factory,
            blob_store=blob_store,
            parser=DocumentParser(parser_config),
            max_upload_bytes=1024 * 1024,
            vector_client=vector_client,
        )

    return _build


@pytest.fixture
def failing_embedder() -> FailingEmbedder:
    return FailingEmbedder()


@pytest.fixture
def recording_embedder() -> RecordingEmbedder:
    return RecordingEmbedder()
