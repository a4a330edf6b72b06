from __future__ import annotations

import builtins
from typing import Any, Dict, List, Optional

import pytest

from docrag.embeddings import HASHING_BACKEND, HashingEmbedder
from docrag.ingest.models import ParsedChunk
from docrag.services.documents import get_document_service
from docrag.vectorstore import (
    MockVectorStore,
    VectorIndexClient,
    VectorStoreUnavailableError,
    get_vector_client,
    vector_record_id,
)
from docrag.vectorstore.chroma_store import ChromaStore


def _chunk(index: int, text: str, page: Optional[int] = 1) -> ParsedChunk:
    return ParsedChunk(chunk_index=index, text=text, page_number=page, char_start=0, char_end=len(text))


class FakeCollection:
    def __init__(self, name: str, metadata: Optional[Dict[str, Any]]) -> None:
        self.name = name
        self.metadata = metadata
        self.records: Dict[str, Dict[str, Any]] = {}
        self.queries: List[Dict[str, Any]] = []

    def upsert(self, *, ids, embeddings, documents, metadatas) -> None:
        for record_id, embedding, document, metadata in zip(ids, embeddings, documents, metadatas):
            self.records[record_id] = {"embedding": embedding, "document": document, "metadata": metadata}

    def count(self) -> int:
        return len(self.records)

    def query(self, *, query_embeddings, n_results) -> Dict[str, Any]:
        self.queries.append({"n_results": n_results})
        ids = sorted(self.records)[:n_results]
        return {
            "ids": [ids],
            "documents": [[self.records[record_id]["document"] for record_id in ids]],
            "metadatas": [[self.records[record_id]["metadata"] for record_id in ids]],
            "distances": [[0.1 * position for position in range(len(ids))]],
        }

    def delete(self, *, where) -> None:
        doomed = [
            record_id
            for record_id, record in self.records.items()
            if all(record["metadata"].get(key) == value for key, value in where.items())
        ]
        for record_id in doomed:
            del self.records[record_id]


class FakeChromaClient:
    def __init__(self) -> None:
        self.collections: Dict[str, FakeCollection] = {}

    def get_or_create_collection(self, name: str, metadata: Optional[Dict[str, Any]] = None) -> FakeCollection:
        return self.collections.setdefault(name, FakeCollection(name, metadata))


def test_mock_store_orders_by_cosine_distance() -> None:
    store = MockVectorStore()
    store.create_collection("test")
    store.add(
        "test",
        ids=["doc-1", "doc-2", "doc-3"],
        embeddings=[[1.0, 0.0], [0.0, 1.0], [0.9, 0.1]],
        documents=["Document 1", "Document 2", "Document 3"],
        metadatas=[{"page": 1}, {"page": 2}, {"page": 3}],
    )

    results = store.query("test", query_embedding=[1.0, 0.0], k=2)

    assert [result.id for result in results] == ["doc-1", "doc-3"]
    assert results[0].distance == pytest.approx(0.0, abs=1e-6)
    assert results[0].metadata == {"page": 1}


def test_mock_store_upserts_by_id_and_deletes_by_metadata() -> None:
    store = MockVectorStore()
    store.create_collection("test")
    store.add("test", ids=["a"], embeddings=[[1.0, 0.0]], documents=["old"], metadatas=[{"document_id": "x"}])
    store.add("test", ids=["a"], embeddings=[[1.0, 0.0]], documents=["new"], metadatas=[{"document_id": "x"}])
    store.add("test", ids=["b"], embeddings=[[0.0, 1.0]], documents=["other"], metadatas=[{"document_id": "y"}])

    assert store.count("test") == 2
    assert store.query("test", [1.0, 0.0], k=1)[0].document == "new"
    assert store.delete("test", where={"document_id": "x"}) == 1
    assert store.count("test") == 1


def test_mock_store_validates_input() -> None:
    store = MockVectorStore()
    with pytest.raises(KeyError):
        store.add("missing", ids=["a"], embeddings=[[1.0]], documents=["a"])

    store.create_collection("test")
    with pytest.raises(ValueError):
        store.add("test", ids=["a", "b"], embeddings=[[1.0]], documents=["a"])
    store.add("test", ids=["a"], embeddings=[[1.0, 0.0]], documents=["a"])
    with pytest.raises(ValueError):
        store.query("test", [1.0, 0.0, 0.0], k=1)
    assert store.query("test", [1.0, 0.0], k=0) == []


def test_client_upserts_chunks_with_metadata() -> None:
    store = MockVectorStore()
    client = VectorIndexClient(store, HashingEmbedder(64), collection_name="chunks")

    written = client.upsert_document(
        "doc_1",
        "manual.txt",
        "heating",
        [_chunk(0, "Boiler pressure guide"), _chunk(1, "   "), _chunk(2, "Relief valve checks", page=2)],
    )

    assert written == 2
    assert store.count("chunks") == 2
    matches = client.query("relief valve", k=1)
    assert matches[0].id == vector_record_id("doc_1", 2) == "doc_1::2"
    assert matches[0].document_id == "doc_1"
    assert matches[0].chunk_index == 2
    assert matches[0].metadata["page_number"] == 2
    assert matches[0].metadata["category"] == "heating"


def test_client_upsert_swallows_embedding_failures(failing_embedder) -> None:
    store = MockVectorStore()
    client = VectorIndexClient(store, failing_embedder, collection_name="chunks")

    written = client.upsert_document("doc_1", "manual.txt", "general", [_chunk(0, "text"), _chunk(1, "more")])

    assert written == 0
    assert failing_embedder.calls == 1
    assert store.count("chunks") == 0


def test_client_query_failures_are_typed(failing_embedder) -> None:
    client = VectorIndexClient(MockVectorStore(), failing_embedder, collection_name="chunks")

    assert client.query("   ", k=3) == []
    assert client.query("pressure", k=0) == []
    with pytest.raises(VectorStoreUnavailableError):
        client.query("pressure", k=3)


def test_client_skips_records_without_chunk_metadata() -> None:
    store = MockVectorStore()
    client = VectorIndexClient(store, HashingEmbedder(16), collection_name="chunks")
    store.add("chunks", ids=["stray"], embeddings=[HashingEmbedder(16).embed("pressure")], documents=["pressure"])

    assert client.query("pressure", k=5) == []


def test_chroma_store_adapts_client_calls(tmp_path) -> None:
    fake = FakeChromaClient()
    store = ChromaStore(tmp_path / "chroma", client=fake)
    client = VectorIndexClient(store, HashingEmbedder(32), collection_name="chunks")

    assert fake.collections["chunks"].metadata == {"hnsw:space": "cosine"}
    assert client.query("anything", k=3) == []

    client.upsert_document("doc_1", "notes.txt", "general", [_chunk(0, "first", page=None), _chunk(1, "second")])

    collection = fake.collections["chunks"]
    assert "page_number" not in collection.records["doc_1::0"]["metadata"]
    assert collection.records["doc_1::1"]["metadata"]["page_number"] == 1

    matches = client.query("first", k=10)
    assert collection.queries[-1] == {"n_results": 2}
    assert [match.id for match in matches] == ["doc_1::0", "doc_1::1"]
    assert matches[1].distance == pytest.approx(0.1)

    client.delete_document("doc_1")
    assert store.count("chunks") == 0


@pytest.mark.parametrize(("backend", "expected"), [("none", type(None)), ("memory", VectorIndexClient)])
def test_get_vector_client_follows_configuration(monkeypatch, backend, expected) -> None:
    monkeypatch.setenv("VECTOR_STORE", backend)
    monkeypatch.setenv("EMBEDDING_BACKEND", "hashing")

    assert isinstance(get_vector_client(), expected)


def test_get_vector_client_rejects_unknown_backend(monkeypatch) -> None:
    monkeypatch.setenv("VECTOR_STORE", "pinecone")

    with pytest.raises(ValueError):
        get_vector_client()


def _block_imports(monkeypatch, *modules: str) -> None:
    real_import = builtins.__import__

    def _missing_import(name: str, *args, **kwargs):
        if name in modules:
            raise ImportError(f"No module named {name!r}")
        return real_import(name, *args, **kwargs)

    monkeypatch.setattr(builtins, "__import__", _missing_import)


def test_service_starts_without_sentence_transformers(monkeypatch, tmp_path) -> None:
    _block_imports(monkeypatch, "sentence_transformers")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'docrag.db'}")
    monkeypatch.setenv("BLOB_STORE", "memory")
    monkeypatch.setenv("VECTOR_STORE", "memory")
    monkeypatch.delenv("EMBEDDING_BACKEND", raising=False)

    service = get_document_service()

    assert service.vector_client is not None
    assert service.vector_client.embedding_model.model_name == HASHING_BACKEND
    service.engine.dispose()


def test_missing_chromadb_disables_the_vector_index(monkeypatch, tmp_path) -> None:
    _block_imports(monkeypatch, "chromadb")
    monkeypatch.setenv("VECTOR_STORE", "chroma")
    monkeypatch.setenv("CHROMA_PERSIST_DIR", str(tmp_path / "chroma"))
    monkeypatch.setenv("EMBEDDING_BACKEND", "hashing")

    assert get_vector_client() is None
