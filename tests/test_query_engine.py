from __future__ import annotations

from typing import List

from docrag.ingest.models import ParsedChunk
from docrag.retrieval import QueryEngine
from docrag.storage.repository import DocumentRepository
from docrag.vectorstore import MockVectorStore, VectorIndexClient

MANUAL = (
    "Boiler manual.\n\n"
    "Low pressure is usually caused by a leak or a faulty pressure relief valve. "
    "Top up the system through the filling loop until the gauge reads 1.5 bar."
)
RECIPES = "Bread recipes.\n\nKnead the dough for ten minutes and let it rise in a warm kitchen."


def _chunk_texts(service, document_id: str) -> List[str]:
    with service.session_factory() as session:
        return [chunk.chunk_text for chunk in DocumentRepository(session).chunks(document_id)]


def test_lexical_fallback_without_vector_index(service_factory) -> None:
    service = service_factory()
    manual = service.ingest_text(MANUAL, "manual.txt", category="heating")
    service.ingest_text(RECIPES, "recipes.txt")

    results = service.search("What causes low pressure?")

    assert results
    assert all(result.source == "lexical" for result in results)
    assert {result.document_id for result in results} == {manual.id}
    assert results[0].filename == "manual.txt"
    assert results[0].category == "heating"
    assert results[0].snippet and "<mark>" in results[0].snippet


def test_blank_and_stop_word_queries_return_nothing(service_factory) -> None:
    service = service_factory()
    service.ingest_text(MANUAL, "manual.txt")

    assert service.search("") == []
    assert service.search("   ") == []
    assert service.search("what is the") == []


def test_vector_results_are_hydrated_from_the_chunk_table(service_factory, vector_client) -> None:
    service = service_factory(vector_client)
    manual = service.ingest_text(MANUAL, "manual.txt", category="heating")
    service.index_vectors(manual.id)

    results = service.search("pressure relief valve", limit=2)

    assert 0 < len(results) <= 2
    assert all(result.source == "vector" for result in results)
    assert all(result.document_id == manual.id for result in results)
    assert all(result.filename == "manual.txt" and result.category == "heating" for result in results)
    assert results[0].score >= results[-1].score
    stored = set(_chunk_texts(service, manual.id))
    assert all(result.text in stored for result in results)


def test_stale_vectors_are_dropped_and_lexical_answers(service_factory, session_factory, vector_client) -> None:
    service = service_factory()
    manual = service.ingest_text(MANUAL, "manual.txt")
    orphaned = [
        ParsedChunk(chunk_index=index, text=text, page_number=1, char_start=0, char_end=len(text))
        for index, text in enumerate(_chunk_texts(service, manual.id))
    ]
    vector_client.upsert_document("doc_deleted", "gone.txt", "general", orphaned)
    engine = QueryEngine(session_factory, service.lexical_index, vector_client)

    results = engine.retrieve("pressure relief valve")

    assert results
    assert all(result.source == "lexical" for result in results)
    assert all(result.document_id == manual.id for result in results)


def test_vector_matches_for_deleted_documents_are_ignored(service_factory, vector_client) -> None:
    service = service_factory(vector_client)
    manual = service.ingest_text(MANUAL, "manual.txt")
    recipes = service.ingest_text(RECIPES, "recipes.txt")
    service.index_vectors(manual.id)
    service.index_vectors(recipes.id)

    service.delete(manual.id)
    results = service.search("pressure relief valve")

    assert all(result.document_id == recipes.id for result in results)


def test_failing_vector_index_falls_back_to_lexical(service_factory, failing_embedder) -> None:
    client = VectorIndexClient(MockVectorStore(), failing_embedder, collection_name="broken")
    service = service_factory(client)
    service.ingest_text(MANUAL, "manual.txt")

    results = service.search("pressure relief valve")

    assert results
    assert all(result.source == "lexical" for result in results)
    assert failing_embedder.calls >= 1
