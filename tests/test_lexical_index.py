from __future__ import annotations

from sqlalchemy import text

from docrag.storage.lexical import CHUNKS_FTS, build_match_expression, extract_keywords

MANUAL = (
    "Boiler manual.\n\n"
    "Low pressure is usually caused by a leak or a faulty pressure relief valve. "
    "Top up the system through the filling loop until the gauge reads 1.5 bar."
)
RECIPES = "Bread recipes.\n\nKnead the dough for ten minutes and let it rise in a warm kitchen."


def test_extract_keywords_drops_stop_words_and_duplicates() -> None:
    assert extract_keywords("What is the maximum pressure for the relief valve?") == [
        "pressure",
        "relief",
        "valve",
    ]
    assert extract_keywords("valve VALVE valve's") == ["valve"]
    assert extract_keywords("alpha beta gamma delta epsilon zeta", max_keywords=3) == ["alpha", "beta", "gamma"]
    assert extract_keywords("what is it?") == []


def test_build_match_expression_quotes_each_keyword() -> None:
    assert build_match_expression(["pressure", "valve"]) == '"pressure" OR "valve"'


def test_chunk_search_finds_matching_document(document_store) -> None:
    manual = document_store.ingest_text(MANUAL, "manual.txt", category="heating")
    document_store.ingest_text(RECIPES, "recipes.txt", category="kitchen")

    hits = document_store.lexical_index.search_chunks("why is my boiler pressure low?")

    assert hits
    assert {hit.document_id for hit in hits} == {manual.id}
    assert all(hit.filename == "manual.txt" and hit.category == "heating" for hit in hits)
    assert all(hit.chunk_index is not None for hit in hits)
    assert any("<mark>" in hit.snippet for hit in hits)


def test_page_search_and_stemming(document_store) -> None:
    recipes = document_store.ingest_text(RECIPES, "recipes.txt")

    hits = document_store.lexical_index.search_pages("kneading rises")

    assert [hit.document_id for hit in hits] == [recipes.id]
    assert hits[0].page_number == 1
    assert hits[0].chunk_index is None


def test_upload_placeholder_is_searchable_before_processing(document_store) -> None:
    uploaded = document_store.upload(MANUAL.encode("utf-8"), "manual.txt", "text/plain")

    hits = document_store.lexical_index.search_pages("extraction pending")

    assert [hit.document_id for hit in hits] == [uploaded.id]


def test_stop_word_queries_return_nothing(document_store) -> None:
    document_store.ingest_text(MANUAL, "manual.txt")

    assert document_store.lexical_index.search_chunks("what is the") == []
    assert document_store.lexical_index.search_pages("?!") == []


def test_health_detects_drift_and_rebuild_repairs_it(engine, document_store) -> None:
    document_store.ingest_text(MANUAL, "manual.txt")
    index = document_store.lexical_index
    assert index.health().healthy

    with engine.begin() as connection:
        connection.execute(text(f"DELETE FROM {CHUNKS_FTS}"))

    drifted = index.health()
    assert not drifted.healthy
    assert drifted.pages.healthy
    assert drifted.chunks.index_rows == 0
    assert index.search_chunks("pressure relief valve") == []

    repaired = index.rebuild()
    assert repaired.healthy
    assert repaired.to_dict()["chunks"]["index_rows"] == repaired.chunks.source_rows
    hits = index.search_chunks("pressure relief valve")
    assert hits and hits[0].filename == "manual.txt"
