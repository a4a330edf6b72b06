from __future__ import annotations

import builtins

import numpy as np
import pytest

from docrag import embeddings


def test_hashing_backend_never_imports_sentence_transformers(monkeypatch: pytest.MonkeyPatch) -> None:
    real_import = builtins.__import__

    def _guarded_import(name: str, *args, **kwargs):
        if name == "sentence_transformers":
            raise AssertionError("sentence-transformers should not be imported for the hashing backend")
        return real_import(name, *args, **kwargs)

    monkeypatch.setattr(builtins, "__import__", _guarded_import)

    model = embeddings.EmbeddingModel(backend=embeddings.HASHING_BACKEND, dimension=32)

    vectors = model.embed_texts(["hello", "world"])
    assert len(vectors) == 2
    assert all(len(vector) == 32 for vector in vectors)
    assert vectors[0] != vectors[1]
    assert model.model_name == embeddings.HASHING_BACKEND
    assert model.dimension == 32


def test_hashing_embeddings_are_deterministic_and_normalised() -> None:
    first = embeddings.HashingEmbedder(64).embed("Pressure relief valve")
    second = embeddings.HashingEmbedder(64).embed("pressure RELIEF valve!")

    assert first == second
    assert np.linalg.norm(first) == pytest.approx(1.0, rel=1e-5)
    assert embeddings.HashingEmbedder(8).embed("") == [0.0] * 8


def test_shared_words_bring_texts_closer() -> None:
    embedder = embeddings.HashingEmbedder(256)
    query = np.array(embedder.embed("boiler pressure"))
    related = np.array(embedder.embed("the boiler pressure is low"))
    unrelated = np.array(embedder.embed("knead the dough"))

    assert float(query @ related) > float(query @ unrelated)


def test_get_embedding_model_reads_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EMBEDDING_BACKEND", "hashing")
    monkeypatch.setenv("EMBEDDING_DIMENSION", "48")

    model = embeddings.get_embedding_model()

    assert model is embeddings.get_embedding_model()
    assert len(model.embed("hello")) == 48


def test_invalid_dimension_is_rejected() -> None:
    with pytest.raises(ValueError):
        embeddings.HashingEmbedder(0)


def test_missing_sentence_transformers_degrades_to_hashing(monkeypatch: pytest.MonkeyPatch) -> None:
    real_import = builtins.__import__

    def _missing_import(name: str, *args, **kwargs):
        if name == "sentence_transformers":
            raise ImportError("No module named 'sentence_transformers'")
        return real_import(name, *args, **kwargs)

    monkeypatch.setattr(builtins, "__import__", _missing_import)

    model = embeddings.EmbeddingModel(backend=embeddings.SENTENCE_TRANSFORMERS_BACKEND, dimension=24)

    assert model.model_name == embeddings.HASHING_BACKEND
    assert model.dimension == 24
    assert model.embed("boiler pressure") == embeddings.HashingEmbedder(24).embed("boiler pressure")
