from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from docrag.api.documents import _http_error
from docrag.errors import StorageError
from docrag.main import app
from docrag.services.documents import get_document_service

GUIDE = (
    b"Boiler maintenance guide.\n\n"
    b"Low pressure is usually caused by a leak or a faulty pressure relief valve. "
    b"Top up the system through the filling loop until the gauge reads 1.5 bar."
)


@pytest.fixture
def service(service_factory):
    return service_factory()


@pytest.fixture
def client(service):
    app.dependency_overrides[get_document_service] = lambda: service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _upload(client: TestClient, data: bytes = GUIDE, filename: str = "guide.txt", content_type: str = "text/plain", **form):
    return client.post("/documents/upload", files={"file": (filename, data, content_type)}, data=form)


def test_upload_process_search_and_delete(client: TestClient) -> None:
    upload = _upload(client, category="heating", tags='["boiler"]')
    assert upload.status_code == 201
    document_id = upload.json()["id"]
    assert upload.json()["status"] == "uploaded"

    processed = client.post(f"/documents/{document_id}/process")
    assert processed.status_code == 200
    assert processed.json()["status"] == "processed"
    assert processed.json()["chunk_count"] >= 1

    document = client.get(f"/documents/{document_id}").json()
    assert document["category"] == "heating"
    assert document["tags"] == ["boiler"]

    view = client.get(f"/documents/{document_id}/json").json()
    assert view["format"] == "txt"
    assert "pressure relief valve" in view["fullText"]

    search = client.post("/search", json={"query": "why is the pressure low?", "limit": 3})
    assert search.status_code == 200
    results = search.json()["results"]
    assert results and results[0]["document_id"] == document_id
    assert results[0]["source"] == "lexical"

    pages = client.post("/search/pages", json={"query": "filling loop"})
    assert pages.status_code == 200
    assert pages.json()["results"][0]["page_number"] == 1

    listing = client.get("/documents", params={"category": "heating"}).json()
    assert [item["id"] for item in listing["documents"]] == [document_id]

    deleted = client.delete(f"/documents/{document_id}")
    assert deleted.json() == {"id": document_id, "status": "deleted"}

    missing = client.get(f"/documents/{document_id}")
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "DOCUMENT_NOT_FOUND"


def test_text_ingest_endpoint(client: TestClient) -> None:
    response = client.post("/documents/text", json={"text": GUIDE.decode("utf-8"), "filename": "notes"})

    assert response.status_code == 201
    assert response.json()["status"] == "processed"
    assert client.get(f"/documents/{response.json()['id']}").json()["filename"] == "notes.txt"

    empty = client.post("/documents/text", json={"text": "   "})
    assert empty.status_code == 400
    assert empty.json()["detail"]["code"] == "EMPTY_FILE"


@pytest.mark.parametrize(
    ("data", "filename", "content_type", "status", "code"),
    [
        (b"", "empty.txt", "text/plain", 400, "EMPTY_FILE"),
        (b"a" * (1024 * 1024 + 1), "big.txt", "text/plain", 413, "FILE_TOO_LARGE"),
        (b"\xff\xd8\xff\xe0" + b"\x00" * 64, "scan.pdf", "application/pdf", 400, "SIGNATURE_MISMATCH"),
        (b"\x89PNG\r\n\x1a\n" + b"\x00" * 64, "photo.png", "image/png", 400, "UNSUPPORTED_FILE_TYPE"),
    ],
)
def test_upload_errors_map_to_status_codes(client: TestClient, data, filename, content_type, status, code) -> None:
    response = _upload(client, data, filename, content_type)

    assert response.status_code == status
    assert response.json()["detail"]["code"] == code


def test_upload_rejects_tags_that_are_not_a_json_list(client: TestClient) -> None:
    response = _upload(client, tags="boiler,pressure")

    assert response.status_code == 400


def test_processing_failure_is_unprocessable(client: TestClient) -> None:
    document_id = _upload(client, b"   \n\n  ", "blank.txt").json()["id"]

    response = client.post(f"/documents/{document_id}/process")

    assert response.status_code == 422
    assert response.json()["detail"]["code"] == "NO_CONTENT"
    assert client.get(f"/documents/{document_id}").json()["status"] == "error"


def test_search_requires_a_query(client: TestClient) -> None:
    assert client.post("/search", json={"query": ""}).status_code == 422
    assert client.post("/search", json={"query": "   "}).status_code == 422
    assert client.post("/search", json={"query": "boiler", "limit": 0}).status_code == 422


def test_index_health_and_rebuild(client: TestClient) -> None:
    client.post("/documents/text", json={"text": GUIDE.decode("utf-8")})

    health = client.get("/index/health")
    assert health.status_code == 200
    assert health.json()["healthy"] is True

    rebuilt = client.post("/index/rebuild")
    assert rebuilt.status_code == 200
    assert rebuilt.json()["chunks"]["index_rows"] == health.json()["chunks"]["index_rows"]


def test_probes(client: TestClient) -> None:
    assert client.get("/healthz").text == "ok"
    assert client.get("/").text == "ok"
    assert client.get("/readyz").status_code == 200


def test_unavailable_errors_map_to_503() -> None:
    assert _http_error(StorageError("disk gone")).status_code == 503


def test_download_returns_stored_file(client: TestClient, blob_store) -> None:
    document_id = _upload(client).json()["id"]

    response = client.get(f"/documents/{document_id}/file")

    assert response.status_code == 200
    assert response.content == GUIDE
    assert response.headers["content-type"].startswith("text/plain")
    assert "guide.txt" in response.headers["content-disposition"]

    blob_store.delete(f"documents/{document_id}")
    missing_blob = client.get(f"/documents/{document_id}/file")
    assert missing_blob.status_code == 404
    assert missing_blob.json()["detail"]["code"] == "FILE_NOT_FOUND"

    unknown = client.get("/documents/doc_unknown/file")
    assert unknown.status_code == 404
    assert unknown.json()["detail"]["code"] == "DOCUMENT_NOT_FOUND"
