"""API router exposing document upload, processing, search and index maintenance."""
from __future__ import annotations

import json
from typing import Any
from urllib.parse import quote

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, Query, Response, UploadFile
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field

from docrag.errors import DocumentError, ErrorCode, ErrorKind, InputValidationError
from docrag.retrieval import RetrievedChunk
from docrag.services.documents import DocumentService, get_document_service
from docrag.storage.lexical import LexicalHit

router = APIRouter(tags=["documents"])

_STATUS_BY_CODE = {
    ErrorCode.DOCUMENT_NOT_FOUND: 404,
    ErrorCode.FILE_NOT_FOUND: 404,
    ErrorCode.FILE_TOO_LARGE: 413,
}
_STATUS_BY_KIND = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.PROCESSING_FAILED: 422,
    ErrorKind.UNAVAILABLE: 503,
}


def _http_error(error: DocumentError) -> HTTPException:
    status_code = _STATUS_BY_CODE.get(error.code) or _STATUS_BY_KIND.get(error.kind, 500)
    return HTTPException(status_code=status_code, detail=error.to_dict())


class UploadResponse(BaseModel):
    """Response body returned after an upload."""

    id: str
    filename: str
    status: str
    page_count: int


class ProcessResponse(BaseModel):
    """Outcome of processing one document."""

    id: str
    status: str
    format: str
    page_count: int
    word_count: int
    chunk_count: int
    language: str


class TextIngestRequest(BaseModel):
    """Raw text to store and process as a ``.txt`` document."""

    text: str = Field(..., description="Text content to ingest.")
    filename: str | None = Field(None, description="Optional filename; defaults to a timestamped .txt name.")
    category: str = Field("general", description="Category used to filter document listings.")
    tags: list[str] = Field(default_factory=list)
    content_type: str = Field("text/plain")


class DeleteResponse(BaseModel):
    id: str
    status: str


class SearchRequest(BaseModel):
    """Request body accepted by the search endpoints."""

    query: str = Field(..., min_length=1, description="Free text to search for.")
    limit: int | None = Field(None, ge=1, le=50, description="How many results should be returned.")


class SearchResult(BaseModel):
    text: str
    document_id: str
    page_number: int | None
    chunk_index: int | None
    filename: str
    category: str
    score: float
    source: str
    snippet: str | None = None


class SearchResponse(BaseModel):
    query: str
    results: list[SearchResult]


class PageSearchResult(BaseModel):
    document_id: str
    filename: str
    category: str
    page_number: int | None
    snippet: str
    score: float


class PageSearchResponse(BaseModel):
    query: str
    results: list[PageSearchResult]


def _parse_tags(raw: str | None) -> list[str]:
    if raw is None or not raw.strip():
        return []
    try:
        tags = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise _http_error(
            InputValidationError("Tags must be a JSON list of strings", details={"tags": raw})
        ) from exc
    if not isinstance(tags, list) or not all(isinstance(tag, str) for tag in tags):
        raise _http_error(InputValidationError("Tags must be a JSON list of strings", details={"tags": raw}))
    return tags


def _serialise_chunk(chunk: RetrievedChunk) -> SearchResult:
    return SearchResult(**chunk.to_dict())


def _serialise_page_hit(hit: LexicalHit) -> PageSearchResult:
    return PageSearchResult(
        document_id=hit.document_id,
        filename=hit.filename,
        category=hit.category,
        page_number=hit.page_number,
        snippet=hit.snippet,
        score=hit.score,
    )


@router.post("/documents/upload", response_model=UploadResponse, status_code=201)
async def upload_document(
    file: UploadFile = File(...),
    category: str = Form("general"),
    tags: str | None = Form(None),
    service: DocumentService = Depends(get_document_service),
) -> UploadResponse:
    """Store an uploaded file; it stays in ``uploaded`` until processed."""

    tag_list = _parse_tags(tags)
    data = await file.read()
    try:
        result = await run_in_threadpool(
            service.upload,
            data,
            file.filename,
            file.content_type,
            category=category,
            tags=tag_list,
        )
    except DocumentError as exc:
        raise _http_error(exc) from exc
    return UploadResponse(
        id=result.id,
        filename=result.filename,
        status=result.status,
        page_count=result.page_count,
    )


@router.post("/documents/text", response_model=ProcessResponse, status_code=201)
def ingest_text(
    request: TextIngestRequest,
    background_tasks: BackgroundTasks,
    service: DocumentService = Depends(get_document_service),
) -> ProcessResponse:
    """Store raw text as a document and process it immediately."""

    try:
        result = service.ingest_text(
            request.text,
            request.filename,
            category=request.category,
            tags=request.tags,
            content_type=request.content_type,
        )
    except DocumentError as exc:
        raise _http_error(exc) from exc
    background_tasks.add_task(service.index_vectors, result.id)
    return ProcessResponse(**result.to_dict())


@router.get("/documents")
def list_documents(
    category: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: DocumentService = Depends(get_document_service),
) -> dict[str, Any]:
    try:
        documents = service.list_documents(category, limit, offset)
    except DocumentError as exc:
        raise _http_error(exc) from exc
    return {"documents": documents, "limit": limit, "offset": offset}


@router.get("/documents/{document_id}")
def get_document(
    document_id: str,
    service: DocumentService = Depends(get_document_service),
) -> dict[str, Any]:
    try:
        return service.get(document_id)
    except DocumentError as exc:
        raise _http_error(exc) from exc


@router.get("/documents/{document_id}/json")
def get_document_json(
    document_id: str,
    service: DocumentService = Depends(get_document_service),
) -> dict[str, Any]:
    try:
        return service.get_json(document_id)
    except DocumentError as exc:
        raise _http_error(exc) from exc


@router.get("/documents/{document_id}/file")
def download_document_file(
    document_id: str,
    service: DocumentService = Depends(get_document_service),
) -> Response:
    try:
        stored = service.get_file(document_id)
    except DocumentError as exc:
        raise _http_error(exc) from exc
    return Response(
        content=stored.data,
        media_type=stored.content_type or "application/octet-stream",
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(stored.filename)}"},
    )


@router.post("/documents/{document_id}/process", response_model=ProcessResponse)
def process_document(
    document_id: str,
    background_tasks: BackgroundTasks,
    service: DocumentService = Depends(get_document_service),
) -> ProcessResponse:
    """Parse the stored file; vectors are indexed after the response is sent."""

    try:
        result = service.process(document_id)
    except DocumentError as exc:
        raise _http_error(exc) from exc
    background_tasks.add_task(service.index_vectors, document_id)
    return ProcessResponse(**result.to_dict())


@router.delete("/documents/{document_id}", response_model=DeleteResponse)
def delete_document(
    document_id: str,
    service: DocumentService = Depends(get_document_service),
) -> DeleteResponse:
    try:
        service.delete(document_id)
    except DocumentError as exc:
        raise _http_error(exc) from exc
    return DeleteResponse(id=document_id, status="deleted")


@router.post("/search", response_model=SearchResponse)
def search_documents(
    request: SearchRequest,
    service: DocumentService = Depends(get_document_service),
) -> SearchResponse:
    """Return ranked excerpts for a free-text query."""

    if not request.query.strip():
        raise HTTPException(status_code=422, detail="Query must not be empty")
    try:
        results = service.search(request.query, request.limit)
    except DocumentError as exc:
        raise _http_error(exc) from exc
    return SearchResponse(query=request.query, results=[_serialise_chunk(item) for item in results])


@router.post("/search/pages", response_model=PageSearchResponse)
def search_pages(
    request: SearchRequest,
    service: DocumentService = Depends(get_document_service),
) -> PageSearchResponse:
    if not request.query.strip():
        raise HTTPException(status_code=422, detail="Query must not be empty")
    try:
        hits = service.search_pages(request.query, request.limit)
    except DocumentError as exc:
        raise _http_error(exc) from exc
    return PageSearchResponse(query=request.query, results=[_serialise_page_hit(hit) for hit in hits])


@router.get("/index/health")
def index_health(service: DocumentService = Depends(get_document_service)) -> dict[str, Any]:
    try:
        return service.index_health().to_dict()
    except DocumentError as exc:
        raise _http_error(exc) from exc


@router.post("/index/rebuild")
def rebuild_index(service: DocumentService = Depends(get_document_service)) -> dict[str, Any]:
    """Repopulate the lexical index from the page and chunk tables."""

    try:
        return service.rebuild_index().to_dict()
    except DocumentError as exc:
        raise _http_error(exc) from exc
