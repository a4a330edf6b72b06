import logging
from typing import Any, Callable, TypeVar

from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse

from docrag.api.documents import router as documents_router
from docrag.logging_config import configure_logging
from docrag.services.documents import get_document_service
from docrag.telemetry import emit_app_startup_event

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def create_app() -> FastAPI:
    """Build the FastAPI application with logging configured."""

    configure_logging()

    application = FastAPI(title="Document Retrieval API")
    application.include_router(documents_router)

    def _resolve_dependency(factory: Callable[[], T]) -> T:
        """Resolve a dependency while respecting FastAPI overrides."""

        override: Any | None = application.dependency_overrides.get(factory)
        resolved: Any = override if override is not None else factory
        return resolved() if callable(resolved) else resolved

    @application.on_event("startup")
    async def _startup() -> None:
        emit_app_startup_event()

    @application.get("/", response_class=PlainTextResponse)
    def read_root() -> str:
        """Healthcheck endpoint for the service."""
        return "ok"

    @application.get("/healthz", response_class=PlainTextResponse)
    def healthcheck() -> str:
        """Liveness probe used by container orchestrators."""
        return "ok"

    @application.get("/readyz", response_class=PlainTextResponse)
    def readiness_probe() -> str:
        """Readiness probe that checks the database and the vector index."""

        try:
            service = _resolve_dependency(get_document_service)
        except Exception as exc:  # reported as not ready
            LOGGER.error("Document service unavailable: %s", exc)
            raise HTTPException(status_code=503, detail=f"service_unavailable: {exc}") from exc

        status = service.status()
        if not status.ready:
            raise HTTPException(status_code=503, detail="; ".join(status.errors))
        return "ok"

    return application


app = create_app()
