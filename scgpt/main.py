"""FastAPI entrypoint for the SCGPT Star Citizen assistant.

This module wires together:
- configuration
- logging
- HTTP routes
- RAG service, ChromaDB repository and the MongoDB request log

The assistant embeds each question with OpenAI, retrieves game knowledge
passages from a ChromaDB server over HTTP and streams the chat completion
back to the browser as plain text.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from scgpt.api.routes import router as api_router
from scgpt.core.config import Settings, get_settings
from scgpt.core.logging_config import configure_logging, request_id_var
from scgpt.services.chroma_repository import ChromaRepository, get_chroma_repository
from scgpt.services.exceptions import (
    QueryValidationError,
    RequestLogStoreError,
    UpstreamServiceError,
    VectorStoreUnavailableError,
)
from scgpt.services.openai_client import close_openai_client
from scgpt.services.request_log import shutdown_request_log

# Configure root logger before creating the app
configure_logging()
logger = logging.getLogger(__name__)

GENERIC_ERROR = "Failed to process request"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    logger.info("Shutting down")
    await shutdown_request_log()
    await close_openai_client()


def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Middleware for request IDs and basic timing/observability
    @app.middleware("http")
    async def add_request_context(
        request: Request, call_next: Callable
    ):  # type: ignore[override]
        start = time.monotonic()
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        # Attach to state and context so handlers and log records see it
        request.state.request_id = request_id
        token = request_id_var.set(request_id)

        logger.info(
            "Incoming request",
            extra={"method": request.method, "path": request.url.path},
        )

        try:
            response = await call_next(request)
        except Exception:
            logger.exception("Unhandled exception during request")
            raise
        finally:
            duration_ms = (time.monotonic() - start) * 1000
            logger.info(
                "Response started",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": round(duration_ms, 2),
                },
            )
            request_id_var.reset(token)

        # Propagate request ID back to client for easier tracing
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(QueryValidationError)
    async def query_validation_handler(
        request: Request, exc: QueryValidationError
    ) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_body_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": "Invalid request body"})

    @app.exception_handler(UpstreamServiceError)
    async def upstream_failure_handler(
        request: Request, exc: UpstreamServiceError
    ) -> JSONResponse:
        # Detail stays in server logs only.
        logger.error(
            "Error processing RAG request",
            extra={"error_type": type(exc).__name__, "detail": exc.message},
        )
        return JSONResponse(status_code=500, content={"error": GENERIC_ERROR})

    @app.exception_handler(RequestLogStoreError)
    async def request_log_store_handler(
        request: Request, exc: RequestLogStoreError
    ) -> JSONResponse:
        logger.error("Request log store unavailable", extra={"detail": exc.message})
        return JSONResponse(
            status_code=503,
            content={"error": "Request statistics are currently unavailable"},
        )

    @app.exception_handler(Exception)
    async def unexpected_failure_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.exception("Unexpected error processing request")
        return JSONResponse(status_code=500, content={"error": GENERIC_ERROR})

    # Health check endpoint that verifies Chroma connectivity
    @app.get("/health", tags=["system"])
    async def health(
        settings: Settings = Depends(get_settings),
        chroma_repo: ChromaRepository = Depends(get_chroma_repository),
    ) -> dict:
        try:
            heartbeat = await asyncio.to_thread(chroma_repo.healthcheck)
        except VectorStoreUnavailableError as exc:
            # Map repository-level error to a failing health check
            raise HTTPException(status_code=503, detail=exc.message) from exc

        return {
            "status": "ok",
            "app_version": settings.app_version,
            "chroma_heartbeat": heartbeat,
        }

    app.include_router(api_router, prefix="/api")

    return app


app = create_app()
