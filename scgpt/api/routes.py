"""API routes for the chat assistant.

`POST /api/rag` streams an answer as plain text; `GET /api/stats` reports
per-IP request counts for the advisory rate-limit display.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from scgpt.core.logging_config import request_id_var
from scgpt.models.schemas import ErrorResponse, IPStats, RagRequest, RequestLogEntry
from scgpt.services.client_ip import resolve_client_ip
from scgpt.services.completion import CompletionStream
from scgpt.services.rag_service import RAGService, get_rag_service
from scgpt.services.request_log import (
    RequestLogger,
    RequestLogRepository,
    get_ip_stats,
    get_request_log_repository,
    get_request_logger,
)
from scgpt.services.sanitizer import sanitize_query

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rag"])


async def _stream_body(
    stream: CompletionStream, request_id: str = "-"
) -> AsyncIterator[str]:
    # The body runs after the middleware has reset the request context.
    request_id_var.set(request_id)
    try:
        async for chunk in stream:
            yield chunk
    finally:
        await stream.aclose()


@router.post(
    "/rag",
    response_class=StreamingResponse,
    responses={
        200: {"content": {"text/plain": {}}},
        400: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def query_rag(
    payload: RagRequest,
    request: Request,
    rag_service: RAGService = Depends(get_rag_service),
    request_logger: RequestLogger = Depends(get_request_logger),
) -> StreamingResponse:
    """Answer a Star Citizen question, streaming the model output as text.

    Validation errors short-circuit with 400 before any upstream call.
    The request is logged per client IP without waiting for the write.
    """

    query = sanitize_query(payload.query)

    ip = resolve_client_ip(request.headers)
    user_agent = request.headers.get("user-agent") or "unknown"
    logger.info("Accepted RAG query", extra={"ip": ip, "user_agent": user_agent})

    request_logger.log_request(
        RequestLogEntry(ip=ip, query=query, user_agent=user_agent)
    )

    stream = await rag_service.start_stream(query)
    return StreamingResponse(
        _stream_body(stream, getattr(request.state, "request_id", "-")),
        media_type="text/plain",
    )


@router.get("/stats", response_model=IPStats)
async def request_stats(
    request: Request,
    repository: RequestLogRepository = Depends(get_request_log_repository),
) -> IPStats:
    """Total and last-window request counts for the calling IP."""

    ip = resolve_client_ip(request.headers)
    return await get_ip_stats(repository, ip)
