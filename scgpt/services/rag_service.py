"""Core RAG orchestration service.

This service is responsible for:
- embedding the sanitized query
- retrieving relevant passages from ChromaDB
- assembling the persona/context/safety prompt
- starting the streamed chat completion

Stages run strictly in sequence; any upstream failure aborts the request
with no retry. Sanitization happens before this service is called.
"""

from __future__ import annotations

import logging
import time

from scgpt.core.config import get_settings
from scgpt.services.chroma_repository import ChromaRepository, get_chroma_repository
from scgpt.services.completion import CompletionStream, CompletionStreamer
from scgpt.services.embedding import EmbeddingClient
from scgpt.services.openai_client import get_completion_streamer, get_embedding_client
from scgpt.services.prompt import build_prompt

logger = logging.getLogger(__name__)


class RAGService:
    """High-level RAG pipeline over OpenAI and ChromaDB."""

    def __init__(
        self,
        embedder: EmbeddingClient,
        retriever: ChromaRepository,
        streamer: CompletionStreamer,
        top_k: int | None = None,
    ) -> None:
        self._embedder = embedder
        self._retriever = retriever
        self._streamer = streamer
        self._top_k = top_k or get_settings().retrieval_top_k

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    async def start_stream(self, query: str) -> CompletionStream:
        """Run the pipeline up to the first byte of the completion stream."""

        start = time.monotonic()

        logger.info("Embedding query...")
        vector = await self._embedder.embed(query)

        logger.info("Searching vector index (top %d)...", self._top_k)
        passages = await self._retriever.search(vector, self._top_k)

        prompt = build_prompt(query, passages)
        stream = await self._streamer.open_stream(prompt)

        logger.info(
            "Completion stream started",
            extra={
                "passages": len(passages),
                "duration_ms": round((time.monotonic() - start) * 1000, 2),
            },
        )
        return stream

    async def answer(self, query: str) -> str:
        """Run the pipeline and return the whole answer as one string."""

        stream = await self.start_stream(query)
        return "".join([chunk async for chunk in stream])


# Dependency helper for FastAPI -----------------------------------------------

_rag_service: RAGService | None = None


def get_rag_service() -> RAGService:
    global _rag_service
    if _rag_service is None:
        _rag_service = RAGService(
            embedder=get_embedding_client(),
            retriever=get_chroma_repository(),
            streamer=get_completion_streamer(),
        )
    return _rag_service
