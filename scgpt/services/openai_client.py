"""Process-wide OpenAI client shared by the embedding and completion services."""

from __future__ import annotations

import logging

from openai import AsyncOpenAI

from scgpt.core.config import get_settings
from scgpt.services.completion import CompletionStreamer
from scgpt.services.embedding import EmbeddingClient

logger = logging.getLogger(__name__)

_openai_client: AsyncOpenAI | None = None


def get_openai_client() -> AsyncOpenAI:
    """Return the shared `AsyncOpenAI` client, creating it on first use.

    Retries are disabled: a failed upstream call aborts the request.
    """

    global _openai_client
    if _openai_client is None:
        cfg = get_settings()
        _openai_client = AsyncOpenAI(
            api_key=cfg.openai_api_key.get_secret_value(),
            base_url=cfg.openai_base_url,
            max_retries=0,
        )
        logger.info("OpenAI async client created")
    return _openai_client


async def close_openai_client() -> None:
    global _openai_client
    if _openai_client is not None:
        await _openai_client.close()
        _openai_client = None


def get_embedding_client() -> EmbeddingClient:
    return EmbeddingClient(get_openai_client(), get_settings().embedding_model)


def get_completion_streamer() -> CompletionStreamer:
    return CompletionStreamer(get_openai_client(), get_settings().completion_model)
