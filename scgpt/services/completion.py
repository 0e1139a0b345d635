"""OpenAI Chat Completions streaming wrapper."""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator

from openai import AsyncOpenAI, OpenAIError

from scgpt.core.config import get_settings
from scgpt.models.schemas import ChatPrompt
from scgpt.services.exceptions import CompletionError

logger = logging.getLogger(__name__)


class CompletionStream:
    """Single-use async iterator over the text deltas of one completion.

    Empty deltas (role headers, finish events) are skipped. Iteration
    stops when the upstream stream ends. Leaving the loop early, including
    through cancellation when the client disconnects, closes the upstream
    response.
    """

    def __init__(self, upstream: Any) -> None:
        self._upstream = upstream
        self._started = False
        self._closed = False

    def __aiter__(self) -> AsyncIterator[str]:
        if self._started:
            raise RuntimeError("CompletionStream can only be iterated once")
        self._started = True
        return self._iter_chunks()

    async def _iter_chunks(self) -> AsyncIterator[str]:
        chunks = 0
        try:
            async for event in self._upstream:
                if not event.choices:
                    continue
                content = event.choices[0].delta.content
                if content:
                    chunks += 1
                    yield content
        except OpenAIError as exc:
            logger.error(
                "Completion stream failed after partial output",
                extra={"chunks_sent": chunks},
            )
            if not get_settings().is_production:
                logger.error("Completion error details: %s", exc)
            raise CompletionError("Completion stream aborted") from exc
        finally:
            await self.aclose()
        logger.debug("Completion stream finished", extra={"chunks_sent": chunks})

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        close = getattr(self._upstream, "close", None)
        if close is not None:
            await close()


class CompletionStreamer:
    """Starts streamed chat completions for assembled prompts."""

    def __init__(self, client: AsyncOpenAI, model: str) -> None:
        self._client = client
        self._model = model

    async def open_stream(self, prompt: ChatPrompt) -> CompletionStream:
        """Start streaming; raises `CompletionError` if the request is rejected."""

        logger.info("Generating final response with LLM (Streaming)...")
        try:
            upstream = await self._client.chat.completions.create(
                model=self._model,
                messages=prompt.as_messages(),  # type: ignore[arg-type]
                stream=True,
            )
        except OpenAIError as exc:
            logger.error("Error starting completion stream")
            if not get_settings().is_production:
                logger.error("Completion error details: %s", exc)
            raise CompletionError("Failed to start completion stream") from exc

        return CompletionStream(upstream)
