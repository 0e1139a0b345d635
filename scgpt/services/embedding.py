"""OpenAI embeddings wrapper.

Converts a sanitized query into a single embedding vector. Provider
errors are logged server-side and replaced by a generic `EmbeddingError`
so no upstream detail (or credential) reaches the client.
"""

from __future__ import annotations

import logging
from typing import List

from openai import AsyncOpenAI, OpenAIError

from scgpt.core.config import get_settings
from scgpt.services.exceptions import EmbeddingError

logger = logging.getLogger(__name__)


class EmbeddingClient:
    """Async wrapper around the OpenAI embeddings endpoint."""

    def __init__(self, client: AsyncOpenAI, model: str) -> None:
        self._client = client
        self._model = model

    async def embed(self, query: str) -> List[float]:
        """Return the embedding vector for `query`."""

        try:
            response = await self._client.embeddings.create(
                model=self._model,
                input=query,
                encoding_format="float",
            )
        except OpenAIError as exc:
            logger.error("Error generating embedding")
            if not get_settings().is_production:
                logger.error("Embedding error details: %s", exc)
            raise EmbeddingError("Failed to generate embedding") from exc

        if not response.data:
            logger.error("Embedding response contained no vectors")
            raise EmbeddingError("Failed to generate embedding")

        vector = list(response.data[0].embedding)
        logger.debug(
            "Generated query embedding",
            extra={"model": self._model, "dimensions": len(vector)},
        )
        return vector
