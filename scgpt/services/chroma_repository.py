"""ChromaDB repository abstraction.

This layer hides the details of talking to ChromaDB over HTTP and
exposes a simple retrieval API tailored for the RAG pipeline.

Key responsibilities:
- Maintain a single `HttpClient` instance per process, created on first use
- Guarantee the collection exists
- Run nearest-neighbour search for a precomputed query embedding and
  return the stored passage texts in upstream similarity order
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Dict, List, Sequence

import chromadb
from chromadb.config import Settings as ChromaSettings

from scgpt.core.config import get_settings
from scgpt.models.schemas import ContextPassage
from scgpt.services.exceptions import VectorStoreUnavailableError

logger = logging.getLogger(__name__)


class ChromaRepository:
    """Thin wrapper around the Chroma HTTP client.

    Parameters
    ----------
    host:
        Hostname or IP where Chroma is exposed.
    port:
        TCP port where Chroma listens (typically 8000 inside Docker).
    collection_name:
        Name of the collection holding the game knowledge passages.
    api_key:
        Optional token sent as `x-chroma-token` on every request.
    ssl:
        Whether to talk HTTPS to the Chroma server.
    """

    def __init__(
        self,
        host: str,
        port: int,
        collection_name: str,
        api_key: str = "",
        ssl: bool = False,
    ) -> None:
        self._host = host
        self._port = port
        self._collection_name = collection_name
        self._api_key = api_key
        self._ssl = ssl

        self._client: Any = None
        self._collection: Any = None
        self._lock = threading.Lock()

    def _connect(self) -> Any:
        with self._lock:
            if self._collection is not None:
                return self._collection

            logger.info(
                "Initializing Chroma HttpClient",
                extra={
                    "host": self._host,
                    "port": self._port,
                    "collection": self._collection_name,
                },
            )
            headers = {"x-chroma-token": self._api_key} if self._api_key else None

            try:
                self._client = chromadb.HttpClient(
                    host=self._host,
                    port=self._port,
                    ssl=self._ssl,
                    headers=headers,
                    settings=ChromaSettings(anonymized_telemetry=False),
                )
                # Embeddings are computed by OpenAI, never by Chroma.
                self._collection = self._client.get_or_create_collection(
                    name=self._collection_name,
                    embedding_function=None,
                    metadata={"hnsw:space": "cosine"},
                )
            except Exception as exc:
                self._client = None
                logger.exception("Failed to initialize Chroma HttpClient")
                raise VectorStoreUnavailableError(str(exc)) from exc

            return self._collection

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def healthcheck(self) -> int:
        """Return Chroma's heartbeat value or raise if unavailable."""

        self._connect()
        try:
            heartbeat = self._client.heartbeat()
            logger.debug("Chroma heartbeat", extra={"heartbeat": heartbeat})
            return int(heartbeat)
        except Exception as exc:
            logger.exception("Chroma heartbeat failed")
            raise VectorStoreUnavailableError("ChromaDB is not reachable") from exc

    def similarity_search(
        self,
        vector: Sequence[float],
        n_results: int,
    ) -> List[ContextPassage]:
        """Run a nearest-neighbour query for a precomputed embedding.

        Matches without any stored text are dropped. The remaining ones
        keep Chroma's order and are ranked from 1. Cosine distances in
        [0, 2] are mapped to similarity scores in [0, 1].
        """

        collection = self._connect()
        n_results = max(1, n_results)

        logger.debug(
            "Running Chroma similarity search",
            extra={"n_results": n_results, "dimensions": len(vector)},
        )

        try:
            raw = collection.query(
                query_embeddings=[list(vector)],
                n_results=n_results,
                include=["documents", "metadatas", "distances"],
            )
        except Exception as exc:
            logger.exception("Chroma query failed")
            raise VectorStoreUnavailableError("ChromaDB query failed") from exc

        documents = (raw.get("documents") or [[]])[0] or []
        metadatas = (raw.get("metadatas") or [[]])[0] or []
        distances = (raw.get("distances") or [[]])[0] or []
        ids = (raw.get("ids") or [[]])[0] or []

        passages: List[ContextPassage] = []
        for idx, doc in enumerate(documents):
            metadata: Dict[str, Any] = (metadatas[idx] if idx < len(metadatas) else None) or {}
            text = doc or metadata.get("text")
            if not isinstance(text, str) or not text:
                continue

            distance = distances[idx] if idx < len(distances) else 0.0
            similarity = max(0.0, min(1.0, 1.0 - (float(distance) / 2.0)))

            passages.append(
                ContextPassage(
                    id=str(ids[idx]) if idx < len(ids) else str(idx),
                    text=text,
                    rank=len(passages) + 1,
                    score=similarity,
                )
            )

        if not passages:
            logger.info("Chroma returned no passages for query embedding")
        else:
            logger.debug(
                "Chroma search returned passages",
                extra={"count": len(passages), "dropped": len(documents) - len(passages)},
            )

        return passages

    async def search(
        self,
        vector: Sequence[float],
        top_k: int | None = None,
    ) -> List[ContextPassage]:
        """Async variant of `similarity_search` run in a worker thread."""

        if top_k is None:
            top_k = get_settings().retrieval_top_k
        return await asyncio.to_thread(self.similarity_search, vector, top_k)


# Dependency injection helpers -------------------------------------------------

_chroma_repo: ChromaRepository | None = None


def get_chroma_repository() -> ChromaRepository:
    """FastAPI dependency for a singleton ChromaRepository.

    The repository connects lazily, so resolving this dependency never
    touches the network.
    """

    global _chroma_repo
    if _chroma_repo is None:
        cfg = get_settings()
        _chroma_repo = ChromaRepository(
            host=cfg.chroma_host,
            port=cfg.chroma_port,
            collection_name=cfg.chroma_collection,
            api_key=cfg.chroma_api_key.get_secret_value(),
            ssl=cfg.chroma_ssl,
        )
    return _chroma_repo
