"""One-time initialization script to populate Chroma with sample data.

In a real deployment this script would run in a dedicated Docker service
that depends_on the Chroma container. It connects over HTTP, embeds a
small corpus of Star Citizen knowledge passages with the same OpenAI
model the API uses for queries, and idempotently inserts them. It is
safe to run multiple times; inserts are skipped when ids already exist.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, List

import chromadb
from chromadb.config import Settings as ChromaSettings
from openai import OpenAI

from scgpt.core.config import get_settings

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

EmbedFn = Callable[[List[str]], List[List[float]]]


def build_sample_corpus() -> List[dict]:
    """Return a small sample corpus of game knowledge passages.

    In production, this would be replaced by a real loader that ingests
    commodity tables, location guides and patch notes into passages.
    """

    docs = []

    docs.append(
        {
            "id": "currency-1",
            "text": (
                "All prices in Star Citizen are quoted in aUEC (alpha United "
                "Earth Credits). aUEC is earned through missions, trading and "
                "mining and is reset during major wipes."
            ),
            "metadata": {"source": "guides/currency.md", "topic": "economy"},
        }
    )

    docs.append(
        {
            "id": "trading-1",
            "text": (
                "Commodities are bought and sold at trade terminals found at "
                "space stations, landing zones and outposts. Prices vary by "
                "location and change with local supply and demand."
            ),
            "metadata": {"source": "guides/trading.md", "topic": "trading"},
        }
    )

    docs.append(
        {
            "id": "trading-2",
            "text": (
                "Quantanium is a high-value mineable commodity. Raw ore becomes "
                "unstable over time, so haulers should sell refined cargo at a "
                "refinery-equipped station as quickly as possible."
            ),
            "metadata": {"source": "guides/mining.md", "topic": "mining"},
        }
    )

    docs.append(
        {
            "id": "locations-1",
            "text": (
                "Port Olisar was replaced by orbital stations around each "
                "Stanton planet. Area18 on ArcCorp, Lorville on Hurston, New "
                "Babbage on microTech and Orison on Crusader are the main "
                "landing zones."
            ),
            "metadata": {"source": "guides/locations.md", "topic": "locations"},
        }
    )

    return docs


def seed_collection(collection: Any, docs: List[dict], embed: EmbedFn) -> int:
    """Add the documents missing from `collection`; return how many were added."""

    existing_ids = set(collection.get(ids=[d["id"] for d in docs])["ids"])
    new_docs = [d for d in docs if d["id"] not in existing_ids]

    if not new_docs:
        logger.info("Chroma collection already contains all sample documents; nothing to do")
        return 0

    logger.info("Adding %d new documents to Chroma", len(new_docs))

    collection.add(
        ids=[d["id"] for d in new_docs],
        documents=[d["text"] for d in new_docs],
        metadatas=[d["metadata"] for d in new_docs],
        embeddings=embed([d["text"] for d in new_docs]),
    )
    return len(new_docs)


def main() -> None:
    settings = get_settings()

    logger.info(
        "Connecting to Chroma for initialization",
        extra={"host": settings.chroma_host, "port": settings.chroma_port},
    )

    api_key = settings.chroma_api_key.get_secret_value()
    client = chromadb.HttpClient(
        host=settings.chroma_host,
        port=settings.chroma_port,
        ssl=settings.chroma_ssl,
        headers={"x-chroma-token": api_key} if api_key else None,
        settings=ChromaSettings(anonymized_telemetry=False),
    )

    collection = client.get_or_create_collection(
        name=settings.chroma_collection,
        embedding_function=None,
        metadata={"hnsw:space": "cosine"},
    )

    openai_client = OpenAI(
        api_key=settings.openai_api_key.get_secret_value(),
        base_url=settings.openai_base_url,
    )

    def embed(texts: List[str]) -> List[List[float]]:
        response = openai_client.embeddings.create(
            model=settings.embedding_model,
            input=texts,
            encoding_format="float",
        )
        return [list(item.embedding) for item in response.data]

    seed_collection(collection, build_sample_corpus(), embed)

    logger.info("Initialization completed successfully")


if __name__ == "__main__":  # pragma: no cover - script entrypoint
    main()
