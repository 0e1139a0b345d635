"""MongoDB-backed request log.

Every accepted `/api/rag` request is recorded with the client IP,
sanitized query, user agent and timestamp. Writes are dispatched as
independent asyncio tasks: they never block the response and a failing
store never affects the chat pipeline. The same collection is read back
only to count requests per IP for the advisory rate-limit display.

Key responsibilities:
- Own one pooled `AsyncIOMotorClient` per process, created on first use
  under a lock and torn down explicitly on shutdown
- Ensure the `ip` / `timestamp` indexes exist
- Track in-flight log writes so shutdown can drain them
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Set

import motor.motor_asyncio
from pymongo import ASCENDING
from pymongo.errors import PyMongoError

from scgpt.core.config import Settings, get_settings
from scgpt.models.schemas import IPStats, RequestLogEntry
from scgpt.services.exceptions import RequestLogStoreError

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], Any]


def _motor_client_factory(settings: Settings) -> ClientFactory:
    def factory() -> motor.motor_asyncio.AsyncIOMotorClient:
        return motor.motor_asyncio.AsyncIOMotorClient(
            settings.mongodb_uri.get_secret_value(),
            maxPoolSize=settings.mongodb_max_pool_size,
            minPoolSize=settings.mongodb_min_pool_size,
            socketTimeoutMS=settings.mongodb_socket_timeout_ms,
            tz_aware=True,
        )

    return factory


class RequestLogRepository:
    """Lazily connected access to the request-log collection.

    Parameters
    ----------
    client_factory:
        Zero-argument callable returning a Motor client (or a compatible
        fake in tests).
    database_name:
        Database to use; `None` means the default database of the
        connection string.
    collection_name:
        Collection holding the log entries.
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        database_name: str | None,
        collection_name: str,
    ) -> None:
        self._client_factory = client_factory
        self._database_name = database_name
        self._collection_name = collection_name

        self._client: Any = None
        self._collection: Any = None
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._collection is not None

    async def connect(self) -> Any:
        """Return the collection, creating the client on first call.

        Concurrent first calls share one initialization. A failed
        initialization is discarded so the next call starts over.
        """

        if self._collection is not None:
            return self._collection

        async with self._lock:
            if self._collection is not None:
                return self._collection

            client = None
            try:
                client = self._client_factory()
                if self._database_name:
                    database = client[self._database_name]
                else:
                    database = client.get_default_database("scgpt")
                collection = database[self._collection_name]
                await self._ensure_indexes(collection)
            except PyMongoError as exc:
                if client is not None:
                    client.close()
                logger.error("MongoDB connection error: %s", exc)
                raise RequestLogStoreError("Request log store is unavailable") from exc

            self._client = client
            self._collection = collection
            logger.info(
                "MongoDB connected successfully",
                extra={"collection": self._collection_name},
            )
            return collection

    @staticmethod
    async def _ensure_indexes(collection: Any) -> None:
        await collection.create_index([("ip", ASCENDING)])
        await collection.create_index([("timestamp", ASCENDING)])
        await collection.create_index([("ip", ASCENDING), ("timestamp", ASCENDING)])

    async def insert(self, entry: RequestLogEntry) -> None:
        collection = await self.connect()
        try:
            await collection.insert_one(entry.to_document())
        except PyMongoError as exc:
            raise RequestLogStoreError("Failed to store request log entry") from exc

    async def count_requests(self, ip: str, since: datetime | None = None) -> int:
        """Count entries for `ip`, optionally only those at or after `since`."""

        collection = await self.connect()
        query: dict[str, Any] = {"ip": ip}
        if since is not None:
            query["timestamp"] = {"$gte": since}
        try:
            return int(await collection.count_documents(query))
        except PyMongoError as exc:
            raise RequestLogStoreError("Failed to count request log entries") from exc

    async def close(self) -> None:
        async with self._lock:
            if self._client is not None:
                self._client.close()
                logger.info("MongoDB disconnected")
            self._client = None
            self._collection = None


class RequestLogger:
    """Fire-and-forget writer in front of a `RequestLogRepository`."""

    def __init__(self, repository: RequestLogRepository) -> None:
        self._repository = repository
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def log_request(self, entry: RequestLogEntry) -> asyncio.Task:
        """Schedule the write and return immediately.

        The returned task is never awaited by the request path; failures
        are reported through logging only.
        """

        task = asyncio.create_task(self._repository.insert(entry))
        self._pending.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            logger.warning("Request log write cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Error logging request: %s",
                exc,
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight writes, cancelling whatever is left after `timeout`."""

        if not self._pending:
            return
        pending = list(self._pending)
        logger.info("Draining request log writes", extra={"pending": len(pending)})
        _, still_pending = await asyncio.wait(pending, timeout=timeout)
        for task in still_pending:
            task.cancel()
        if still_pending:
            await asyncio.wait(still_pending)


async def get_ip_stats(
    repository: RequestLogRepository,
    ip: str,
    settings: Settings | None = None,
    now: datetime | None = None,
) -> IPStats:
    """Count total and recent requests for `ip` for the advisory limit."""

    settings = settings or get_settings()
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(hours=settings.rate_limit_window_hours)

    total = await repository.count_requests(ip)
    recent = await repository.count_requests(ip, since=since)
    return IPStats(
        ip=ip,
        total_requests=total,
        recent_requests=recent,
        limit_exceeded=recent > settings.rate_limit_max_requests,
    )


# Dependency injection helpers -------------------------------------------------

_request_log_repo: RequestLogRepository | None = None
_request_logger: RequestLogger | None = None


def get_request_log_repository() -> RequestLogRepository:
    global _request_log_repo
    if _request_log_repo is None:
        cfg = get_settings()
        _request_log_repo = RequestLogRepository(
            client_factory=_motor_client_factory(cfg),
            database_name=cfg.mongodb_database,
            collection_name=cfg.mongodb_collection,
        )
    return _request_log_repo


def get_request_logger() -> RequestLogger:
    global _request_logger
    if _request_logger is None:
        _request_logger = RequestLogger(get_request_log_repository())
    return _request_logger


async def shutdown_request_log() -> None:
    """Drain pending writes and close the MongoDB client."""

    global _request_logger, _request_log_repo
    if _request_logger is not None:
        await _request_logger.drain(get_settings().request_log_drain_timeout)
        _request_logger = None
    if _request_log_repo is not None:
        await _request_log_repo.close()
        _request_log_repo = None
