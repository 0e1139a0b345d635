import asyncio
import unittest
from datetime import datetime, timedelta, timezone

from pymongo.errors import PyMongoError, ServerSelectionTimeoutError

from scgpt.models.schemas import RequestLogEntry
from scgpt.services.exceptions import RequestLogStoreError
from scgpt.services.request_log import (
    RequestLogger,
    RequestLogRepository,
    get_ip_stats,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FakeCollection:
    def __init__(self) -> None:
        self.documents = []
        self.indexes = []
        self.fail_inserts = False

    async def create_index(self, keys):
        await asyncio.sleep(0)
        self.indexes.append(keys)

    async def insert_one(self, document):
        if self.fail_inserts:
            raise PyMongoError("write failed")
        self.documents.append(document)

    async def count_documents(self, query):
        def matches(doc):
            if doc["ip"] != query["ip"]:
                return False
            since = query.get("timestamp", {}).get("$gte")
            return since is None or doc["timestamp"] >= since

        return sum(1 for doc in self.documents if matches(doc))


class FakeClient:
    def __init__(self, collection: FakeCollection) -> None:
        self.collection = collection
        self.closed = False
        self.databases = []

    def __getitem__(self, name):
        self.databases.append(name)
        return {"requestlogs": self.collection}

    def get_default_database(self, default=None):
        return self[default]

    def close(self) -> None:
        self.closed = True


class ClientFactory:
    def __init__(self, failures: int = 0) -> None:
        self.collection = FakeCollection()
        self.clients = []
        self.failures = failures

    def __call__(self):
        if self.failures:
            self.failures -= 1
            raise ServerSelectionTimeoutError("no servers")
        client = FakeClient(self.collection)
        self.clients.append(client)
        return client


def _repository(factory: ClientFactory, database: str | None = "scgpt") -> RequestLogRepository:
    return RequestLogRepository(factory, database, "requestlogs")


def _entry(ip: str = "203.0.113.5", when: datetime = NOW) -> RequestLogEntry:
    return RequestLogEntry(ip=ip, query="Where is Orison?", user_agent="pytest", timestamp=when)


class RequestLogRepositoryTests(unittest.IsolatedAsyncioTestCase):
    async def test_concurrent_first_use_creates_one_client(self) -> None:
        factory = ClientFactory()
        repo = _repository(factory)

        collections = await asyncio.gather(*(repo.connect() for _ in range(5)))

        self.assertEqual(len(factory.clients), 1)
        self.assertTrue(all(c is factory.collection for c in collections))
        self.assertEqual(len(factory.collection.indexes), 3)

    async def test_failed_initialization_is_retried(self) -> None:
        factory = ClientFactory(failures=1)
        repo = _repository(factory)

        with self.assertRaises(RequestLogStoreError):
            await repo.connect()
        self.assertFalse(repo.connected)

        await repo.connect()
        self.assertTrue(repo.connected)

    async def test_close_allows_reinitialization(self) -> None:
        factory = ClientFactory()
        repo = _repository(factory)

        await repo.connect()
        await repo.close()
        self.assertTrue(factory.clients[0].closed)
        self.assertFalse(repo.connected)

        await repo.connect()
        self.assertEqual(len(factory.clients), 2)

    async def test_default_database_from_uri(self) -> None:
        factory = ClientFactory()
        await _repository(factory, database=None).connect()
        self.assertEqual(factory.clients[0].databases, ["scgpt"])

    async def test_insert_uses_stored_field_names(self) -> None:
        factory = ClientFactory()
        await _repository(factory).insert(_entry())

        self.assertEqual(
            factory.collection.documents,
            [
                {
                    "ip": "203.0.113.5",
                    "query": "Where is Orison?",
                    "userAgent": "pytest",
                    "timestamp": NOW,
                }
            ],
        )

    async def test_count_requests_since(self) -> None:
        factory = ClientFactory()
        repo = _repository(factory)
        await repo.insert(_entry(when=NOW - timedelta(hours=1)))
        await repo.insert(_entry(when=NOW - timedelta(hours=30)))
        await repo.insert(_entry(ip="198.51.100.1"))

        self.assertEqual(await repo.count_requests("203.0.113.5"), 2)
        self.assertEqual(
            await repo.count_requests("203.0.113.5", since=NOW - timedelta(hours=24)), 1
        )

    async def test_insert_failure(self) -> None:
        factory = ClientFactory()
        factory.collection.fail_inserts = True
        with self.assertRaises(RequestLogStoreError):
            await _repository(factory).insert(_entry())


class IPStatsTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.factory = ClientFactory()
        self.repo = _repository(self.factory)

    async def test_counts_total_and_recent(self) -> None:
        for hours in (1, 2, 3):
            await self.repo.insert(_entry(when=NOW - timedelta(hours=hours)))
        for hours in (25, 48, 72, 100):
            await self.repo.insert(_entry(when=NOW - timedelta(hours=hours)))

        stats = await get_ip_stats(self.repo, "203.0.113.5", now=NOW)

        self.assertEqual(stats.ip, "203.0.113.5")
        self.assertEqual(stats.total_requests, 7)
        self.assertEqual(stats.recent_requests, 3)
        self.assertFalse(stats.limit_exceeded)

    async def test_limit_exceeded_above_five_recent(self) -> None:
        for minutes in range(6):
            await self.repo.insert(_entry(when=NOW - timedelta(minutes=minutes)))

        stats = await get_ip_stats(self.repo, "203.0.113.5", now=NOW)
        self.assertEqual(stats.recent_requests, 6)
        self.assertTrue(stats.limit_exceeded)
        self.assertEqual(
            stats.model_dump(by_alias=True),
            {
                "ip": "203.0.113.5",
                "totalRequests": 6,
                "recentRequests": 6,
                "limitExceeded": True,
            },
        )

    async def test_exactly_five_is_not_exceeded(self) -> None:
        for minutes in range(5):
            await self.repo.insert(_entry(when=NOW - timedelta(minutes=minutes)))
        stats = await get_ip_stats(self.repo, "203.0.113.5", now=NOW)
        self.assertFalse(stats.limit_exceeded)


class SlowRepository:
    def __init__(self) -> None:
        self.cancelled = False

    async def insert(self, entry):
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            self.cancelled = True
            raise


class FailingRepository:
    async def insert(self, entry):
        raise RequestLogStoreError("Request log store is unavailable")


class RequestLoggerTests(unittest.IsolatedAsyncioTestCase):
    async def test_write_happens_in_background(self) -> None:
        factory = ClientFactory()
        request_logger = RequestLogger(_repository(factory))

        task = request_logger.log_request(_entry())
        self.assertEqual(factory.collection.documents, [])
        self.assertEqual(request_logger.pending, 1)

        await task
        self.assertEqual(len(factory.collection.documents), 1)
        self.assertEqual(request_logger.pending, 0)

    async def test_failure_is_logged_not_raised(self) -> None:
        request_logger = RequestLogger(FailingRepository())

        with self.assertLogs("scgpt.services.request_log", level="ERROR") as logs:
            request_logger.log_request(_entry())
            await request_logger.drain()

        self.assertIn("Error logging request", logs.output[0])
        self.assertEqual(request_logger.pending, 0)

    async def test_drain_cancels_writes_after_timeout(self) -> None:
        repository = SlowRepository()
        request_logger = RequestLogger(repository)

        request_logger.log_request(_entry())
        await request_logger.drain(timeout=0.01)

        self.assertTrue(repository.cancelled)
        self.assertEqual(request_logger.pending, 0)


if __name__ == "__main__":
    unittest.main()
