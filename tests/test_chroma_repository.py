import unittest
from unittest.mock import MagicMock, patch

from scgpt.services.chroma_repository import ChromaRepository
from scgpt.services.exceptions import VectorStoreUnavailableError


class FakeCollection:
    def __init__(self, result=None, error: Exception | None = None) -> None:
        self.result = result or {}
        self.error = error
        self.calls = []

    def query(self, **kwargs):
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.result


def _repository(collection: FakeCollection) -> ChromaRepository:
    repo = ChromaRepository(host="chroma", port=8000, collection_name="test")
    repo._collection = collection
    return repo


class SimilaritySearchTests(unittest.TestCase):
    def test_preserves_order_and_assigns_ranks(self) -> None:
        collection = FakeCollection(
            {
                "ids": [["a", "b", "c"]],
                "documents": [["closest", "middle", "far"]],
                "metadatas": [[{}, {}, {}]],
                "distances": [[0.0, 0.5, 2.0]],
            }
        )
        passages = _repository(collection).similarity_search([0.1, 0.2], 3)

        self.assertEqual([p.text for p in passages], ["closest", "middle", "far"])
        self.assertEqual([p.rank for p in passages], [1, 2, 3])
        self.assertEqual([p.id for p in passages], ["a", "b", "c"])
        self.assertEqual([p.score for p in passages], [1.0, 0.75, 0.0])

        call = collection.calls[0]
        self.assertEqual(call["query_embeddings"], [[0.1, 0.2]])
        self.assertEqual(call["n_results"], 3)

    def test_matches_without_text_are_dropped(self) -> None:
        collection = FakeCollection(
            {
                "ids": [["a", "b", "c", "d"]],
                "documents": [[None, "kept", "", None]],
                "metadatas": [[None, {}, {"text": "from metadata"}, {"source": "x"}]],
                "distances": [[0.1, 0.2, 0.3, 0.4]],
            }
        )
        passages = _repository(collection).similarity_search([0.0], 4)

        self.assertEqual([p.text for p in passages], ["kept", "from metadata"])
        self.assertEqual([p.rank for p in passages], [1, 2])

    def test_empty_result_is_not_an_error(self) -> None:
        collection = FakeCollection({"ids": [[]], "documents": [[]]})
        self.assertEqual(_repository(collection).similarity_search([0.0], 50), [])

    def test_query_failure(self) -> None:
        collection = FakeCollection(error=RuntimeError("boom"))
        with self.assertRaises(VectorStoreUnavailableError):
            _repository(collection).similarity_search([0.0], 5)


class ConnectionTests(unittest.TestCase):
    def test_constructor_does_not_connect(self) -> None:
        with patch("scgpt.services.chroma_repository.chromadb.HttpClient") as http_client:
            ChromaRepository(host="chroma", port=8000, collection_name="test")
        http_client.assert_not_called()

    def test_connects_once_with_token_header(self) -> None:
        client = MagicMock()
        client.get_or_create_collection.return_value = FakeCollection({"documents": [[]]})
        with patch(
            "scgpt.services.chroma_repository.chromadb.HttpClient", return_value=client
        ) as http_client:
            repo = ChromaRepository(
                host="chroma", port=8000, collection_name="test", api_key="tok"
            )
            repo.similarity_search([0.0], 5)
            repo.similarity_search([0.0], 5)

        http_client.assert_called_once()
        self.assertEqual(http_client.call_args.kwargs["headers"], {"x-chroma-token": "tok"})
        client.get_or_create_collection.assert_called_once()

    def test_connection_failure(self) -> None:
        with patch(
            "scgpt.services.chroma_repository.chromadb.HttpClient",
            side_effect=ValueError("Could not connect"),
        ):
            repo = ChromaRepository(host="chroma", port=8000, collection_name="test")
            with self.assertRaises(VectorStoreUnavailableError):
                repo.similarity_search([0.0], 5)

    def test_healthcheck(self) -> None:
        repo = _repository(FakeCollection())
        repo._client = MagicMock()
        repo._client.heartbeat.return_value = 1700000000
        self.assertEqual(repo.healthcheck(), 1700000000)

        repo._client.heartbeat.side_effect = ConnectionError("down")
        with self.assertRaises(VectorStoreUnavailableError):
            repo.healthcheck()


class AsyncSearchTests(unittest.IsolatedAsyncioTestCase):
    async def test_search_runs_query(self) -> None:
        collection = FakeCollection({"ids": [["a"]], "documents": [["text"]], "distances": [[0.2]]})
        passages = await _repository(collection).search([0.5], top_k=7)

        self.assertEqual([p.text for p in passages], ["text"])
        self.assertEqual(collection.calls[0]["n_results"], 7)

    async def test_search_defaults_to_configured_top_k(self) -> None:
        collection = FakeCollection({"documents": [[]]})
        await _repository(collection).search([0.5])
        self.assertEqual(collection.calls[0]["n_results"], 50)


if __name__ == "__main__":
    unittest.main()
