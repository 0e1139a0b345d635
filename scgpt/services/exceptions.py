"""Custom exceptions for the RAG service."""

from __future__ import annotations


class QueryValidationError(ValueError):
    """Raised when a user query is rejected before any upstream call."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class MissingQueryError(QueryValidationError):
    def __init__(self) -> None:
        super().__init__("Query is required")


class InvalidQueryTypeError(QueryValidationError):
    def __init__(self) -> None:
        super().__init__("Query must be a string")


class EmptyQueryError(QueryValidationError):
    def __init__(self) -> None:
        super().__init__("Query cannot be empty")


class QueryTooLongError(QueryValidationError):
    def __init__(self, max_length: int) -> None:
        super().__init__(
            f"Query exceeds maximum length of {max_length} characters"
        )
        self.max_length = max_length


class UpstreamServiceError(RuntimeError):
    """Base class for failures of an external service used by the pipeline.

    The message is safe to log; it is never returned to the client.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class EmbeddingError(UpstreamServiceError):
    """Raised when the embedding service fails."""


class VectorStoreUnavailableError(UpstreamServiceError):
    """Raised when ChromaDB is not reachable or returns an unexpected error."""


class CompletionError(UpstreamServiceError):
    """Raised when the chat-completion stream cannot be started or breaks."""


class RequestLogStoreError(RuntimeError):
    """Raised when the MongoDB request-log store cannot be used."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
