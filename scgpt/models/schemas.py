"""Request, response and internal models for the RAG API."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field


class RagRequest(BaseModel):
    """Incoming payload for `POST /api/rag`.

    `query` is deliberately untyped: missing or non-string values are
    reported by the query sanitizer with user-facing messages.
    """

    query: Any = None


class ErrorResponse(BaseModel):
    error: str


class ContextPassage(BaseModel):
    """A text passage retrieved from the vector index.

    Attributes
    ----------
    id:
        Record id in ChromaDB.
    text:
        Stored passage text.
    rank:
        1-based position in upstream similarity order.
    score:
        Similarity in [0, 1], higher is better.
    """

    id: str
    text: str
    rank: int = Field(..., ge=1)
    score: float = Field(0.0, ge=0.0, le=1.0)


class ChatMessage(BaseModel):
    role: Literal["system", "user"]
    content: str


class ChatPrompt(BaseModel):
    """The two-message exchange sent to the completion service."""

    system: ChatMessage
    user: ChatMessage

    def as_messages(self) -> List[Dict[str, str]]:
        return [self.system.model_dump(), self.user.model_dump()]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RequestLogEntry(BaseModel):
    """One accepted `/api/rag` request, as stored in MongoDB."""

    model_config = ConfigDict(populate_by_name=True)

    ip: str
    query: str
    user_agent: str = Field("unknown", alias="userAgent")
    timestamp: datetime = Field(default_factory=_utcnow)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class IPStats(BaseModel):
    """Request counts for one client IP, used for the advisory limit."""

    model_config = ConfigDict(populate_by_name=True)

    ip: str
    total_requests: int = Field(..., ge=0, alias="totalRequests")
    recent_requests: int = Field(..., ge=0, alias="recentRequests")
    limit_exceeded: bool = Field(False, alias="limitExceeded")
