"""User query validation and cleaning.

Queries are trimmed, length checked, stripped of control characters,
script tags and code fences, and known prompt-injection phrases are
replaced with a neutral marker. Cleaning is repeated until the text stops
changing, so sanitizing an already sanitized query is a no-op.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from scgpt.core.config import get_settings
from scgpt.services.exceptions import (
    EmptyQueryError,
    InvalidQueryTypeError,
    MissingQueryError,
    QueryTooLongError,
)

logger = logging.getLogger(__name__)

FILTERED_MARKER = "[filtered content]"
CODE_BLOCK_MARKER = "[code block removed]"
BLOCKED_PROMPT_MARKER = "[blocked-prompt-injection]"
BLOCKED_COMMAND_MARKER = "blocked-command:"

_WHITESPACE_CONTROL_RE = re.compile(r"[\t\n\r]+")
_CONTROL_RE = re.compile(r"[\x00-\x1f\x7f-\x9f]")
_SCRIPT_RE = re.compile(
    r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE
)
_CODE_BLOCK_RE = re.compile(r"```.*?```", re.DOTALL)
_FENCE_RE = re.compile(r"```")
_INJECTION_PATTERNS = (
    re.compile(r"ignore (previous|above|all) instructions", re.IGNORECASE),
    re.compile(r"forget (previous|above|all) instructions", re.IGNORECASE),
    re.compile(r"system:\s*prompt", re.IGNORECASE),
    re.compile(r"you (are|should) (now|instead)", re.IGNORECASE),
)
_PROMPT_TAG_RE = re.compile(r"\[\[\s*prompt\s*\]\]", re.IGNORECASE)
_COMMAND_RE = re.compile(r"^/(system|admin|debug)\s", re.IGNORECASE)


def strip_control_characters(text: str) -> str:
    """Remove C0/C1 control characters; tabs and line breaks become spaces."""
    text = _WHITESPACE_CONTROL_RE.sub(" ", text)
    return _CONTROL_RE.sub("", text)


def _clean_once(text: str) -> str:
    text = strip_control_characters(text)
    text = _SCRIPT_RE.sub("", text)
    text = _CODE_BLOCK_RE.sub(CODE_BLOCK_MARKER, text)
    text = _FENCE_RE.sub("", text)
    for pattern in _INJECTION_PATTERNS:
        text = pattern.sub(FILTERED_MARKER, text)
    text = _PROMPT_TAG_RE.sub(BLOCKED_PROMPT_MARKER, text)
    text = text.strip()
    return _COMMAND_RE.sub(BLOCKED_COMMAND_MARKER, text)


class QuerySanitizer:
    """Validate and clean free-text queries against a maximum length."""

    def __init__(self, max_length: int) -> None:
        self.max_length = max_length

    def sanitize(self, raw: Any) -> str:
        if raw is None:
            raise MissingQueryError()
        if not isinstance(raw, str):
            raise InvalidQueryTypeError()

        trimmed = raw.strip()
        if not trimmed:
            raise EmptyQueryError()
        if len(trimmed) > self.max_length:
            raise QueryTooLongError(self.max_length)

        cleaned = trimmed
        # Markers never match a pattern, so every changing pass removes input
        # markup and the bound is never reached.
        for _ in range(len(trimmed) + 1):
            previous, cleaned = cleaned, _clean_once(cleaned)
            if cleaned == previous:
                break

        if len(cleaned) > self.max_length:
            cleaned = cleaned[: self.max_length].rstrip()
        if not cleaned:
            raise EmptyQueryError()

        if not get_settings().is_production:
            logger.debug(
                "Sanitized query",
                extra={"raw_length": len(raw), "sanitized_length": len(cleaned)},
            )
        return cleaned


def get_server_sanitizer() -> QuerySanitizer:
    """Sanitizer for `/api/rag`, limited by `query_max_length`."""
    return QuerySanitizer(get_settings().query_max_length)


def get_client_sanitizer() -> QuerySanitizer:
    """Looser browser pre-submit check, limited by `client_query_max_length`."""
    return QuerySanitizer(get_settings().client_query_max_length)


def sanitize_query(raw: Any, max_length: int | None = None) -> str:
    """Sanitize `raw` with the server profile, or with `max_length` if given."""

    if max_length is None:
        return get_server_sanitizer().sanitize(raw)
    return QuerySanitizer(max_length).sanitize(raw)
