"""Prompt assembly for the Star Citizen assistant.

The system message is the persona template with the retrieved context
inserted, followed by fixed safety guidelines. Retrieved passages go
through the same control-character stripping as user queries and are
capped in count and length before they reach the prompt.
"""

from __future__ import annotations

import logging
from typing import List, Sequence

from scgpt.core.config import get_settings
from scgpt.models.schemas import ChatMessage, ChatPrompt, ContextPassage
from scgpt.services.sanitizer import strip_control_characters

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "..."

PERSONA_TEMPLATE = (
    "You are a chat assistant roleplaying as an AI chat assistant within the "
    "game Star Citizen to answer questions from users. This can range from "
    "general queries, to finding out where to buy commodities, the best place "
    "to buy commodities, and so much more. All currencies are in aUEC format "
    "(alpha united earth credits). Use the following context to answer user "
    "queries.\n\nContext:\n{context}\n\n"
    "Output your response in markdown for proper formatting in the chat ui "
    "including proper headings."
)

SAFETY_GUIDELINES = (
    "\n\nImportant guidelines:\n"
    "- Only provide information relevant to Star Citizen game\n"
    "- Stick to the facts provided in the context\n"
    "- If you're unsure, express uncertainty rather than making up information\n"
    "- Do not generate harmful, misleading, or inappropriate content"
)


def sanitize_passage(text: str, max_characters: int | None = None) -> str:
    if max_characters is None:
        max_characters = get_settings().max_passage_characters
    cleaned = strip_control_characters(text).strip()
    if len(cleaned) > max_characters:
        cleaned = cleaned[:max_characters] + TRUNCATION_MARKER
    return cleaned


def validate_context(
    passages: Sequence[ContextPassage | str],
    max_passages: int | None = None,
    max_characters: int | None = None,
) -> List[str]:
    """Drop empty passages, clean the rest and keep at most `max_passages`."""

    if max_passages is None:
        max_passages = get_settings().max_context_passages

    texts = [p.text if isinstance(p, ContextPassage) else p for p in passages]
    cleaned = [
        sanitize_passage(text, max_characters)
        for text in texts
        if text and text.strip()
    ]
    return [text for text in cleaned if text][:max_passages]


def build_prompt(
    query: str,
    passages: Sequence[ContextPassage | str],
) -> ChatPrompt:
    """Build the system + user exchange for one stateless request."""

    context = validate_context(passages)
    if not context:
        logger.info("No relevant context found. Falling back to general knowledge.")

    system_prompt = PERSONA_TEMPLATE.format(context="\n\n".join(context))
    system_prompt += SAFETY_GUIDELINES

    logger.debug(
        "Assembled prompt",
        extra={"passages": len(context), "system_chars": len(system_prompt)},
    )

    return ChatPrompt(
        system=ChatMessage(role="system", content=system_prompt),
        user=ChatMessage(role="user", content=query),
    )
