"""
Chunking utilities for the audit pipeline.

Splits a captured request/response payload into chunks that fit the
provider's token budget alongside the prompt. Token cost is the fixed
~4 characters per token heuristic; exact tokenizer boundaries are not a goal.
"""

import logging
import math

from .common_types import Chunk

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str | None) -> int:
    """Rough estimate: 1 token ≈ 4 chars."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def chunk_content(content: str | None, prompt: str | None, token_budget: int) -> list[Chunk]:
    """
    Split content into consecutive, non-overlapping chunks.

    Args:
        content: Raw payload to analyze
        prompt: Prompt sent with every chunk
        token_budget: Max estimated tokens for prompt + chunk

    Returns:
        Chunks in input order. Empty when there is no content or when the
        prompt alone exhausts the budget (a configuration problem upstream).
    """
    if not content:
        return []

    available = token_budget - estimate_tokens(prompt)
    if available <= 0:
        logger.warning(
            f"[CHUNKER] Prompt ({estimate_tokens(prompt)} tokens) leaves no room "
            f"within token budget {token_budget}"
        )
        return []

    if estimate_tokens(content) <= available:
        return [Chunk(index=0, content=content)]

    max_chars = available * CHARS_PER_TOKEN
    chunks = [
        Chunk(index=i, content=content[start:start + max_chars])
        for i, start in enumerate(range(0, len(content), max_chars))
    ]

    logger.debug(
        f"[CHUNKER] Split {len(content)} chars into {len(chunks)} chunks "
        f"of <= {max_chars} chars"
    )
    return chunks


def compose_exchange(request_text: str, response_text: str | None = None) -> str:
    """Join a captured request and its response into one payload."""
    return f"{request_text}\n\n{response_text or ''}"


def extract_highlighted_portion(content: str, selection_start: int, selection_end: int) -> str:
    """
    Widen a user selection to whole lines.

    An invalid selection returns the whole content.
    """
    if selection_start < 0 or selection_end > len(content) or selection_start >= selection_end:
        return content

    while selection_start > 0 and content[selection_start - 1] != "\n":
        selection_start -= 1
    while selection_end < len(content) and content[selection_end] != "\n":
        selection_end += 1

    return content[selection_start:selection_end]
