"""Memory consolidation for evicted conversation turns.

Compresses a chunk of evicted turns into one bounded natural-language summary
via a single model request. The new summary replaces the old one; continuity
comes from the summarisation template including ``$MEMORY``.
"""

import logging
from typing import Awaitable, Callable, Sequence

from mindcore.turns import Turn
from mindcore_constants import MEMORY_CHAR_LIMIT, MEMORY_TRUNCATION_SUFFIX

logger = logging.getLogger(__name__)

Summarizer = Callable[[Sequence[Turn]], Awaitable[str]]


def truncate_memory(text: str, limit: int = MEMORY_CHAR_LIMIT,
                    suffix: str = MEMORY_TRUNCATION_SUFFIX) -> str:
    """Cap ``text`` at ``limit`` characters, suffix included when truncated."""
    if len(text) <= limit:
        return text
    keep = max(limit - len(suffix), 0)
    return (text[:keep] + suffix)[:limit]


class MemoryConsolidator:
    """Owns the consolidated summary for one agent.

    Args:
        summarize: Coroutine function sending the memory-saving prompt for a
            chunk and returning the raw model text
            (``DispatchEngine.dispatch_memory_saving``).
        limit: Hard cap on the stored summary length.
    """

    def __init__(self, summarize: Summarizer, *, limit: int = MEMORY_CHAR_LIMIT):
        self._summarize = summarize
        self._limit = limit
        self.memory = ""
        self.stale = False

    async def consolidate(self, chunk: Sequence[Turn]) -> str:
        """Summarise ``chunk`` into the new memory and return it.

        On failure the previous summary is kept, marked stale, and the error
        propagates.
        """
        logger.info("Storing memories from %d evicted turns...", len(chunk))
        try:
            summary = await self._summarize(list(chunk))
        except Exception:
            self.stale = True
            logger.warning("Memory consolidation failed, keeping previous summary")
            raise

        summary = summary or ""
        if len(summary) > self._limit:
            logger.info("Memory summary of %d chars truncated to %d", len(summary), self._limit)
        self.memory = truncate_memory(summary, self._limit)
        self.stale = False
        logger.info("Memory updated to: %s", self.memory)
        return self.memory

    def clear(self) -> None:
        self.memory = ""
        self.stale = False
