"""Bounded conversation buffer with role-aware eviction.

The buffer keeps the most recent turns of one agent's conversation. Whenever
an ``add()`` brings it to ``max_messages`` turns, the oldest chunk is evicted
synchronously and handed to the memory consolidator and the history archive.

Eviction contract:
    - The chunk is at least ``summary_chunk_size`` turns.
    - It is extended while the next front turn is an assistant turn, so the
      remaining buffer always starts on a system/user turn.
    - Consolidation and archival jobs run in the order evictions happened.
"""

import asyncio
import copy
import logging
from typing import List, Optional, Sequence

from mindcore.agent_state import AgentState
from mindcore.errors import PersistenceError
from mindcore.history_archive import HistoryArchive
from mindcore.memory_consolidator import MemoryConsolidator
from mindcore.turns import ASSISTANT, SYSTEM, USER, Turn, as_turn
from mindcore_constants import DEFAULT_MAX_MESSAGES, DEFAULT_SUMMARY_CHUNK_SIZE

logger = logging.getLogger(__name__)


class ConversationBuffer:
    """Ordered turn log for one agent.

    Args:
        agent: Owning agent; its name decides which turns are assistant turns.
        consolidator: Receives evicted chunks and owns the summary.
        archive: Receives evicted chunks for durable storage.
        max_messages: Eviction threshold.
        summary_chunk_size: Base number of turns evicted at once.
    """

    def __init__(
        self,
        agent: AgentState,
        *,
        consolidator: Optional[MemoryConsolidator] = None,
        archive: Optional[HistoryArchive] = None,
        max_messages: int = DEFAULT_MAX_MESSAGES,
        summary_chunk_size: int = DEFAULT_SUMMARY_CHUNK_SIZE,
    ):
        if summary_chunk_size < 1:
            raise ValueError("summary_chunk_size must be at least 1")
        self._agent = agent
        self._consolidator = consolidator
        self._archive = archive
        self.max_messages = max_messages
        self.summary_chunk_size = summary_chunk_size
        self.turns: List[Turn] = []
        self._eviction_jobs: List[asyncio.Task] = []
        self._awaited_jobs = set()
        self._background_errors: List[BaseException] = []
        # Memory lives here when no consolidator is attached
        self._memory = ""

    # -- Memory ---------------------------------------------------------------

    @property
    def memory(self) -> str:
        if self._consolidator is not None:
            return self._consolidator.memory
        return self._memory

    @memory.setter
    def memory(self, value: str):
        if self._consolidator is not None:
            self._consolidator.memory = value
        else:
            self._memory = value

    # -- Turns ----------------------------------------------------------------

    def snapshot(self) -> List[Turn]:
        """Return a deep copy of the ordered turns."""
        return copy.deepcopy(self.turns)

    def set_turns(self, turns: Sequence) -> None:
        """Replace the turns wholesale (session load)."""
        self.turns = [as_turn(t) for t in turns]

    async def add(self, name: str, content: str, *, wait: bool = True) -> Optional[List[Turn]]:
        """Record a message from ``name`` and evict if the buffer is full.

        Args:
            name: Speaker name. The agent's own name maps to assistant,
                ``"system"`` to system, anyone else to user (with the
                content prefixed by the speaker name).
            content: Message text.
            wait: Await consolidation and archival of an evicted chunk. When
                False they run in the background; call ``flush()`` to wait.

        Returns:
            The evicted chunk, or None when nothing was evicted.

        Raises:
            Exception: The consolidation error when ``wait`` is True.
        """
        if name == SYSTEM:
            role = SYSTEM
        elif name == self._agent.name:
            role = ASSISTANT
        else:
            role = USER
            content = f"{name}: {content}"
        self.turns.append(Turn(role=role, content=content))

        if len(self.turns) < self.max_messages:
            return None

        chunk = self._evict()
        job = self._schedule(chunk)
        if wait:
            self._awaited_jobs.add(job)
            await job
        return chunk

    def _evict(self) -> List[Turn]:
        chunk = self.turns[:self.summary_chunk_size]
        rest = self.turns[self.summary_chunk_size:]
        # Stop on a system/user boundary
        while rest and rest[0].role == ASSISTANT:
            chunk.append(rest.pop(0))
        self.turns = rest
        logger.debug("Evicted %d turns, %d remain", len(chunk), len(rest))
        return chunk

    def _schedule(self, chunk: List[Turn]) -> asyncio.Task:
        previous = self._eviction_jobs[-1] if self._eviction_jobs else None
        job = asyncio.ensure_future(self._process_eviction(chunk, previous))
        self._eviction_jobs.append(job)
        job.add_done_callback(self._job_done)
        return job

    def _job_done(self, job: asyncio.Task) -> None:
        if job in self._eviction_jobs:
            self._eviction_jobs.remove(job)
        awaited = job in self._awaited_jobs
        self._awaited_jobs.discard(job)
        if job.cancelled() or job.exception() is None:
            return
        logger.error("Eviction processing failed: %s", job.exception())
        if not awaited:
            self._background_errors.append(job.exception())

    async def _process_eviction(self, chunk: List[Turn], previous: Optional[asyncio.Task]) -> None:
        if previous is not None:
            # FIFO: wait for the earlier eviction, its failure is reported there
            await asyncio.wait([previous])
        try:
            if self._consolidator is not None:
                await self._consolidator.consolidate(chunk)
        finally:
            if self._archive is not None:
                try:
                    self._archive.append(chunk)
                except PersistenceError as e:
                    logger.error("Failed to archive evicted turns: %s", e)

    async def flush(self) -> None:
        """Wait for pending eviction jobs, re-raising the first background failure."""
        pending = list(self._eviction_jobs)
        if pending:
            await asyncio.wait(pending)
        if self._background_errors:
            error = self._background_errors[0]
            self._background_errors = []
            raise error

    def clear(self) -> None:
        """Drop all turns, the summary, and the agent's raw context state."""
        self.turns = []
        self._memory = ""
        if self._consolidator is not None:
            self._consolidator.clear()
        self._agent.agent_input_state = []
        logger.info("Cleared all memory states.")
