"""Prompt dispatch: one entry point per purpose.

Purposes and their guards:
    conversation   -- hallucination retry (3 attempts) + staleness cancellation
    coding         -- single-flight guard, second caller gets NO_CODE_RESPONSE
    memory saving  -- no live context, used by MemoryConsolidator
    should respond -- exact "respond" match
    goal setting   -- fenced JSON parse, failures yield None

All purposes share one cooldown gate per session.
"""

import asyncio
import json
import logging
import math
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from mindcore.agent_state import AgentState
from mindcore.backends import ModelBackend
from mindcore.collaborators import ExampleProvider
from mindcore.errors import ParseError
from mindcore.history import ConversationBuffer
from mindcore.template_resolver import TemplateResolver
from mindcore.turns import USER, Turn, raw_item_to_turn
from mindcore_constants import (
    CONVERSATION_ATTEMPTS,
    GOAL_USER_TEMPLATE,
    HALLUCINATION_MARKER,
    NO_CODE_RESPONSE,
    RESPOND_KEYWORD,
)

logger = logging.getLogger(__name__)

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


@dataclass(frozen=True)
class Goal:
    name: str
    quantity: int


def _parse_quantity(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    # NaN, Infinity and overflowing literals like 1e400 have no integer value
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    match = _LEADING_INT_RE.match(str(value))
    return int(match.group(1)) if match else None


def parse_goal(text: str) -> Goal:
    """Parse a goal from the first fenced block of a model reply.

    Raises:
        ParseError: No fenced block, invalid JSON, or a missing/invalid field.
    """
    parts = (text or "").split("```")
    if len(parts) < 2:
        raise ParseError("No fenced code block in goal response", raw=text)
    data = parts[1].replace("json", "", 1).strip()
    try:
        goal = json.loads(data)
    except ValueError as e:
        raise ParseError(f"Invalid goal JSON: {e}", raw=text) from e
    if not isinstance(goal, dict):
        raise ParseError("Goal JSON is not an object", raw=text)

    name = goal.get("name")
    quantity = _parse_quantity(goal.get("quantity"))
    # Zero is rejected along with missing values; see DESIGN.md
    if not name or not quantity:
        raise ParseError("Goal is missing a name or a non-zero integer quantity", raw=text)
    return Goal(name=str(name), quantity=quantity)


class DispatchEngine:
    """Routes each prompt purpose to its template and backend.

    Args:
        agent: Live agent state (raw context for the respond decision).
        resolver: Template resolver for this agent.
        templates: Purpose key -> template text (``conversing``, ``coding``,
            ``saving_memory``, ``bot_responder``, ``goal_setting``).
        chat_backend: Backend for everything except coding.
        code_backend: Backend for coding; defaults to ``chat_backend``.
        buffer: Conversation buffer, snapshot for the respond decision.
        cooldown_ms: Minimum spacing between dispatches.
        use_raw_context_memory: Use the agent's raw context state instead of
            the buffer for the respond decision.
        convo_examples / coding_examples: Example providers.
    """

    def __init__(
        self,
        *,
        agent: AgentState,
        resolver: TemplateResolver,
        templates: Dict[str, str],
        chat_backend: ModelBackend,
        code_backend: Optional[ModelBackend] = None,
        buffer: Optional[ConversationBuffer] = None,
        cooldown_ms: int = 0,
        use_raw_context_memory: bool = False,
        convo_examples: Optional[ExampleProvider] = None,
        coding_examples: Optional[ExampleProvider] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.agent = agent
        self.resolver = resolver
        self.templates = dict(templates)
        self.chat_backend = chat_backend
        self.code_backend = code_backend or chat_backend
        self.buffer = buffer
        self.cooldown_ms = cooldown_ms
        self.use_raw_context_memory = use_raw_context_memory
        self.convo_examples = convo_examples
        self.coding_examples = coding_examples
        self._clock = clock

        # Session runtime, never persisted
        self.last_prompt_time: Optional[float] = None
        self.awaiting_coding = False
        self.most_recent_msg_time = 0
        self._cooldown_lock = asyncio.Lock()

    # -- Shared gates ---------------------------------------------------------

    async def check_cooldown(self) -> None:
        """Wait out the remainder of the cooldown, then stamp this dispatch.

        The first dispatch of a session never waits.
        """
        async with self._cooldown_lock:
            if self.cooldown_ms > 0 and self.last_prompt_time is not None:
                elapsed_ms = (self._clock() - self.last_prompt_time) * 1000
                if elapsed_ms < self.cooldown_ms:
                    await asyncio.sleep((self.cooldown_ms - elapsed_ms) / 1000)
            self.last_prompt_time = self._clock()

    def note_new_message(self) -> int:
        """Advance the most-recent-message time, invalidating in-flight conversations."""
        self.most_recent_msg_time = max(time.monotonic_ns(), self.most_recent_msg_time + 1)
        return self.most_recent_msg_time

    def _template(self, key: str) -> str:
        template = self.templates.get(key)
        if not template:
            logger.warning("No %r template configured, sending an empty prompt", key)
        return template or ""

    # -- Purposes -------------------------------------------------------------

    async def dispatch_conversation(self, context: Sequence[Turn]) -> str:
        """Generate the agent's next chat reply.

        Returns an empty string when a newer message arrived while generating
        or every attempt hallucinated another party.
        """
        current_msg_time = self.note_new_message()
        for attempt in range(1, CONVERSATION_ATTEMPTS + 1):
            await self.check_cooldown()
            if current_msg_time != self.most_recent_msg_time:
                return ""
            prompt = await self.resolver.resolve(self._template("conversing"), context, self.convo_examples)
            generation = await self.chat_backend.send_request(context, prompt)
            # In conversations with more than two parties models tend to
            # role-play as the other bots; that tag is never ours to produce
            if HALLUCINATION_MARKER in generation:
                logger.warning(
                    "LLM hallucinated message as another bot (attempt %d/%d). Trying again...",
                    attempt, CONVERSATION_ATTEMPTS,
                )
                continue
            if current_msg_time != self.most_recent_msg_time:
                logger.warning(
                    "%s received new message while generating, discarding old response.",
                    self.agent.name,
                )
                return ""
            return generation
        return ""

    async def dispatch_coding(self, context: Sequence[Turn]) -> str:
        """Generate code for the newest ``!newAction`` task, single-flight."""
        if self.awaiting_coding:
            logger.warning("Already awaiting coding response, returning no response.")
            return NO_CODE_RESPONSE
        self.awaiting_coding = True
        try:
            await self.check_cooldown()
            prompt = await self.resolver.resolve(self._template("coding"), context, self.coding_examples)
            return await self.code_backend.send_request(context, prompt)
        finally:
            self.awaiting_coding = False

    async def dispatch_memory_saving(self, to_summarize: Sequence[Turn]) -> str:
        await self.check_cooldown()
        prompt = await self.resolver.resolve(self._template("saving_memory"), None, None, to_summarize)
        return await self.chat_backend.send_request([], prompt)

    async def dispatch_should_respond(self, new_message: str) -> bool:
        """Ask the model whether the agent should answer ``new_message``."""
        await self.check_cooldown()
        context: List[Turn]
        if self.use_raw_context_memory:
            context = [raw_item_to_turn(t) for t in self.agent.agent_input_state]
        elif self.buffer is not None:
            context = self.buffer.snapshot()
        else:
            context = []
        context.append(Turn(role=USER, content=new_message))
        prompt = await self.resolver.resolve(self._template("bot_responder"), None, None, context)
        res = await self.chat_backend.send_request([], prompt)
        return res.strip().lower() == RESPOND_KEYWORD

    async def dispatch_goal_setting(
        self,
        context: Sequence[Turn],
        last_goals: Optional[Dict[str, bool]],
    ) -> Optional[Goal]:
        """Pick the next self-directed goal; None when the reply is unusable."""
        await self.check_cooldown()
        system_message = await self.resolver.resolve(self._template("goal_setting"), context)
        user_message = await self.resolver.resolve(GOAL_USER_TEMPLATE, context, None, None, last_goals)
        user_messages = [Turn(role=USER, content=user_message)]

        res = await self.chat_backend.send_request(user_messages, system_message)

        try:
            goal = parse_goal(res)
        except ParseError as e:
            logger.info("Failed to set goal: %s (response: %r)", e, res)
            return None
        logger.info("New goal: %s x%d", goal.name, goal.quantity)
        return goal
