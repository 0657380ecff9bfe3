"""
Interfaces for the collaborators the core consumes but does not implement.

Each method may be synchronous or return an awaitable; callers go through
``maybe_await`` so either shape works.
"""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Mapping, Optional, Protocol, Sequence, Union

from mindcore.turns import Turn

TextResult = Union[str, Awaitable[str]]


class CommandRunner(Protocol):
    """Executes agent commands such as ``!stats`` and ``!inventory``."""

    def perform(self, command_name: str, agent: Any) -> TextResult:
        """Run ``command_name`` against ``agent`` and return its text output."""


class SkillLibrary(Protocol):
    """Retrieves skill documentation relevant to a coding task."""

    def get_relevant_skill_docs(self, task: str, count: int) -> TextResult:
        """Return up to ``count`` docs relevant to ``task`` as one string."""


class ExampleProvider(Protocol):
    """Selects few-shot examples for the current context."""

    def create_example_message(self, context: Optional[Sequence[Turn]]) -> TextResult:
        """Return the example block to splice into the prompt."""


class ExampleFactory(Protocol):
    """Builds an ExampleProvider from a profile's example list."""

    def __call__(
        self,
        examples: Sequence[Any],
        *,
        embedding: Mapping[str, Any],
        num_examples: int,
    ) -> ExampleProvider:
        ...


class CommandDocs(Protocol):
    """Returns the command documentation block for $COMMAND_DOCS."""

    def __call__(self) -> str:
        ...


async def maybe_await(value: Any) -> Any:
    # Support both sync and async collaborators
    if inspect.isawaitable(value):
        return await value
    return value
