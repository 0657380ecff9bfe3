"""Prompt template resolution.

Expands ``$MARKER`` placeholders in a profile template against the live agent
state. Each marker present in the template is replaced globally, once, in a
fixed order. Markers that survive resolution are reported as a warning and
left in place; resolution itself never fails on them.

Markers:
    $NAME, $STATS, $INVENTORY, $ACTION, $COMMAND_DOCS, $CODE_DOCS, $CODE_TASK,
    $EXAMPLES, $MEMORY, $TO_SUMMARIZE, $CONVO, $SELF_PROMPT, $LAST_GOALS,
    $BLUEPRINTS
"""

import logging
import re
from typing import Callable, Dict, List, Optional, Sequence

from mindcore.agent_state import AgentState
from mindcore.collaborators import (
    CommandDocs,
    CommandRunner,
    ExampleProvider,
    SkillLibrary,
    maybe_await,
)
from mindcore.turns import SYSTEM, Turn, as_turn, stringify_turns
from mindcore_constants import NO_CODE_TASK

logger = logging.getLogger(__name__)

MARKER_RE = re.compile(r"\$[A-Z_]+")
NEW_ACTION_RE = re.compile(r'!newAction\("?([^"]*)"?\)')


def extract_code_task(context: Optional[Sequence]) -> str:
    """Return the task of the newest non-system ``!newAction(...)`` turn, or ''."""
    for raw in reversed(list(context or [])):
        turn = as_turn(raw)
        if turn.role == SYSTEM or "!newAction(" not in turn.content:
            continue
        match = NEW_ACTION_RE.search(turn.content)
        return match.group(1) if match else ""
    return ""


def format_last_goals(last_goals: Optional[Dict[str, bool]]) -> str:
    if not last_goals:
        return ""
    goal_text = ""
    for goal, succeeded in last_goals.items():
        if succeeded:
            goal_text += f"You recently successfully completed the goal {goal}.\n"
        else:
            goal_text += f"You recently failed to complete the goal {goal}.\n"
    return goal_text.strip()


class TemplateResolver:
    """Resolves profile templates against one agent's live state.

    Args:
        agent: The AgentState whose name, action label, self prompter and
            constructions feed the markers.
        memory_source: Callable returning the current consolidated summary.
        commands: Command collaborator answering ``!stats`` / ``!inventory``.
        command_docs: Callable returning the command documentation block.
        skill_library: Collaborator providing ``$CODE_DOCS``.
        relevant_docs_count: How many skill docs to request.
        use_raw_context_memory: When True the raw context is the memory and
            ``$MEMORY`` resolves to an empty string.
    """

    def __init__(
        self,
        agent: AgentState,
        *,
        memory_source: Callable[[], str],
        commands: Optional[CommandRunner] = None,
        command_docs: Optional[CommandDocs] = None,
        skill_library: Optional[SkillLibrary] = None,
        relevant_docs_count: int = 5,
        use_raw_context_memory: bool = False,
    ):
        self._agent = agent
        self._memory_source = memory_source
        self._commands = commands
        self._command_docs = command_docs
        self._skill_library = skill_library
        self._relevant_docs_count = relevant_docs_count
        self._use_raw_context_memory = use_raw_context_memory
        self.last_unresolved: List[str] = []

    async def _run_command(self, command_name: str) -> str:
        if self._commands is None:
            logger.debug("No command runner configured, %s resolves empty", command_name)
            return ""
        return str(await maybe_await(self._commands.perform(command_name, self._agent)))

    async def resolve(
        self,
        template: str,
        context: Optional[Sequence[Turn]],
        examples: Optional[ExampleProvider] = None,
        to_summarize: Optional[Sequence[Turn]] = None,
        last_goals: Optional[Dict[str, bool]] = None,
    ) -> str:
        """Expand every known marker in ``template``.

        Args:
            template: Template text from the profile.
            context: Live conversation turns, or None when the prompt must
                not consume buffer context (memory saving).
            examples: Example provider for ``$EXAMPLES``.
            to_summarize: Turns for ``$TO_SUMMARIZE``.
            last_goals: goal name -> succeeded, for ``$LAST_GOALS``.

        Returns:
            The resolved prompt text.
        """
        prompt = template.replace("$NAME", self._agent.name)

        if "$STATS" in prompt:
            prompt = prompt.replace("$STATS", await self._run_command("!stats"))
        if "$INVENTORY" in prompt:
            prompt = prompt.replace("$INVENTORY", await self._run_command("!inventory"))
        if "$ACTION" in prompt:
            prompt = prompt.replace("$ACTION", self._agent.current_action_label or "")
        if "$COMMAND_DOCS" in prompt:
            docs = self._command_docs() if self._command_docs else ""
            prompt = prompt.replace("$COMMAND_DOCS", docs)

        code_task = ""
        if "$CODE_DOCS" in prompt or "$CODE_TASK" in prompt:
            code_task = extract_code_task(context)
            logger.debug("Extracted code task: %r", code_task)
            if "$CODE_DOCS" in prompt:
                docs = ""
                if self._skill_library is not None:
                    docs = await maybe_await(
                        self._skill_library.get_relevant_skill_docs(code_task, self._relevant_docs_count)
                    )
                prompt = prompt.replace("$CODE_DOCS", str(docs))
            if "$CODE_TASK" in prompt:
                prompt = prompt.replace("$CODE_TASK", code_task or NO_CODE_TASK)

        if "$EXAMPLES" in prompt:
            example_text = ""
            if examples is not None:
                example_text = await maybe_await(examples.create_example_message(context))
            prompt = prompt.replace("$EXAMPLES", str(example_text))

        if "$MEMORY" in prompt:
            # Raw-context mode: the conversation itself is the memory
            memory = "" if self._use_raw_context_memory else (self._memory_source() or "")
            prompt = prompt.replace("$MEMORY", memory)

        if "$TO_SUMMARIZE" in prompt:
            prompt = prompt.replace("$TO_SUMMARIZE", stringify_turns(to_summarize))
        if "$CONVO" in prompt:
            prompt = prompt.replace("$CONVO", "Recent conversation:\n" + stringify_turns(context))
        if "$SELF_PROMPT" in prompt:
            self_prompter = self._agent.self_prompter
            self_prompt = ""
            if not self_prompter.is_stopped():
                self_prompt = f'YOUR CURRENT ASSIGNED GOAL: "{self_prompter.prompt}"\n'
            prompt = prompt.replace("$SELF_PROMPT", self_prompt)
        if "$LAST_GOALS" in prompt:
            prompt = prompt.replace("$LAST_GOALS", format_last_goals(last_goals))
        if "$BLUEPRINTS" in prompt:
            constructions = self._agent.constructions or {}
            blueprints = ", ".join(constructions) if constructions else "None"
            prompt = prompt.replace("$BLUEPRINTS", blueprints)

        self.last_unresolved = self._collect_unresolved(prompt, code_task)
        if self.last_unresolved:
            logger.warning("Unknown prompt placeholders: %s", ", ".join(self.last_unresolved))
        return prompt

    def _collect_unresolved(self, prompt: str, code_task: str) -> List[str]:
        remaining = MARKER_RE.findall(prompt)
        return [
            marker for marker in remaining
            if not (self._use_raw_context_memory and marker == "$MEMORY")
            and not (marker == "$CODE_TASK" and code_task)
        ]
