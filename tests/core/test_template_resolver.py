"""Tests for mindcore.template_resolver: marker expansion against live agent state."""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from mindcore.agent_state import AgentState
from mindcore.template_resolver import TemplateResolver, extract_code_task, format_last_goals
from mindcore.turns import ASSISTANT, SYSTEM, USER, Turn
from mindcore_constants import NO_CODE_TASK


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def agent():
    return AgentState(name="Bob")


@pytest.fixture
def commands():
    runner = MagicMock()
    runner.perform = MagicMock(side_effect=lambda name, agent: f"<{name} for {agent.name}>")
    return runner


@pytest.fixture
def resolver(agent, commands):
    return TemplateResolver(
        agent,
        memory_source=lambda: "Bob likes oak trees.",
        commands=commands,
        command_docs=lambda: "!goTo: go somewhere",
    )


CONVO = [
    Turn(role=USER, content="steve: hi bob"),
    Turn(role=ASSISTANT, content="hey steve"),
    Turn(role=SYSTEM, content="Code output: done"),
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestExtractCodeTask:
    def test_newest_new_action_wins(self):
        context = [
            Turn(role=ASSISTANT, content='!newAction("collect wood")'),
            Turn(role=USER, content="steve: build a house"),
            Turn(role=ASSISTANT, content='Sure! !newAction("build a small house")'),
        ]
        assert extract_code_task(context) == "build a small house"

    def test_system_turns_ignored(self):
        context = [
            Turn(role=ASSISTANT, content='!newAction("collect wood")'),
            Turn(role=SYSTEM, content='!newAction("from system")'),
        ]
        assert extract_code_task(context) == "collect wood"

    def test_unquoted_argument(self):
        assert extract_code_task([{"role": "assistant", "content": "!newAction(dig down)"}]) == "dig down"

    def test_no_task(self):
        assert extract_code_task(CONVO) == ""
        assert extract_code_task(None) == ""


def test_format_last_goals():
    text = format_last_goals({"wooden_pickaxe": True, "iron_ingot": False})
    assert text == (
        "You recently successfully completed the goal wooden_pickaxe.\n"
        "You recently failed to complete the goal iron_ingot."
    )
    assert format_last_goals(None) == ""


# ---------------------------------------------------------------------------
# resolve()
# ---------------------------------------------------------------------------


class TestResolve:
    @pytest.mark.asyncio
    async def test_template_without_markers_unchanged(self, resolver, commands):
        template = "You are a helpful Minecraft bot. Costs 5 $ per item."
        assert await resolver.resolve(template, CONVO) == template
        commands.perform.assert_not_called()
        assert resolver.last_unresolved == []

    @pytest.mark.asyncio
    async def test_name_replaced_everywhere(self, resolver):
        assert await resolver.resolve("I am $NAME. $NAME!", CONVO) == "I am Bob. Bob!"

    @pytest.mark.asyncio
    async def test_stats_and_inventory_run_commands(self, resolver, commands):
        prompt = await resolver.resolve("$STATS\n$INVENTORY", CONVO)
        assert prompt == "<!stats for Bob>\n<!inventory for Bob>"
        assert [c.args[0] for c in commands.perform.call_args_list] == ["!stats", "!inventory"]

    @pytest.mark.asyncio
    async def test_async_command_runner(self, agent):
        runner = MagicMock()
        runner.perform = AsyncMock(return_value="health: 20")
        resolver = TemplateResolver(agent, memory_source=lambda: "", commands=runner)
        assert await resolver.resolve("$STATS", []) == "health: 20"

    @pytest.mark.asyncio
    async def test_action_and_command_docs(self, resolver, agent):
        agent.current_action_label = "action:collectBlocks"
        prompt = await resolver.resolve("Doing $ACTION. Docs: $COMMAND_DOCS", CONVO)
        assert prompt == "Doing action:collectBlocks. Docs: !goTo: go somewhere"

    @pytest.mark.asyncio
    async def test_code_task_and_docs(self, agent):
        skills = MagicMock()
        skills.get_relevant_skill_docs = AsyncMock(return_value="skills.collectBlock(...)")
        resolver = TemplateResolver(agent, memory_source=lambda: "", skill_library=skills, relevant_docs_count=3)
        context = [Turn(role=ASSISTANT, content='!newAction("mine iron")')]

        prompt = await resolver.resolve("Task: $CODE_TASK\n$CODE_DOCS", context)

        assert prompt == "Task: mine iron\nskills.collectBlock(...)"
        skills.get_relevant_skill_docs.assert_awaited_once_with("mine iron", 3)

    @pytest.mark.asyncio
    async def test_missing_code_task_uses_fallback_text(self, resolver):
        prompt = await resolver.resolve("Task: $CODE_TASK", CONVO)
        assert prompt == f"Task: {NO_CODE_TASK}"
        assert resolver.last_unresolved == []

    @pytest.mark.asyncio
    async def test_examples(self, resolver):
        examples = MagicMock()
        examples.create_example_message = MagicMock(return_value="Example 1: ...")
        assert await resolver.resolve("$EXAMPLES", CONVO, examples) == "Example 1: ..."
        examples.create_example_message.assert_called_once_with(CONVO)

    @pytest.mark.asyncio
    async def test_examples_without_provider_resolve_empty(self, resolver):
        assert await resolver.resolve("[$EXAMPLES]", CONVO) == "[]"
        assert resolver.last_unresolved == []

    @pytest.mark.asyncio
    async def test_memory(self, resolver):
        assert await resolver.resolve("Memory: $MEMORY", CONVO) == "Memory: Bob likes oak trees."

    @pytest.mark.asyncio
    async def test_memory_empty_in_raw_context_mode(self, agent):
        resolver = TemplateResolver(agent, memory_source=lambda: "ignored", use_raw_context_memory=True)
        assert await resolver.resolve("Memory: $MEMORY", CONVO) == "Memory: "
        assert resolver.last_unresolved == []

    @pytest.mark.asyncio
    async def test_to_summarize_and_convo(self, resolver):
        to_summarize = [Turn(role=USER, content="steve: old stuff")]
        prompt = await resolver.resolve("$TO_SUMMARIZE|$CONVO", CONVO, None, to_summarize)
        assert prompt == (
            "User input: steve: old stuff|"
            "Recent conversation:\n"
            "User input: steve: hi bob\n"
            "Your output:\nhey steve\n"
            "System output: Code output: done"
        )

    @pytest.mark.asyncio
    async def test_self_prompt_only_when_active(self, resolver, agent):
        assert await resolver.resolve("[$SELF_PROMPT]", CONVO) == "[]"
        agent.self_prompter.start("collect 10 logs")
        assert await resolver.resolve("[$SELF_PROMPT]", CONVO) == (
            '[YOUR CURRENT ASSIGNED GOAL: "collect 10 logs"\n]'
        )

    @pytest.mark.asyncio
    async def test_last_goals(self, resolver):
        prompt = await resolver.resolve("$LAST_GOALS", CONVO, None, None, {"stone_pickaxe": True})
        assert prompt == "You recently successfully completed the goal stone_pickaxe."

    @pytest.mark.asyncio
    async def test_blueprints(self, resolver, agent):
        assert await resolver.resolve("$BLUEPRINTS", CONVO) == "None"
        agent.constructions = {"small_house": {}, "tower": {}}
        assert await resolver.resolve("$BLUEPRINTS", CONVO) == "small_house, tower"

    @pytest.mark.asyncio
    async def test_unknown_marker_left_in_place_and_reported(self, resolver, caplog):
        with caplog.at_level(logging.WARNING, logger="mindcore.template_resolver"):
            prompt = await resolver.resolve("Hi $NAME, see $WEATHER", CONVO)
        assert prompt == "Hi Bob, see $WEATHER"
        assert resolver.last_unresolved == ["$WEATHER"]
        assert "$WEATHER" in caplog.text

    @pytest.mark.asyncio
    async def test_without_collaborators_markers_resolve_empty(self, agent):
        resolver = TemplateResolver(agent, memory_source=lambda: "")
        prompt = await resolver.resolve("[$STATS][$INVENTORY][$COMMAND_DOCS][$CODE_DOCS]", [])
        assert prompt == "[][][][]"
