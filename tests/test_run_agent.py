"""Tests for run_agent.AgentSession: end-to-end wiring with a fake backend."""

import json
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from mindcore.agent_state import ACTIVE
from mindcore.turns import ASSISTANT, USER, Turn
from mindcore_cli.config import Settings
from mindcore_cli.model_profiles import build_resolved_profile
from run_agent import AgentSession


PROFILE = {
    "name": "andy",
    "model": "gpt-4o-mini",
    "conversing": "You are $NAME. Memory: $MEMORY",
    "coding": "Code for $CODE_TASK",
    "saving_memory": "Summarize: $TO_SUMMARIZE",
    "bot_responder": "Respond? $TO_SUMMARIZE",
    "goal_setting": "Goal for $NAME",
}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path):
    return Settings(bots_dir=str(tmp_path / "bots"), max_messages=4, summary_chunk_size=2)


@pytest.fixture
def backend():
    async def fake_send(turns, prompt):
        if prompt.startswith("Summarize:"):
            return "Steve greeted andy twice."
        return "hello steve"

    b = MagicMock()
    b.send_request = AsyncMock(side_effect=fake_send)
    return b


@pytest.fixture
def session(settings, backend):
    return AgentSession(
        build_resolved_profile(PROFILE),
        settings,
        chat_backend=backend,
        session_start=datetime(2025, 6, 1, 12, 0, 0),
    )


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


class TestWiring:
    def test_code_backend_defaults_to_chat_backend(self, session, backend):
        assert session.dispatch.chat_backend is backend
        assert session.dispatch.code_backend is backend

    def test_backends_built_from_profile_when_not_given(self, settings):
        with patch("run_agent.create_backend") as create:
            AgentSession(build_resolved_profile(PROFILE), settings)
        create.assert_called_once()

    def test_separate_code_model_gets_its_own_backend(self, settings):
        profile = build_resolved_profile(dict(PROFILE, code_model="deepseek-coder"))
        with patch("run_agent.create_backend", side_effect=["chat", "code"]):
            session = AgentSession(profile, settings)
        assert session.dispatch.chat_backend == "chat"
        assert session.dispatch.code_backend == "code"

    def test_example_factory_builds_providers_from_profile(self, settings, backend):
        profile = build_resolved_profile(dict(
            PROFILE,
            conversation_examples=[[{"role": "user", "content": "hi"}]],
            coding_examples=[[{"role": "user", "content": "mine"}]],
        ))
        settings.num_examples = 3
        factory = MagicMock(side_effect=["convo", "coding"])

        session = AgentSession(profile, settings, chat_backend=backend, example_factory=factory)

        assert session.dispatch.convo_examples == "convo"
        assert session.dispatch.coding_examples == "coding"
        first, second = factory.call_args_list
        assert first.args == (profile.conversation_examples,)
        assert second.args == (profile.coding_examples,)
        assert first.kwargs == {"embedding": {"api": "openai"}, "num_examples": 3}

    def test_explicit_example_providers_win_over_factory(self, settings, backend):
        factory = MagicMock(return_value="built")
        session = AgentSession(
            build_resolved_profile(PROFILE), settings,
            chat_backend=backend, convo_examples="given", example_factory=factory,
        )
        assert session.dispatch.convo_examples == "given"
        assert session.dispatch.coding_examples == "built"
        factory.assert_called_once()

    def test_from_profile_file_writes_last_profile(self, tmp_path, settings, backend):
        defaults = tmp_path / "_default.json"
        defaults.write_text(json.dumps({"cooldown": 0}), encoding="utf-8")
        agent_file = tmp_path / "andy.json"
        agent_file.write_text(json.dumps(PROFILE), encoding="utf-8")
        settings.defaults_profile = str(defaults)
        settings.base_profile = str(defaults)

        session = AgentSession.from_profile_file(str(agent_file), settings, chat_backend=backend)

        assert session.name == "andy"
        assert (tmp_path / "bots" / "andy" / "last_profile.json").exists()


# ---------------------------------------------------------------------------
# Conversation flow
# ---------------------------------------------------------------------------


class TestHandleMessage:
    @pytest.mark.asyncio
    async def test_records_message_and_reply(self, session, backend):
        reply = await session.handle_message("steve", "hi andy")

        assert reply == "hello steve"
        assert session.agent.last_sender == "steve"
        assert session.buffer.turns == [
            Turn(role=USER, content="steve: hi andy"),
            Turn(role=ASSISTANT, content="hello steve"),
        ]
        backend.send_request.assert_awaited_once_with(
            [Turn(role=USER, content="steve: hi andy")], "You are andy. Memory: "
        )

    @pytest.mark.asyncio
    async def test_system_message_does_not_change_last_sender(self, session):
        await session.handle_message("steve", "hi")
        await session.handle_message("system", "Agent restarted.")
        assert session.agent.last_sender == "steve"

    @pytest.mark.asyncio
    async def test_no_reply_is_not_recorded(self, session, backend):
        backend.send_request.side_effect = None
        backend.send_request.return_value = ""
        assert await session.handle_message("steve", "hi") == ""
        assert len(session.buffer.turns) == 1

    @pytest.mark.asyncio
    async def test_eviction_consolidates_memory_and_archives(self, session, tmp_path):
        await session.handle_message("steve", "hi andy")
        await session.handle_message("steve", "hi again")

        assert session.buffer.memory == "Steve greeted andy twice."
        assert session.buffer.turns == [
            Turn(role=USER, content="steve: hi again"),
            Turn(role=ASSISTANT, content="hello steve"),
        ]
        archive = tmp_path / "bots" / "andy" / "histories" / "2025-06-01_12-00-00.json"
        assert [t["content"] for t in json.loads(archive.read_text(encoding="utf-8"))] == [
            "steve: hi andy", "hello steve",
        ]

    @pytest.mark.asyncio
    async def test_consolidated_memory_reaches_next_prompt(self, session, backend):
        await session.handle_message("steve", "hi andy")
        await session.handle_message("steve", "hi again")
        await session.handle_message("steve", "what do you remember?")

        prompts = [c.args[1] for c in backend.send_request.await_args_list if c.args[1].startswith("You are")]
        assert prompts[-1] == "You are andy. Memory: Steve greeted andy twice."


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


class TestPersistence:
    @pytest.mark.asyncio
    async def test_save_and_load_restore_session(self, session, settings, backend, tmp_path):
        await session.handle_message("steve", "hi andy")
        session.agent.self_prompter.start("collect wood")
        session.save()

        restored = AgentSession(build_resolved_profile(PROFILE), settings, chat_backend=backend)
        data = restored.load()

        assert data["last_sender"] == "steve"
        assert restored.agent.last_sender == "steve"
        assert restored.agent.self_prompter.state == ACTIVE
        assert restored.agent.self_prompter.prompt == "collect wood"
        assert restored.buffer.turns == session.buffer.turns

    def test_load_without_file(self, session):
        assert session.load() is None
        assert session.agent.self_prompter.is_stopped()

    @pytest.mark.asyncio
    async def test_close_flushes_and_saves(self, session, tmp_path):
        await session.handle_message("steve", "hi andy")
        await session.close()
        assert (tmp_path / "bots" / "andy" / "memory.json").exists()
