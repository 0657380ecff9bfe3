#!/usr/bin/env python3
"""
Agent Session Runner

Wires one agent's conversation buffer, memory consolidation, template
resolution and prompt dispatch together, and offers a small local chat loop
for trying a profile out.

Usage:
    from run_agent import AgentSession

    session = AgentSession.from_profile_file("profiles/andy.json")
    reply = await session.handle_message("steve", "hi andy!")

    python run_agent.py --profile profiles/andy.json
"""

import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import fire

from mindcore.agent_state import AgentState
from mindcore.backends import ModelBackend, create_backend
from mindcore.collaborators import CommandDocs, CommandRunner, ExampleFactory, ExampleProvider, SkillLibrary
from mindcore.dispatch import DispatchEngine
from mindcore.history import ConversationBuffer
from mindcore.history_archive import HistoryArchive
from mindcore.memory_consolidator import MemoryConsolidator
from mindcore.session_store import SessionStore
from mindcore.template_resolver import TemplateResolver
from mindcore.turns import SYSTEM
from mindcore_cli.config import Settings, load_env, load_settings
from mindcore_cli.model_profiles import ResolvedProfile, resolve_profile, write_last_profile

logger = logging.getLogger(__name__)


class AgentSession:
    """
    One agent's conversational state and prompt dispatch.

    Owns the AgentState, ConversationBuffer, MemoryConsolidator,
    HistoryArchive, TemplateResolver, DispatchEngine and SessionStore. Nothing
    is shared with other sessions.
    """

    def __init__(
        self,
        profile: ResolvedProfile,
        settings: Settings = None,
        *,
        chat_backend: ModelBackend = None,
        code_backend: ModelBackend = None,
        commands: Optional[CommandRunner] = None,
        command_docs: Optional[CommandDocs] = None,
        skill_library: Optional[SkillLibrary] = None,
        convo_examples: Optional[ExampleProvider] = None,
        coding_examples: Optional[ExampleProvider] = None,
        example_factory: Optional[ExampleFactory] = None,
        session_start: datetime = None,
    ):
        """
        Initialize the agent session.

        Args:
            profile (ResolvedProfile): Resolved agent profile (models, templates, cooldown).
            settings (Settings): Process-wide settings (defaults if omitted).
            chat_backend (ModelBackend): Override the chat backend built from the profile.
            code_backend (ModelBackend): Override the code backend; defaults to the chat
                backend when the profile has no separate code model.
            commands (CommandRunner): Answers !stats / !inventory for $STATS / $INVENTORY.
            command_docs (callable): Returns the $COMMAND_DOCS block.
            skill_library (SkillLibrary): Provides $CODE_DOCS.
            convo_examples (ExampleProvider): Few-shot examples for conversation.
            coding_examples (ExampleProvider): Few-shot examples for coding.
            example_factory (ExampleFactory): Builds whichever example provider was not
                given from the profile's example list, embedding and ``num_examples``.
            session_start (datetime): Names the history archive file (default: now).
        """
        self.profile = profile
        self.settings = settings or Settings()
        self.bot_dir = Path(self.settings.bots_dir) / profile.name
        use_raw = self.settings.use_raw_context_memory

        if example_factory is not None:
            if convo_examples is None:
                convo_examples = example_factory(
                    profile.conversation_examples,
                    embedding=profile.embedding,
                    num_examples=self.settings.num_examples,
                )
            if coding_examples is None:
                coding_examples = example_factory(
                    profile.coding_examples,
                    embedding=profile.embedding,
                    num_examples=self.settings.num_examples,
                )

        self.agent = AgentState(name=profile.name)
        self.consolidator = MemoryConsolidator(self._summarize)
        self.archive = HistoryArchive(self.bot_dir / "histories", session_start=session_start)
        self.buffer = ConversationBuffer(
            self.agent,
            consolidator=self.consolidator,
            archive=self.archive,
            max_messages=self.settings.max_messages,
            summary_chunk_size=self.settings.summary_chunk_size,
        )
        self.resolver = TemplateResolver(
            self.agent,
            memory_source=lambda: self.buffer.memory,
            commands=commands,
            command_docs=command_docs,
            skill_library=skill_library,
            relevant_docs_count=self.settings.relevant_docs_count,
            use_raw_context_memory=use_raw,
        )

        if chat_backend is None:
            chat_backend = create_backend(profile.chat_model, max_tokens=profile.max_tokens)
        if code_backend is None:
            if profile.code_model == profile.chat_model:
                code_backend = chat_backend
            else:
                code_backend = create_backend(profile.code_model, max_tokens=profile.max_tokens)

        self.dispatch = DispatchEngine(
            agent=self.agent,
            resolver=self.resolver,
            templates=dict(profile.templates),
            chat_backend=chat_backend,
            code_backend=code_backend,
            buffer=self.buffer,
            cooldown_ms=profile.cooldown_ms,
            use_raw_context_memory=use_raw,
            convo_examples=convo_examples,
            coding_examples=coding_examples,
        )
        self.store = SessionStore(
            self.bot_dir / "memory.json",
            agent=self.agent,
            buffer=self.buffer,
            use_raw_context_memory=use_raw,
        )
        logger.info("Session ready for %s (state in %s)", profile.name, self.bot_dir)

    @classmethod
    def from_profile_file(cls, profile_path: str, settings: Settings = None, **kwargs) -> "AgentSession":
        """Resolve ``profile_path`` against the settings and build a session."""
        settings = settings or load_settings()
        profile = resolve_profile(profile_path, settings)
        write_last_profile(profile, Path(settings.bots_dir) / profile.name)
        return cls(profile, settings, **kwargs)

    @property
    def name(self) -> str:
        return self.agent.name

    async def _summarize(self, chunk):
        return await self.dispatch.dispatch_memory_saving(chunk)

    async def handle_message(self, source: str, message: str) -> str:
        """Record ``message`` from ``source`` and return the agent's reply ('' if none)."""
        if source != SYSTEM:
            self.agent.last_sender = source
        await self.buffer.add(source, message)

        reply = await self.dispatch.dispatch_conversation(self.buffer.snapshot())
        if reply:
            await self.buffer.add(self.name, reply)
        return reply

    def save(self) -> Path:
        return self.store.save()

    def load(self) -> Optional[Dict[str, Any]]:
        """Restore the session file and the self-prompter state it carries."""
        data = self.store.load()
        if data:
            self.agent.self_prompter.state = data.get("self_prompting_state") or 0
            self.agent.self_prompter.prompt = data.get("self_prompt") or ""
        return data

    async def close(self) -> None:
        """Wait for background consolidation, then persist the session."""
        try:
            await self.buffer.flush()
        finally:
            self.save()

    async def chat_loop(self, user: str = "user") -> None:
        """Read lines from stdin and answer them until EOF or /quit."""
        loop = asyncio.get_running_loop()
        self.load()
        print(f"Chatting with {self.name}. Type /quit to exit.")
        try:
            while True:
                line = await loop.run_in_executor(None, sys.stdin.readline)
                if not line:
                    break
                line = line.strip()
                if not line:
                    continue
                if line in ("/quit", "/exit"):
                    break
                reply = await self.handle_message(user, line)
                print(f"{self.name}: {reply}" if reply else f"({self.name} did not respond)")
        finally:
            await self.close()


def _configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%H:%M:%S'
        )
        # Keep third-party libraries at WARNING level to reduce noise
        logging.getLogger('openai').setLevel(logging.WARNING)
        logging.getLogger('httpx').setLevel(logging.WARNING)
        logging.getLogger('httpcore').setLevel(logging.WARNING)
        logging.getLogger('asyncio').setLevel(logging.WARNING)
    else:
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(levelname)s - %(message)s',
            datefmt='%H:%M:%S'
        )
        logging.getLogger('openai').setLevel(logging.ERROR)
        logging.getLogger('httpx').setLevel(logging.ERROR)
        logging.getLogger('httpcore').setLevel(logging.ERROR)


def main(profile: str, settings: str = None, user: str = "user", verbose: bool = False):
    """
    Chat with an agent profile from the terminal.

    Args:
        profile (str): Path to the agent profile JSON.
        settings (str): Path to settings.yaml (default: $MINDCORE_HOME/settings.yaml).
        user (str): Name you chat as.
        verbose (bool): Debug logging.
    """
    _configure_logging(verbose)
    load_env(Path(__file__).parent)
    session = AgentSession.from_profile_file(profile, load_settings(settings))
    asyncio.run(session.chat_loop(user=user))


def cli():
    fire.Fire(main)


if __name__ == "__main__":
    cli()
