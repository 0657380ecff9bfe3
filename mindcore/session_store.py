"""Session file persistence.

Saves and restores one agent's conversational state to
``<bots_dir>/<agent>/memory.json``. The two memory modes share one schema:
the fields of the inactive mode are written zeroed, never omitted.

Schema:
    {
        "self_prompting_state": 0,
        "self_prompt": "collect wood" | null,
        "last_sender": "steve" | null,
        "memory": "...",               # '' in raw-context mode
        "turns": [{"role", "content"}], # [] in raw-context mode
        "openaiAgentInputState": [...]  # [] in summary mode
    }
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

from mindcore.agent_state import AgentState
from mindcore.errors import PersistenceError
from mindcore.history import ConversationBuffer
from mindcore.memory_consolidator import truncate_memory
from mindcore.turns import turns_to_dicts
from mindcore_constants import MEMORY_CHAR_LIMIT

logger = logging.getLogger(__name__)

RAW_STATE_KEY = "openaiAgentInputState"


class SessionStore:
    """Reads and writes the persisted session file for one agent.

    Args:
        session_file: Path of the JSON session file.
        agent: Agent whose self-prompter, last sender and raw context are saved.
        buffer: Conversation buffer whose turns and memory are saved.
        use_raw_context_memory: Which of the two memory modes is active.
    """

    def __init__(
        self,
        session_file: Path,
        *,
        agent: AgentState,
        buffer: ConversationBuffer,
        use_raw_context_memory: bool = False,
    ):
        self._session_file = Path(session_file)
        self._agent = agent
        self._buffer = buffer
        self._use_raw_context_memory = use_raw_context_memory

    @property
    def session_file(self) -> Path:
        return self._session_file

    def _reset(self) -> None:
        self._agent.agent_input_state = []
        self._buffer.memory = ""
        self._buffer.set_turns([])

    def to_payload(self) -> Dict[str, Any]:
        self_prompter = self._agent.self_prompter
        data: Dict[str, Any] = {
            "self_prompting_state": self_prompter.state,
            "self_prompt": None if self_prompter.is_stopped() else self_prompter.prompt,
            "last_sender": self._agent.last_sender,
        }
        if self._use_raw_context_memory:
            data[RAW_STATE_KEY] = list(self._agent.agent_input_state)
            data["memory"] = ""
            data["turns"] = []
        else:
            data["memory"] = self._buffer.memory
            data["turns"] = turns_to_dicts(self._buffer.turns)
            data[RAW_STATE_KEY] = []
        return data

    def save(self) -> Path:
        """Write the session file.

        Raises:
            PersistenceError: The file could not be written.
        """
        data = self.to_payload()
        try:
            self._session_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self._session_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to save history: %s", e)
            raise PersistenceError(f"Failed to save session to {self._session_file}: {e}") from e
        mode = "raw context state" if self._use_raw_context_memory else "memory summary"
        logger.info("Saved %s to %s", mode, self._session_file)
        return self._session_file

    def load(self) -> Optional[Dict[str, Any]]:
        """Restore state from the session file.

        Returns:
            The full saved mapping (so the caller can restore the self
            prompter), or None when there is no session file yet.

        Raises:
            PersistenceError: The file exists but cannot be read or parsed.
        """
        if not self._session_file.exists():
            logger.info("No memory file found at %s", self._session_file)
            self._reset()
            return None

        try:
            with open(self._session_file, "r", encoding="utf-8") as f:
                data = json.load(f)
            if not isinstance(data, dict):
                raise ValueError("session file does not contain a JSON object")
            if self._use_raw_context_memory:
                self._agent.agent_input_state = list(data.get(RAW_STATE_KEY) or [])
                self._buffer.memory = ""
                self._buffer.set_turns([])
            else:
                memory = data.get("memory") or ""
                if not isinstance(memory, str):
                    raise ValueError("memory is not a string")
                if len(memory) > MEMORY_CHAR_LIMIT:
                    logger.warning("Loaded memory of %d chars truncated to %d", len(memory), MEMORY_CHAR_LIMIT)
                self._buffer.memory = truncate_memory(memory)
                self._buffer.set_turns(data.get("turns") or [])
                self._agent.agent_input_state = []
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error("Failed to load history: %s", e)
            self._reset()
            raise PersistenceError(f"Failed to load session from {self._session_file}: {e}") from e

        self._agent.last_sender = data.get("last_sender")
        logger.info("Loaded session state from %s", self._session_file)
        return data
