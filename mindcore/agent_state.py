"""Live agent state read by the template resolver and the session store."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

STOPPED = 0
ACTIVE = 1
PAUSED = 2


@dataclass
class SelfPrompter:
    """Self-directed goal loop state. Only the parts the core reads."""

    state: int = STOPPED
    prompt: str = ""

    def is_stopped(self) -> bool:
        return self.state == STOPPED

    def start(self, prompt: str) -> None:
        self.prompt = prompt
        self.state = ACTIVE

    def pause(self) -> None:
        if self.state == ACTIVE:
            self.state = PAUSED

    def stop(self) -> None:
        self.state = STOPPED


@dataclass
class AgentState:
    """Agent handle passed to collaborators and used for marker substitution.

    Attributes:
        name: The agent's own name. Turns from this speaker are assistant turns.
        current_action_label: Label of the action currently executing, if any.
        self_prompter: Self-prompting loop state ($SELF_PROMPT).
        constructions: Known blueprint names -> blueprint data ($BLUEPRINTS).
        last_sender: Name of the last party that messaged the agent.
        agent_input_state: Raw context list used when the session treats the
            raw context itself as memory.
    """

    name: str
    current_action_label: str = ""
    self_prompter: SelfPrompter = field(default_factory=SelfPrompter)
    constructions: Dict[str, Any] = field(default_factory=dict)
    last_sender: Optional[str] = None
    agent_input_state: List[Dict[str, Any]] = field(default_factory=list)
