"""Turn value type and text helpers shared by the buffer and the resolver."""

import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

SYSTEM = "system"
USER = "user"
ASSISTANT = "assistant"
ROLES = (SYSTEM, USER, ASSISTANT)


@dataclass(frozen=True)
class Turn:
    role: str
    content: str

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Unknown turn role: {self.role!r}")

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Turn":
        return cls(role=data["role"], content=data.get("content") or "")


def as_turn(value: Any) -> Turn:
    """Accept either a Turn or a {"role", "content"} mapping."""
    if isinstance(value, Turn):
        return value
    return Turn.from_dict(value)


def raw_item_to_turn(item: Any) -> Turn:
    """Best-effort Turn for one raw agent-input item.

    Raw context holds whatever the model API produced (function calls, tool
    results, ...). Missing or unknown roles read as user input and items
    without text content are rendered as JSON.
    """
    if isinstance(item, Turn):
        return item
    if not isinstance(item, dict):
        return Turn(role=USER, content=str(item))
    role = item.get("role")
    if role not in (SYSTEM, ASSISTANT):
        role = USER
    content = item.get("content")
    if content is None:
        content = json.dumps(item, ensure_ascii=False, default=str)
    elif not isinstance(content, str):
        content = json.dumps(content, ensure_ascii=False, default=str)
    return Turn(role=role, content=content)


def turns_to_dicts(turns: Optional[Iterable[Any]]) -> List[Dict[str, str]]:
    return [as_turn(t).to_dict() for t in (turns or [])]


def stringify_turns(turns: Optional[Iterable[Any]]) -> str:
    """Flatten turns into the plain-text transcript used inside prompts."""
    res = ""
    for turn in turns or []:
        turn = as_turn(turn)
        if turn.role == ASSISTANT:
            res += f"\nYour output:\n{turn.content}"
        elif turn.role == SYSTEM:
            res += f"\nSystem output: {turn.content}"
        else:
            res += f"\nUser input: {turn.content}"
    return res.strip()
