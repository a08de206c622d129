"""
Chat session state.

A transcript is the ordered message history for one session key and is
replayed verbatim to the upstream model on every turn.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Literal

Role = Literal["system", "user", "assistant"]

VALID_ROLES: frozenset[str] = frozenset({"system", "user", "assistant"})


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class ChatMessage:
    """Single message in a conversation. Immutable once created."""

    role: Role
    content: str
    timestamp: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if self.role not in VALID_ROLES:
            raise ValueError(f"Unknown message role: {self.role!r}")
        if not isinstance(self.content, str) or not self.content:
            raise ValueError("Message content must be a non-empty string")

    def to_dict(self) -> dict[str, str]:
        """Wire shape sent to the chat completion API."""
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict) -> "ChatMessage":
        """Create from a {role, content} mapping."""
        return cls(role=data["role"], content=data["content"])


@dataclass
class Transcript:
    """Conversation history for a single session key."""

    session_key: str
    messages: list[ChatMessage] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def __len__(self) -> int:
        return len(self.messages)

    def add_message(self, message: ChatMessage) -> None:
        """Append a message to the conversation."""
        self.messages.append(message)
        self.updated_at = _utcnow()

    def snapshot(self) -> list[dict[str, str]]:
        """Copy of the history in wire shape, safe to hand to another task."""
        return [message.to_dict() for message in self.messages]
