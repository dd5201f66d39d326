"""
Chat Models — data structures for sessions, messages and settings.

Hierarchy:
  Session → Message (+ MessageMetadata)

All records are frozen dataclasses — create new instances for modifications.
Timestamps are epoch seconds (float), which round-trip through SQLite REAL
columns and JSON without loss.

ChatState is the orchestrator's closed state set; GenerationContext is the
per-turn, never-persisted input to strategy selection.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any

from colloquy.chat.personas import Persona

DEFAULT_TITLE = "New Conversation"


@dataclass(frozen=True)
class MessageMetadata:
    """Generation details attached to assistant messages."""

    processing_time: float | None = None
    token_count: int | None = None
    confidence: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "processing_time": self.processing_time,
            "token_count": self.token_count,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> MessageMetadata | None:
        if not data:
            return None
        return cls(
            processing_time=data.get("processing_time"),
            token_count=data.get("token_count"),
            confidence=data.get("confidence"),
        )


@dataclass(frozen=True)
class Message:
    """A single chat message.

    `reactions` is an ordered set: insertion order is kept, duplicates never
    appear. `is_system` marks notices authored by the orchestrator itself.
    """

    content: str
    is_user: bool
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = field(default_factory=time.time)
    reactions: tuple[str, ...] = ()
    metadata: MessageMetadata | None = None
    is_system: bool = False

    @classmethod
    def user(cls, content: str) -> Message:
        return cls(content=content, is_user=True)

    @classmethod
    def assistant(
        cls, content: str, metadata: MessageMetadata | None = None
    ) -> Message:
        return cls(content=content, is_user=False, metadata=metadata)

    @classmethod
    def notice(cls, content: str) -> Message:
        return cls(content=content, is_user=False, is_system=True)

    @property
    def role(self) -> str:
        if self.is_user:
            return "user"
        return "system" if self.is_system else "assistant"

    def toggle_reaction(self, reaction: str) -> Message:
        """Add the reaction if absent, remove it if present."""
        if reaction in self.reactions:
            reactions = tuple(r for r in self.reactions if r != reaction)
        else:
            reactions = self.reactions + (reaction,)
        return replace(self, reactions=reactions)

    def with_metadata(self, metadata: MessageMetadata) -> Message:
        return replace(self, metadata=metadata)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "is_user": self.is_user,
            "timestamp": self.timestamp,
            "reactions": list(self.reactions),
            "metadata": self.metadata.to_dict() if self.metadata else None,
            "is_system": self.is_system,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            id=data["id"],
            content=data["content"],
            is_user=bool(data["is_user"]),
            timestamp=float(data["timestamp"]),
            reactions=tuple(dict.fromkeys(data.get("reactions") or [])),
            metadata=MessageMetadata.from_dict(data.get("metadata")),
            is_system=bool(data.get("is_system", False)),
        )


@dataclass(frozen=True)
class Session:
    """
    One saved conversation thread.

    `last_modified` is only ever advanced by the persistence layer when a
    store write happens; in-memory edits leave it alone.
    """

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    title: str = DEFAULT_TITLE
    created_at: float = field(default_factory=time.time)
    last_modified: float = field(default_factory=time.time)
    messages: tuple[Message, ...] = ()
    persona: Persona = Persona.NONE

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def last_message(self) -> Message | None:
        return self.messages[-1] if self.messages else None

    @property
    def user_messages(self) -> list[Message]:
        return [m for m in self.messages if m.is_user]

    def with_messages(self, messages: list[Message] | tuple[Message, ...]) -> Session:
        return replace(self, messages=tuple(messages))

    def append(self, message: Message) -> Session:
        return replace(self, messages=self.messages + (message,))

    def with_title(self, title: str) -> Session:
        return replace(self, title=title)

    def with_persona(self, persona: Persona) -> Session:
        return replace(self, persona=persona)

    def with_last_modified(self, last_modified: float) -> Session:
        return replace(self, last_modified=last_modified)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "created_at": self.created_at,
            "last_modified": self.last_modified,
            "persona": self.persona.value,
            "messages": [m.to_dict() for m in self.messages],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        return cls(
            id=data["id"],
            title=data["title"],
            created_at=float(data["created_at"]),
            last_modified=float(data["last_modified"]),
            persona=Persona(data.get("persona", Persona.NONE.value)),
            messages=tuple(Message.from_dict(m) for m in data.get("messages", [])),
        )


@dataclass(frozen=True)
class Settings:
    """Per-installation chat preferences."""

    selected_persona: Persona = Persona.NONE
    voice_enabled: bool = True
    streaming_enabled: bool = True
    max_context_length: int = 8000
    auto_save_conversations: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "selected_persona": self.selected_persona.value,
            "voice_enabled": self.voice_enabled,
            "streaming_enabled": self.streaming_enabled,
            "max_context_length": self.max_context_length,
            "auto_save_conversations": self.auto_save_conversations,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Settings:
        if not data:
            return cls()
        try:
            persona = Persona(data.get("selected_persona", Persona.NONE.value))
        except ValueError:
            persona = Persona.NONE
        return cls(
            selected_persona=persona,
            voice_enabled=bool(data.get("voice_enabled", True)),
            streaming_enabled=bool(data.get("streaming_enabled", True)),
            max_context_length=int(data.get("max_context_length", 8000)),
            auto_save_conversations=bool(data.get("auto_save_conversations", True)),
        )


class ChatStateKind(str, Enum):
    IDLE = "idle"
    THINKING = "thinking"
    STREAMING = "streaming"
    VOICE_LISTENING = "voice_listening"
    ERROR = "error"


@dataclass(frozen=True)
class ChatState:
    """The orchestrator's single active state. Only ERROR carries a reason."""

    kind: ChatStateKind
    reason: str | None = None

    @classmethod
    def error(cls, reason: str) -> ChatState:
        return cls(ChatStateKind.ERROR, reason)

    @property
    def is_generating(self) -> bool:
        return self.kind in (ChatStateKind.THINKING, ChatStateKind.STREAMING)

    def __str__(self) -> str:
        if self.kind is ChatStateKind.ERROR:
            return f"error({self.reason})"
        return self.kind.value


IDLE = ChatState(ChatStateKind.IDLE)
THINKING = ChatState(ChatStateKind.THINKING)
STREAMING = ChatState(ChatStateKind.STREAMING)
VOICE_LISTENING = ChatState(ChatStateKind.VOICE_LISTENING)


@dataclass(frozen=True)
class GenerationContext:
    """Everything strategy selection looks at for one turn."""

    input: str
    persona: Persona
    message_count: int
    settings: Settings

    @property
    def recommended_strategy(self):
        from colloquy.strategies.base import recommend_strategy

        return recommend_strategy(self)
