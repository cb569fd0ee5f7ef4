"""Authoritative conversation history (the serializable side of a chat)."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime
import secrets
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

Role = Literal["user", "assistant", "system", "function", "data", "tool"]

TITLE_MAX_CHARS = 100


def new_id() -> str:
    """Return a short random identifier for messages, turns and conversations."""
    return secrets.token_hex(8)


class Message(BaseModel):
    """One immutable entry of the conversation log."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    role: Role
    content: str
    name: str | None = None

    @model_validator(mode="after")
    def _name_only_for_function_role(self) -> Message:
        if self.role == "function" and not self.name:
            raise ValueError("function messages must name the tool that produced them")
        if self.role != "function" and self.name is not None:
            raise ValueError(f"{self.role} messages cannot carry a tool name")
        return self


class ChatSnapshot(BaseModel):
    """Immutable hand-off of a conversation to the persistence collaborator."""

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    owner_id: str
    created_at: datetime
    messages: tuple[Message, ...]
    path: str


class ConversationState:
    """Append-only message log for a single conversation.

    The only way to change an earlier entry is ``replace_tail``, which drops the
    last ``count`` entries and appends replacements in one step.
    """

    def __init__(
        self,
        conversation_id: str | None = None,
        messages: Iterable[Message] = (),
        created_at: datetime | None = None,
    ) -> None:
        self._conversation_id = conversation_id or new_id()
        self._messages: list[Message] = list(messages)
        self._created_at = created_at or datetime.now(UTC)

    @property
    def conversation_id(self) -> str:
        return self._conversation_id

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def append(self, *messages: Message) -> None:
        if not messages:
            return
        self._messages.extend(messages)

    def replace_tail(self, count: int, new_entries: Sequence[Message]) -> None:
        if count < 0 or count > len(self._messages):
            raise ValueError(f"cannot replace {count} of {len(self._messages)} messages")
        del self._messages[len(self._messages) - count :]
        self._messages.extend(new_entries)

    def last_index(
        self,
        *,
        role: Role,
        name: str | None = None,
        where: Callable[[Message], bool] | None = None,
    ) -> int | None:
        """Return the index of the most recent message matching role/name and predicate."""
        for index in range(len(self._messages) - 1, -1, -1):
            message = self._messages[index]
            if message.role != role or (name is not None and message.name != name):
                continue
            if where is not None and not where(message):
                continue
            return index
        return None

    def snapshot(self, owner_id: str) -> ChatSnapshot:
        title = self._messages[0].content[:TITLE_MAX_CHARS] if self._messages else ""
        return ChatSnapshot(
            id=self._conversation_id,
            title=title,
            owner_id=owner_id,
            created_at=self._created_at,
            messages=tuple(self._messages),
            path=f"/chat/{self._conversation_id}",
        )

    @classmethod
    def from_snapshot(cls, snapshot: ChatSnapshot) -> ConversationState:
        return cls(conversation_id=snapshot.id, messages=snapshot.messages, created_at=snapshot.created_at)
