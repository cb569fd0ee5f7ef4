from __future__ import annotations

import json
import logging
from typing import Any

import asyncpg
from pydantic import ValidationError

from genui_assistant.services.chat_state import ChatSnapshot, Message
from genui_assistant.services.contracts import DatabaseServiceProtocol
from genui_assistant.services.errors import PersistenceError

logger = logging.getLogger(__name__)

_STORAGE_ERRORS = (asyncpg.PostgresError, OSError, RuntimeError)


class ChatRepository:
    """Postgres persistence for conversation snapshots, one row per chat."""

    def __init__(self, database: DatabaseServiceProtocol) -> None:
        self._database = database

    async def save_chat(self, snapshot: ChatSnapshot) -> None:
        """Upsert the whole snapshot; rows owned by another user are left untouched."""
        messages = json.dumps([message.model_dump() for message in snapshot.messages])
        try:
            status = await self._database.execute(
                """
                INSERT INTO chats (id, owner_id, title, path, messages, created_at)
                VALUES ($1, $2, $3, $4, $5::jsonb, $6)
                ON CONFLICT (id)
                DO UPDATE SET
                  title = EXCLUDED.title,
                  messages = EXCLUDED.messages,
                  updated_at = NOW()
                WHERE chats.owner_id = EXCLUDED.owner_id
                """,
                snapshot.id,
                snapshot.owner_id,
                snapshot.title,
                snapshot.path,
                messages,
                snapshot.created_at,
            )
        except _STORAGE_ERRORS as exc:
            raise PersistenceError(f"could not save chat {snapshot.id}") from exc

        if status.endswith(" 0"):
            raise PersistenceError(f"chat {snapshot.id} belongs to another owner")
        logger.debug(
            "chat snapshot saved",
            extra={"chat_id": snapshot.id, "messages_count": len(snapshot.messages)},
        )

    async def get_chat(self, chat_id: str, owner_id: str) -> ChatSnapshot | None:
        try:
            row = await self._database.fetchrow(
                """
                SELECT id, owner_id, title, path, messages, created_at
                FROM chats
                WHERE id = $1 AND owner_id = $2
                """,
                chat_id,
                owner_id,
            )
        except _STORAGE_ERRORS as exc:
            raise PersistenceError(f"could not load chat {chat_id}") from exc

        if row is None:
            return None
        try:
            return ChatSnapshot(
                id=row["id"],
                title=row["title"],
                owner_id=row["owner_id"],
                created_at=row["created_at"],
                messages=tuple(Message.model_validate(item) for item in _decode_messages(row["messages"])),
                path=row["path"],
            )
        except (ValidationError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"stored chat {chat_id} is corrupt") from exc


def _decode_messages(raw: Any) -> list[Any]:
    value = json.loads(raw) if isinstance(raw, str) else raw
    if not isinstance(value, list):
        raise json.JSONDecodeError("messages column is not a JSON array", str(raw), 0)
    return value
