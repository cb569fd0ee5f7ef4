"""Presentation state and its projection from the authoritative history."""

from __future__ import annotations

import json

from pydantic import BaseModel, ConfigDict

from genui_assistant.agents.tools.registry import ToolRegistry
from genui_assistant.services.chat_state import ConversationState, Message
from genui_assistant.services.renderables import Renderable, bot_message, empty, user_message

_CARDS = ToolRegistry()


class PresentationEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    renderable: Renderable


def project(conversation: ConversationState) -> list[PresentationEntry]:
    """Rebuild the UI a client would have seen live for ``conversation``.

    System messages are skipped; ids are ``<conversation_id>-<index>`` over the
    remaining messages, so projecting an unchanged history is idempotent.
    """
    visible = [message for message in conversation.messages if message.role != "system"]
    return [
        PresentationEntry(id=f"{conversation.conversation_id}-{index}", renderable=_render(message))
        for index, message in enumerate(visible)
    ]


def _render(message: Message) -> Renderable:
    if message.role == "user":
        return user_message(message.content)
    if message.role == "function":
        try:
            payload = json.loads(message.content)
        except json.JSONDecodeError:
            return empty()
        return _CARDS.card_for(message.name, payload)
    return bot_message(message.content)
