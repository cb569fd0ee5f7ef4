from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Protocol
import json

from pydantic import BaseModel

from genui_assistant.services.chat_state import ConversationState, Message
from genui_assistant.services.renderables import Renderable


class ToolName(StrEnum):
    """Closed set of tools the model may call."""

    LIST_STOCKS = "list_stocks"
    SHOW_STOCK_PRICE = "show_stock_price"
    SHOW_STOCK_PURCHASE = "show_stock_purchase"
    GET_EVENTS = "get_events"
    BOOK_HOTEL = "book_hotel"


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation requested by the provider mid-stream."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    call_id: str | None = None


@dataclass(frozen=True)
class ToolSchema:
    name: str
    description: str
    parameters: dict[str, Any]

    def as_openai_tool(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass
class ToolContext:
    """Per-invocation collaborators handed to a tool handler."""

    state: ConversationState
    render_delay_seconds: float = 0.0


class ToolHandler(Protocol):
    """Renders one tool call as a finite stream of UI states.

    ``render`` yields a pending skeleton first when it does asynchronous work and
    always ends with exactly one terminal renderable. It appends its messages to
    the conversation exactly once, before the terminal renderable. ``card``
    rebuilds the terminal renderable from a stored function message payload.
    """

    tool_name: ToolName
    description: str
    args_model: type[BaseModel]

    def render(self, args: Any, context: ToolContext) -> AsyncIterator[Renderable]:
        ...

    def card(self, payload: Any) -> Renderable:
        ...


def function_message(tool_name: ToolName, payload: Any) -> Message:
    """Tool result entry for the conversation log, payload serialized as JSON."""
    return Message(role="function", name=tool_name.value, content=json.dumps(payload))
