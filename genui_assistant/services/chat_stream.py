from __future__ import annotations

import json
from typing import Any, Literal, TypedDict


class UiEventData(TypedDict):
    view: str
    renderable: dict[str, Any]


class ErrorEventData(TypedDict):
    message: str


class DoneEventData(TypedDict):
    reason: str


ChatStreamEventType = Literal["ui", "error", "done"]


class ChatStreamEvent(TypedDict):
    type: ChatStreamEventType
    data: UiEventData | ErrorEventData | DoneEventData


def encode_sse_event(event: ChatStreamEvent) -> str:
    return f"event: {event['type']}\ndata: {json.dumps(event['data'])}\n\n"
