"""UI descriptions streamed to clients in place of (or alongside) text."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

RenderableKind = Literal[
    "spinner",
    "user_message",
    "bot_message",
    "bot_card",
    "system_message",
    "error",
    "empty",
]

CardComponent = Literal[
    "stocks",
    "stock",
    "purchase",
    "events",
    "hotel_reservation",
    "stocks_skeleton",
    "stock_skeleton",
    "events_skeleton",
]


class Renderable(BaseModel):
    """Component name plus JSON props (or text) the client renders as a widget.

    ``pending`` renderables may still be replaced by the operation that produced
    them; terminal ones are final.
    """

    model_config = ConfigDict(frozen=True)

    kind: RenderableKind
    component: CardComponent | None = None
    content: str | None = None
    props: Any = None
    pending: bool = False


def spinner() -> Renderable:
    return Renderable(kind="spinner", pending=True)


def user_message(content: str) -> Renderable:
    return Renderable(kind="user_message", content=content)


def bot_message(content: str, *, pending: bool = False) -> Renderable:
    return Renderable(kind="bot_message", content=content, pending=pending)


def bot_card(component: CardComponent, props: Any) -> Renderable:
    return Renderable(kind="bot_card", component=component, props=props)


def skeleton(component: CardComponent) -> Renderable:
    """Pending placeholder card shown while a tool prepares the real `bot_card`."""
    return Renderable(kind="bot_card", component=component, pending=True)


def system_message(content: str) -> Renderable:
    return Renderable(kind="system_message", content=content)


def error_message(content: str) -> Renderable:
    return Renderable(kind="error", content=content)


def empty() -> Renderable:
    return Renderable(kind="empty")


def format_currency(value: float) -> str:
    """Format an amount the way the purchase widgets display totals (USD)."""
    return f"${value:,.2f}"
