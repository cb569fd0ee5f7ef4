from __future__ import annotations

from collections.abc import AsyncIterator
import logging
from typing import Any, assert_never

from pydantic import ValidationError

from genui_assistant.agents.tools.contracts import ToolCall, ToolContext, ToolHandler, ToolName, ToolSchema
from genui_assistant.agents.tools.hotels import BookHotelTool
from genui_assistant.agents.tools.stocks import GetEventsTool, ListStocksTool, ShowStockPriceTool, ShowStockPurchaseTool
from genui_assistant.services.chat_state import Message
from genui_assistant.services.errors import ToolValidationError, UnknownToolError
from genui_assistant.services.renderables import Renderable, empty, error_message

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Fixed mapping from tool name to handler for the generative-UI tools."""

    def __init__(self) -> None:
        self._list_stocks = ListStocksTool()
        self._show_stock_price = ShowStockPriceTool()
        self._show_stock_purchase = ShowStockPurchaseTool()
        self._get_events = GetEventsTool()
        self._book_hotel = BookHotelTool()

    def handler(self, name: ToolName) -> ToolHandler:
        match name:
            case ToolName.LIST_STOCKS:
                return self._list_stocks
            case ToolName.SHOW_STOCK_PRICE:
                return self._show_stock_price
            case ToolName.SHOW_STOCK_PURCHASE:
                return self._show_stock_purchase
            case ToolName.GET_EVENTS:
                return self._get_events
            case ToolName.BOOK_HOTEL:
                return self._book_hotel
            case _:
                assert_never(name)

    @property
    def purchases(self) -> ShowStockPurchaseTool:
        return self._show_stock_purchase

    def schemas(self) -> list[ToolSchema]:
        schemas: list[ToolSchema] = []
        for name in ToolName:
            handler = self.handler(name)
            schemas.append(
                ToolSchema(
                    name=name.value,
                    description=handler.description,
                    parameters=handler.args_model.model_json_schema(),
                )
            )
        return schemas

    def resolve(self, name: str) -> ToolHandler:
        try:
            tool_name = ToolName(name)
        except ValueError as exc:
            raise UnknownToolError(name) from exc
        return self.handler(tool_name)

    async def run(self, tool_call: ToolCall, context: ToolContext) -> AsyncIterator[Renderable]:
        """Validate a provider tool call and stream the handler's renderables.

        Unknown tool names raise ``UnknownToolError``. Invalid arguments never reach
        the handler: a system diagnostic is appended and an error renderable ends
        the stream.
        """
        handler = self.resolve(tool_call.name)
        logger.debug("dispatching tool call", extra={"tool_name": tool_call.name, "call_id": tool_call.call_id})

        try:
            args = handler.args_model.model_validate(tool_call.arguments)
        except ValidationError as exc:
            logger.info(
                "tool call rejected: invalid arguments",
                extra={"tool_name": tool_call.name, "error_count": exc.error_count()},
            )
            rejection = ToolValidationError(tool_call.name, "Invalid tool arguments")
            context.state.append(Message(role="system", content=rejection.diagnostic))
            yield error_message(rejection.message)
            return

        try:
            async for renderable in handler.render(args, context):
                yield renderable
        except ToolValidationError as exc:
            context.state.append(Message(role="system", content=exc.diagnostic))
            yield error_message(exc.message)

    def card_for(self, name: str | None, payload: Any) -> Renderable:
        """Terminal renderable for a stored tool result; unknown tools render nothing."""
        try:
            handler = self.resolve(name or "")
        except UnknownToolError:
            return empty()
        return handler.card(payload)
