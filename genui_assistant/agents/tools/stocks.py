from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
import json
import logging
from typing import Any, Literal

from pydantic import BaseModel, Field

from genui_assistant.agents.tools.contracts import ToolContext, ToolHandler, ToolName, function_message
from genui_assistant.services.chat_state import Message
from genui_assistant.services.errors import ToolValidationError
from genui_assistant.services.renderables import Renderable, bot_card, skeleton

logger = logging.getLogger(__name__)

MIN_SHARES = 1
MAX_SHARES = 1000
DEFAULT_SHARES = 100

PurchaseStatus = Literal["requires_action", "completed"]


class StockQuote(BaseModel):
    symbol: str = Field(..., description="The symbol of the stock")
    price: float = Field(..., description="The price of the stock")
    delta: float = Field(..., description="The change in price of the stock")


class ListStocksArgs(BaseModel):
    stocks: list[StockQuote]


class ShowStockPriceArgs(BaseModel):
    symbol: str = Field(..., description="The name or symbol of the stock or currency. e.g. DOGE/AAPL/USD.")
    price: float = Field(..., description="The price of the stock.")
    delta: float = Field(..., description="The change in price of the stock")


class ShowStockPurchaseArgs(BaseModel):
    symbol: str = Field(..., description="The name or symbol of the stock or currency. e.g. DOGE/AAPL/USD.")
    price: float = Field(..., description="The price of the stock.")
    number_of_shares: int = Field(
        default=DEFAULT_SHARES,
        description=(
            "The **number of shares** for a stock or currency to purchase. "
            "Can be optional if the user did not specify it."
        ),
    )


class PurchaseCard(BaseModel):
    """Stored payload of a purchase widget; also its props."""

    symbol: str
    price: float
    number_of_shares: int
    status: PurchaseStatus


class StockEvent(BaseModel):
    date: str = Field(..., description="The date of the event, in ISO-8601 format")
    headline: str = Field(..., description="The headline of the event")
    description: str = Field(..., description="The description of the event")


class GetEventsArgs(BaseModel):
    events: list[StockEvent]


class ListStocksTool(ToolHandler):
    tool_name = ToolName.LIST_STOCKS
    description = "List three imaginary stocks that are trending."
    args_model = ListStocksArgs

    async def render(self, args: ListStocksArgs, context: ToolContext) -> AsyncIterator[Renderable]:
        yield skeleton("stocks_skeleton")
        await asyncio.sleep(context.render_delay_seconds)

        stocks = [stock.model_dump() for stock in args.stocks]
        context.state.append(function_message(self.tool_name, stocks))
        yield self.card(stocks)

    def card(self, payload: Any) -> Renderable:
        return bot_card("stocks", payload)


class ShowStockPriceTool(ToolHandler):
    tool_name = ToolName.SHOW_STOCK_PRICE
    description = (
        "Get the current stock price of a given stock or currency. Use this to show the price to the user."
    )
    args_model = ShowStockPriceArgs

    async def render(self, args: ShowStockPriceArgs, context: ToolContext) -> AsyncIterator[Renderable]:
        yield skeleton("stock_skeleton")
        await asyncio.sleep(context.render_delay_seconds)

        quote = args.model_dump()
        context.state.append(function_message(self.tool_name, quote))
        yield self.card(quote)

    def card(self, payload: Any) -> Renderable:
        return bot_card("stock", payload)


class ShowStockPurchaseTool(ToolHandler):
    tool_name = ToolName.SHOW_STOCK_PURCHASE
    description = (
        "Show price and the UI to purchase a stock or currency. "
        "Use this if the user wants to purchase a stock or currency."
    )
    args_model = ShowStockPurchaseArgs

    async def render(self, args: ShowStockPurchaseArgs, context: ToolContext) -> AsyncIterator[Renderable]:
        if not MIN_SHARES <= args.number_of_shares <= MAX_SHARES:
            logger.info(
                "purchase rejected: share count out of range",
                extra={"symbol": args.symbol, "number_of_shares": args.number_of_shares},
            )
            raise ToolValidationError(
                self.tool_name.value,
                "Invalid amount",
                diagnostic="[User has selected an invalid amount]",
            )

        purchase = PurchaseCard(
            symbol=args.symbol,
            price=args.price,
            number_of_shares=args.number_of_shares,
            status="requires_action",
        ).model_dump()
        context.state.append(function_message(self.tool_name, purchase))
        yield self.card(purchase)

    def card(self, payload: Any) -> Renderable:
        return bot_card("purchase", payload)

    @staticmethod
    def completed_message(*, symbol: str, price: float, amount: int) -> Message:
        """Function message recording a settled purchase."""
        completed = PurchaseCard(symbol=symbol, price=price, number_of_shares=amount, status="completed")
        return function_message(ToolName.SHOW_STOCK_PURCHASE, completed.model_dump())

    @staticmethod
    def is_open_purchase(message: Message, symbol: str) -> bool:
        """True for a stored purchase card for ``symbol`` that still awaits confirmation."""
        try:
            payload = json.loads(message.content)
        except json.JSONDecodeError:
            return False
        if not isinstance(payload, dict):
            return False
        return payload.get("symbol") == symbol and payload.get("status") != "completed"


class GetEventsTool(ToolHandler):
    tool_name = ToolName.GET_EVENTS
    description = "List funny imaginary events between user highlighted dates that describe stock activity."
    args_model = GetEventsArgs

    async def render(self, args: GetEventsArgs, context: ToolContext) -> AsyncIterator[Renderable]:
        yield skeleton("events_skeleton")
        await asyncio.sleep(context.render_delay_seconds)

        events = [event.model_dump() for event in args.events]
        context.state.append(function_message(self.tool_name, events))
        yield self.card(events)

    def card(self, payload: Any) -> Renderable:
        return bot_card("events", payload)
