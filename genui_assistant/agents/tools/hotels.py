from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

from pydantic import BaseModel, Field

from genui_assistant.agents.tools.contracts import ToolContext, ToolHandler, ToolName, function_message
from genui_assistant.services.renderables import Renderable, bot_card, bot_message


class BookHotelArgs(BaseModel):
    hotel_name: str = Field(..., min_length=1, description="Name of the hotel or vacation rental")
    street_address: str = Field(..., description="Street address of the property")
    image_url: str = Field(..., description="URL of a photo of the property")
    booking_url: str = Field(..., description="URL where the user can book a stay")


class BookHotelTool(ToolHandler):
    tool_name = ToolName.BOOK_HOTEL
    description = "Helps user to book hotels or get information about them."
    args_model = BookHotelArgs

    async def render(self, args: BookHotelArgs, context: ToolContext) -> AsyncIterator[Renderable]:
        yield bot_message(f"Finding details for {args.hotel_name}, please wait...", pending=True)
        await asyncio.sleep(context.render_delay_seconds)

        reservation = args.model_dump()
        context.state.append(function_message(self.tool_name, reservation))
        yield self.card(reservation)

    def card(self, payload: Any) -> Renderable:
        return bot_card("hotel_reservation", payload)
