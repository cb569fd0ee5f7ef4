from genui_assistant.agents.tools.contracts import ToolCall, ToolContext, ToolHandler, ToolName, ToolSchema
from genui_assistant.agents.tools.hotels import BookHotelTool
from genui_assistant.agents.tools.registry import ToolRegistry
from genui_assistant.agents.tools.stocks import GetEventsTool, ListStocksTool, ShowStockPriceTool, ShowStockPurchaseTool

__all__ = [
    "BookHotelTool",
    "GetEventsTool",
    "ListStocksTool",
    "ShowStockPriceTool",
    "ShowStockPurchaseTool",
    "ToolCall",
    "ToolContext",
    "ToolHandler",
    "ToolName",
    "ToolRegistry",
    "ToolSchema",
]
