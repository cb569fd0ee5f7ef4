from pydantic import BaseModel, Field

from genui_assistant.agents.tools.stocks import MAX_SHARES, MIN_SHARES
from genui_assistant.services.renderables import Renderable


class ChatMessageRequest(BaseModel):
    content: str = Field(..., min_length=1, description="User message text sent to the assistant")
    conversation_id: str | None = Field(
        default=None,
        description="Conversation to continue; a new conversation is started when omitted",
    )


class ConfirmPurchaseRequest(BaseModel):
    conversation_id: str = Field(..., min_length=1, description="Conversation holding the purchase card")
    symbol: str = Field(..., min_length=1, description="Ticker symbol being purchased")
    price: float = Field(..., gt=0, description="Unit price shown on the purchase card")
    amount: int = Field(..., description=f"Number of shares, between {MIN_SHARES} and {MAX_SHARES}")


class TurnStartResponse(BaseModel):
    turn_id: str = Field(..., description="Opaque turn identifier to consume via GET /api/chat/stream/{turn_id}")
    conversation_id: str = Field(..., description="Conversation the turn belongs to")


class UiEntryResponse(BaseModel):
    id: str = Field(..., description="Stable entry id of the form <conversation_id>-<index>")
    display: Renderable


class ExampleMessageResponse(BaseModel):
    heading: str
    message: str
