from genui_assistant.api.schemas.auth import UnifiedPrincipal
from genui_assistant.api.schemas.chat import (
    ChatMessageRequest,
    ConfirmPurchaseRequest,
    ExampleMessageResponse,
    TurnStartResponse,
    UiEntryResponse,
)

__all__ = [
    "ChatMessageRequest",
    "ConfirmPurchaseRequest",
    "ExampleMessageResponse",
    "TurnStartResponse",
    "UiEntryResponse",
    "UnifiedPrincipal",
]
