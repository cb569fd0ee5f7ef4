from collections.abc import AsyncIterator
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse

from genui_assistant.api.dependencies.auth import get_optional_auth_context
from genui_assistant.api.schemas.auth import UnifiedPrincipal
from genui_assistant.api.schemas.chat import (
    ChatMessageRequest,
    ConfirmPurchaseRequest,
    ExampleMessageResponse,
    TurnStartResponse,
    UiEntryResponse,
)
from genui_assistant.dependency_injection import get_container
from genui_assistant.services.chat_stream import encode_sse_event
from genui_assistant.services.contracts import ChatServiceProtocol
from genui_assistant.services.errors import (
    AuthRequiredError,
    ChatError,
    ConversationNotFoundError,
    PersistenceError,
    ToolValidationError,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/chat", tags=["chat"])


def _chat_service(request: Request) -> ChatServiceProtocol:
    return get_container(request).resolve(ChatServiceProtocol)


def _http_error(exc: ChatError) -> HTTPException:
    if isinstance(exc, AuthRequiredError):
        return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="authentication required")
    if isinstance(exc, ConversationNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="conversation not found")
    if isinstance(exc, ToolValidationError):
        return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=exc.message)
    if isinstance(exc, PersistenceError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="chat storage unavailable")
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="chat request failed")


@router.get("/examples", response_model=list[ExampleMessageResponse])
async def example_messages(request: Request) -> list[ExampleMessageResponse]:
    return [ExampleMessageResponse(**example) for example in _chat_service(request).example_messages()]


@router.post(
    "/message",
    response_model=TurnStartResponse,
    summary="Start an assistant turn",
    description="Appends the user message and starts the assistant continuation; consume it via the stream endpoint.",
)
async def message(
    payload: ChatMessageRequest,
    request: Request,
    principal: UnifiedPrincipal | None = Depends(get_optional_auth_context),
) -> TurnStartResponse:
    handle = _chat_service(request).submit_user_message(
        content=payload.content,
        conversation_id=payload.conversation_id,
        principal=principal,
    )
    logger.info(
        "chat message accepted",
        extra={"turn_id": handle.turn_id, "authenticated": principal is not None},
    )
    return TurnStartResponse(turn_id=handle.turn_id, conversation_id=handle.conversation_id)


@router.post(
    "/purchase/confirm",
    response_model=TurnStartResponse,
    summary="Confirm a stock purchase shown on a purchase card",
)
async def confirm_purchase(
    payload: ConfirmPurchaseRequest,
    request: Request,
    principal: UnifiedPrincipal | None = Depends(get_optional_auth_context),
) -> TurnStartResponse:
    try:
        handle = _chat_service(request).confirm_purchase(
            conversation_id=payload.conversation_id,
            symbol=payload.symbol,
            price=payload.price,
            amount=payload.amount,
            principal=principal,
        )
    except ChatError as exc:
        logger.info("purchase confirmation rejected", extra={"reason": str(exc)})
        raise _http_error(exc) from exc
    return TurnStartResponse(turn_id=handle.turn_id, conversation_id=handle.conversation_id)


async def _event_stream(chat_service: ChatServiceProtocol, turn_id: str) -> AsyncIterator[str]:
    async for event in chat_service.stream_events(turn_id):
        yield encode_sse_event(event)


@router.get("/stream/{turn_id}", summary="Stream UI updates for a turn as server-sent events")
async def stream(turn_id: str, request: Request) -> StreamingResponse:
    headers = {"Cache-Control": "no-cache"}
    return StreamingResponse(
        _event_stream(_chat_service(request), turn_id),
        media_type="text/event-stream",
        headers=headers,
    )


@router.get("/{conversation_id}/ui", response_model=list[UiEntryResponse])
async def ui_state(
    conversation_id: str,
    request: Request,
    principal: UnifiedPrincipal | None = Depends(get_optional_auth_context),
) -> list[UiEntryResponse]:
    try:
        entries = await _chat_service(request).get_ui_state(conversation_id, principal)
        if entries is None:
            raise AuthRequiredError("conversation state requires an identity")
    except ChatError as exc:
        raise _http_error(exc) from exc
    return [UiEntryResponse(id=entry.id, display=entry.renderable) for entry in entries]
