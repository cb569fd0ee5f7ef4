from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Coroutine
from dataclasses import dataclass, field
import logging
from typing import Any

from genui_assistant.agents.dispatcher import ASSISTANT_STREAM_ERROR_FALLBACK, StreamingDispatcher
from genui_assistant.agents.tools.stocks import MAX_SHARES, MIN_SHARES, ShowStockPurchaseTool
from genui_assistant.api.schemas.auth import UnifiedPrincipal
from genui_assistant.core.settings import Settings
from genui_assistant.services.chat_state import ConversationState, Message, new_id
from genui_assistant.services.chat_stream import ChatStreamEvent
from genui_assistant.services.contracts import ChatRepositoryProtocol
from genui_assistant.services.errors import (
    ConversationNotFoundError,
    PersistenceError,
    ProviderError,
    ToolValidationError,
)
from genui_assistant.services.presentation import PresentationEntry, project
from genui_assistant.services.renderables import (
    Renderable,
    bot_message,
    error_message,
    format_currency,
    spinner,
    system_message,
)
from genui_assistant.services.streamable import StreamableValue

logger = logging.getLogger(__name__)

EXAMPLE_MESSAGES: tuple[dict[str, str], ...] = (
    {"heading": "Explain technical concepts", "message": 'What is a "serverless function"?'},
    {"heading": "Summarize an article", "message": "Summarize the following article for a 2nd grader: \n"},
    {"heading": "Draft an email", "message": "Draft an email to my boss about the following: \n"},
)


@dataclass
class TurnHandle:
    turn_id: str
    conversation_id: str
    live: StreamableValue[Renderable]


@dataclass
class PurchaseHandle:
    turn_id: str
    conversation_id: str
    progress: StreamableValue[Renderable]
    notice: StreamableValue[Renderable | None]


@dataclass
class _Turn:
    views: dict[str, StreamableValue[Any]]
    task: asyncio.Task[None] | None = None
    errors: list[str] = field(default_factory=list)


class ChatService:
    """Use-case service owning conversation state, turn serialization and settlements.

    Each conversation has one authoritative ``ConversationState`` in memory and
    one ``asyncio.Lock``; every mutation of that state (a user turn or a
    purchase settlement) runs under the lock, so they never interleave.

    A conversation started anonymously belongs to the first identity that
    writes to it; from then on only that identity can read or continue it.
    Conversations idle for ``conversation_idle_seconds`` are dropped from
    memory and reloaded from storage on next use.
    """

    def __init__(
        self,
        settings: Settings,
        dispatcher: StreamingDispatcher,
        repository: ChatRepositoryProtocol,
        system_prompt: str,
    ) -> None:
        self._settings = settings
        self._dispatcher = dispatcher
        self._repository = repository
        self._system_prompt = system_prompt
        self._conversations: dict[str, ConversationState] = {}
        self._owners: dict[str, str | None] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._in_flight: dict[str, int] = {}
        self._idle_timers: dict[str, asyncio.TimerHandle] = {}
        self._turns: dict[str, _Turn] = {}
        self._background: set[asyncio.Task[None]] = set()

    def submit_user_message(
        self,
        *,
        content: str,
        conversation_id: str | None = None,
        principal: UnifiedPrincipal | None = None,
    ) -> TurnHandle:
        conversation_id = conversation_id or new_id()
        turn_id = new_id()
        live: StreamableValue[Renderable] = StreamableValue(spinner())
        turn = _Turn(views={"message": live})
        self._turns[turn_id] = turn
        turn.task = self._spawn(
            conversation_id,
            self._run_turn(turn_id, turn, conversation_id=conversation_id, content=content, principal=principal, live=live),
        )
        logger.info("chat turn started", extra={"turn_id": turn_id, "conversation_id": conversation_id})
        return TurnHandle(turn_id=turn_id, conversation_id=conversation_id, live=live)

    def confirm_purchase(
        self,
        *,
        conversation_id: str,
        symbol: str,
        price: float,
        amount: int,
        principal: UnifiedPrincipal | None = None,
    ) -> PurchaseHandle:
        if not MIN_SHARES <= amount <= MAX_SHARES:
            raise ToolValidationError(
                ShowStockPurchaseTool.tool_name.value,
                "Invalid amount",
                diagnostic="[User has selected an invalid amount]",
            )

        turn_id = new_id()
        progress: StreamableValue[Renderable] = StreamableValue(
            bot_message(f"Purchasing {amount} ${symbol}...", pending=True)
        )
        notice: StreamableValue[Renderable | None] = StreamableValue(None)
        turn = _Turn(views={"progress": progress, "notice": notice})
        self._turns[turn_id] = turn
        turn.task = self._spawn(
            conversation_id,
            self._settle_purchase(
                turn_id,
                turn,
                conversation_id=conversation_id,
                symbol=symbol,
                price=price,
                amount=amount,
                principal=principal,
            ),
        )
        logger.info(
            "purchase settlement started",
            extra={"turn_id": turn_id, "conversation_id": conversation_id, "symbol": symbol, "amount": amount},
        )
        return PurchaseHandle(turn_id=turn_id, conversation_id=conversation_id, progress=progress, notice=notice)

    async def stream_events(self, turn_id: str) -> AsyncIterator[ChatStreamEvent]:
        turn = self._turns.get(turn_id)
        if turn is None:
            yield {"type": "error", "data": {"message": "Unknown turn id"}}
            return

        for view, value in turn.views.items():
            async for renderable in value.subscribe():
                if renderable is None:
                    continue
                yield {"type": "ui", "data": {"view": view, "renderable": renderable.model_dump(mode="json")}}

        if turn.task is not None:
            await asyncio.wait({turn.task})
        for message in turn.errors:
            yield {"type": "error", "data": {"message": message}}
        yield {"type": "done", "data": {"reason": "complete"}}

    async def get_ui_state(
        self,
        conversation_id: str,
        principal: UnifiedPrincipal | None,
    ) -> list[PresentationEntry] | None:
        """Project the stored conversation for page loads; ``None`` without an identity."""
        if principal is None:
            return None
        try:
            async with self._lock_for(conversation_id):
                state = await self._load_state(conversation_id, principal, create=False, claim=False)
                return project(state)
        finally:
            self._touch(conversation_id)

    def example_messages(self) -> list[dict[str, str]]:
        return [dict(example) for example in EXAMPLE_MESSAGES]

    async def aclose(self) -> None:
        """Wait for in-flight turns and settlements; used on shutdown."""
        if self._background:
            await asyncio.wait(set(self._background))
        for timer in self._idle_timers.values():
            timer.cancel()
        self._idle_timers.clear()

    async def _run_turn(
        self,
        turn_id: str,
        turn: _Turn,
        *,
        conversation_id: str,
        content: str,
        principal: UnifiedPrincipal | None,
        live: StreamableValue[Renderable],
    ) -> None:
        try:
            async with self._lock_for(conversation_id):
                state = await self._load_state(conversation_id, principal, create=True, claim=True)
                state.append(Message(role="user", content=content))
                handle = self._dispatcher.dispatch(state, self._system_prompt, live)
                try:
                    await handle.settled
                except ProviderError:
                    logger.exception(
                        "assistant turn failed",
                        extra={"turn_id": turn_id, "conversation_id": conversation_id},
                    )
                    turn.errors.append("Assistant stream failed")
                await self._persist(state, principal, turn)
        except ConversationNotFoundError:
            logger.info("turn rejected: conversation not accessible", extra={"conversation_id": conversation_id})
            turn.errors.append("Conversation not found")
        except Exception:
            logger.exception("chat turn failed", extra={"turn_id": turn_id, "conversation_id": conversation_id})
            turn.errors.append("Assistant stream failed")
        finally:
            if not live.closed:
                live.done(error_message(ASSISTANT_STREAM_ERROR_FALLBACK))
            self._expire_turn(turn_id)

    async def _settle_purchase(
        self,
        turn_id: str,
        turn: _Turn,
        *,
        conversation_id: str,
        symbol: str,
        price: float,
        amount: int,
        principal: UnifiedPrincipal | None,
    ) -> None:
        progress: StreamableValue[Renderable] = turn.views["progress"]
        notice: StreamableValue[Renderable | None] = turn.views["notice"]
        step = self._settings.purchase_settlement_step_seconds
        total = format_currency(amount * price)
        try:
            await asyncio.sleep(step)
            progress.update(bot_message(f"Purchasing {amount} ${symbol}... working on it...", pending=True))
            await asyncio.sleep(step)
            progress.update(bot_message(f"Purchasing {amount} ${symbol}... finalizing...", pending=True))

            async with self._lock_for(conversation_id):
                state = await self._load_state(conversation_id, principal, create=False, claim=True)
                _apply_settlement(state, symbol=symbol, price=price, amount=amount)
                progress.done(bot_message(f"You have successfully purchased {amount} ${symbol}. Total cost: {total}"))
                notice.done(
                    system_message(f"You have purchased {amount} shares of {symbol} at ${price}. Total cost = {total}.")
                )
                await self._persist(state, principal, turn)
        except ConversationNotFoundError:
            logger.info("settlement rejected: conversation not accessible", extra={"conversation_id": conversation_id})
            turn.errors.append("Conversation not found")
        except ToolValidationError as exc:
            logger.info("settlement rejected", extra={"conversation_id": conversation_id, "reason": exc.message})
            progress.done(error_message(exc.message))
            turn.errors.append(exc.message)
        except Exception:
            logger.exception("purchase settlement failed", extra={"turn_id": turn_id, "symbol": symbol})
            turn.errors.append("Purchase could not be completed")
        finally:
            if not progress.closed:
                progress.done(error_message("Purchase could not be completed"))
            if not notice.closed:
                notice.done()
            self._expire_turn(turn_id)

    async def _load_state(
        self,
        conversation_id: str,
        principal: UnifiedPrincipal | None,
        *,
        create: bool,
        claim: bool,
    ) -> ConversationState:
        user_id = principal.user_id if principal is not None else None
        state = self._conversations.get(conversation_id)
        if state is not None:
            owner = self._owners.get(conversation_id)
            if owner is None and user_id is not None and claim:
                logger.info("anonymous conversation claimed", extra={"conversation_id": conversation_id, "user_id": user_id})
                self._owners[conversation_id] = user_id
            elif owner != user_id:
                raise ConversationNotFoundError(conversation_id)
            return state

        if user_id is not None:
            snapshot = await self._repository.get_chat(conversation_id, user_id)
            if snapshot is not None:
                logger.debug("conversation loaded from storage", extra={"conversation_id": conversation_id})
                state = ConversationState.from_snapshot(snapshot)
        if state is None:
            if not create:
                raise ConversationNotFoundError(conversation_id)
            state = ConversationState(conversation_id)

        self._owners[conversation_id] = user_id
        self._conversations[conversation_id] = state
        return state

    async def _persist(self, state: ConversationState, principal: UnifiedPrincipal | None, turn: _Turn) -> None:
        if principal is None:
            logger.debug("no identity; skipping chat persistence", extra={"conversation_id": state.conversation_id})
            return
        try:
            await self._repository.save_chat(state.snapshot(principal.user_id))
        except PersistenceError:
            logger.exception("chat snapshot could not be saved", extra={"conversation_id": state.conversation_id})
            turn.errors.append("Conversation could not be saved")

    def _lock_for(self, conversation_id: str) -> asyncio.Lock:
        return self._locks.setdefault(conversation_id, asyncio.Lock())

    def _spawn(self, conversation_id: str, coroutine: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        timer = self._idle_timers.pop(conversation_id, None)
        if timer is not None:
            timer.cancel()
        self._in_flight[conversation_id] = self._in_flight.get(conversation_id, 0) + 1

        task = asyncio.create_task(coroutine)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        task.add_done_callback(lambda _: self._release(conversation_id))
        return task

    def _release(self, conversation_id: str) -> None:
        remaining = self._in_flight.get(conversation_id, 1) - 1
        if remaining > 0:
            self._in_flight[conversation_id] = remaining
            return
        self._in_flight.pop(conversation_id, None)
        self._touch(conversation_id)

    def _touch(self, conversation_id: str) -> None:
        if self._in_flight.get(conversation_id):
            return
        timer = self._idle_timers.pop(conversation_id, None)
        if timer is not None:
            timer.cancel()
        self._idle_timers[conversation_id] = asyncio.get_running_loop().call_later(
            self._settings.conversation_idle_seconds,
            self._evict_conversation,
            conversation_id,
        )

    def _evict_conversation(self, conversation_id: str) -> None:
        self._idle_timers.pop(conversation_id, None)
        lock = self._locks.get(conversation_id)
        if self._in_flight.get(conversation_id) or (lock is not None and lock.locked()):
            return
        self._conversations.pop(conversation_id, None)
        self._owners.pop(conversation_id, None)
        self._locks.pop(conversation_id, None)
        logger.debug("idle conversation evicted", extra={"conversation_id": conversation_id})

    def _expire_turn(self, turn_id: str) -> None:
        asyncio.get_running_loop().call_later(
            self._settings.turn_retention_seconds,
            self._turns.pop,
            turn_id,
            None,
        )


def _apply_settlement(state: ConversationState, *, symbol: str, price: float, amount: int) -> None:
    """Turn the open purchase card for ``symbol`` into a completed one, in one mutation.

    Raises ``ToolValidationError`` and leaves the log untouched when there is
    no purchase awaiting confirmation.
    """
    index = state.last_index(
        role="function",
        name=ShowStockPurchaseTool.tool_name.value,
        where=lambda message: ShowStockPurchaseTool.is_open_purchase(message, symbol),
    )
    if index is None:
        raise ToolValidationError(
            ShowStockPurchaseTool.tool_name.value,
            f"No pending purchase of {symbol} to confirm",
        )

    completed = ShowStockPurchaseTool.completed_message(symbol=symbol, price=price, amount=amount)
    summary = Message(
        role="system",
        content=(
            f"[User has purchased {amount} shares of {symbol} at {price}. "
            f"Total cost = {round(amount * price, 2)}]"
        ),
    )
    later = state.messages[index + 1 :]
    state.replace_tail(len(state) - index, [completed, *later, summary])
