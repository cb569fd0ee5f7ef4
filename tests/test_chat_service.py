"""Unit tests for turn orchestration, settlement and persistence hand-off."""

from __future__ import annotations

import asyncio
import json

import pytest

from genui_assistant.agents.tools import ToolCall
from genui_assistant.api.schemas.auth import UnifiedPrincipal
from genui_assistant.core.settings import Settings
from genui_assistant.services.chat_state import ConversationState, Message
from genui_assistant.services.errors import ConversationNotFoundError, ProviderError, ToolValidationError
from tests.conftest import FakeChatRepository, FakeModelProvider, build_chat_service, collect_events

PRINCIPAL = UnifiedPrincipal(user_id="user-1", email="u@example.com", display_name="U")


def _purchase_call(symbol: str = "AAPL", price: float = 150.0, shares: int = 10) -> ToolCall:
    return ToolCall(
        name="show_stock_purchase",
        arguments={"symbol": symbol, "price": price, "number_of_shares": shares},
    )


@pytest.mark.asyncio
async def test_serverless_question_yields_user_and_assistant_entries(test_settings) -> None:
    provider = FakeModelProvider(["A serverless function ", "runs on demand."])
    repository = FakeChatRepository()
    service = build_chat_service(test_settings, provider, repository)

    handle = service.submit_user_message(content='What is a "serverless function"?', principal=PRINCIPAL)
    events = await collect_events(service, handle.turn_id)

    assert events[-1] == {"type": "done", "data": {"reason": "complete"}}
    assert not [event for event in events if event["type"] == "error"]
    final_ui = [event for event in events if event["type"] == "ui"][-1]
    assert final_ui["data"]["view"] == "message"
    assert final_ui["data"]["renderable"]["content"] == "A serverless function runs on demand."

    entries = await service.get_ui_state(handle.conversation_id, PRINCIPAL)
    assert [entry.renderable.kind for entry in entries] == ["user_message", "bot_message"]
    assert [entry.id for entry in entries] == [f"{handle.conversation_id}-0", f"{handle.conversation_id}-1"]

    (snapshot,) = repository.saved
    assert snapshot.owner_id == "user-1"
    assert snapshot.title == 'What is a "serverless function"?'
    assert [message.role for message in snapshot.messages] == ["user", "assistant"]


@pytest.mark.asyncio
async def test_anonymous_turns_run_without_persistence(test_settings) -> None:
    repository = FakeChatRepository()
    service = build_chat_service(test_settings, FakeModelProvider(["hello"]), repository)

    handle = service.submit_user_message(content="hi")
    events = await collect_events(service, handle.turn_id)

    assert events[-1]["type"] == "done"
    assert repository.saved == []
    assert await service.get_ui_state(handle.conversation_id, None) is None


@pytest.mark.asyncio
async def test_save_failure_surfaces_error_event_without_rollback(test_settings) -> None:
    repository = FakeChatRepository(fail_saves=True)
    service = build_chat_service(test_settings, FakeModelProvider(["hello"]), repository)

    handle = service.submit_user_message(content="hi", principal=PRINCIPAL)
    events = await collect_events(service, handle.turn_id)

    assert {"type": "error", "data": {"message": "Conversation could not be saved"}} in events
    assert events[-1]["type"] == "done"
    entries = await service.get_ui_state(handle.conversation_id, PRINCIPAL)
    assert len(entries) == 2


@pytest.mark.asyncio
async def test_provider_failure_keeps_user_message_and_reports_error(test_settings) -> None:
    service = build_chat_service(test_settings, FakeModelProvider([ProviderError("connection reset")]))

    handle = service.submit_user_message(content="hi", principal=PRINCIPAL)
    events = await collect_events(service, handle.turn_id)

    ui_events = [event for event in events if event["type"] == "ui"]
    assert ui_events[-1]["data"]["renderable"]["kind"] == "error"
    assert {"type": "error", "data": {"message": "Assistant stream failed"}} in events
    entries = await service.get_ui_state(handle.conversation_id, PRINCIPAL)
    assert [entry.renderable.kind for entry in entries] == ["user_message"]


@pytest.mark.asyncio
async def test_turns_for_one_conversation_are_serialized(test_settings) -> None:
    provider = FakeModelProvider(["first ", "reply"], ["second reply"])
    service = build_chat_service(test_settings, provider)

    first = service.submit_user_message(content="one", conversation_id="conv-1")
    second = service.submit_user_message(content="two", conversation_id="conv-1")
    await collect_events(service, first.turn_id)
    await collect_events(service, second.turn_id)

    second_request = provider.requests[1]
    assert [message.content for message in second_request.history] == ["one", "first reply", "two"]


@pytest.mark.asyncio
async def test_unknown_turn_id_yields_single_error_event(test_settings) -> None:
    service = build_chat_service(test_settings, FakeModelProvider())

    events = await collect_events(service, "missing")

    assert events == [{"type": "error", "data": {"message": "Unknown turn id"}}]


@pytest.mark.asyncio
async def test_confirm_purchase_settles_with_a_single_mutation(test_settings) -> None:
    provider = FakeModelProvider([_purchase_call()], ["Anything else?"])
    repository = FakeChatRepository()
    service = build_chat_service(test_settings, provider, repository)

    card_turn = service.submit_user_message(content="Buy 10 AAPL", conversation_id="conv-1", principal=PRINCIPAL)
    await collect_events(service, card_turn.turn_id)
    text_turn = service.submit_user_message(content="thanks", conversation_id="conv-1", principal=PRINCIPAL)
    await collect_events(service, text_turn.turn_id)

    purchase = service.confirm_purchase(
        conversation_id="conv-1",
        symbol="AAPL",
        price=150.0,
        amount=10,
        principal=PRINCIPAL,
    )
    events = await collect_events(service, purchase.turn_id)

    progress = [event["data"]["renderable"] for event in events if event["type"] == "ui" and event["data"]["view"] == "progress"]
    assert progress[0]["content"] == "Purchasing 10 $AAPL..."
    assert progress[-1]["content"] == "You have successfully purchased 10 $AAPL. Total cost: $1,500.00"
    notices = [event["data"]["renderable"] for event in events if event["type"] == "ui" and event["data"]["view"] == "notice"]
    assert [notice["kind"] for notice in notices] == ["system_message"]

    messages = repository.saved[-1].messages
    assert [message.role for message in messages] == ["user", "function", "user", "assistant", "system"]
    completed = json.loads(messages[1].content)
    assert completed == {"symbol": "AAPL", "price": 150.0, "number_of_shares": 10, "status": "completed"}
    assert messages[-1].content == "[User has purchased 10 shares of AAPL at 150.0. Total cost = 1500.0]"
    assert sum(1 for message in messages if message.role == "system") == 1


@pytest.mark.asyncio
async def test_second_confirmation_of_the_same_card_is_rejected(test_settings) -> None:
    provider = FakeModelProvider([_purchase_call()])
    repository = FakeChatRepository()
    service = build_chat_service(test_settings, provider, repository)
    card_turn = service.submit_user_message(content="Buy 10 AAPL", conversation_id="conv-1", principal=PRINCIPAL)
    await collect_events(service, card_turn.turn_id)

    first = service.confirm_purchase(conversation_id="conv-1", symbol="AAPL", price=150.0, amount=10, principal=PRINCIPAL)
    second = service.confirm_purchase(conversation_id="conv-1", symbol="AAPL", price=150.0, amount=10, principal=PRINCIPAL)
    first_events = await collect_events(service, first.turn_id)
    second_events = await collect_events(service, second.turn_id)

    assert not [event for event in first_events if event["type"] == "error"]
    assert {"type": "error", "data": {"message": "No pending purchase of AAPL to confirm"}} in second_events
    second_ui = [event["data"] for event in second_events if event["type"] == "ui"]
    assert second_ui[-1]["view"] == "progress"
    assert second_ui[-1]["renderable"]["kind"] == "error"
    assert [data["view"] for data in second_ui].count("notice") == 0

    messages = repository.saved[-1].messages
    assert len(repository.saved) == 2
    assert [message.role for message in messages] == ["user", "function", "system"]
    assert json.loads(messages[1].content)["status"] == "completed"


@pytest.mark.asyncio
async def test_confirming_into_an_unknown_conversation_creates_nothing(test_settings) -> None:
    repository = FakeChatRepository()
    service = build_chat_service(test_settings, FakeModelProvider(), repository)

    purchase = service.confirm_purchase(
        conversation_id="never-created",
        symbol="DOGE",
        price=0.13,
        amount=100,
        principal=PRINCIPAL,
    )
    events = await collect_events(service, purchase.turn_id)

    assert {"type": "error", "data": {"message": "Conversation not found"}} in events
    assert events[-1]["type"] == "done"
    assert "never-created" not in service._conversations  # noqa: SLF001
    assert repository.saved == []
    with pytest.raises(ConversationNotFoundError):
        await service.get_ui_state("never-created", PRINCIPAL)


@pytest.mark.asyncio
async def test_stock_price_turn_streams_skeleton_then_card_and_persists_the_quote() -> None:
    settings = Settings(PURCHASE_SETTLEMENT_STEP_SECONDS=0, TURN_RETENTION_SECONDS=60)
    provider = FakeModelProvider(
        [ToolCall(name="show_stock_price", arguments={"symbol": "DOGE", "price": 0.13, "delta": 0.02})]
    )
    repository = FakeChatRepository()
    service = build_chat_service(settings, provider, repository, render_delay_seconds=0.01)

    handle = service.submit_user_message(content="What's DOGE at?", principal=PRINCIPAL)
    events = await collect_events(service, handle.turn_id)

    cards = [
        event["data"]["renderable"]
        for event in events
        if event["type"] == "ui" and event["data"]["renderable"]["kind"] == "bot_card"
    ]
    assert [card["component"] for card in cards] == ["stock_skeleton", "stock"]
    assert cards[0]["pending"] is True

    entries = await service.get_ui_state(handle.conversation_id, PRINCIPAL)
    assert [entry.renderable.kind for entry in entries] == ["user_message", "bot_card"]
    assert entries[1].renderable.component == "stock"
    assert entries[1].renderable.props == {"symbol": "DOGE", "price": 0.13, "delta": 0.02}

    (snapshot,) = repository.saved
    function_messages = [message for message in snapshot.messages if message.role == "function"]
    assert [message.name for message in function_messages] == ["show_stock_price"]


@pytest.mark.asyncio
async def test_settlement_keeps_projected_ids_and_later_entries(test_settings) -> None:
    provider = FakeModelProvider([_purchase_call()], ["Anything else?"])
    service = build_chat_service(test_settings, provider)
    for content in ("Buy 10 AAPL", "thanks"):
        turn = service.submit_user_message(content=content, conversation_id="conv-1", principal=PRINCIPAL)
        await collect_events(service, turn.turn_id)
    before = await service.get_ui_state("conv-1", PRINCIPAL)

    purchase = service.confirm_purchase(conversation_id="conv-1", symbol="AAPL", price=150.0, amount=10, principal=PRINCIPAL)
    await collect_events(service, purchase.turn_id)
    after = await service.get_ui_state("conv-1", PRINCIPAL)

    assert [entry.id for entry in after] == [entry.id for entry in before]
    assert before[1].renderable.props["status"] == "requires_action"
    assert after[1].renderable.props["status"] == "completed"
    assert after[0] == before[0]
    assert after[2:] == before[2:]


@pytest.mark.parametrize("amount", [0, 1001])
def test_confirm_purchase_rejects_out_of_range_amounts(test_settings, amount: int) -> None:
    service = build_chat_service(test_settings, FakeModelProvider())

    with pytest.raises(ToolValidationError):
        service.confirm_purchase(conversation_id="conv-1", symbol="AAPL", price=150.0, amount=amount)


@pytest.mark.asyncio
async def test_stored_conversations_are_loaded_for_their_owner(test_settings) -> None:
    repository = FakeChatRepository()
    stored = ConversationState("conv-9", messages=[Message(role="user", content="earlier"), Message(role="assistant", content="reply")])
    await repository.save_chat(stored.snapshot("user-1"))
    provider = FakeModelProvider(["sure"])
    service = build_chat_service(test_settings, provider, repository)

    turn = service.submit_user_message(content="again", conversation_id="conv-9", principal=PRINCIPAL)
    await collect_events(service, turn.turn_id)

    assert [message.content for message in provider.requests[0].history] == ["earlier", "reply", "again"]


@pytest.mark.asyncio
async def test_conversations_owned_by_someone_else_are_not_found(test_settings) -> None:
    service = build_chat_service(test_settings, FakeModelProvider(["hello"]))
    turn = service.submit_user_message(content="hi", conversation_id="conv-1", principal=PRINCIPAL)
    await collect_events(service, turn.turn_id)

    intruder = UnifiedPrincipal(user_id="user-2")
    with pytest.raises(ConversationNotFoundError):
        await service.get_ui_state("conv-1", intruder)

    with pytest.raises(ConversationNotFoundError):
        await service.get_ui_state("never-seen", PRINCIPAL)


@pytest.mark.asyncio
async def test_anonymous_conversation_belongs_to_its_first_identified_writer(test_settings) -> None:
    provider = FakeModelProvider(["hello"], ["welcome back"])
    service = build_chat_service(test_settings, provider)
    anonymous = service.submit_user_message(content="hi", conversation_id="conv-a")
    await collect_events(service, anonymous.turn_id)

    with pytest.raises(ConversationNotFoundError):
        await service.get_ui_state("conv-a", PRINCIPAL)

    claimed = service.submit_user_message(content="it's me", conversation_id="conv-a", principal=PRINCIPAL)
    claim_events = await collect_events(service, claimed.turn_id)
    assert not [event for event in claim_events if event["type"] == "error"]
    entries = await service.get_ui_state("conv-a", PRINCIPAL)
    assert [entry.renderable.content for entry in entries] == ["hi", "hello", "it's me", "welcome back"]

    with pytest.raises(ConversationNotFoundError):
        await service.get_ui_state("conv-a", UnifiedPrincipal(user_id="user-2"))
    late = service.submit_user_message(content="still me?", conversation_id="conv-a")
    late_events = await collect_events(service, late.turn_id)
    assert {"type": "error", "data": {"message": "Conversation not found"}} in late_events
    assert len(provider.requests) == 2


@pytest.mark.asyncio
async def test_idle_conversations_are_evicted_and_reloaded_from_storage() -> None:
    settings = Settings(
        TOOL_RENDER_DELAY_SECONDS=0,
        PURCHASE_SETTLEMENT_STEP_SECONDS=0,
        TURN_RETENTION_SECONDS=60,
        CONVERSATION_IDLE_SECONDS=0.01,
    )
    provider = FakeModelProvider(["hello"], ["again"])
    service = build_chat_service(settings, provider, FakeChatRepository())

    first = service.submit_user_message(content="hi", conversation_id="conv-1", principal=PRINCIPAL)
    await collect_events(service, first.turn_id)
    await asyncio.sleep(0.05)

    assert service._conversations == {}  # noqa: SLF001
    assert service._owners == {}  # noqa: SLF001
    assert service._locks == {}  # noqa: SLF001
    assert service._idle_timers == {}  # noqa: SLF001

    second = service.submit_user_message(content="still there?", conversation_id="conv-1", principal=PRINCIPAL)
    await collect_events(service, second.turn_id)

    assert [message.content for message in provider.requests[1].history] == ["hi", "hello", "still there?"]


def test_example_messages_offer_starter_prompts(test_settings) -> None:
    service = build_chat_service(test_settings, FakeModelProvider())

    examples = service.example_messages()

    assert [example["heading"] for example in examples] == [
        "Explain technical concepts",
        "Summarize an article",
        "Draft an email",
    ]
