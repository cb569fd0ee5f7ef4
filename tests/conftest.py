"""Shared test utilities and fixtures for genui-assistant tests."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from types import SimpleNamespace

import pytest
import punq

from genui_assistant.agents.dispatcher import StreamingDispatcher
from genui_assistant.agents.provider import CompletionRequest, ProviderDelta
from genui_assistant.agents.tools import ToolCall, ToolRegistry
from genui_assistant.core.settings import Settings
from genui_assistant.services.chat_service import ChatService
from genui_assistant.services.chat_state import ChatSnapshot
from genui_assistant.services.errors import PersistenceError


class FakeDatabaseService:
    """Shared fake DB service used at the external DB boundary in unit tests."""

    def __init__(self) -> None:
        self.fetchrow_calls: list[tuple[str, tuple]] = []
        self.fetch_calls: list[tuple[str, tuple]] = []
        self.execute_calls: list[tuple[str, tuple]] = []
        self.execute_status = "INSERT 0 1"
        self.chat_row: dict | None = None

    async def connect(self) -> None:
        return None

    async def disconnect(self) -> None:
        return None

    async def fetchrow(self, query: str, *args):
        self.fetchrow_calls.append((query, args))
        if "FROM chats" in query:
            return self.chat_row
        return None

    async def fetch(self, query: str, *args):
        self.fetch_calls.append((query, args))
        return []

    async def execute(self, query: str, *args):
        self.execute_calls.append((query, args))
        return self.execute_status


class FakeModelProvider:
    """Scripted provider: each call to ``stream_completion`` replays the next script.

    Script items are ``ProviderDelta`` values, plain strings (text deltas),
    ``ToolCall`` values, or exceptions raised at that point of the stream.
    """

    def __init__(self, *scripts: list) -> None:
        self._scripts = list(scripts)
        self.requests: list[CompletionRequest] = []

    async def stream_completion(self, request: CompletionRequest) -> AsyncIterator[ProviderDelta]:
        self.requests.append(request)
        script = self._scripts.pop(0) if self._scripts else []
        for item in script:
            await asyncio.sleep(0)
            if isinstance(item, BaseException):
                raise item
            if isinstance(item, str):
                yield ProviderDelta(text_delta=item)
            elif isinstance(item, ToolCall):
                yield ProviderDelta(tool_call=item)
            else:
                yield item


class FakeChatRepository:
    """In-memory chat repository that can be told to fail saves."""

    def __init__(self, *, fail_saves: bool = False) -> None:
        self.fail_saves = fail_saves
        self.saved: list[ChatSnapshot] = []
        self.stored: dict[tuple[str, str], ChatSnapshot] = {}

    async def save_chat(self, snapshot: ChatSnapshot) -> None:
        if self.fail_saves:
            raise PersistenceError(f"could not save chat {snapshot.id}")
        self.saved.append(snapshot)
        self.stored[(snapshot.id, snapshot.owner_id)] = snapshot

    async def get_chat(self, chat_id: str, owner_id: str) -> ChatSnapshot | None:
        return self.stored.get((chat_id, owner_id))


@pytest.fixture
def fake_database_service() -> FakeDatabaseService:
    return FakeDatabaseService()


@pytest.fixture
def fake_repository() -> FakeChatRepository:
    return FakeChatRepository()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        TOOL_RENDER_DELAY_SECONDS=0,
        PURCHASE_SETTLEMENT_STEP_SECONDS=0,
        TURN_RETENTION_SECONDS=60,
    )


def build_chat_service(
    settings: Settings,
    provider: FakeModelProvider,
    repository: FakeChatRepository | None = None,
    *,
    render_delay_seconds: float = 0.0,
) -> ChatService:
    """Wire a real chat service around a scripted provider and fake repository."""

    dispatcher = StreamingDispatcher(
        provider,
        ToolRegistry(),
        model="test-model",
        render_delay_seconds=render_delay_seconds,
    )
    return ChatService(
        settings=settings,
        dispatcher=dispatcher,
        repository=repository if repository is not None else FakeChatRepository(),
        system_prompt="You are a test bot.",
    )


async def collect_events(service: ChatService, turn_id: str) -> list[dict]:
    return [event async for event in service.stream_events(turn_id)]


def build_test_request(container: punq.Container, *, headers: dict[str, str] | None = None, cookies: dict[str, str] | None = None):
    """Build a request-shaped object using a real punq container in app state."""

    return SimpleNamespace(
        app=SimpleNamespace(state=SimpleNamespace(container=container)),
        headers=headers or {},
        cookies=cookies or {},
    )


def build_test_container(bindings: dict[object, object]) -> punq.Container:
    """Create a punq container and bind protocol/service keys to test doubles."""

    container = punq.Container()
    for key, value in bindings.items():
        container.register(key, instance=value)
    return container
