from __future__ import annotations

import punq
from fastapi import Request

from genui_assistant.agents.dispatcher import StreamingDispatcher
from genui_assistant.agents.factory import build_dispatcher, build_system_prompt
from genui_assistant.agents.provider import ModelProvider
from genui_assistant.core.settings import Settings
from genui_assistant.services.auth_service import AuthService
from genui_assistant.services.chat_repository import ChatRepository
from genui_assistant.services.chat_service import ChatService
from genui_assistant.services.contracts import (
    AuthServiceProtocol,
    ChatRepositoryProtocol,
    ChatServiceProtocol,
    DatabaseServiceProtocol,
    SessionStoreProtocol,
)
from genui_assistant.services.database_service import DatabaseService
from genui_assistant.services.session_store import RedisSessionStore


def build_container(settings: Settings, *, model_provider: ModelProvider | None = None) -> punq.Container:
    container = punq.Container()
    container.register(Settings, instance=settings)

    container.register(
        DatabaseServiceProtocol,
        factory=lambda: DatabaseService(dsn=settings.chat_db_dsn),
        scope=punq.Scope.singleton,
    )
    container.register(
        SessionStoreProtocol,
        factory=lambda: RedisSessionStore(
            redis_url=settings.session_redis_url,
            key_prefix=settings.session_key_prefix,
        ),
        scope=punq.Scope.singleton,
    )
    container.register(ChatRepositoryProtocol, factory=ChatRepository, scope=punq.Scope.singleton)
    container.register(AuthServiceProtocol, factory=AuthService, scope=punq.Scope.singleton)
    container.register(
        StreamingDispatcher,
        factory=lambda: build_dispatcher(settings, model_provider),
        scope=punq.Scope.singleton,
    )
    container.register(
        ChatServiceProtocol,
        factory=lambda: ChatService(
            settings=settings,
            dispatcher=container.resolve(StreamingDispatcher),
            repository=container.resolve(ChatRepositoryProtocol),
            system_prompt=build_system_prompt(settings),
        ),
        scope=punq.Scope.singleton,
    )

    return container


def get_container(request: Request) -> punq.Container:
    return request.app.state.container
