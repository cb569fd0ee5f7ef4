from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from typing import TYPE_CHECKING, Protocol

import asyncpg

from genui_assistant.api.schemas.auth import UnifiedPrincipal
from genui_assistant.services.chat_state import ChatSnapshot
from genui_assistant.services.chat_stream import ChatStreamEvent

if TYPE_CHECKING:
    from genui_assistant.services.chat_service import PurchaseHandle, TurnHandle
    from genui_assistant.services.presentation import PresentationEntry


class DatabaseServiceProtocol(Protocol):
    """Abstraction for async SQL execution against the chat Postgres store."""

    async def connect(self) -> None:
        """Initialize underlying DB resources before request handling begins."""

    async def disconnect(self) -> None:
        """Release open DB resources during application shutdown."""

    async def fetchrow(self, query: str, *args: object) -> asyncpg.Record | None:
        """Execute a query and return a single row, or ``None`` when no row matches."""

    async def fetch(self, query: str, *args: object) -> Sequence[asyncpg.Record]:
        """Execute a query and return all matching rows."""

    async def execute(self, query: str, *args: object) -> str:
        """Execute a write statement and return the backend status string."""


class ChatRepositoryProtocol(Protocol):
    """Persistence collaborator for completed conversation snapshots."""

    async def save_chat(self, snapshot: ChatSnapshot) -> None:
        """Upsert the snapshot; raise ``PersistenceError`` when it cannot be stored."""

    async def get_chat(self, chat_id: str, owner_id: str) -> ChatSnapshot | None:
        """Load a stored chat owned by ``owner_id``, or ``None`` when absent."""


class SessionStoreProtocol(Protocol):
    """State-store contract for browser sessions."""

    async def ping(self) -> bool:
        """Check store availability during startup checks."""

    async def get_user_id(self, session_id: str) -> str | None:
        """Resolve the user id associated with a stored session id."""

    async def close(self) -> None:
        """Release underlying network resources during shutdown."""


class AuthServiceProtocol(Protocol):
    """Identity resolution contract: who, if anyone, is behind a request."""

    async def principal_from_session(self, session_id: str | None) -> UnifiedPrincipal | None:
        """Resolve a principal from session storage, or ``None`` if missing/expired."""

    def principal_from_bearer(self, bearer_token: str | None) -> UnifiedPrincipal | None:
        """Validate and decode a bearer access token into a principal."""


class ChatServiceProtocol(Protocol):
    """High-level chat orchestration contract used by HTTP/SSE endpoints."""

    async def stream_events(self, turn_id: str) -> AsyncIterator[ChatStreamEvent]:
        """Yield typed stream events for a previously started turn."""

    def submit_user_message(
        self,
        *,
        content: str,
        conversation_id: str | None = None,
        principal: UnifiedPrincipal | None = None,
    ) -> TurnHandle:
        """Append a user message and start the assistant continuation in the background."""

    def confirm_purchase(
        self,
        *,
        conversation_id: str,
        symbol: str,
        price: float,
        amount: int,
        principal: UnifiedPrincipal | None = None,
    ) -> PurchaseHandle:
        """Start settling a purchase; raise ``ToolValidationError`` for an out-of-range amount."""

    async def get_ui_state(
        self,
        conversation_id: str,
        principal: UnifiedPrincipal | None,
    ) -> list[PresentationEntry] | None:
        """Project a conversation for display, or ``None`` without an identity."""

    def example_messages(self) -> list[dict[str, str]]:
        """Starter prompts shown on an empty chat."""

    async def aclose(self) -> None:
        """Wait for background turns during shutdown."""
