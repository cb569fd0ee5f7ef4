"""Error taxonomy shared by the orchestrator, dispatcher and collaborators."""

from __future__ import annotations


class ChatError(Exception):
    """Base class for chat orchestration errors."""


class ToolValidationError(ChatError):
    """Raised when tool arguments fail schema or domain validation.

    ``message`` is shown to the user; ``diagnostic`` is the system annotation
    recorded in the conversation log instead of a tool result.
    """

    def __init__(self, tool_name: str, message: str, *, diagnostic: str | None = None) -> None:
        super().__init__(f"{tool_name}: {message}")
        self.tool_name = tool_name
        self.message = message
        self.diagnostic = diagnostic or f"[Invalid arguments for {tool_name}]"


class ProviderError(ChatError):
    """Raised when the model provider stream fails or emits an unusable tool call."""


class UnknownToolError(ProviderError):
    """Raised when the provider asks for a tool that is not registered."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"unknown tool requested by provider: {tool_name!r}")
        self.tool_name = tool_name


class PersistenceError(ChatError):
    """Raised when a conversation snapshot cannot be saved or loaded."""


class AuthRequiredError(ChatError):
    """Raised when an operation needs an authenticated identity and none is present."""


class StreamClosedError(RuntimeError):
    """Raised when a finalized live value is updated again."""


class ConversationNotFoundError(ChatError):
    """Raised when a conversation is unknown or belongs to another identity."""

    def __init__(self, conversation_id: str) -> None:
        super().__init__(f"conversation not found: {conversation_id}")
        self.conversation_id = conversation_id
