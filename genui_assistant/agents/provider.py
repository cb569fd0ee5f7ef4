from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
import logging
from typing import Any, Protocol

import httpx
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import (
    AIMessage,
    AIMessageChunk,
    BaseMessage,
    FunctionMessage,
    HumanMessage,
    SystemMessage,
)
from openai import APIError

from genui_assistant.agents.tools.contracts import ToolCall, ToolSchema
from genui_assistant.services.chat_state import Message
from genui_assistant.services.errors import ProviderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompletionRequest:
    model: str
    system_prompt: str
    history: Sequence[Message]
    tools: Sequence[ToolSchema]


@dataclass(frozen=True)
class ProviderDelta:
    """One increment of a provider stream: a text delta or a complete tool call."""

    text_delta: str | None = None
    tool_call: ToolCall | None = None


class ModelProvider(Protocol):
    """Streaming text/function-call generator used by the dispatcher."""

    def stream_completion(self, request: CompletionRequest) -> AsyncIterator[ProviderDelta]:
        """Stream text deltas, or a single tool call once its arguments are complete."""


def to_langchain_messages(system_prompt: str, history: Sequence[Message]) -> list[BaseMessage]:
    """Map the conversation log to chat-model messages with the system prompt first."""
    messages: list[BaseMessage] = [SystemMessage(content=system_prompt)]
    for message in history:
        if message.role == "user":
            messages.append(HumanMessage(content=message.content))
        elif message.role == "assistant":
            messages.append(AIMessage(content=message.content))
        elif message.role == "system":
            messages.append(SystemMessage(content=message.content))
        elif message.role == "function":
            messages.append(FunctionMessage(name=message.name or "", content=message.content))
        else:
            # data/tool entries carry no model-visible content of their own.
            continue
    return messages


class LangChainModelProvider(ModelProvider):
    """Provider backed by a LangChain chat model (``ChatOpenAI`` or a fake for local runs)."""

    def __init__(self, model: BaseChatModel, *, supports_tools: bool = True) -> None:
        self._model = model
        self._supports_tools = supports_tools

    async def stream_completion(self, request: CompletionRequest) -> AsyncIterator[ProviderDelta]:
        runnable: Any = self._model
        if self._supports_tools and request.tools:
            runnable = self._model.bind_tools([tool.as_openai_tool() for tool in request.tools])

        messages = to_langchain_messages(request.system_prompt, request.history)
        logger.debug(
            "opening provider stream",
            extra={"model": request.model, "history_length": len(request.history), "tools_count": len(request.tools)},
        )

        aggregate: AIMessageChunk | None = None
        calling_tool = False
        try:
            async for chunk in runnable.astream(messages):
                if not isinstance(chunk, AIMessageChunk):
                    continue
                aggregate = chunk if aggregate is None else aggregate + chunk
                if chunk.tool_call_chunks:
                    calling_tool = True
                if calling_tool:
                    continue
                text = _chunk_text(chunk)
                if text:
                    yield ProviderDelta(text_delta=text)
        except (APIError, httpx.HTTPError) as exc:
            raise ProviderError(f"provider stream failed: {exc}") from exc

        if not calling_tool or aggregate is None:
            return

        if not aggregate.tool_calls:
            raise ProviderError("provider emitted a malformed tool call")
        if len(aggregate.tool_calls) > 1:
            logger.warning("provider emitted several tool calls; using the first", extra={"count": len(aggregate.tool_calls)})
        first = aggregate.tool_calls[0]
        yield ProviderDelta(tool_call=ToolCall(name=first["name"], arguments=dict(first["args"]), call_id=first.get("id")))


def _chunk_text(chunk: AIMessageChunk) -> str:
    content = chunk.content
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for item in content:
        if isinstance(item, str):
            parts.append(item)
        elif isinstance(item, dict) and item.get("type") == "text":
            parts.append(str(item.get("text", "")))
    return "".join(parts)
