from __future__ import annotations

import asyncio
from contextlib import aclosing
from dataclasses import dataclass
import logging

from genui_assistant.agents.provider import CompletionRequest, ModelProvider
from genui_assistant.agents.tools.contracts import ToolCall, ToolContext
from genui_assistant.agents.tools.registry import ToolRegistry
from genui_assistant.services.chat_state import ConversationState, Message
from genui_assistant.services.errors import ProviderError
from genui_assistant.services.renderables import Renderable, bot_message, error_message, spinner
from genui_assistant.services.streamable import StreamableValue

logger = logging.getLogger(__name__)

ASSISTANT_STREAM_ERROR_FALLBACK = (
    "I ran into a temporary issue while generating a response. Please try again in a moment."
)


@dataclass
class DispatchHandle:
    live: StreamableValue[Renderable]
    settled: asyncio.Task[None]


class StreamingDispatcher:
    """Runs one provider stream per turn and publishes its UI into a live value."""

    def __init__(
        self,
        provider: ModelProvider,
        registry: ToolRegistry,
        *,
        model: str,
        render_delay_seconds: float = 0.0,
    ) -> None:
        self._provider = provider
        self._registry = registry
        self._model = model
        self._render_delay_seconds = render_delay_seconds

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def render_delay_seconds(self) -> float:
        return self._render_delay_seconds

    def dispatch(
        self,
        state: ConversationState,
        system_prompt: str,
        live: StreamableValue[Renderable] | None = None,
    ) -> DispatchHandle:
        """Start streaming the assistant continuation of ``state``.

        ``settled`` completes once the live value is finalized and every message
        of the continuation is appended; it raises ``ProviderError`` when the
        provider stream fails.
        A caller that already handed ``live`` to its clients may pass it in.
        """
        if live is None:
            live = StreamableValue(spinner())
        settled = asyncio.create_task(self._run(state, system_prompt, live))
        return DispatchHandle(live=live, settled=settled)

    async def _run(self, state: ConversationState, system_prompt: str, live: StreamableValue[Renderable]) -> None:
        request = CompletionRequest(
            model=self._model,
            system_prompt=system_prompt,
            history=state.messages,
            tools=self._registry.schemas(),
        )
        buffer: list[str] = []
        tool_call: ToolCall | None = None
        try:
            async with aclosing(self._provider.stream_completion(request)) as stream:
                async for delta in stream:
                    if delta.tool_call is not None:
                        tool_call = delta.tool_call
                        break
                    if delta.text_delta:
                        buffer.append(delta.text_delta)
                        live.update(bot_message("".join(buffer), pending=True))

            if tool_call is None:
                text = "".join(buffer)
                state.append(Message(role="assistant", content=text))
                live.done(bot_message(text))
                logger.debug("assistant text turn settled", extra={"conversation_id": state.conversation_id})
                return

            if buffer:
                logger.debug("discarding partial text before tool call", extra={"tool_name": tool_call.name})
            context = ToolContext(state=state, render_delay_seconds=self._render_delay_seconds)
            async for renderable in self._registry.run(tool_call, context):
                live.update(renderable)
            live.done()
            logger.debug(
                "tool turn settled",
                extra={"conversation_id": state.conversation_id, "tool_name": tool_call.name},
            )
        except ProviderError:
            _finalize_with_error(live)
            raise
        except Exception as exc:
            _finalize_with_error(live)
            raise ProviderError(f"assistant continuation failed: {exc}") from exc


def _finalize_with_error(live: StreamableValue[Renderable]) -> None:
    if not live.closed:
        live.done(error_message(ASSISTANT_STREAM_ERROR_FALLBACK))
