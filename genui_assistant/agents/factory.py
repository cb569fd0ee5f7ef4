from __future__ import annotations

import logging
from pathlib import Path

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.language_models.fake_chat_models import FakeListChatModel
from langchain_openai import ChatOpenAI

from genui_assistant.agents.dispatcher import StreamingDispatcher
from genui_assistant.agents.provider import LangChainModelProvider, ModelProvider
from genui_assistant.agents.tools import ToolRegistry
from genui_assistant.core.settings import Settings

logger = logging.getLogger(__name__)

_MOCK_MESSAGE_DELIMITER = "\n\n--- message ---\n\n"

DEFAULT_SYSTEM_PROMPT = """\
You are a stock trading conversation bot and a tourism education bot for North Lake Tahoe, California.
You can help users buy stocks, step by step, and help them learn about places to stay in North Lake Tahoe.
You and the user can discuss stock prices and the user can adjust the amount of stocks they want to buy, or place an order, in the UI.
You and the user can discuss hotels and vacation rentals and the user can book them, in the UI.

Messages inside [] means that it's a UI element or a user event. For example:
- "[Price of AAPL = 100]" means that an interface of the stock price of AAPL is shown to the user.
- "[User has changed the amount of AAPL to 10]" means that the user has changed the amount of AAPL to 10 in the UI.

If the user requests purchasing a stock, call `show_stock_purchase` to show the purchase UI.
If the user just wants the price, call `show_stock_price` to show the price.
If you want to show trending stocks, call `list_stocks`.
If you want to show events, call `get_events`.
If the user wants to sell stock, or complete another impossible task, respond that you are a demo and cannot do that.

Recommend one of these 3 hotels or vacation rentals and call `book_hotel` when the user asks about one:
PLUMPJACK INN
Street Address: 1920 Olympic Vly Rd, Olympic Valley, CA 96146 (Located inside Palisades Tahoe)
Image URL: https://www.gotahoenorth.com/wp-content/uploads/2016/10/Hero-Winter-Image-w-CC-640x440.jpg
Booking URL: https://res.windsurfercrs.com/ibe/index.aspx?propertyID=16214&nono=1

THE LODGE AT OBEXERS
Street Address: 5335 W Lake Blvd, Homewood, CA 96141
Image URL: https://www.thelodgeatobexers.com/sitebuilder/images/Lodge_Exterior_Cropped-900x527.jpg
Booking URL: https://www.availabilityonline.com/availability_search.php?un=obexers1

TAHOE WOODSIDE VACATION RENTALS
Street Address: On Old Brockway golf course, Tahoe Vista, CA 96148
Image URL: https://www.gotahoenorth.com/wp-content/uploads/2014/12/Tahoe-Woodside_2023_130-DSC_0390-Edit-640x440.jpg
Booking URL: https://www.tahoewoodside.com/

Besides that, you can also chat with users and do some calculations if needed."""


def _load_mock_messages(messages_file: str) -> list[str]:
    path = Path(messages_file)
    raw_content = path.read_text(encoding="utf-8")
    parsed_messages = [chunk.strip() for chunk in raw_content.split(_MOCK_MESSAGE_DELIMITER)]
    messages = [message for message in parsed_messages if message]
    if not messages:
        raise ValueError(
            f"No mock messages found in {path}. Use delimiter {_MOCK_MESSAGE_DELIMITER!r} between messages."
        )
    return messages


def _build_chat_model(settings: Settings) -> BaseChatModel:
    if settings.chat_use_mock:
        fake_responses = _load_mock_messages(messages_file=settings.chat_mock_messages_file)
        logger.info("using FakeListChatModel provider", extra={"responses_count": len(fake_responses)})
        return FakeListChatModel(responses=fake_responses)

    logger.info("using OpenAI-compatible chat model", extra={"model": settings.chat_model})
    return ChatOpenAI(
        model=settings.chat_model,
        base_url=settings.chat_model_provider_base_url,
        api_key=settings.chat_model_provider_api_key,
        temperature=settings.chat_temperature,
        streaming=True,
    )


def build_model_provider(settings: Settings) -> ModelProvider:
    # The fake list model cannot bind tools; mock runs are text-only.
    return LangChainModelProvider(_build_chat_model(settings), supports_tools=not settings.chat_use_mock)


def build_system_prompt(settings: Settings) -> str:
    if settings.chat_system_prompt and settings.chat_system_prompt.strip():
        return settings.chat_system_prompt.strip()
    return DEFAULT_SYSTEM_PROMPT


def build_dispatcher(settings: Settings, provider: ModelProvider | None = None) -> StreamingDispatcher:
    """Create the streaming dispatcher with a real or fake model backend."""
    return StreamingDispatcher(
        provider if provider is not None else build_model_provider(settings),
        ToolRegistry(),
        model=settings.chat_model,
        render_delay_seconds=settings.tool_render_delay_seconds,
    )
