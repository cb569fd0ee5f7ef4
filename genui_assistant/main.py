from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI

from genui_assistant import __version__
from genui_assistant.api.router import api_router
from genui_assistant.api.routers.health import router as health_router
from genui_assistant.core.logging import configure_logging
from genui_assistant.core.settings import get_settings
from genui_assistant.dependency_injection import build_container
from genui_assistant.services.contracts import ChatServiceProtocol, DatabaseServiceProtocol, SessionStoreProtocol

settings = get_settings()
configure_logging(settings.effective_log_level)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("starting genui assistant", extra={"app_env": settings.app_env})

    container = build_container(settings)
    database_service = container.resolve(DatabaseServiceProtocol)
    await database_service.connect()
    logger.info("database connection pool initialized")

    session_store = container.resolve(SessionStoreProtocol)
    await session_store.ping()
    logger.info("session store connection initialized")

    chat_service = container.resolve(ChatServiceProtocol)
    app.state.settings = settings
    app.state.container = container

    try:
        yield
    finally:
        await chat_service.aclose()
        await session_store.close()
        await database_service.disconnect()
        logger.info("genui assistant shutdown complete")


app = FastAPI(
    title="GenUI Assistant",
    version=__version__,
    docs_url="/docs" if settings.enable_swagger else None,
    redoc_url="/redoc" if settings.enable_swagger else None,
    openapi_url="/openapi.json" if settings.enable_swagger else None,
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(api_router, prefix="/api")
