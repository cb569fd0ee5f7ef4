import logging

import jwt

from genui_assistant.api.schemas.auth import UnifiedPrincipal
from genui_assistant.core.settings import Settings
from genui_assistant.services.contracts import SessionStoreProtocol

logger = logging.getLogger(__name__)


class JwtTokenValidator:
    """Validates HS256 access tokens carrying the principal as claims."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def decode(self, token: str) -> UnifiedPrincipal:
        payload = jwt.decode(
            token,
            self._settings.auth_jwt_secret,
            algorithms=[self._settings.auth_jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
        return UnifiedPrincipal(
            user_id=str(payload["sub"]),
            email=payload.get("email"),
            display_name=payload.get("name"),
        )


class AuthService:
    """Resolves the optional identity behind a chat request.

    Tokens and sessions are minted by the login service sharing the JWT secret
    and the session Redis; this service only reads them. Anonymous visitors can
    chat, but only identified principals get their conversations persisted and
    can read back the projected UI state.
    """

    def __init__(self, settings: Settings, session_store: SessionStoreProtocol) -> None:
        self._settings = settings
        self._session_store = session_store
        self._token_validator = JwtTokenValidator(settings)

    async def principal_from_session(self, session_id: str | None) -> UnifiedPrincipal | None:
        if not session_id:
            return None
        user_id = await self._session_store.get_user_id(session_id)
        if user_id is None:
            logger.debug("session missing or expired")
            return None
        return UnifiedPrincipal(user_id=user_id)

    def principal_from_bearer(self, bearer_token: str | None) -> UnifiedPrincipal | None:
        if not bearer_token:
            return None
        try:
            return self._token_validator.decode(bearer_token)
        except jwt.PyJWTError:
            logger.info("bearer token validation failed")
            return None
