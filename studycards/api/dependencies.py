"""
FastAPI Dependencies - authentication and external clients.

Clients for the payment gateway and the LLM provider are created here so
tests can replace them with ``app.dependency_overrides``.
"""

from collections.abc import AsyncIterator

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from structlog import get_logger

from studycards.config import settings
from studycards.exceptions import AuthenticationError, ProviderAuthenticationError
from studycards.models.domain import UserIdentity
from studycards.services.cryptomus_provider import CryptomusProvider
from studycards.services.flashcard_generator import FlashcardGenerator
from studycards.services.llm_fallback import ModelFallbackClient
from studycards.services.llm_provider import OpenAICompatibleProvider
from studycards.services.payment_gateway import PaymentGateway

logger = get_logger(__name__)

# Bearer token scheme for JWT auth
bearer_scheme = HTTPBearer(auto_error=False)


# ============================================================================
# User JWT Authentication
# ============================================================================


def decode_access_token(token: str, secret: str, audience: str) -> UserIdentity:
    """
    Verify an HS256 access token and extract the caller identity.

    Raises:
        AuthenticationError: Token invalid, expired, or missing ``sub``
    """
    if not secret:
        logger.error("jwt_secret_not_configured")
        raise AuthenticationError()

    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            audience=audience,
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError as e:
        logger.warning("jwt_token_expired")
        raise AuthenticationError() from e
    except jwt.InvalidTokenError as e:
        logger.warning("jwt_token_invalid", error=str(e))
        raise AuthenticationError() from e

    user_id = payload.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise AuthenticationError()

    metadata = payload.get("user_metadata")
    full_name = metadata.get("full_name") if isinstance(metadata, dict) else None
    email = payload.get("email")

    return UserIdentity(
        user_id=user_id,
        email=email if isinstance(email, str) else None,
        full_name=full_name if isinstance(full_name, str) else None,
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> UserIdentity:
    """
    FastAPI dependency resolving ``Authorization: Bearer <jwt>``.

    Usage:
        @router.get("/api/user/usage")
        async def usage(user: UserIdentity = Depends(get_current_user)):
            ...
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError()
    return decode_access_token(
        credentials.credentials, settings.auth_jwt_secret, settings.auth_jwt_audience
    )


# ============================================================================
# External Clients
# ============================================================================


async def get_payment_gateway() -> AsyncIterator[PaymentGateway | None]:
    """Yield a Cryptomus client, or None when credentials are missing."""
    if not settings.gateway_configured:
        yield None
        return

    provider = CryptomusProvider(
        merchant_id=settings.cryptomus_merchant_id,
        api_key=settings.cryptomus_api_key,
        api_url=settings.cryptomus_api_url,
        timeout_seconds=settings.cryptomus_timeout_seconds,
    )
    try:
        yield provider
    finally:
        await provider.aclose()


def get_flashcard_generator() -> FlashcardGenerator:
    """
    Build the generator over the configured model list.

    Raises:
        ProviderAuthenticationError: LLM API key missing
    """
    if not settings.llm_api_key:
        logger.error("llm_api_key_not_configured")
        raise ProviderAuthenticationError("AI service is not configured")

    provider = OpenAICompatibleProvider(
        api_key=settings.llm_api_key,
        base_url=settings.llm_base_url,
        timeout_seconds=settings.llm_timeout_seconds,
    )
    client = ModelFallbackClient(
        provider,
        settings.llm_models,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
    )
    return FlashcardGenerator(client)
