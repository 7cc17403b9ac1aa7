import logging
from typing import AsyncGenerator, Optional, Dict, Any

from fastapi import Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings
from app.core.exceptions import UnauthorizedError
from app.core.security import decode_session_token
from app.models.user import UserRole
from app.services.sso_auth_service import SSOAuthService
from app.services.sso_provider_service import SSOProviderService

logger = logging.getLogger("agentradar.deps")

# Missing credentials are reported by the endpoints that need them
bearer_scheme = HTTPBearer(auto_error=False)


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session from the factory the app was built with."""
    async with request.app.state.session_factory() as session:
        yield session


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_sso_auth_service(request: Request) -> SSOAuthService:
    return request.app.state.sso_auth_service


def get_provider_registry(request: Request) -> SSOProviderService:
    """The registry the app's login flow uses."""
    return request.app.state.sso_auth_service.providers


def authenticate(
    credentials: Optional[HTTPAuthorizationCredentials],
    config: Optional[Settings] = None,
) -> Dict[str, Any]:
    """
    Decode the caller's bearer session token.

    Raises:
        UnauthorizedError: If the token is missing, invalid or expired
    """
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("No token provided")
    return decode_session_token(credentials.credentials, config=config)


def authenticate_admin(
    credentials: Optional[HTTPAuthorizationCredentials],
    config: Optional[Settings] = None,
) -> Dict[str, Any]:
    """
    Decode the bearer token and require role ADMIN.

    Raises:
        UnauthorizedError: Missing/invalid token or non-admin caller
    """
    payload = authenticate(credentials, config=config)
    if payload.get("role") != UserRole.ADMIN.value:
        logger.warning(f"Admin action refused for user {payload.get('userId')}")
        raise UnauthorizedError("Admin access required")
    return payload
