"""
SSO Authentication Service

Runs the two halves of an SSO login:

1. Login initiation: domain -> active provider -> protocol-specific redirect
2. Callback: provider id + IdP response -> asserted identity -> local user
   (linked or auto-provisioned) -> signed session token

The halves share no in-memory state; the provider row is the only link.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import Settings, settings as app_settings
from app.core.exceptions import (
    ProviderConflictError,
    ProviderNotConfiguredError,
    ProvisioningDisabledError,
    SSOValidationError,
    UnauthorizedError,
)
from app.core.logging_config import mask_email
from app.core.security import create_session_token, generate_unusable_password_hash
from app.core.sso import AssertedIdentity, CallbackPayload, ProviderStrategy, get_strategy
from app.core.sso.saml import build_sp_metadata
from app.models.sso_provider import SSOProvider, SSOProviderType
from app.models.user import SubscriptionTier, User, UserRole
from app.schemas.sso import SSOProviderPublic
from app.services.sso_provider_service import SSOProviderService, get_sso_provider_service

logger = logging.getLogger("agentradar.sso")

AUTO_PROVISIONED_LICENSE = "SSO-AUTO-PROVISIONED"


@dataclass
class SSOSession:
    user: User
    token: str


class SSOAuthService:
    """
    SSO login flow.

    Args:
        settings: Application settings (redirect defaults, token lifetime, timeouts)
        provider_service: Provider registry
        transport: Optional httpx transport for IdP calls
    """

    def __init__(
        self,
        settings: Settings = app_settings,
        provider_service: Optional[SSOProviderService] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.providers = provider_service or get_sso_provider_service()
        self.transport = transport

    def _strategy(self, provider: SSOProvider) -> ProviderStrategy:
        return get_strategy(provider.type, self.settings, transport=self.transport)

    # ==================== DISCOVERY ====================

    async def check_domain(self, db: AsyncSession, domain: Optional[str]) -> Dict[str, Any]:
        if not domain:
            raise SSOValidationError("Domain parameter required")

        provider = await self.providers.find_active_provider_by_domain(db, domain)
        return {
            "hasSso": provider is not None,
            "provider": SSOProviderPublic.model_validate(provider).to_wire() if provider else None,
        }

    async def saml_metadata(self, db: AsyncSession, domain: Optional[str]) -> str:
        provider = await self.providers.find_active_provider_by_domain(db, domain)
        if provider is None or provider.type != SSOProviderType.SAML.value:
            raise ProviderNotConfiguredError("SAML provider not found for this domain")
        return build_sp_metadata(self.settings.SSO_SP_ENTITY_ID, self.settings.SSO_SAML_ACS_URL)

    # ==================== LOGIN INITIATION ====================

    async def initiate_login(
        self, db: AsyncSession, domain: Optional[str], redirect_url: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Build the redirect instruction for a domain's provider.

        Raises:
            SSOValidationError: No domain given, or the provider type is unsupported
            ProviderNotConfiguredError: No active provider for the domain
        """
        if not domain:
            raise SSOValidationError("Domain is required")

        provider = await self.providers.find_active_provider_by_domain(db, domain)
        if provider is None:
            raise ProviderNotConfiguredError()

        request = self._strategy(provider).build_authorization_request(provider, redirect_url or None)
        logger.info(f"SSO login initiated for {provider.domain} via {provider.type} provider {provider.id}")

        return {
            "providerId": provider.id,
            "providerName": provider.name,
            "type": provider.type,
            "ssoUrl": request.sso_url,
            **request.extras,
        }

    # ==================== CALLBACK ====================

    async def handle_callback(
        self, db: AsyncSession, provider_id: Optional[str], payload: CallbackPayload
    ) -> AssertedIdentity:
        """
        Turn the IdP's response into an asserted identity.

        Raises:
            ProviderNotFoundError: Unknown or inactive provider
            SSOValidationError: Payload does not fit the provider's protocol
            UpstreamError: The IdP did not yield a usable identity
        """
        provider = await self.providers.get_active_provider(db, provider_id)
        return await self._strategy(provider).extract_identity(provider, payload)

    async def complete_login(
        self, db: AsyncSession, provider_id: Optional[str], payload: CallbackPayload
    ) -> SSOSession:
        """Callback processing followed by identity resolution."""
        if not provider_id:
            raise SSOValidationError("Provider ID is required")

        provider = await self.providers.get_active_provider(db, provider_id)
        identity = await self._strategy(provider).extract_identity(provider, payload)
        return await self.resolve_and_issue_session(db, provider, identity)

    # ==================== IDENTITY RESOLUTION ====================

    async def resolve_and_issue_session(
        self, db: AsyncSession, provider: SSOProvider, identity: AssertedIdentity
    ) -> SSOSession:
        """
        Map an asserted identity to a local user and issue a session token.

        Unknown emails are auto-provisioned (when the provider allows it);
        unlinked users are linked to this provider; users already linked to
        another provider are rejected.
        """
        email = (identity.email or "").strip().lower()
        if not email:
            raise SSOValidationError("No email received from SSO provider")

        # Attributes are read up front: a rollback below expires loaded rows.
        provider_id = provider.id

        user = await self._get_user_by_email(db, email)
        if user is None:
            if not provider.auto_provision:
                logger.warning(f"SSO login refused for {mask_email(email)}: auto-provisioning disabled on {provider_id}")
                raise ProvisioningDisabledError()
            user = await self._provision_user(db, provider, identity, email)

        if not user.is_active:
            raise UnauthorizedError("Account is disabled")

        if user.sso_provider_id is None:
            user.sso_provider_id = provider_id
            logger.info(f"Linked existing user {user.id} to SSO provider {provider_id}")
        elif user.sso_provider_id != provider_id:
            logger.warning(
                f"SSO login for {mask_email(email)} via {provider_id} refused: "
                f"account is linked to provider {user.sso_provider_id}"
            )
            raise ProviderConflictError("Account is linked to a different SSO provider")

        user.last_login_at = datetime.now(timezone.utc)
        await db.commit()
        await db.refresh(user)

        token = create_session_token(
            user_id=user.id, email=user.email, role=user.role, config=self.settings
        )
        logger.info(f"SSO login successful for {mask_email(user.email)}")
        return SSOSession(user=user, token=token)

    async def _get_user_by_email(self, db: AsyncSession, email: str) -> Optional[User]:
        result = await db.execute(select(User).where(func.lower(User.email) == email))
        return result.scalar_one_or_none()

    async def _provision_user(
        self, db: AsyncSession, provider: SSOProvider, identity: AssertedIdentity, email: str
    ) -> User:
        user = User(
            email=email,
            first_name=identity.first_name or "SSO",
            last_name=identity.last_name or "User",
            hashed_password=generate_unusable_password_hash(),
            license_number=AUTO_PROVISIONED_LICENSE,
            role=provider.default_role or UserRole.USER.value,
            subscription_tier=provider.default_tier or SubscriptionTier.FREE.value,
            is_active=True,
            sso_provider_id=provider.id,
        )
        db.add(user)
        try:
            await db.commit()
        except IntegrityError:
            # A concurrent first login created the user; continue with that row.
            await db.rollback()
            existing = await self._get_user_by_email(db, email)
            if existing is None:
                raise
            logger.info(f"Concurrent SSO provisioning for {mask_email(email)}; using existing user {existing.id}")
            return existing

        await db.refresh(user)
        logger.info(f"Auto-provisioned SSO user {user.id} ({mask_email(email)}) via provider {provider.id}")
        return user

    # ==================== LOGOUT ====================

    async def logout(self, db: AsyncSession, token_payload: Dict[str, Any]) -> Dict[str, Any]:
        """Return the IdP single-logout URL when the caller's provider has one."""
        user_id = token_payload.get("userId") or token_payload.get("sub")
        user = await db.get(User, user_id) if user_id else None
        if user is None:
            raise UnauthorizedError("Invalid token")

        provider = await db.get(SSOProvider, user.sso_provider_id) if user.sso_provider_id else None
        if (
            provider is not None
            and provider.is_active
            and provider.type == SSOProviderType.SAML.value
            and provider.slo_url
        ):
            return {"logoutUrl": provider.slo_url, "message": "Redirecting to SSO logout"}

        return {"message": "Logged out successfully"}
