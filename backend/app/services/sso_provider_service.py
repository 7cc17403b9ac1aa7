"""
SSO Provider Registry

Administrative CRUD over SSO providers and the domain lookup used by the
login flow. Writes to the database only; never calls an identity provider.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ProviderConflictError, ProviderNotFoundError, SSOValidationError
from app.core.sso import parse_provider_type
from app.models.sso_provider import SSOProvider
from app.models.user import SubscriptionTier, User, UserRole
from app.schemas.sso import SSOProviderSummary

logger = logging.getLogger("agentradar.sso.registry")

REQUIRED_FIELDS = ("name", "type", "domain", "sso_url")

_UPDATABLE_FIELDS = {
    "name", "type", "domain", "sso_url", "client_id", "client_secret",
    "certificate", "token_url", "userinfo_url", "slo_url", "scopes",
    "auto_provision", "default_role", "default_tier",
}


def normalize_domain(domain: Optional[str]) -> str:
    """
    Lower-case a domain for storage and lookup.

    Accepts a full email address as a convenience.
    """
    if not domain:
        return ""
    value = domain.strip().lower()
    if "@" in value:
        value = value.rpartition("@")[2]
    return value.rstrip(".")


def _validate_role(role: str) -> str:
    try:
        return UserRole(role.upper()).value
    except (ValueError, AttributeError):
        raise SSOValidationError(f"Invalid default role: {role}")


def _validate_tier(tier: str) -> str:
    try:
        return SubscriptionTier(tier.upper()).value
    except (ValueError, AttributeError):
        raise SSOValidationError(f"Invalid default tier: {tier}")


class SSOProviderService:
    """Provider registry keyed by organisational email domain."""

    async def find_active_provider_by_domain(
        self, db: AsyncSession, domain: Optional[str]
    ) -> Optional[SSOProvider]:
        """Active provider for a domain (case-insensitive), or None."""
        normalized = normalize_domain(domain)
        if not normalized:
            return None

        result = await db.execute(
            select(SSOProvider).where(
                SSOProvider.domain == normalized,
                SSOProvider.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    async def get_provider(self, db: AsyncSession, provider_id: Optional[str]) -> SSOProvider:
        """Provider by id regardless of state."""
        provider = await db.get(SSOProvider, provider_id) if provider_id else None
        if provider is None:
            raise ProviderNotFoundError()
        return provider

    async def get_active_provider(self, db: AsyncSession, provider_id: Optional[str]) -> SSOProvider:
        provider = await self.get_provider(db, provider_id)
        if not provider.is_active:
            raise ProviderNotFoundError()
        return provider

    async def create_provider(
        self,
        db: AsyncSession,
        *,
        name: Optional[str],
        type: Optional[str],
        domain: Optional[str],
        sso_url: Optional[str],
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        certificate: Optional[str] = None,
        token_url: Optional[str] = None,
        userinfo_url: Optional[str] = None,
        slo_url: Optional[str] = None,
        scopes: Optional[str] = None,
        auto_provision: bool = True,
        default_role: str = UserRole.USER.value,
        default_tier: str = SubscriptionTier.FREE.value,
    ) -> SSOProvider:
        """
        Register a new provider for a domain.

        Raises:
            SSOValidationError: Missing required field, unknown type, role or tier
            ProviderConflictError: An active provider already serves the domain
        """
        supplied = {"name": name, "type": type, "domain": domain, "sso_url": sso_url}
        missing = [field for field in REQUIRED_FIELDS if not (supplied[field] or "").strip()]
        if missing:
            raise SSOValidationError(f"Missing required fields: {', '.join(missing)}")

        provider_type = parse_provider_type(type)
        normalized_domain = normalize_domain(domain)

        if await self.find_active_provider_by_domain(db, normalized_domain):
            raise ProviderConflictError()

        provider = SSOProvider(
            name=name.strip(),
            type=provider_type.value,
            domain=normalized_domain,
            sso_url=sso_url.strip(),
            client_id=client_id or None,
            client_secret=client_secret or None,
            certificate=certificate or None,
            token_url=token_url or None,
            userinfo_url=userinfo_url or None,
            slo_url=slo_url or None,
            scopes=scopes or "openid email profile",
            auto_provision=auto_provision,
            default_role=_validate_role(default_role),
            default_tier=_validate_tier(default_tier),
            is_active=True,
        )
        db.add(provider)
        await self._commit(db)
        await db.refresh(provider)

        logger.info(f"SSO provider created: {provider.id} ({provider.type}) for {provider.domain}")
        return provider

    async def list_providers(self, db: AsyncSession) -> List[SSOProviderSummary]:
        """All providers, newest first, with linked-user counts."""
        user_counts = (
            select(User.sso_provider_id, func.count(User.id).label("user_count"))
            .group_by(User.sso_provider_id)
            .subquery()
        )
        result = await db.execute(
            select(SSOProvider, func.coalesce(user_counts.c.user_count, 0))
            .outerjoin(user_counts, user_counts.c.sso_provider_id == SSOProvider.id)
            .order_by(SSOProvider.created_at.desc())
        )
        return [
            SSOProviderSummary.model_validate(provider).model_copy(update={"user_count": count})
            for provider, count in result.all()
        ]

    async def update_provider(
        self, db: AsyncSession, provider_id: Optional[str], changes: Dict[str, Any]
    ) -> SSOProvider:
        """
        Apply a partial update.

        An empty client_secret keeps the stored one. Moving an active provider
        to another domain re-checks the one-active-provider-per-domain rule.
        """
        provider = await self.get_provider(db, provider_id)

        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise SSOValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

        for field in REQUIRED_FIELDS:
            if field in changes and not (changes[field] or "").strip():
                raise SSOValidationError(f"{field} cannot be empty")

        if "type" in changes:
            changes["type"] = parse_provider_type(changes["type"]).value
        if "default_role" in changes and changes["default_role"] is not None:
            changes["default_role"] = _validate_role(changes["default_role"])
        if "default_tier" in changes and changes["default_tier"] is not None:
            changes["default_tier"] = _validate_tier(changes["default_tier"])
        if not changes.get("client_secret"):
            changes.pop("client_secret", None)

        if "domain" in changes:
            changes["domain"] = normalize_domain(changes["domain"])
            if provider.is_active and changes["domain"] != provider.domain:
                if await self.find_active_provider_by_domain(db, changes["domain"]):
                    raise ProviderConflictError()

        for field, value in changes.items():
            if value is None and field in ("auto_provision", "default_role", "default_tier", "scopes"):
                continue
            setattr(provider, field, value)

        await self._commit(db)
        await db.refresh(provider)

        logger.info(f"SSO provider updated: {provider.id} fields={sorted(changes)}")
        return provider

    async def deactivate_provider(self, db: AsyncSession, provider_id: Optional[str]) -> SSOProvider:
        """Soft-disable a provider. Linked users keep their reference."""
        provider = await self.get_provider(db, provider_id)
        if provider.is_active:
            provider.is_active = False
            await db.commit()
            await db.refresh(provider)
            logger.info(f"SSO provider deactivated: {provider.id} ({provider.domain})")
        return provider

    @staticmethod
    async def _commit(db: AsyncSession) -> None:
        # The partial unique index settles races the pre-read cannot see.
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise ProviderConflictError()


_sso_provider_service: Optional[SSOProviderService] = None


def get_sso_provider_service() -> SSOProviderService:
    """Get the global provider registry instance."""
    global _sso_provider_service
    if _sso_provider_service is None:
        _sso_provider_service = SSOProviderService()
    return _sso_provider_service
