"""Maps a provider type to its protocol strategy."""

from typing import Optional

import httpx

from app.core.config import Settings
from app.core.exceptions import SSOValidationError
from app.core.sso.base import ProviderStrategy
from app.core.sso.oauth import OAuth2Strategy, OIDCStrategy
from app.core.sso.saml import SAMLStrategy
from app.models.sso_provider import SSOProviderType

_STRATEGIES: dict[SSOProviderType, type[ProviderStrategy]] = {
    SSOProviderType.SAML: SAMLStrategy,
    SSOProviderType.OAUTH2: OAuth2Strategy,
    SSOProviderType.OIDC: OIDCStrategy,
}


def parse_provider_type(value: Optional[str]) -> SSOProviderType:
    try:
        return SSOProviderType((value or "").upper())
    except ValueError:
        raise SSOValidationError(f"Unsupported SSO provider type: {value}")


def get_strategy(
    provider_type: Optional[str],
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProviderStrategy:
    return _STRATEGIES[parse_provider_type(provider_type)](settings, transport=transport)
