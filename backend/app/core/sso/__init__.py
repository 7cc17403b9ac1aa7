"""
SSO protocol layer.

Supports:
- SAML 2.0 (unsigned AuthnRequest, attribute extraction)
- OAuth2 (authorization code flow)
- OpenID Connect (authorization code flow with nonce)

Each protocol is a ProviderStrategy selected once from the provider's type.
"""

from app.core.sso.base import ProviderStrategy
from app.core.sso.registry import get_strategy, parse_provider_type
from app.core.sso.types import AssertedIdentity, AuthorizationRequest, CallbackPayload

__all__ = [
    "AssertedIdentity",
    "AuthorizationRequest",
    "CallbackPayload",
    "ProviderStrategy",
    "get_strategy",
    "parse_provider_type",
]
