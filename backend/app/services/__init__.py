# Services Package

from app.services.sso_provider_service import (
    SSOProviderService,
    get_sso_provider_service,
    normalize_domain,
)
from app.services.sso_auth_service import SSOAuthService, SSOSession

__all__ = [
    "SSOAuthService",
    "SSOProviderService",
    "SSOSession",
    "get_sso_provider_service",
    "normalize_domain",
]
