"""Protocol strategy interface shared by SAML, OAuth2 and OIDC."""

from abc import ABC, abstractmethod
from typing import Optional

import httpx

from app.core.config import Settings
from app.core.sso.types import AssertedIdentity, AuthorizationRequest, CallbackPayload
from app.models.sso_provider import SSOProvider, SSOProviderType


class ProviderStrategy(ABC):
    """
    One implementation per provider type.

    ``build_authorization_request`` runs on login initiation and
    ``extract_identity`` on the callback. Neither keeps state between the two
    calls; whatever must survive the redirect travels with the caller.
    """

    provider_type: SSOProviderType

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.transport = transport

    @abstractmethod
    def build_authorization_request(
        self, provider: SSOProvider, redirect_url: Optional[str] = None
    ) -> AuthorizationRequest:
        ...

    @abstractmethod
    async def extract_identity(
        self, provider: SSOProvider, payload: CallbackPayload
    ) -> AssertedIdentity:
        ...
