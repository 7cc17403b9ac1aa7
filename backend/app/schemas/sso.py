from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake-case fields in Python, camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


# ============ Requests ============

class SSOLoginRequest(CamelModel):
    domain: Optional[str] = None
    redirect_url: Optional[str] = None


class SSOCallbackRequest(CamelModel):
    provider_id: Optional[str] = None
    code: Optional[str] = None
    state: Optional[str] = None
    nonce: Optional[str] = None
    saml_response: Optional[str] = None
    redirect_url: Optional[str] = None


class SSOProviderCreate(CamelModel):
    # Required-ness of name/type/domain/sso_url is checked by the registry
    name: Optional[str] = None
    type: Optional[str] = None
    domain: Optional[str] = None
    sso_url: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    certificate: Optional[str] = None
    token_url: Optional[str] = None
    userinfo_url: Optional[str] = None
    slo_url: Optional[str] = None
    scopes: Optional[str] = None
    auto_provision: bool = True
    default_role: str = "USER"
    default_tier: str = "FREE"


class SSOProviderUpdate(CamelModel):
    id: Optional[str] = None
    name: Optional[str] = None
    type: Optional[str] = None
    domain: Optional[str] = None
    sso_url: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    certificate: Optional[str] = None
    token_url: Optional[str] = None
    userinfo_url: Optional[str] = None
    slo_url: Optional[str] = None
    scopes: Optional[str] = None
    auto_provision: Optional[bool] = None
    default_role: Optional[str] = None
    default_tier: Optional[str] = None

    def changes(self) -> dict:
        """Fields the caller actually sent, minus the id."""
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if name != "id"
        }


class SSOProviderRef(CamelModel):
    id: Optional[str] = None


# ============ Responses ============

class SSOProviderSummary(CamelModel):
    id: str
    name: str
    type: str
    domain: str
    sso_url: str
    is_active: bool
    has_client_secret: bool = False
    auto_provision: bool = True
    default_role: str = "USER"
    default_tier: str = "FREE"
    created_at: Optional[datetime] = None
    user_count: Optional[int] = None


class SSOProviderPublic(CamelModel):
    """What an unauthenticated domain check may reveal."""

    id: str
    name: str
    type: str
    domain: str
    sso_url: str


class SSOUserSummary(CamelModel):
    id: str
    email: str
    first_name: str
    last_name: str
    role: str
