"""SSO protocol value types."""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class AssertedIdentity:
    """Identity asserted by the IdP, before it is matched to a local user."""

    email: Optional[str]
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    subject: Optional[str] = None


@dataclass
class AuthorizationRequest:
    """What the browser needs to start the login at the IdP."""

    sso_url: str
    extras: dict[str, Any] = field(default_factory=dict)


@dataclass
class CallbackPayload:
    """Protocol response handed back to us after the IdP round-trip."""

    code: Optional[str] = None
    state: Optional[str] = None
    nonce: Optional[str] = None
    saml_response: Optional[str] = None
    redirect_url: Optional[str] = None
