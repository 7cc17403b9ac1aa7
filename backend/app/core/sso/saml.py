"""
SAML 2.0 support.

Builds unsigned AuthnRequests and SP metadata, and pulls the asserted
attributes out of a base64 SAMLResponse. Signatures, audience and
conditions are not validated.
"""

import base64
import logging
import re
from datetime import datetime, timezone
from typing import Optional
from xml.sax.saxutils import escape, quoteattr

from app.core.exceptions import SSOValidationError, UpstreamError
from app.core.security import generate_random_token
from app.core.sso.base import ProviderStrategy
from app.core.sso.types import AssertedIdentity, AuthorizationRequest, CallbackPayload
from app.models.sso_provider import SSOProvider, SSOProviderType

logger = logging.getLogger("agentradar.sso.saml")

_ATTRIBUTE_VALUE_RE = re.compile(
    r"<(?:[\w-]+:)?AttributeValue\b[^>]*>\s*([^<]*?)\s*</(?:[\w-]+:)?AttributeValue>"
)
_ATTRIBUTE_RE = re.compile(
    r"<(?:[\w-]+:)?Attribute\b[^>]*?\bName=\"([^\"]+)\"[^>]*>(.*?)</(?:[\w-]+:)?Attribute>",
    re.DOTALL,
)
_NAME_ID_RE = re.compile(r"<(?:[\w-]+:)?NameID\b[^>]*>\s*([^<]+?)\s*</(?:[\w-]+:)?NameID>")

_FIRST_NAME_KEYS = {"firstname", "first_name", "givenname", "given_name"}
_LAST_NAME_KEYS = {"lastname", "last_name", "surname", "sn", "familyname", "family_name"}


def build_authn_request(destination: str, acs_url: str, issuer: str) -> tuple[str, str]:
    """
    Build an AuthnRequest.

    Returns:
        (request_id, xml)
    """
    request_id = f"_{generate_random_token(16)}"
    issue_instant = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

    xml = (
        '<samlp:AuthnRequest xmlns:samlp="urn:oasis:names:tc:SAML:2.0:protocol" '
        'xmlns:saml="urn:oasis:names:tc:SAML:2.0:assertion" '
        f'ID="{request_id}" Version="2.0" IssueInstant="{issue_instant}" '
        f'Destination={quoteattr(destination)} '
        'ProtocolBinding="urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST" '
        f'AssertionConsumerServiceURL={quoteattr(acs_url)}>'
        f'<saml:Issuer>{escape(issuer)}</saml:Issuer>'
        '</samlp:AuthnRequest>'
    )
    return request_id, xml


def build_sp_metadata(entity_id: str, acs_url: str) -> str:
    """Service-provider EntityDescriptor advertised to IdPs."""
    return (
        '<?xml version="1.0"?>\n'
        '<md:EntityDescriptor xmlns:md="urn:oasis:names:tc:SAML:2.0:metadata" '
        f'entityID={quoteattr(entity_id)}>'
        '<md:SPSSODescriptor AuthnRequestsSigned="false" WantAssertionsSigned="true" '
        'protocolSupportEnumeration="urn:oasis:names:tc:SAML:2.0:protocol">'
        '<md:NameIDFormat>urn:oasis:names:tc:SAML:1.1:nameid-format:emailAddress</md:NameIDFormat>'
        '<md:AssertionConsumerService Binding="urn:oasis:names:tc:SAML:2.0:bindings:HTTP-POST" '
        f'Location={quoteattr(acs_url)} index="1"/>'
        '</md:SPSSODescriptor>'
        '</md:EntityDescriptor>'
    )


def decode_saml_response(saml_response: str) -> str:
    """Base64-decode a SAMLResponse, tolerating line-wrapped input."""
    compact = "".join(saml_response.split())
    try:
        return base64.b64decode(compact, validate=True).decode("utf-8")
    except ValueError:
        raise SSOValidationError("Malformed SAML response")


def _attribute_key(name: str) -> str:
    # Claim URIs such as http://schemas.xmlsoap.org/.../givenname
    return re.split(r"[/:#]", name)[-1].lower()


def parse_saml_identity(document: str) -> AssertedIdentity:
    """
    Pull email and names out of a decoded SAML response.

    The email is the first AttributeValue containing an "@", falling back to
    the subject NameID.
    """
    email: Optional[str] = None
    for value in _ATTRIBUTE_VALUE_RE.findall(document):
        if "@" in value:
            email = value
            break

    if email is None:
        name_id = _NAME_ID_RE.search(document)
        if name_id and "@" in name_id.group(1):
            email = name_id.group(1)

    first_name = last_name = None
    for name, body in _ATTRIBUTE_RE.findall(document):
        value = _ATTRIBUTE_VALUE_RE.search(body)
        if not value:
            continue
        key = _attribute_key(name)
        if key in _FIRST_NAME_KEYS and first_name is None:
            first_name = value.group(1) or None
        elif key in _LAST_NAME_KEYS and last_name is None:
            last_name = value.group(1) or None

    return AssertedIdentity(email=email, first_name=first_name, last_name=last_name, subject=email)


class SAMLStrategy(ProviderStrategy):
    provider_type = SSOProviderType.SAML

    def build_authorization_request(
        self, provider: SSOProvider, redirect_url: Optional[str] = None
    ) -> AuthorizationRequest:
        request_id, xml = build_authn_request(
            destination=provider.sso_url,
            acs_url=redirect_url or self.settings.SSO_SAML_ACS_URL,
            issuer=self.settings.SSO_SP_ENTITY_ID,
        )
        return AuthorizationRequest(
            sso_url=provider.sso_url,
            extras={"samlRequest": xml, "requestId": request_id},
        )

    async def extract_identity(
        self, provider: SSOProvider, payload: CallbackPayload
    ) -> AssertedIdentity:
        if not payload.saml_response:
            raise SSOValidationError("Invalid callback data")

        identity = parse_saml_identity(decode_saml_response(payload.saml_response))
        if not identity.email:
            logger.warning(f"SAML response from provider {provider.id} carried no email attribute")
            raise UpstreamError("No email received from SSO provider")
        return identity
