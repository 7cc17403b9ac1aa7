"""
Test doubles and data factories for SSO tests.
"""
import base64
from typing import Any, Callable, Dict, List, Union

import httpx
from jose import jwt

RouteResponse = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


class IdPStub:
    """
    Scripted identity provider behind an httpx.MockTransport.

    Routes are keyed on "METHOD scheme://host/path"; every request is
    recorded for assertions.
    """

    def __init__(self):
        self.routes: Dict[str, RouteResponse] = {}
        self.requests: List[httpx.Request] = []

    def on(self, method: str, url: str, response: RouteResponse) -> None:
        self.routes[f"{method} {url}"] = response

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = request.url
        route = self.routes.get(f"{request.method} {url.scheme}://{url.host}{url.path}")
        if route is None:
            return httpx.Response(404, json={"error": "not_found"})
        if callable(route):
            return route(request)
        return route

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def oauth2_provider_fields(**overrides) -> Dict[str, Any]:
    fields = {
        "name": "Acme OAuth",
        "type": "OAUTH2",
        "domain": "acme.com",
        "sso_url": "https://idp.acme.com/authorize",
        "client_id": "abc123",
        "client_secret": "s3cret",
        "token_url": "https://idp.acme.com/token",
        "userinfo_url": "https://idp.acme.com/userinfo",
    }
    fields.update(overrides)
    return fields


def oidc_provider_fields(**overrides) -> Dict[str, Any]:
    fields = {
        "name": "Globex OIDC",
        "type": "OIDC",
        "domain": "globex.com",
        "sso_url": "https://login.globex.com/authorize",
        "client_id": "globex-client",
        "client_secret": "globex-secret",
        "token_url": "https://login.globex.com/token",
        "userinfo_url": "https://login.globex.com/userinfo",
    }
    fields.update(overrides)
    return fields


def saml_provider_fields(**overrides) -> Dict[str, Any]:
    fields = {
        "name": "Initech SAML",
        "type": "SAML",
        "domain": "initech.com",
        "sso_url": "https://sso.initech.com/saml2/idp",
        "certificate": "MIIC...",
        "slo_url": "https://sso.initech.com/saml2/logout",
    }
    fields.update(overrides)
    return fields


def saml_response(email: str = "peter@initech.com", first: str = "Peter", last: str = "Gibbons") -> str:
    """Base64 SAMLResponse carrying an email and name attributes."""
    xml = (
        '<samlp:Response xmlns:samlp="urn:oasis:names:tc:SAML:2.0:protocol" '
        'xmlns:saml="urn:oasis:names:tc:SAML:2.0:assertion">'
        '<saml:Assertion>'
        f'<saml:Subject><saml:NameID>{email}</saml:NameID></saml:Subject>'
        '<saml:AttributeStatement>'
        '<saml:Attribute Name="email">'
        f'<saml:AttributeValue>{email}</saml:AttributeValue>'
        '</saml:Attribute>'
        '<saml:Attribute Name="firstName">'
        f'<saml:AttributeValue>{first}</saml:AttributeValue>'
        '</saml:Attribute>'
        '<saml:Attribute Name="lastName">'
        f'<saml:AttributeValue>{last}</saml:AttributeValue>'
        '</saml:Attribute>'
        '</saml:AttributeStatement>'
        '</saml:Assertion>'
        '</samlp:Response>'
    )
    return base64.b64encode(xml.encode()).decode()


def unsigned_id_token(claims: Dict[str, Any]) -> str:
    """JWT signed with a throwaway key; signatures are never checked."""
    return jwt.encode(claims, "idp-signing-key", algorithm="HS256")
