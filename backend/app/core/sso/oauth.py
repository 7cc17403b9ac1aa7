"""
OAuth2 and OpenID Connect support.

Authorization URLs are composed locally. The callback exchanges the
authorization code at the provider's token endpoint with authlib's httpx
client and reads the user's claims from the userinfo endpoint (OAuth2) or
the ID token (OIDC). ID token signatures are not verified.
"""

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Optional
from urllib.parse import urlencode

import httpx
from authlib.common.errors import AuthlibBaseError
from authlib.integrations.httpx_client import AsyncOAuth2Client
from jose import jwt, JWTError

from app.core.exceptions import SSOValidationError, UpstreamError
from app.core.security import generate_random_token
from app.core.sso.base import ProviderStrategy
from app.core.sso.types import AssertedIdentity, AuthorizationRequest, CallbackPayload
from app.models.sso_provider import SSOProvider, SSOProviderType

logger = logging.getLogger("agentradar.sso.oauth")

DEFAULT_OIDC_SCOPES = "openid email profile"


def build_authorization_url(base_url: str, params: list[tuple[str, str]]) -> str:
    """Append form-encoded params to the provider's authorization endpoint."""
    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{urlencode(params)}"


def _string_claim(claims: dict[str, Any], name: str) -> Optional[str]:
    value = claims.get(name)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def identity_from_claims(claims: dict[str, Any]) -> AssertedIdentity:
    email = _string_claim(claims, "email")
    if email is None:
        raise UpstreamError("Identity provider returned no usable email claim")
    if claims.get("email_verified") is False:
        raise UpstreamError("Identity provider reports the email as unverified")

    first_name = _string_claim(claims, "given_name")
    last_name = _string_claim(claims, "family_name")
    full_name = _string_claim(claims, "name")
    if not (first_name or last_name) and full_name:
        first_name, _, last_name = full_name.partition(" ")

    subject = claims.get("sub")
    return AssertedIdentity(
        email=email,
        first_name=first_name or None,
        last_name=last_name or None,
        subject=str(subject) if subject is not None else None,
    )


@contextmanager
def _upstream_call(url: str) -> Iterator[None]:
    # Single attempt; a failed exchange fails the login.
    try:
        yield
    except httpx.TimeoutException:
        raise UpstreamError(f"Timed out calling {url}")
    except httpx.HTTPStatusError as e:
        raise UpstreamError(f"HTTP {e.response.status_code} from {url}: {e.response.text[:200]}")
    except httpx.HTTPError as e:
        raise UpstreamError(f"Request to {url} failed: {e}")
    except AuthlibBaseError as e:
        raise UpstreamError(f"{url} returned error: {e}")
    except ValueError:
        raise UpstreamError(f"Non-JSON response from {url}")


class OAuth2Strategy(ProviderStrategy):
    provider_type = SSOProviderType.OAUTH2

    def _base_params(self, provider: SSOProvider, redirect_url: Optional[str]) -> list[tuple[str, str]]:
        if not provider.client_id:
            raise SSOValidationError("SSO provider is missing a client id")
        return [
            ("client_id", provider.client_id),
            ("redirect_uri", redirect_url or self.settings.SSO_DEFAULT_REDIRECT_URL),
            ("response_type", "code"),
        ]

    def build_authorization_request(
        self, provider: SSOProvider, redirect_url: Optional[str] = None
    ) -> AuthorizationRequest:
        state = generate_random_token()
        params = self._base_params(provider, redirect_url)
        params.append(("state", state))
        return AuthorizationRequest(
            sso_url=build_authorization_url(provider.sso_url, params),
            extras={"state": state},
        )

    def _oauth_client(self, provider: SSOProvider) -> AsyncOAuth2Client:
        # Client credentials travel in the form body; public clients send only client_id.
        return AsyncOAuth2Client(
            client_id=provider.client_id or "",
            client_secret=provider.client_secret,
            token_endpoint_auth_method="client_secret_post" if provider.client_secret else "none",
            timeout=self.settings.SSO_HTTP_TIMEOUT,
            transport=self.transport,
        )

    async def extract_identity(
        self, provider: SSOProvider, payload: CallbackPayload
    ) -> AssertedIdentity:
        if not payload.code:
            raise SSOValidationError("Invalid callback data")
        if not provider.token_url:
            raise UpstreamError(f"Provider {provider.id} has no token endpoint configured")

        async with self._oauth_client(provider) as client:
            tokens = await self._exchange_code(client, provider, payload)
            claims = await self._resolve_claims(client, provider, tokens, payload)

        return identity_from_claims(claims)

    async def _exchange_code(
        self, client: AsyncOAuth2Client, provider: SSOProvider, payload: CallbackPayload
    ) -> dict[str, Any]:
        with _upstream_call(provider.token_url):
            tokens = await client.fetch_token(
                provider.token_url,
                code=payload.code,
                redirect_uri=payload.redirect_url or self.settings.SSO_DEFAULT_REDIRECT_URL,
            )

        if not isinstance(tokens, dict):
            raise UpstreamError(f"Unexpected response shape from {provider.token_url}")
        if not tokens.get("access_token"):
            raise UpstreamError("Token response did not include an access token")
        return tokens

    async def _resolve_claims(
        self,
        client: AsyncOAuth2Client,
        provider: SSOProvider,
        tokens: dict[str, Any],
        payload: CallbackPayload,
    ) -> dict[str, Any]:
        return await self._fetch_userinfo(client, provider)

    async def _fetch_userinfo(self, client: AsyncOAuth2Client, provider: SSOProvider) -> dict[str, Any]:
        """GET the userinfo endpoint; the client adds the bearer token it was issued."""
        if not provider.userinfo_url:
            raise UpstreamError(f"Provider {provider.id} has no userinfo endpoint configured")

        with _upstream_call(provider.userinfo_url):
            response = await client.get(provider.userinfo_url, headers={"Accept": "application/json"})
            response.raise_for_status()
            body = response.json()

        if not isinstance(body, dict):
            raise UpstreamError(f"Unexpected response shape from {provider.userinfo_url}")
        return body


class OIDCStrategy(OAuth2Strategy):
    provider_type = SSOProviderType.OIDC

    def build_authorization_request(
        self, provider: SSOProvider, redirect_url: Optional[str] = None
    ) -> AuthorizationRequest:
        state = generate_random_token()
        nonce = generate_random_token()
        params = self._base_params(provider, redirect_url)
        params.extend([
            ("scope", provider.scopes or DEFAULT_OIDC_SCOPES),
            ("state", state),
            ("nonce", nonce),
        ])
        return AuthorizationRequest(
            sso_url=build_authorization_url(provider.sso_url, params),
            extras={"state": state, "nonce": nonce},
        )

    async def _resolve_claims(
        self,
        client: AsyncOAuth2Client,
        provider: SSOProvider,
        tokens: dict[str, Any],
        payload: CallbackPayload,
    ) -> dict[str, Any]:
        id_token = tokens.get("id_token")
        if not id_token:
            return await self._fetch_userinfo(client, provider)
        if not isinstance(id_token, str):
            raise UpstreamError("Malformed ID token")

        try:
            claims = jwt.get_unverified_claims(id_token)
        except JWTError:
            raise UpstreamError("Malformed ID token")

        if payload.nonce and claims.get("nonce") != payload.nonce:
            raise UpstreamError("ID token nonce does not match the login request")

        if not claims.get("email") and provider.userinfo_url:
            claims = {**claims, **await self._fetch_userinfo(client, provider)}
        return claims
