"""
Tests for app/services/sso_auth_service.py - Login initiation, callbacks and identity resolution.

Tests cover:
- Domain check and SAML metadata
- Login initiation per provider type
- Auto-provisioning, linking and conflicting provider links
- Concurrent first login for the same email
- Logout with and without a single-logout URL
"""
import httpx
import pytest
from sqlalchemy import func, select

from tests.utils.sso_factories import (
    oauth2_provider_fields,
    oidc_provider_fields,
    saml_provider_fields,
    saml_response,
)


async def _count_users(db) -> int:
    return (await db.execute(select(func.count()).select_from(_user_model()))).scalar_one()


def _user_model():
    from app.models.user import User
    return User


def _identity(email="Jane.Doe@Acme.com", first="Jane", last="Doe"):
    from app.core.sso import AssertedIdentity
    return AssertedIdentity(email=email, first_name=first, last_name=last)


def _add_user(db, email, **overrides):
    User = _user_model()
    values = dict(
        email=email, first_name="Existing", last_name="User",
        hashed_password="x", role="USER", subscription_tier="FREE",
    )
    values.update(overrides)
    user = User(**values)
    db.add(user)
    return user


class TestDiscovery:

    @pytest.mark.asyncio
    async def test_check_domain_with_provider(self, db, provider_service, auth_service):
        created = await provider_service.create_provider(db, **oauth2_provider_fields())

        result = await auth_service.check_domain(db, "ACME.com")

        assert result["hasSso"] is True
        assert result["provider"] == {
            "id": created.id,
            "name": "Acme OAuth",
            "type": "OAUTH2",
            "domain": "acme.com",
            "ssoUrl": "https://idp.acme.com/authorize",
        }

    @pytest.mark.asyncio
    async def test_check_domain_without_provider(self, db, auth_service):
        assert await auth_service.check_domain(db, "nobody.com") == {"hasSso": False, "provider": None}

    @pytest.mark.asyncio
    async def test_check_domain_requires_domain(self, db, auth_service):
        from app.core.exceptions import SSOValidationError

        with pytest.raises(SSOValidationError):
            await auth_service.check_domain(db, "")

    @pytest.mark.asyncio
    async def test_metadata_for_saml_domain(self, db, provider_service, auth_service, test_settings):
        await provider_service.create_provider(db, **saml_provider_fields())

        xml = await auth_service.saml_metadata(db, "initech.com")

        assert f'entityID="{test_settings.SSO_SP_ENTITY_ID}"' in xml

    @pytest.mark.asyncio
    async def test_metadata_for_non_saml_domain(self, db, provider_service, auth_service):
        from app.core.exceptions import ProviderNotConfiguredError

        await provider_service.create_provider(db, **oauth2_provider_fields())

        with pytest.raises(ProviderNotConfiguredError):
            await auth_service.saml_metadata(db, "acme.com")


class TestInitiateLogin:

    @pytest.mark.asyncio
    async def test_oauth2_login(self, db, provider_service, auth_service):
        created = await provider_service.create_provider(db, **oauth2_provider_fields())

        result = await auth_service.initiate_login(db, "acme.com", "https://app.example.com/cb")

        assert result["providerId"] == created.id
        assert result["providerName"] == "Acme OAuth"
        assert result["type"] == "OAUTH2"
        assert result["ssoUrl"].startswith(
            "https://idp.acme.com/authorize?client_id=abc123"
            "&redirect_uri=https%3A%2F%2Fapp.example.com%2Fcb&response_type=code&state="
        )
        assert len(result["state"]) == 64

    @pytest.mark.asyncio
    async def test_saml_login(self, db, provider_service, auth_service):
        await provider_service.create_provider(db, **saml_provider_fields())

        result = await auth_service.initiate_login(db, "initech.com")

        assert result["ssoUrl"] == "https://sso.initech.com/saml2/idp"
        assert result["requestId"].startswith("_")
        assert "AuthnRequest" in result["samlRequest"]

    @pytest.mark.asyncio
    async def test_oidc_login(self, db, provider_service, auth_service):
        await provider_service.create_provider(db, **oidc_provider_fields())

        result = await auth_service.initiate_login(db, "globex.com")

        assert "nonce" in result and "state" in result
        assert "scope=openid+email+profile" in result["ssoUrl"]

    @pytest.mark.asyncio
    async def test_unconfigured_domain(self, db, auth_service):
        from app.core.exceptions import ProviderNotConfiguredError

        with pytest.raises(ProviderNotConfiguredError):
            await auth_service.initiate_login(db, "nobody.com")

    @pytest.mark.asyncio
    async def test_inactive_provider_not_used(self, db, provider_service, auth_service):
        from app.core.exceptions import ProviderNotConfiguredError

        created = await provider_service.create_provider(db, **oauth2_provider_fields())
        await provider_service.deactivate_provider(db, created.id)

        with pytest.raises(ProviderNotConfiguredError):
            await auth_service.initiate_login(db, "acme.com")

    @pytest.mark.asyncio
    async def test_domain_required(self, db, auth_service):
        from app.core.exceptions import SSOValidationError

        with pytest.raises(SSOValidationError):
            await auth_service.initiate_login(db, None)


class TestIdentityResolution:

    @pytest.mark.asyncio
    async def test_auto_provisions_new_user(self, db, provider_service, auth_service):
        from app.core.security import decode_session_token, verify_password

        provider = await provider_service.create_provider(
            db, **oauth2_provider_fields(default_role="USER", default_tier="SOLO_AGENT")
        )

        session = await auth_service.resolve_and_issue_session(db, provider, _identity())

        user = session.user
        assert user.email == "jane.doe@acme.com"
        assert (user.first_name, user.last_name) == ("Jane", "Doe")
        assert user.role == "USER"
        assert user.subscription_tier == "SOLO_AGENT"
        assert user.license_number == "SSO-AUTO-PROVISIONED"
        assert user.sso_provider_id == provider.id
        assert user.last_login_at is not None
        assert verify_password("", user.hashed_password) is False

        payload = decode_session_token(session.token)
        assert payload["userId"] == user.id
        assert payload["email"] == "jane.doe@acme.com"
        assert payload["role"] == "USER"

    @pytest.mark.asyncio
    async def test_missing_names_get_placeholders(self, db, provider_service, auth_service):
        provider = await provider_service.create_provider(db, **oauth2_provider_fields())

        session = await auth_service.resolve_and_issue_session(
            db, provider, _identity(first=None, last=None)
        )

        assert (session.user.first_name, session.user.last_name) == ("SSO", "User")

    @pytest.mark.asyncio
    async def test_repeat_login_reuses_user(self, db, provider_service, auth_service):
        provider = await provider_service.create_provider(db, **oauth2_provider_fields())

        first = await auth_service.resolve_and_issue_session(db, provider, _identity())
        second = await auth_service.resolve_and_issue_session(db, provider, _identity(email="JANE.DOE@acme.com"))

        assert first.user.id == second.user.id
        assert await _count_users(db) == 1

    @pytest.mark.asyncio
    async def test_links_existing_unlinked_user(self, db, provider_service, auth_service):
        provider = await provider_service.create_provider(db, **oauth2_provider_fields())
        existing = _add_user(db, "jane.doe@acme.com", role="ADMIN", first_name="Janet")
        await db.commit()

        session = await auth_service.resolve_and_issue_session(db, provider, _identity())

        assert session.user.id == existing.id
        assert session.user.sso_provider_id == provider.id
        # Existing profile fields are left alone
        assert session.user.first_name == "Janet"
        assert session.user.role == "ADMIN"
        assert await _count_users(db) == 1

    @pytest.mark.asyncio
    async def test_user_linked_elsewhere_conflicts(self, db, provider_service, auth_service):
        from app.core.exceptions import ProviderConflictError

        other = await provider_service.create_provider(db, **saml_provider_fields())
        provider = await provider_service.create_provider(db, **oauth2_provider_fields())
        _add_user(db, "jane.doe@acme.com", sso_provider_id=other.id)
        await db.commit()

        with pytest.raises(ProviderConflictError):
            await auth_service.resolve_and_issue_session(db, provider, _identity())

    @pytest.mark.asyncio
    async def test_auto_provision_disabled(self, db, provider_service, auth_service):
        from app.core.exceptions import ProvisioningDisabledError

        provider = await provider_service.create_provider(db, **oauth2_provider_fields(auto_provision=False))

        with pytest.raises(ProvisioningDisabledError):
            await auth_service.resolve_and_issue_session(db, provider, _identity())
        assert await _count_users(db) == 0

    @pytest.mark.asyncio
    async def test_auto_provision_disabled_still_links_existing(self, db, provider_service, auth_service):
        provider = await provider_service.create_provider(db, **oauth2_provider_fields(auto_provision=False))
        existing = _add_user(db, "jane.doe@acme.com")
        await db.commit()

        session = await auth_service.resolve_and_issue_session(db, provider, _identity())

        assert session.user.id == existing.id

    @pytest.mark.asyncio
    async def test_inactive_user_rejected(self, db, provider_service, auth_service):
        from app.core.exceptions import UnauthorizedError

        provider = await provider_service.create_provider(db, **oauth2_provider_fields())
        _add_user(db, "jane.doe@acme.com", is_active=False)
        await db.commit()

        with pytest.raises(UnauthorizedError):
            await auth_service.resolve_and_issue_session(db, provider, _identity())

    @pytest.mark.asyncio
    async def test_empty_email_rejected(self, db, provider_service, auth_service):
        from app.core.exceptions import SSOValidationError

        provider = await provider_service.create_provider(db, **oauth2_provider_fields())

        with pytest.raises(SSOValidationError):
            await auth_service.resolve_and_issue_session(db, provider, _identity(email="  "))

    @pytest.mark.asyncio
    async def test_concurrent_first_login_uses_existing_row(self, db, provider_service, auth_service, monkeypatch):
        """
        The lookup misses but the insert hits the unique email index:
        the row created by the other login is used instead.
        """
        provider = await provider_service.create_provider(db, **oauth2_provider_fields())
        winner = _add_user(db, "jane.doe@acme.com", sso_provider_id=None)
        await db.commit()
        winner_id = winner.id

        real_lookup = auth_service._get_user_by_email
        calls = []

        async def stale_first_lookup(session, email):
            calls.append(email)
            if len(calls) == 1:
                return None
            return await real_lookup(session, email)

        monkeypatch.setattr(auth_service, "_get_user_by_email", stale_first_lookup)

        session = await auth_service.resolve_and_issue_session(db, provider, _identity())

        assert session.user.id == winner_id
        assert len(calls) == 2
        assert await _count_users(db) == 1

    @pytest.mark.asyncio
    async def test_emails_differing_only_in_case_rejected(self, db):
        from sqlalchemy.exc import IntegrityError

        _add_user(db, "jane.doe@acme.com")
        await db.commit()

        _add_user(db, "Jane.Doe@Acme.com")
        with pytest.raises(IntegrityError):
            await db.commit()
        await db.rollback()

        assert await _count_users(db) == 1


class TestCompleteLogin:

    @pytest.mark.asyncio
    async def test_saml_callback_end_to_end(self, db, provider_service, auth_service):
        from app.core.sso import CallbackPayload

        provider = await provider_service.create_provider(db, **saml_provider_fields())

        session = await auth_service.complete_login(
            db, provider.id, CallbackPayload(saml_response=saml_response("Peter@Initech.com"))
        )

        assert session.user.email == "peter@initech.com"
        assert session.user.first_name == "Peter"

    @pytest.mark.asyncio
    async def test_oauth2_callback_end_to_end(self, db, provider_service, auth_service, idp):
        from app.core.sso import CallbackPayload

        provider = await provider_service.create_provider(db, **oauth2_provider_fields())
        idp.on("POST", "https://idp.acme.com/token", httpx.Response(200, json={"access_token": "at"}))
        idp.on("GET", "https://idp.acme.com/userinfo", httpx.Response(
            200, json={"email": "jane@acme.com", "given_name": "Jane", "family_name": "Doe"}
        ))

        session = await auth_service.complete_login(db, provider.id, CallbackPayload(code="c", state="s"))

        assert session.user.email == "jane@acme.com"
        assert session.user.sso_provider_id == provider.id

    @pytest.mark.asyncio
    async def test_upstream_failure_creates_nothing(self, db, provider_service, auth_service, idp):
        from app.core.exceptions import UpstreamError
        from app.core.sso import CallbackPayload

        provider = await provider_service.create_provider(db, **oauth2_provider_fields())
        idp.on("POST", "https://idp.acme.com/token", httpx.Response(503, text="unavailable"))

        with pytest.raises(UpstreamError):
            await auth_service.complete_login(db, provider.id, CallbackPayload(code="c"))
        assert await _count_users(db) == 0

    @pytest.mark.asyncio
    async def test_provider_id_required(self, db, auth_service):
        from app.core.exceptions import SSOValidationError
        from app.core.sso import CallbackPayload

        with pytest.raises(SSOValidationError, match="Provider ID is required"):
            await auth_service.complete_login(db, None, CallbackPayload(code="c"))

    @pytest.mark.asyncio
    async def test_unknown_provider(self, db, auth_service):
        from app.core.exceptions import ProviderNotFoundError
        from app.core.sso import CallbackPayload

        with pytest.raises(ProviderNotFoundError):
            await auth_service.complete_login(db, "missing", CallbackPayload(code="c"))

    @pytest.mark.asyncio
    async def test_inactive_provider(self, db, provider_service, auth_service):
        from app.core.exceptions import ProviderNotFoundError
        from app.core.sso import CallbackPayload

        provider = await provider_service.create_provider(db, **saml_provider_fields())
        await provider_service.deactivate_provider(db, provider.id)

        with pytest.raises(ProviderNotFoundError):
            await auth_service.complete_login(db, provider.id, CallbackPayload(saml_response=saml_response()))

    @pytest.mark.asyncio
    async def test_handle_callback_returns_identity(self, db, provider_service, auth_service):
        from app.core.sso import CallbackPayload

        provider = await provider_service.create_provider(db, **saml_provider_fields())

        identity = await auth_service.handle_callback(
            db, provider.id, CallbackPayload(saml_response=saml_response())
        )

        assert identity.email == "peter@initech.com"
        assert await _count_users(db) == 0


class TestLogout:

    @pytest.mark.asyncio
    async def test_saml_user_gets_slo_url(self, db, provider_service, auth_service):
        provider = await provider_service.create_provider(db, **saml_provider_fields())
        user = _add_user(db, "peter@initech.com", sso_provider_id=provider.id)
        await db.commit()

        result = await auth_service.logout(db, {"userId": user.id})

        assert result["logoutUrl"] == "https://sso.initech.com/saml2/logout"

    @pytest.mark.asyncio
    async def test_oauth_user_plain_logout(self, db, provider_service, auth_service):
        provider = await provider_service.create_provider(db, **oauth2_provider_fields())
        user = _add_user(db, "jane@acme.com", sso_provider_id=provider.id)
        await db.commit()

        result = await auth_service.logout(db, {"userId": user.id})

        assert result == {"message": "Logged out successfully"}

    @pytest.mark.asyncio
    async def test_unknown_user(self, db, auth_service):
        from app.core.exceptions import UnauthorizedError

        with pytest.raises(UnauthorizedError):
            await auth_service.logout(db, {"userId": "ghost"})
