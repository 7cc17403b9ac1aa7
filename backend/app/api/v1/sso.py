"""
Enterprise Single Sign-On API

One routed resource, dispatched on ``?action=``:

    GET  ?action=providers              list providers (admin)
    GET  ?action=check&domain=          does the domain have SSO?
    GET  ?action=metadata&domain=       SAML SP metadata
    POST ?action=login                  start an SSO login
    POST ?action=callback               finish an SSO login
    POST ?action=create-provider        register a provider (admin)
    POST ?action=update-provider        edit a provider (admin)
    POST ?action=deactivate-provider    soft-disable a provider (admin)
    POST ?action=logout                 SSO logout (session token)
"""

import logging
from typing import Any, Dict, Optional, Type, TypeVar

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse, Response
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import (
    authenticate,
    authenticate_admin,
    bearer_scheme,
    get_db,
    get_provider_registry,
    get_settings,
    get_sso_auth_service,
)
from app.core.config import Settings, settings
from app.core.exceptions import SSOValidationError
from app.core.rate_limiter import limiter
from app.core.sso import CallbackPayload
from app.schemas.sso import (
    CamelModel,
    SSOCallbackRequest,
    SSOLoginRequest,
    SSOProviderCreate,
    SSOProviderRef,
    SSOProviderSummary,
    SSOProviderUpdate,
    SSOUserSummary,
)
from app.services.sso_auth_service import SSOAuthService
from app.services.sso_provider_service import SSOProviderService

logger = logging.getLogger("agentradar.sso.api")

router = APIRouter()

ModelT = TypeVar("ModelT", bound=CamelModel)


async def _read_json(request: Request) -> Dict[str, Any]:
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        body = await request.json()
    except ValueError:
        raise SSOValidationError("Request body must be valid JSON")
    if not isinstance(body, dict):
        raise SSOValidationError("Request body must be a JSON object")
    return body


def _parse(model: Type[ModelT], body: Dict[str, Any]) -> ModelT:
    try:
        return model.model_validate(body)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        raise SSOValidationError(f"Invalid field '{field}': {first.get('msg')}")


@router.get("")
async def sso_query(
    action: Optional[str] = None,
    domain: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    sso: SSOAuthService = Depends(get_sso_auth_service),
    registry: SSOProviderService = Depends(get_provider_registry),
    config: Settings = Depends(get_settings),
):
    if action == "providers":
        authenticate_admin(credentials, config)
        providers = await registry.list_providers(db)
        return {
            "success": True,
            "data": [p.to_wire() for p in providers],
            "message": f"Found {len(providers)} SSO providers",
        }

    if action == "check":
        return {"success": True, "data": await sso.check_domain(db, domain)}

    if action == "metadata":
        metadata = await sso.saml_metadata(db, domain)
        return Response(content=metadata, media_type="application/xml")

    raise SSOValidationError("Invalid action")


@router.post("")
@limiter.limit(settings.SSO_RATE_LIMIT)
async def sso_command(
    request: Request,
    action: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    sso: SSOAuthService = Depends(get_sso_auth_service),
    registry: SSOProviderService = Depends(get_provider_registry),
    config: Settings = Depends(get_settings),
):
    if action == "login":
        body = _parse(SSOLoginRequest, await _read_json(request))
        result = await sso.initiate_login(db, body.domain, body.redirect_url)
        return {"success": True, **result}

    if action == "callback":
        body = _parse(SSOCallbackRequest, await _read_json(request))
        session = await sso.complete_login(
            db,
            body.provider_id,
            CallbackPayload(
                code=body.code,
                state=body.state,
                nonce=body.nonce,
                saml_response=body.saml_response,
                redirect_url=body.redirect_url,
            ),
        )
        return {
            "success": True,
            "user": SSOUserSummary.model_validate(session.user).to_wire(),
            "token": session.token,
            "message": "SSO login successful",
        }

    if action == "logout":
        payload = authenticate(credentials, config)
        return {"success": True, **await sso.logout(db, payload)}

    if action == "create-provider":
        admin = authenticate_admin(credentials, config)
        body = _parse(SSOProviderCreate, await _read_json(request))
        provider = await registry.create_provider(db, **body.model_dump())
        logger.info(f"SSO provider {provider.id} created by admin {admin.get('userId')}")
        return JSONResponse(
            status_code=status.HTTP_201_CREATED,
            content={
                "success": True,
                "data": SSOProviderSummary.model_validate(provider).to_wire(),
                "message": "SSO provider created successfully",
            },
        )

    if action == "update-provider":
        admin = authenticate_admin(credentials, config)
        body = _parse(SSOProviderUpdate, await _read_json(request))
        provider = await registry.update_provider(db, body.id, body.changes())
        logger.info(f"SSO provider {provider.id} updated by admin {admin.get('userId')}")
        return {
            "success": True,
            "data": SSOProviderSummary.model_validate(provider).to_wire(),
            "message": "SSO provider updated successfully",
        }

    if action == "deactivate-provider":
        admin = authenticate_admin(credentials, config)
        body = _parse(SSOProviderRef, await _read_json(request))
        provider = await registry.deactivate_provider(db, body.id)
        logger.info(f"SSO provider {provider.id} deactivated by admin {admin.get('userId')}")
        return {
            "success": True,
            "data": SSOProviderSummary.model_validate(provider).to_wire(),
            "message": "SSO provider deactivated",
        }

    raise SSOValidationError("Invalid action")
