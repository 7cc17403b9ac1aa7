from fastapi import APIRouter

from app.api.v1 import sso

api_router = APIRouter()
# Public login/callback actions and admin provider management share one resource;
# admin actions authenticate inside the handler.
api_router.include_router(sso.router, prefix="/sso", tags=["sso"])
