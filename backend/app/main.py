import logging
import traceback
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import httpx
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.middleware.base import BaseHTTPMiddleware

from app.api.v1 import api_router
from app.core.config import Settings, settings as default_settings
from app.core.exceptions import SSOError, UpstreamError
from app.core.logging_config import RequestLoggingMiddleware, setup_logging
from app.core.rate_limiter import limiter, rate_limit_exceeded_handler
from app.db.session import build_engine, build_session_factory, check_db_connection
from app.services.sso_auth_service import SSOAuthService

logger = logging.getLogger("agentradar")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """
    Adds security headers to all responses.
    """
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # Session tokens travel in JSON bodies; never cache them
        response.headers["Cache-Control"] = "no-store"
        return response


class HealthResponse(BaseModel):
    """Health check response format."""
    status: str
    service: str
    environment: str
    checks: dict[str, bool]


def _register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(SSOError)
    async def sso_error_handler(request: Request, exc: SSOError) -> JSONResponse:
        if isinstance(exc, UpstreamError):
            logger.warning(f"SSO upstream failure on {request.url.path}: {exc.message}")
        elif exc.status_code >= 500:
            logger.error(f"SSO error on {request.url.path}: {exc.message}")
        else:
            logger.info(f"SSO request rejected ({exc.code}) on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Catch-all returning the standard envelope.
        Internal details are hidden in production.
        """
        error_id = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")
        logger.error(
            f"Unhandled exception [{error_id}]: {exc}\n"
            f"Path: {request.url.path}\n"
            f"Method: {request.method}\n"
            f"Traceback: {traceback.format_exc()}"
        )

        message = f"An unexpected error occurred. Reference ID: {error_id}"
        if not settings.is_production:
            message = f"{exc.__class__.__name__}: {exc} (Reference ID: {error_id})"

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"success": False, "error": "SERVER_ERROR", "message": message},
        )


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the API application.

    Args:
        settings: Settings to use; defaults to the environment-loaded settings
        session_factory: Database session factory. When omitted, an engine is
            created from DATABASE_URL at startup and disposed at shutdown.
        transport: httpx transport for calls to identity providers
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = None
        if session_factory is None:
            engine = build_engine(settings)
            app.state.session_factory = build_session_factory(engine)
            logger.info("Database engine created")
        try:
            yield
        finally:
            if engine is not None:
                await engine.dispose()
                logger.info("Database engine disposed")

    app = FastAPI(
        title=f"{settings.PROJECT_NAME} API",
        description="Domain-routed single sign-on (SAML, OAuth2, OIDC)",
        version="1.0.0",
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.sso_auth_service = SSOAuthService(settings=settings, transport=transport)
    app.state.limiter = limiter

    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    _register_exception_handlers(app, settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(api_router, prefix=settings.API_PREFIX)

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """Returns 503 when the database is unreachable."""
        db_healthy = await check_db_connection(request.app.state.session_factory)
        response = HealthResponse(
            status="healthy" if db_healthy else "unhealthy",
            service="agentradar-sso",
            environment=settings.ENVIRONMENT,
            checks={"database": db_healthy},
        )
        if not db_healthy:
            logger.warning(f"Health check failed: {response.checks}")
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content=response.model_dump(),
            )
        return response

    @app.get("/")
    async def root():
        return {"message": f"Welcome to {settings.PROJECT_NAME} API"}

    return app


setup_logging()
app = create_app()
