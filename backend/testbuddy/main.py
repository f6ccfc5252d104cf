"""
Test Buddy - FastAPI Application
Main application entry point with middleware, error mapping and route configuration
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from testbuddy.api.v1 import api_router
from testbuddy.core.config import Settings, get_settings
from testbuddy.core.errors import ErrorKind, FeatureNotAvailableError, StoreError
from testbuddy.core.logging import setup_logging
from testbuddy.services.container import ServiceContainer, build_services

logger = logging.getLogger(__name__)

_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.AUTH_INVALID_EMAIL: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.AUTH_WEAK_PASSWORD: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.PERMISSION_DENIED: status.HTTP_403_FORBIDDEN,
    ErrorKind.AUTH_USER_DISABLED: status.HTTP_403_FORBIDDEN,
    ErrorKind.UNAUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.AUTH_USER_NOT_FOUND: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.AUTH_WRONG_PASSWORD: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.AUTH_EMAIL_ALREADY_IN_USE: status.HTTP_409_CONFLICT,
    ErrorKind.ALREADY_EXISTS: status.HTTP_409_CONFLICT,
    ErrorKind.FAILED_PRECONDITION: status.HTTP_409_CONFLICT,
    ErrorKind.AUTH_TOO_MANY_REQUESTS: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.OUT_OF_RANGE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.UNIMPLEMENTED: status.HTTP_501_NOT_IMPLEMENTED,
}


def status_for(error: StoreError) -> int:
    """HTTP status for an error kind; anything else retryable is 503."""
    if error.kind in _STATUS_BY_KIND:
        return _STATUS_BY_KIND[error.kind]
    if error.retryable:
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    code = status_for(exc)
    if code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind.value}: {exc.message}")
    headers = {"WWW-Authenticate": "Bearer"} if code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(status_code=code, content={"error": exc.to_dict()}, headers=headers)


async def feature_error_handler(request: Request, exc: FeatureNotAvailableError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={"error": {"code": "feature-not-available", "feature": exc.feature, "message": str(exc)}},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    settings: Settings = app.state.settings
    owned = getattr(app.state, "services", None) is None
    if owned:
        app.state.services = await build_services(settings)
    services: ServiceContainer = app.state.services
    services.query_optimizer.start_cleanup_task(settings.QUERY_CACHE_CLEANUP_INTERVAL)
    logger.info(f"{settings.APP_NAME} started ({settings.ENVIRONMENT})")

    yield

    await services.query_optimizer.stop_cleanup_task()
    if owned:
        await services.close()


def create_app(settings: Optional[Settings] = None, services: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    A prebuilt ``services`` container is used as-is and left open on
    shutdown; otherwise one is built from ``settings`` at startup.
    """
    settings = settings or get_settings()
    setup_logging(settings)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="AI practice tests generated from your study material",
        docs_url="/docs" if settings.DEBUG else None,
        redoc_url="/redoc" if settings.DEBUG else None,
        openapi_url="/openapi.json" if settings.DEBUG else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(StoreError, store_error_handler)
    app.add_exception_handler(FeatureNotAvailableError, feature_error_handler)

    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    @app.get("/health", tags=["Health"])
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
        }

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "testbuddy.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
        reload=get_settings().DEBUG,
    )
