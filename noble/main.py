import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from noble.api import auth, conversation, profile, swipe
from noble.config import Settings, get_settings
from noble.container import create_container
from noble.dependencies import CurrentUserId, Services
from noble.errors import (
    Conflict,
    InvalidVerificationCode,
    NobleError,
    NotAuthenticated,
    NotFound,
    StoreUnavailable,
    VerificationExpired,
)
from noble.models.user import User
from noble.schemas.responses import HealthCheckResponseSchema
from noble.utils.log import setup_logging

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[Exception], int] = {
    NotAuthenticated: status.HTTP_401_UNAUTHORIZED,
    NotFound: status.HTTP_404_NOT_FOUND,
    StoreUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    VerificationExpired: status.HTTP_410_GONE,
    Conflict: status.HTTP_409_CONFLICT,
    InvalidVerificationCode: status.HTTP_400_BAD_REQUEST,
    ValueError: status.HTTP_400_BAD_REQUEST,
    NobleError: status.HTTP_400_BAD_REQUEST,
}


async def handle_error(request: Request, exc: Exception) -> JSONResponse:
    """Translate service exceptions into JSON error responses."""
    status_code = next(
        code for error, code in ERROR_STATUS.items() if isinstance(exc, error)
    )
    headers = None
    if status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}
    elif status_code == status.HTTP_503_SERVICE_UNAVAILABLE:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code, content={"detail": str(exc)}, headers=headers
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application.

    Services are created on startup and closed on shutdown. Tests can
    replace `app.state.services` or override the dependencies.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings)
        services = await create_container(settings)
        app.state.services = services
        yield
        await services.close()

    app = FastAPI(title="Noble", lifespan=lifespan)
    for error in ERROR_STATUS:
        app.add_exception_handler(error, handle_error)

    app.include_router(auth.router)
    app.include_router(profile.router)
    app.include_router(swipe.router)
    app.include_router(conversation.router)

    @app.get("/api/health", response_model=HealthCheckResponseSchema)
    async def health_check(services: Services) -> HealthCheckResponseSchema:
        return HealthCheckResponseSchema(
            success=True, store=services.settings.store_backend
        )

    @app.get("/me", response_model=User)
    async def get_current_user_profile(
        user_id: CurrentUserId, services: Services
    ) -> User:
        """Get the current user's profile.

        This is a protected endpoint that requires authentication.
        The user is resolved from the bearer token.
        """
        return await services.profiles.get_identity(user_id)

    return app


app = create_app()
