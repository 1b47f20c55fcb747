from typing import Annotated

from fastapi import Depends
from starlette.requests import HTTPConnection

from noble.container import ServiceContainer
from noble.errors import NotAuthenticated


def get_services(connection: HTTPConnection) -> ServiceContainer:
    return connection.app.state.services


def extract_token(connection: HTTPConnection) -> str:
    auth_header = connection.headers.get("Authorization")
    if auth_header:
        scheme, _, token = auth_header.partition(" ")
        if scheme.lower() != "bearer" or not token:
            raise NotAuthenticated("Invalid authentication scheme")
        return token.strip()
    # Browsers cannot set headers on websocket upgrades.
    token = connection.query_params.get("token")
    if not token:
        raise NotAuthenticated("No authorization header found")
    return token


async def get_current_user_id(
    connection: HTTPConnection,
    services: Annotated[ServiceContainer, Depends(get_services)],
) -> str:
    """Dependency for getting the ID of the signed-in user.

    Validates the bearer id token and checks that the user still holds a
    session. Works for both HTTP and websocket routes.

    Raises:
        NotAuthenticated: If the token is missing, invalid or expired, or the
            user has signed out
    """
    return await services.auth.authenticate(extract_token(connection))


Services = Annotated[ServiceContainer, Depends(get_services)]
CurrentUserId = Annotated[str, Depends(get_current_user_id)]
