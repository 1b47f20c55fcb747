from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Query, Request, status

from noble.dependencies import CurrentUserId, Services
from noble.models.user import User
from noble.schemas.requests import ProfileSchema

router = APIRouter(prefix="/profiles", tags=["profiles"])


@router.get("", response_model=list[User])
async def list_candidates(
    user_id: CurrentUserId,
    services: Services,
    page: Annotated[int, Query(ge=0)] = 0,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    filtered: bool = True,
) -> list[User]:
    """Get a page of profiles to swipe on, newest first.

    Args:
        user_id: The authenticated user
        services: Injected service container
        page: Zero-based page number
        limit: Page size
        filtered: Apply the viewer's preferences and hide swiped profiles

    Returns:
        List of candidate profiles
    """
    return await services.profiles.list_candidates(
        page=page, limit=limit, viewer_id=user_id if filtered else None
    )


@router.post("/me", response_model=User, status_code=status.HTTP_201_CREATED)
async def create_my_profile(
    profile: ProfileSchema, user_id: CurrentUserId, services: Services
) -> User:
    """Create the profile of the signed in user.

    Answers 409 if the profile already exists.
    """
    now = datetime.now(UTC)
    user = User(
        user_id=user_id, created_at=now, last_active=now, **profile.model_dump()
    )
    return await services.profiles.create_identity(user)


@router.put("/me", response_model=User)
async def update_my_profile(
    profile: ProfileSchema, user_id: CurrentUserId, services: Services
) -> User:
    """Replace the editable fields of the signed in user's profile.

    Photos and the account creation time are kept.
    """
    current = await services.profiles.get_identity(user_id)
    updated = User.model_validate(
        {
            **current.model_dump(),
            **profile.model_dump(),
            "last_active": datetime.now(UTC),
        }
    )
    return await services.profiles.update_identity(updated)


@router.post("/me/photos", response_model=User)
async def add_my_photo(
    request: Request, user_id: CurrentUserId, services: Services
) -> User:
    """Upload a photo as the raw request body.

    The Content-Type header gives the image format. The first photo becomes
    the primary photo.
    """
    content_type = request.headers.get("content-type", "image/jpeg")
    data = await request.body()
    return await services.profiles.add_photo(user_id, data, content_type)


@router.get("/{profile_id}", response_model=User)
async def get_profile(
    profile_id: str, user_id: CurrentUserId, services: Services
) -> User:
    return await services.profiles.get_identity(profile_id)
