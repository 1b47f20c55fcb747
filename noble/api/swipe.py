from fastapi import APIRouter

from noble.dependencies import CurrentUserId, Services
from noble.errors import NotFound
from noble.models.match import Match
from noble.models.swipe import LikeRecord, SwipeResult
from noble.schemas.requests import SwipeSchema
from noble.schemas.responses import CountResponseSchema

router = APIRouter(tags=["swipes"])


@router.post("/swipes", response_model=SwipeResult)
async def record_swipe(
    body: SwipeSchema, user_id: CurrentUserId, services: Services
) -> SwipeResult:
    """Swipe on a profile.

    Args:
        body: Target profile and direction
        user_id: The authenticated user
        services: Injected service container

    Returns:
        The recorded swipe and the match it produced, if any
    """
    return await services.swipes.record_swipe(user_id, body.target_id, body.direction)


@router.get("/matches", response_model=list[Match])
async def list_matches(user_id: CurrentUserId, services: Services) -> list[Match]:
    return await services.matches.list_matches(user_id)


@router.post("/matches/{match_id}/seen", response_model=Match)
async def mark_match_seen(
    match_id: str, user_id: CurrentUserId, services: Services
) -> Match:
    """Clear the "new match" badge."""
    match = await services.matches.get_match(match_id)
    if user_id not in match.participants:
        raise NotFound(f"Match {match_id} not found")
    return await services.matches.mark_seen(match_id)


@router.get("/likes", response_model=list[LikeRecord])
async def list_likes(user_id: CurrentUserId, services: Services) -> list[LikeRecord]:
    """Get who liked the signed in user, most recent first."""
    return await services.likes.list_likes(user_id)


@router.post("/likes/read", response_model=CountResponseSchema)
async def mark_likes_read(
    user_id: CurrentUserId, services: Services
) -> CountResponseSchema:
    return CountResponseSchema(updated=await services.likes.mark_likes_read(user_id))
