import logging
from datetime import UTC, datetime
from uuid import uuid4

from noble.models.swipe import LikeRecord, SwipeAction, SwipeDirection, SwipeResult
from noble.services.auth import AuthService
from noble.services.match import MatchResolver
from noble.services.profile import ProfileDirectory
from noble.store.base import DocumentStore
from noble.store.collections import LIKES, SWIPES

logger = logging.getLogger(__name__)


class SwipeRecorder:
    """Service for recording swipes.

    Every swipe is appended, re-swiping on the same profile is allowed and
    creates another record. Likes and super likes also add a "who liked
    you" record and are checked for a match before returning.
    """

    def __init__(
        self,
        store: DocumentStore,
        auth: AuthService,
        profiles: ProfileDirectory,
        matches: MatchResolver,
    ) -> None:
        self.store = store
        self.auth = auth
        self.profiles = profiles
        self.matches = matches

    async def record_swipe(
        self, actor_id: str, target_id: str, direction: SwipeDirection
    ) -> SwipeResult:
        """Record a swipe and resolve a match for likes.

        Args:
            actor_id: ID of the user swiping
            target_id: ID of the profile being swiped on
            direction: The swipe direction

        Returns:
            The recorded swipe and the match it produced, if any

        Raises:
            NotAuthenticated: If the actor is not signed in
            ValueError: If the actor swipes on themselves
            NotFound: If the target profile does not exist
            StoreUnavailable: If the store cannot be reached
        """
        await self.auth.require_session(actor_id)
        if actor_id == target_id:
            raise ValueError("Cannot swipe on yourself")
        await self.profiles.get_identity(target_id)

        swipe = SwipeAction(
            swipe_id=str(uuid4()),
            actor_id=actor_id,
            target_id=target_id,
            direction=direction,
            created_at=datetime.now(UTC),
        )
        batch = self.store.batch().create(SWIPES, swipe.swipe_id, swipe.model_dump())
        if direction.is_positive:
            like = LikeRecord(
                like_id=swipe.swipe_id,
                liker_id=actor_id,
                liked_id=target_id,
                is_super_like=direction == SwipeDirection.SUPER_LIKE,
                created_at=swipe.created_at,
            )
            batch.create(LIKES, like.like_id, like.model_dump())
        await batch.commit()
        logger.debug("%s swiped %s on %s", actor_id, direction.value, target_id)

        if not direction.is_positive:
            return SwipeResult(swipe=swipe)
        match = await self.matches.check_for_match(actor_id, target_id)
        return SwipeResult(swipe=swipe, match=match)
