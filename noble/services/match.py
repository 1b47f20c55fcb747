import logging
from datetime import UTC, datetime
from uuid import uuid4

from noble.errors import Conflict, NotFound
from noble.models.match import Match, pair_key
from noble.models.message import Conversation
from noble.models.swipe import SwipeAction
from noble.store.base import DocumentStore, Query
from noble.store.collections import CONVERSATIONS, MATCHES, SWIPES

logger = logging.getLogger(__name__)


class MatchResolver:
    """Service for detecting and managing mutual matches.

    A match exists once the latest swipe in each direction between two
    users is a like or super like. The match and its conversation are
    created together in one atomic batch.
    """

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def _latest_swipe(self, actor_id: str, target_id: str) -> SwipeAction | None:
        query = (
            Query(collection=SWIPES)
            .where("actor_id", "==", actor_id)
            .where("target_id", "==", target_id)
            .ordered("created_at", descending=True)
            .page(0, 1)
        )
        documents = await self.store.query(query)
        return SwipeAction.model_validate(documents[0]) if documents else None

    async def check_for_match(self, actor_id: str, target_id: str) -> Match | None:
        """Create the match between two users if both have liked each other.

        Re-swipes are legal, so the most recent swipe in each direction is
        the effective one. Calling this again for a matched pair returns the
        existing match.

        Args:
            actor_id: ID of the user who just liked
            target_id: ID of the user who was liked

        Returns:
            The match if the like is reciprocated, None otherwise

        Raises:
            StoreUnavailable: If the store cannot be reached
        """
        reciprocal = await self._latest_swipe(target_id, actor_id)
        if reciprocal is None or not reciprocal.direction.is_positive:
            return None
        own = await self._latest_swipe(actor_id, target_id)
        if own is None or not own.direction.is_positive:
            return None

        match_id = pair_key(actor_id, target_id)
        if existing := await self.store.get(MATCHES, match_id):
            return Match.model_validate(existing)

        now = datetime.now(UTC)
        match = Match(
            match_id=match_id,
            user_id_a=actor_id,
            user_id_b=target_id,
            matched_at=now,
        )
        conversation = Conversation(
            conversation_id=str(uuid4()),
            match_id=match_id,
            participants=match.participants,
            created_at=now,
            updated_at=now,
        )
        batch = (
            self.store.batch()
            .create(MATCHES, match_id, match.model_dump())
            .create(
                CONVERSATIONS,
                conversation.conversation_id,
                conversation.model_dump(exclude={"other_user"}),
            )
        )
        try:
            await batch.commit()
        except Conflict:
            # Another swipe created the match between our read and write.
            if stored := await self.store.get(MATCHES, match_id):
                return Match.model_validate(stored)
            raise

        logger.info("Match %s created", match_id)
        return match

    async def get_match(self, match_id: str) -> Match:
        """Get a match by id.

        Raises:
            NotFound: If the match does not exist
        """
        document = await self.store.get(MATCHES, match_id)
        if document is None:
            raise NotFound(f"Match {match_id} not found")
        return Match.model_validate(document)

    async def list_matches(self, user_id: str) -> list[Match]:
        """Get a user's matches, most recent first."""
        query = (
            Query(collection=MATCHES)
            .where("participants", "array_contains", user_id)
            .ordered("matched_at", descending=True)
        )
        return [Match.model_validate(d) for d in await self.store.query(query)]

    async def mark_seen(self, match_id: str) -> Match:
        """Clear the "is new" flag of a match. Idempotent.

        Raises:
            NotFound: If the match does not exist
        """
        match = await self.get_match(match_id)
        if not match.is_new:
            return match
        await self.store.batch().update(MATCHES, match_id, {"is_new": False}).commit()
        return match.model_copy(update={"is_new": False})
