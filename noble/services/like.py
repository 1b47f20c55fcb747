from noble.models.swipe import LikeRecord
from noble.store.base import DocumentStore, Query
from noble.store.collections import LIKES


class LikeService:
    """Service for the "who liked you" list."""

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def list_likes(self, user_id: str) -> list[LikeRecord]:
        """Get the likes a user has received, most recent first."""
        query = (
            Query(collection=LIKES)
            .where("liked_id", "==", user_id)
            .ordered("created_at", descending=True)
        )
        return [LikeRecord.model_validate(d) for d in await self.store.query(query)]

    async def mark_likes_read(self, user_id: str) -> int:
        """Mark every unread like the user received as read.

        Returns:
            Number of likes that were marked
        """
        query = (
            Query(collection=LIKES)
            .where("liked_id", "==", user_id)
            .where("is_read", "==", False)
        )
        unread = await self.store.query(query)
        batch = self.store.batch()
        for like in unread:
            batch.update(LIKES, like["like_id"], {"is_read": True})
        await batch.commit()
        return len(unread)
