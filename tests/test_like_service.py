import pytest

from noble.models.swipe import SwipeDirection
from noble.models.user import User
from noble.services.like import LikeService
from noble.services.swipe import SwipeRecorder


@pytest.mark.unit
class TestLikeService:
    async def test_list_likes_newest_first(
        self,
        like_service: LikeService,
        swipe_service: SwipeRecorder,
        add_user,
        alice: User,
        bob: User,
    ):
        # Arrange
        carol = await add_user("carol")
        await swipe_service.record_swipe(bob.user_id, alice.user_id, SwipeDirection.LIKE)
        await swipe_service.record_swipe(carol.user_id, alice.user_id, SwipeDirection.PASS)
        await swipe_service.record_swipe(
            carol.user_id, alice.user_id, SwipeDirection.SUPER_LIKE
        )

        # Act
        likes = await like_service.list_likes(alice.user_id)

        # Assert
        assert [(like.liker_id, like.is_super_like) for like in likes] == [
            (carol.user_id, True),
            (bob.user_id, False),
        ]
        assert await like_service.list_likes(bob.user_id) == []

    async def test_mark_likes_read(
        self,
        like_service: LikeService,
        swipe_service: SwipeRecorder,
        alice: User,
        bob: User,
    ):
        # Arrange
        await swipe_service.record_swipe(bob.user_id, alice.user_id, SwipeDirection.LIKE)

        # Act
        first = await like_service.mark_likes_read(alice.user_id)
        second = await like_service.mark_likes_read(alice.user_id)

        # Assert
        assert first == 1
        assert second == 0
        assert all(like.is_read for like in await like_service.list_likes(alice.user_id))
