import pytest

from noble.errors import Conflict, NotFound
from noble.models.match import pair_key
from noble.models.swipe import SwipeDirection
from noble.models.user import User
from noble.services.match import MatchResolver
from noble.services.swipe import SwipeRecorder
from noble.store.base import Query
from noble.store.collections import CONVERSATIONS, MATCHES
from noble.store.memory import MemoryDocumentStore


@pytest.mark.unit
class TestMatchResolver:
    async def test_reciprocal_like_creates_match_and_conversation(
        self,
        swipe_service: SwipeRecorder,
        match_service: MatchResolver,
        store: MemoryDocumentStore,
        alice: User,
        bob: User,
    ):
        # Arrange
        await swipe_service.record_swipe(
            alice.user_id, bob.user_id, SwipeDirection.LIKE
        )

        # Act
        result = await swipe_service.record_swipe(
            bob.user_id, alice.user_id, SwipeDirection.SUPER_LIKE
        )

        # Assert
        match = result.match
        assert match is not None
        assert match.match_id == pair_key(alice.user_id, bob.user_id)
        assert match.is_new is True
        assert len(await store.query(Query(collection=MATCHES))) == 1

        conversations = await store.query(Query(collection=CONVERSATIONS))
        assert len(conversations) == 1
        assert set(conversations[0]["participants"]) == {alice.user_id, bob.user_id}
        assert conversations[0]["match_id"] == match.match_id
        assert conversations[0]["unread_count"] == 0
        assert conversations[0]["last_message"] is None

    async def test_one_sided_like_then_reply(
        self, swipe_service: SwipeRecorder, alice: User, bob: User
    ):
        # Act
        first = await swipe_service.record_swipe(
            alice.user_id, bob.user_id, SwipeDirection.LIKE
        )
        later = await swipe_service.record_swipe(
            bob.user_id, alice.user_id, SwipeDirection.LIKE
        )

        # Assert
        assert first.match is None
        assert later.match is not None
        assert set(later.match.participants) == {alice.user_id, bob.user_id}

    async def test_pass_never_matches(
        self,
        swipe_service: SwipeRecorder,
        match_service: MatchResolver,
        store: MemoryDocumentStore,
        alice: User,
        bob: User,
    ):
        # Arrange
        await swipe_service.record_swipe(
            alice.user_id, bob.user_id, SwipeDirection.LIKE
        )

        # Act
        result = await swipe_service.record_swipe(
            bob.user_id, alice.user_id, SwipeDirection.PASS
        )

        # Assert
        assert result.match is None
        assert await match_service.check_for_match(bob.user_id, alice.user_id) is None
        assert await match_service.check_for_match(alice.user_id, bob.user_id) is None
        assert await store.query(Query(collection=MATCHES)) == []

    async def test_latest_swipe_wins(
        self,
        swipe_service: SwipeRecorder,
        match_service: MatchResolver,
        alice: User,
        bob: User,
    ):
        # Arrange
        await swipe_service.record_swipe(alice.user_id, bob.user_id, SwipeDirection.LIKE)
        await swipe_service.record_swipe(alice.user_id, bob.user_id, SwipeDirection.PASS)

        # Act
        result = await swipe_service.record_swipe(
            bob.user_id, alice.user_id, SwipeDirection.LIKE
        )

        # Assert
        assert result.match is None
        assert await match_service.check_for_match(bob.user_id, alice.user_id) is None

    async def test_check_for_match_is_idempotent(
        self,
        swipe_service: SwipeRecorder,
        match_service: MatchResolver,
        store: MemoryDocumentStore,
        alice: User,
        bob: User,
    ):
        # Arrange
        await swipe_service.record_swipe(alice.user_id, bob.user_id, SwipeDirection.LIKE)
        created = await swipe_service.record_swipe(
            bob.user_id, alice.user_id, SwipeDirection.LIKE
        )

        # Act
        again = await match_service.check_for_match(bob.user_id, alice.user_id)
        reversed_again = await match_service.check_for_match(
            alice.user_id, bob.user_id
        )

        # Assert
        assert again == created.match
        assert reversed_again == created.match
        assert len(await store.query(Query(collection=MATCHES))) == 1
        assert len(await store.query(Query(collection=CONVERSATIONS))) == 1

    async def test_reswipe_after_match_keeps_single_match(
        self,
        swipe_service: SwipeRecorder,
        store: MemoryDocumentStore,
        alice: User,
        bob: User,
    ):
        # Arrange
        await swipe_service.record_swipe(alice.user_id, bob.user_id, SwipeDirection.LIKE)
        created = await swipe_service.record_swipe(
            bob.user_id, alice.user_id, SwipeDirection.LIKE
        )

        # Act
        result = await swipe_service.record_swipe(
            alice.user_id, bob.user_id, SwipeDirection.SUPER_LIKE
        )

        # Assert
        assert result.match == created.match
        assert len(await store.query(Query(collection=MATCHES))) == 1

    async def test_concurrent_creation_returns_stored_match(
        self,
        swipe_service: SwipeRecorder,
        match_service: MatchResolver,
        store: MemoryDocumentStore,
        alice: User,
        bob: User,
        mocker,
    ):
        # Arrange
        await swipe_service.record_swipe(alice.user_id, bob.user_id, SwipeDirection.LIKE)
        created = await swipe_service.record_swipe(
            bob.user_id, alice.user_id, SwipeDirection.LIKE
        )
        real_get = store.get
        calls = {"matches": 0}

        async def get_missing_first(collection: str, doc_id: str):
            # Simulate the match appearing between the read and the write.
            if collection == MATCHES:
                calls["matches"] += 1
                if calls["matches"] == 1:
                    return None
            return await real_get(collection, doc_id)

        mocker.patch.object(store, "get", side_effect=get_missing_first)

        # Act
        result = await match_service.check_for_match(alice.user_id, bob.user_id)

        # Assert
        assert result == created.match
        assert len(await store.query(Query(collection=MATCHES))) == 1
        assert len(await store.query(Query(collection=CONVERSATIONS))) == 1

    async def test_failed_commit_leaves_no_match_or_conversation(
        self,
        swipe_service: SwipeRecorder,
        match_service: MatchResolver,
        store: MemoryDocumentStore,
        alice: User,
        bob: User,
        mocker,
    ):
        # Arrange
        await swipe_service.record_swipe(alice.user_id, bob.user_id, SwipeDirection.LIKE)
        await store.batch().create(CONVERSATIONS, "taken", {"match_id": "other"}).commit()
        mocker.patch("noble.services.match.uuid4", side_effect=["taken", "fresh"])

        # Act
        with pytest.raises(Conflict):
            await swipe_service.record_swipe(
                bob.user_id, alice.user_id, SwipeDirection.LIKE
            )

        # Assert
        match_id = pair_key(alice.user_id, bob.user_id)
        assert await store.get(MATCHES, match_id) is None
        conversations = await store.query(Query(collection=CONVERSATIONS))
        assert conversations == [{"match_id": "other"}]

        retried = await match_service.check_for_match(bob.user_id, alice.user_id)
        assert retried is not None
        assert (await store.get(CONVERSATIONS, "fresh"))["match_id"] == match_id

    async def test_list_matches_newest_first(
        self,
        swipe_service: SwipeRecorder,
        match_service: MatchResolver,
        add_user,
        alice: User,
        bob: User,
    ):
        # Arrange
        carol = await add_user("carol")
        for other in (bob, carol):
            await swipe_service.record_swipe(
                alice.user_id, other.user_id, SwipeDirection.LIKE
            )
            await swipe_service.record_swipe(
                other.user_id, alice.user_id, SwipeDirection.LIKE
            )

        # Act
        matches = await match_service.list_matches(alice.user_id)

        # Assert
        assert [m.other_participant(alice.user_id) for m in matches] == [
            carol.user_id,
            bob.user_id,
        ]
        assert await match_service.list_matches(bob.user_id) == [matches[1]]

    async def test_mark_seen(
        self,
        swipe_service: SwipeRecorder,
        match_service: MatchResolver,
        alice: User,
        bob: User,
    ):
        # Arrange
        await swipe_service.record_swipe(alice.user_id, bob.user_id, SwipeDirection.LIKE)
        result = await swipe_service.record_swipe(
            bob.user_id, alice.user_id, SwipeDirection.LIKE
        )
        match_id = result.match.match_id

        # Act
        seen = await match_service.mark_seen(match_id)
        seen_again = await match_service.mark_seen(match_id)

        # Assert
        assert seen.is_new is False
        assert seen_again.is_new is False
        assert (await match_service.get_match(match_id)).is_new is False

    async def test_get_match_not_found(self, match_service: MatchResolver):
        with pytest.raises(NotFound):
            await match_service.get_match("alice:nobody")
