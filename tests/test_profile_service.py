import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from noble.errors import Conflict, NotFound, StoreUnavailable
from noble.models.swipe import SwipeDirection
from noble.models.user import Gender, Location, User
from noble.services.profile import ProfileDirectory, distance_miles
from noble.services.swipe import SwipeRecorder
from noble.store.memory import MemoryDocumentStore
from noble.utils.storage import MemoryStorage

NEW_YORK = Location(latitude=40.7128, longitude=-74.0060, city="New York", state="NY")
OAKLAND = Location(latitude=37.8044, longitude=-122.2712, city="Oakland", state="CA")


class SlowStorage(MemoryStorage):
    """Memory storage that yields to the event loop while uploading."""

    async def upload(self, data: bytes, content_type: str) -> str:
        await asyncio.sleep(0)
        return await super().upload(data, content_type)


@pytest.mark.unit
class TestProfileDirectory:
    async def test_create_and_get_identity(
        self, profile_service: ProfileDirectory, user_factory
    ):
        # Arrange
        user = user_factory("dana", interests=["climbing"], bio="Hi there")

        # Act
        created = await profile_service.create_identity(user)
        fetched = await profile_service.get_identity("dana")

        # Assert
        assert created == user
        assert fetched == user
        assert fetched.location.display_location == "San Francisco, CA"

    async def test_create_identity_twice_conflicts(
        self, profile_service: ProfileDirectory, alice: User
    ):
        with pytest.raises(Conflict):
            await profile_service.create_identity(alice)

    async def test_get_identity_not_found(self, profile_service: ProfileDirectory):
        with pytest.raises(NotFound):
            await profile_service.get_identity("nobody")

    async def test_update_identity(self, profile_service: ProfileDirectory, alice: User):
        # Act
        updated = await profile_service.update_identity(
            alice.model_copy(update={"bio": "Coffee first"})
        )

        # Assert
        assert updated.bio == "Coffee first"
        assert (await profile_service.get_identity(alice.user_id)).bio == "Coffee first"

    async def test_update_identity_not_found(
        self, profile_service: ProfileDirectory, user_factory
    ):
        with pytest.raises(NotFound):
            await profile_service.update_identity(user_factory("ghost"))

    async def test_two_photos(
        self, profile_service: ProfileDirectory, storage: MemoryStorage, alice: User
    ):
        # Act
        await profile_service.add_photo(alice.user_id, b"first", "image/jpeg")
        updated = await profile_service.add_photo(alice.user_id, b"second", "image/png")

        # Assert
        stored = await profile_service.get_identity(alice.user_id)
        assert stored == updated
        assert len(stored.photos) == 2
        assert stored.primary_photo == stored.photos[0]
        assert stored.photos[0].endswith(".jpg")
        assert stored.photos[1].endswith(".png")
        assert sorted(storage.files.values()) == [b"first", b"second"]

    async def test_photo_limit(self, profile_service: ProfileDirectory, alice: User):
        # Arrange
        for _ in range(ProfileDirectory.MAX_PHOTOS):
            await profile_service.add_photo(alice.user_id, b"photo")

        # Act & Assert
        with pytest.raises(ValueError):
            await profile_service.add_photo(alice.user_id, b"one too many")

    async def test_concurrent_photo_uploads_are_all_kept(
        self, store: MemoryDocumentStore, alice: User
    ):
        # Arrange
        storage = SlowStorage()
        profiles = ProfileDirectory(store, storage)

        # Act
        await asyncio.gather(
            profiles.add_photo(alice.user_id, b"one"),
            profiles.add_photo(alice.user_id, b"two"),
        )

        # Assert
        stored = await profiles.get_identity(alice.user_id)
        assert len(stored.photos) == 2
        assert sorted(stored.photos) == sorted(
            f"{MemoryStorage.BASE_URL}/{key}" for key in storage.files
        )

    async def test_concurrent_uploads_respect_photo_limit(
        self, store: MemoryDocumentStore, alice: User
    ):
        # Arrange
        storage = SlowStorage()
        profiles = ProfileDirectory(store, storage)
        for _ in range(ProfileDirectory.MAX_PHOTOS - 1):
            await profiles.add_photo(alice.user_id, b"photo")

        # Act
        results = await asyncio.gather(
            profiles.add_photo(alice.user_id, b"last"),
            profiles.add_photo(alice.user_id, b"extra"),
            return_exceptions=True,
        )

        # Assert
        assert sum(isinstance(r, ValueError) for r in results) == 1
        stored = await profiles.get_identity(alice.user_id)
        assert len(stored.photos) == ProfileDirectory.MAX_PHOTOS
        assert len(storage.files) == ProfileDirectory.MAX_PHOTOS

    async def test_failed_photo_update_deletes_upload(
        self,
        profile_service: ProfileDirectory,
        store: MemoryDocumentStore,
        storage: MemoryStorage,
        alice: User,
        mocker,
    ):
        # Arrange
        mocker.patch.object(store, "_commit", side_effect=StoreUnavailable("down"))

        # Act & Assert
        with pytest.raises(StoreUnavailable):
            await profile_service.add_photo(alice.user_id, b"photo")
        assert storage.files == {}

    async def test_update_identity_keeps_photos(
        self, profile_service: ProfileDirectory, alice: User
    ):
        # Arrange
        with_photo = await profile_service.add_photo(alice.user_id, b"photo")

        # Act
        updated = await profile_service.update_identity(
            alice.model_copy(update={"bio": "Still here"})
        )

        # Assert
        assert updated.photos == with_photo.photos
        assert updated.bio == "Still here"

    async def test_unsupported_photo_type(
        self, profile_service: ProfileDirectory, alice: User
    ):
        with pytest.raises(ValueError):
            await profile_service.add_photo(alice.user_id, b"%PDF", "application/pdf")
        assert (await profile_service.get_identity(alice.user_id)).photos == []

    async def test_candidates_unfiltered_newest_first(
        self, profile_service: ProfileDirectory, add_user
    ):
        # Arrange
        now = datetime.now(UTC)
        for offset, user_id in enumerate(["old", "middle", "new"]):
            await add_user(user_id, created_at=now + timedelta(minutes=offset))

        # Act
        first_page = await profile_service.list_candidates(page=0, limit=2)
        second_page = await profile_service.list_candidates(page=1, limit=2)

        # Assert
        assert [u.user_id for u in first_page] == ["new", "middle"]
        assert [u.user_id for u in second_page] == ["old"]

    async def test_candidates_apply_viewer_preferences(
        self, profile_service: ProfileDirectory, add_user
    ):
        # Arrange
        viewer = await add_user(
            "viewer",
            gender=Gender.MALE,
            gender_preference=[Gender.FEMALE],
            min_age_preference=25,
            max_age_preference=35,
            max_distance_miles=25,
        )
        await add_user("match", age=30)
        await add_user("nearby", age=27, location=OAKLAND)
        await add_user("too_young", age=21)
        await add_user("wrong_gender", gender=Gender.MALE)
        await add_user("far_away", location=NEW_YORK)
        await add_user("no_location", location=None)

        # Act
        candidates = await profile_service.list_candidates(viewer_id=viewer.user_id)

        # Assert
        assert {u.user_id for u in candidates} == {"match", "nearby", "no_location"}

    async def test_candidates_exclude_swiped(
        self,
        profile_service: ProfileDirectory,
        swipe_service: SwipeRecorder,
        alice: User,
        bob: User,
        add_user,
    ):
        # Arrange
        await add_user("carol", gender=Gender.MALE)
        await swipe_service.record_swipe(alice.user_id, bob.user_id, SwipeDirection.PASS)

        # Act
        candidates = await profile_service.list_candidates(viewer_id=alice.user_id)

        # Assert
        assert [u.user_id for u in candidates] == ["carol"]

    async def test_candidates_unknown_viewer(self, profile_service: ProfileDirectory):
        with pytest.raises(NotFound):
            await profile_service.list_candidates(viewer_id="nobody")

    async def test_candidates_invalid_page(self, profile_service: ProfileDirectory):
        with pytest.raises(ValueError):
            await profile_service.list_candidates(page=-1)
        with pytest.raises(ValueError):
            await profile_service.list_candidates(limit=0)

    def test_distance_miles(self):
        assert distance_miles(NEW_YORK, NEW_YORK) == 0
        assert 2500 < distance_miles(NEW_YORK, OAKLAND) < 2600
