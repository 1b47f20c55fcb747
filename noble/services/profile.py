import logging
import math

from noble.errors import NobleError, NotFound
from noble.models.user import Location, User
from noble.store.base import Append, DocumentStore, Query
from noble.store.collections import SWIPES, USERS
from noble.utils.storage import Storage

logger = logging.getLogger(__name__)

EARTH_RADIUS_MILES = 3958.8


def distance_miles(a: Location, b: Location) -> float:
    """Great-circle distance between two locations."""
    lat_a, lat_b = math.radians(a.latitude), math.radians(b.latitude)
    d_lat = lat_b - lat_a
    d_lon = math.radians(b.longitude - a.longitude)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(lat_a) * math.cos(lat_b) * math.sin(d_lon / 2) ** 2
    )
    return 2 * EARTH_RADIUS_MILES * math.asin(math.sqrt(h))


class ProfileDirectory:
    """Service for looking up, browsing and editing user profiles.

    This service handles:
    - Paginated candidate retrieval for the swipe deck
    - Identity lookup, signup and profile updates
    - Photo uploads

    Attributes:
        store: Document store holding the profiles
        storage: File storage for photos
        scan_limit: Maximum number of profiles scanned when filtering
    """

    MAX_PHOTOS = 6

    def __init__(
        self, store: DocumentStore, storage: Storage, scan_limit: int = 1000
    ) -> None:
        self.store = store
        self.storage = storage
        self.scan_limit = scan_limit

    async def list_candidates(
        self, page: int = 0, limit: int = 20, viewer_id: str | None = None
    ) -> list[User]:
        """Get a page of profiles to swipe on, newest accounts first.

        Without a viewer the list is unfiltered. With a viewer, the viewer is
        excluded and their preferences are applied: age range, gender
        preference, max distance (when both locations are known) and
        already-swiped profiles.

        Args:
            page: Zero-based page number
            limit: Page size
            viewer_id: ID of the user browsing, if known

        Returns:
            List of candidate profiles

        Raises:
            ValueError: If page or limit are out of range
            NotFound: If the viewer does not exist
        """
        if page < 0:
            raise ValueError("Page must not be negative")
        if limit < 1:
            raise ValueError("Limit must be positive")

        newest_first = Query(collection=USERS).ordered("created_at", descending=True)
        if viewer_id is None:
            documents = await self.store.query(newest_first.page(page * limit, limit))
            return [User.model_validate(document) for document in documents]

        viewer = await self.get_identity(viewer_id)
        swipes = await self.store.query(
            Query(collection=SWIPES).where("actor_id", "==", viewer_id)
        )
        swiped = {swipe["target_id"] for swipe in swipes}

        # Filter in memory over a bounded scan, then paginate.
        documents = await self.store.query(newest_first.page(0, self.scan_limit))
        candidates = [
            user
            for user in map(User.model_validate, documents)
            if user.user_id not in swiped and self._fits_preferences(viewer, user)
        ]
        return candidates[page * limit : (page + 1) * limit]

    @staticmethod
    def _fits_preferences(viewer: User, candidate: User) -> bool:
        if candidate.user_id == viewer.user_id:
            return False
        if not viewer.min_age_preference <= candidate.age <= viewer.max_age_preference:
            return False
        if viewer.gender_preference and candidate.gender not in viewer.gender_preference:
            return False
        if viewer.location and candidate.location:
            distance = distance_miles(viewer.location, candidate.location)
            if distance > viewer.max_distance_miles:
                return False
        return True

    async def get_identity(self, user_id: str) -> User:
        """Get a user's profile.

        Raises:
            NotFound: If the user does not exist
        """
        document = await self.store.get(USERS, user_id)
        if document is None:
            raise NotFound(f"User {user_id} not found")
        return User.model_validate(document)

    async def create_identity(self, user: User) -> User:
        """Create the profile of a newly signed up user.

        Raises:
            Conflict: If a profile with this id already exists
        """
        batch = self.store.batch().create(USERS, user.user_id, user.model_dump())
        await batch.commit()
        logger.info("Created profile %s", user.user_id)
        return user

    async def update_identity(self, user: User) -> User:
        """Replace a user's profile with the given one.

        Photos are only changed through `add_photo`, so the stored list is
        kept and returned.

        Raises:
            NotFound: If the user does not exist
        """
        fields = user.model_dump(exclude={"photos"})
        await self.store.batch().update(USERS, user.user_id, fields).commit()
        return await self.get_identity(user.user_id)

    async def upload_photo(self, data: bytes, content_type: str = "image/jpeg") -> str:
        """Upload a photo and return its URL."""
        return await self.storage.upload(data, content_type)

    async def add_photo(
        self, user_id: str, data: bytes, content_type: str = "image/jpeg"
    ) -> User:
        """Upload a photo and append it to the user's photos.

        The url is appended in the store, so concurrent uploads all land.
        The first photo a user adds becomes their primary photo. If the
        profile cannot be updated the uploaded file is deleted again.

        Raises:
            NotFound: If the user does not exist
            ValueError: If the user already has the maximum number of photos
        """
        user = await self.get_identity(user_id)
        if len(user.photos) >= self.MAX_PHOTOS:
            raise ValueError(f"A profile can have at most {self.MAX_PHOTOS} photos")
        url = await self.upload_photo(data, content_type)
        photos = Append(values=[url], max_length=self.MAX_PHOTOS)
        try:
            await self.store.batch().update(USERS, user_id, {"photos": photos}).commit()
        except Exception:
            await self._discard_upload(url)
            raise
        return await self.get_identity(user_id)

    async def _discard_upload(self, url: str) -> None:
        try:
            await self.storage.delete(url)
        except NobleError as e:
            logger.warning("Failed to delete orphaned photo %s: %s", url, e)
