from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict

from noble.models.match import Match


class SwipeDirection(str, Enum):
    """Direction of a swipe.

    Attributes:
        PASS: Swipe left, not interested
        LIKE: Swipe right
        SUPER_LIKE: Swipe up
    """

    PASS = "pass"
    LIKE = "like"
    SUPER_LIKE = "super_like"

    @property
    def is_positive(self) -> bool:
        return self in POSITIVE_DIRECTIONS


POSITIVE_DIRECTIONS = frozenset({SwipeDirection.LIKE, SwipeDirection.SUPER_LIKE})


class SwipeAction(BaseModel):
    """A single directional judgment by one user about another.

    Swipes are append-only, re-swiping on the same target creates a new
    record.
    """

    model_config = ConfigDict(frozen=True)

    swipe_id: str
    actor_id: str
    target_id: str
    direction: SwipeDirection
    created_at: datetime


class LikeRecord(BaseModel):
    """Read-optimized "who liked you" entry for a like or super like."""

    model_config = ConfigDict(frozen=True)

    like_id: str
    liker_id: str
    liked_id: str
    is_super_like: bool = False
    created_at: datetime
    is_read: bool = False


class SwipeResult(BaseModel):
    """The recorded swipe and the match it produced, if any."""

    model_config = ConfigDict(frozen=True)

    swipe: SwipeAction
    match: Match | None = None
