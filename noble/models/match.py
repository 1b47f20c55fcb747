from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


def pair_key(user_id_a: str, user_id_b: str) -> str:
    """Order-independent key for a pair of users."""
    first, second = sorted((user_id_a, user_id_b))
    return f"{first}:{second}"


class Match(BaseModel):
    """Mutual like between two users.

    The match id is derived from the participant pair so that a pair can
    hold at most one match.

    Attributes:
        match_id: Pair key of the two participants
        user_id_a: User whose swipe completed the match
        user_id_b: The other participant
        participants: Both participant ids, sorted
        matched_at: When the match was created
        is_new: Whether the match has not been viewed yet
    """

    model_config = ConfigDict(frozen=True)

    match_id: str
    user_id_a: str
    user_id_b: str
    participants: list[str] = Field(default_factory=list)
    matched_at: datetime
    is_new: bool = True

    @model_validator(mode="before")
    @classmethod
    def fill_participants(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("participants"):
            a, b = data.get("user_id_a"), data.get("user_id_b")
            if isinstance(a, str) and isinstance(b, str):
                data = {**data, "participants": sorted((a, b))}
        return data

    @model_validator(mode="after")
    def validate_participants(self) -> "Match":
        if self.user_id_a == self.user_id_b:
            raise ValueError("A match needs two different users")
        if self.match_id != pair_key(self.user_id_a, self.user_id_b):
            raise ValueError("Match id does not belong to the participant pair")
        if self.participants != sorted((self.user_id_a, self.user_id_b)):
            raise ValueError("Participants do not match the user pair")
        return self

    def other_participant(self, user_id: str) -> str:
        if user_id == self.user_id_a:
            return self.user_id_b
        if user_id == self.user_id_b:
            return self.user_id_a
        raise ValueError("User is not part of this match")
