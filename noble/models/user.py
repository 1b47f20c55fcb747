from datetime import datetime
from enum import Enum
from typing import Annotated

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
)


class Gender(str, Enum):
    """Gender options for dating profiles."""

    MALE = "male"
    FEMALE = "female"
    NON_BINARY = "non_binary"
    OTHER = "other"


class Location(BaseModel):
    """Last known location of a user."""

    model_config = ConfigDict(frozen=True)

    latitude: Annotated[float, Field(ge=-90, le=90)]
    longitude: Annotated[float, Field(ge=-180, le=180)]
    city: str | None = None
    state: str | None = None

    @property
    def display_location(self) -> str:
        return ", ".join(part for part in (self.city, self.state) if part)


class Prompt(BaseModel):
    """A question/answer pair shown on a profile."""

    model_config = ConfigDict(frozen=True)

    prompt_id: str
    question: str
    answer: Annotated[str, Field(max_length=300)]


class User(BaseModel):
    """Identity and dating profile of a user.

    Photos are ordered, the first one is the primary photo shown on cards.

    Attributes:
        user_id: Unique identifier of the user (the identity provider's uid)
        display_name: Name shown on the profile
        age: Age in years, must be at least 18
        bio: Short biography
        photos: Ordered list of photo URLs
        interests: Free-text interests
        gender: User's gender identity
        gender_preference: Genders they're interested in
        min_age_preference: Minimum age for candidates
        max_age_preference: Maximum age for candidates
        max_distance_miles: Maximum distance for candidates
        location: Last known location if shared
        prompts: Profile prompts
        is_verified: Whether the profile has been verified
        is_premium: Whether the user has a premium subscription
        created_at: When the account was created
        last_active: When the user was last active
    """

    model_config = ConfigDict(frozen=True)

    user_id: str
    display_name: Annotated[str, Field(min_length=1, max_length=50)]
    age: Annotated[int, Field(ge=18, le=120)]
    bio: Annotated[str, Field(max_length=500)] = ""
    photos: list[str] = Field(default_factory=list)
    interests: list[str] = Field(default_factory=list)
    gender: Gender
    gender_preference: list[Gender] = Field(default_factory=list)
    min_age_preference: Annotated[int, Field(ge=18, le=120)] = 18
    max_age_preference: Annotated[int, Field(ge=18, le=120)] = 100
    max_distance_miles: Annotated[int, Field(ge=1, le=500)] = 50
    location: Location | None = None
    prompts: list[Prompt] = Field(default_factory=list)
    is_verified: bool = False
    is_premium: bool = False
    created_at: datetime
    last_active: datetime

    @field_validator("max_age_preference")
    @classmethod
    def validate_age_range(cls, v: int, info: ValidationInfo) -> int:
        """Validate that max age is not below min age."""
        if v < info.data.get("min_age_preference", 18):
            raise ValueError("Maximum age must be greater than minimum age")
        return v

    @property
    def primary_photo(self) -> str | None:
        return self.photos[0] if self.photos else None
