from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from noble.models.message import MessageType
from noble.models.swipe import SwipeDirection
from noble.models.user import Gender, Location, Prompt


class CodeRequestSchema(BaseModel):
    """Body of a verification code request.

    Attributes:
        phone_number: Number in E.164 format, e.g. +15551234567
        recaptcha_token: App verification token, when the provider requires one
    """

    phone_number: str
    recaptcha_token: str | None = None


class VerifyCodeSchema(BaseModel):
    verification_id: str
    code: str


class RefreshSchema(BaseModel):
    user_id: str
    refresh_token: str


class ProfileSchema(BaseModel):
    """Editable part of a profile.

    The user id, photos and timestamps are managed by the server.
    """

    model_config = ConfigDict(frozen=True)

    display_name: Annotated[str, Field(min_length=1, max_length=50)]
    age: Annotated[int, Field(ge=18, le=120)]
    bio: Annotated[str, Field(max_length=500)] = ""
    interests: list[str] = Field(default_factory=list)
    gender: Gender
    gender_preference: list[Gender] = Field(default_factory=list)
    min_age_preference: Annotated[int, Field(ge=18, le=120)] = 18
    max_age_preference: Annotated[int, Field(ge=18, le=120)] = 100
    max_distance_miles: Annotated[int, Field(ge=1, le=500)] = 50
    location: Location | None = None
    prompts: list[Prompt] = Field(default_factory=list)

    @field_validator("max_age_preference")
    @classmethod
    def validate_age_range(cls, v: int, info: ValidationInfo) -> int:
        if v < info.data.get("min_age_preference", 18):
            raise ValueError("Maximum age must be greater than minimum age")
        return v


class SwipeSchema(BaseModel):
    target_id: str
    direction: SwipeDirection


class SendMessageSchema(BaseModel):
    content: Annotated[str, Field(min_length=1, max_length=2000)]
    message_type: MessageType = MessageType.TEXT
