from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field


class VerificationHandle(BaseModel):
    """Pending phone verification started by a code request.

    Attributes:
        verification_id: Handle returned to the caller
        phone_number: Number the code was sent to
        session_info: Opaque verification session from the identity provider
        expires_at: When the handle stops being usable
    """

    model_config = ConfigDict(frozen=True)

    verification_id: str
    phone_number: str
    session_info: str
    expires_at: datetime

    @property
    def is_expired(self) -> bool:
        return datetime.now(UTC) >= self.expires_at


class AuthSession(BaseModel):
    """Durable session credential for a verified phone number."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    phone_number: str | None = None
    id_token: str = Field(repr=False)
    refresh_token: str = Field(repr=False)
    expires_at: datetime
    is_new_user: bool = False
