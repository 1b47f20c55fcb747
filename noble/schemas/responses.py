from datetime import datetime

from pydantic import BaseModel, Field

from noble.models.auth import AuthSession


class HealthCheckResponseSchema(BaseModel):
    success: bool
    store: str


class VerificationResponseSchema(BaseModel):
    verification_id: str


class SessionResponseSchema(BaseModel):
    """Credentials returned to the client after sign-in or refresh.

    Attributes:
        user_id: ID of the signed in user
        id_token: Bearer token for subsequent requests
        refresh_token: Token used to get a new id token
        expires_at: When the id token expires
        is_new_user: Whether the account was created by this sign-in
    """

    user_id: str
    id_token: str
    refresh_token: str
    expires_at: datetime
    is_new_user: bool = False

    @classmethod
    def from_session(cls, session: AuthSession) -> "SessionResponseSchema":
        return cls(
            user_id=session.user_id,
            id_token=session.id_token,
            refresh_token=session.refresh_token,
            expires_at=session.expires_at,
            is_new_user=session.is_new_user,
        )


class CountResponseSchema(BaseModel):
    """Number of records affected by a bulk update."""

    updated: int = Field(ge=0)
