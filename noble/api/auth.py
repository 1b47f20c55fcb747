from fastapi import APIRouter, status

from noble.dependencies import CurrentUserId, Services
from noble.schemas.requests import CodeRequestSchema, RefreshSchema, VerifyCodeSchema
from noble.schemas.responses import SessionResponseSchema, VerificationResponseSchema

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/code", response_model=VerificationResponseSchema)
async def request_code(
    body: CodeRequestSchema, services: Services
) -> VerificationResponseSchema:
    """Send a one-time code to a phone number.

    Args:
        body: Phone number and optional app verification token
        services: Injected service container

    Returns:
        The verification id to submit with the code
    """
    verification_id = await services.auth.request_code(
        body.phone_number, body.recaptcha_token
    )
    return VerificationResponseSchema(verification_id=verification_id)


@router.post("/verify", response_model=SessionResponseSchema)
async def verify_code(
    body: VerifyCodeSchema, services: Services
) -> SessionResponseSchema:
    """Exchange a one-time code for a session.

    A wrong code answers 400 and can be retried, an expired verification
    answers 410 and needs a new code.
    """
    session = await services.auth.verify_code(body.verification_id, body.code)
    return SessionResponseSchema.from_session(session)


@router.post("/refresh", response_model=SessionResponseSchema)
async def refresh(body: RefreshSchema, services: Services) -> SessionResponseSchema:
    session = await services.auth.refresh_session(body.user_id, body.refresh_token)
    return SessionResponseSchema.from_session(session)


@router.post("/signout", status_code=status.HTTP_204_NO_CONTENT)
async def sign_out(user_id: CurrentUserId, services: Services) -> None:
    await services.auth.sign_out(user_id)
