import logging
import re
from datetime import UTC, datetime, timedelta
from typing import Any, cast
from uuid import uuid4

import httpx
from jose import JWTError, jwt
from jose.exceptions import ExpiredSignatureError, JWTClaimsError

from noble.config import Settings
from noble.errors import (
    InvalidVerificationCode,
    NobleError,
    NotAuthenticated,
    StoreUnavailable,
    VerificationExpired,
)
from noble.models.auth import AuthSession, VerificationHandle
from noble.utils.credentials import CredentialStore

logger = logging.getLogger(__name__)

PHONE_NUMBER = re.compile(r"^\+[1-9]\d{6,14}$")
VERIFICATION_CODE = re.compile(r"^\d{6}$")

_EXPIRED_CODES = {"SESSION_EXPIRED", "CODE_EXPIRED", "INVALID_SESSION_INFO"}
_INVALID_CODES = {"INVALID_CODE", "MISSING_CODE"}
_REJECTED_SESSION_CODES = {
    "TOKEN_EXPIRED",
    "INVALID_REFRESH_TOKEN",
    "USER_DISABLED",
    "USER_NOT_FOUND",
}


class AuthService:
    """Service for phone number sign-in and session management.

    Talks to the identity provider's REST API to send and verify one-time
    codes, keeps the resulting sessions in the credential store and
    validates the RS256 id tokens presented by clients.

    Attributes:
        api_key: Identity provider API key
        project_id: Identity provider project, the expected token audience
        algorithms: List of supported JWT algorithms
        credentials: Store for sessions and pending verifications
    """

    def __init__(
        self,
        settings: Settings,
        credentials: CredentialStore,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key: str = settings.identity_api_key
        self.project_id: str = settings.identity_project_id
        self.identity_base_url: str = settings.identity_base_url.rstrip("/")
        self.token_base_url: str = settings.token_base_url.rstrip("/")
        self.jwks_url: str = settings.jwks_url
        self.verification_ttl = timedelta(seconds=settings.verification_ttl_seconds)
        self.algorithms: list[str] = ["RS256"]
        self.credentials = credentials
        self._client = http_client or httpx.AsyncClient(
            timeout=settings.http_timeout_seconds
        )
        self._jwks: list[dict[str, Any]] = []

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _post(
        self,
        url: str,
        *,
        json: dict[str, Any] | None = None,
        data: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Call the identity provider and return the JSON body.

        Raises:
            StoreUnavailable: On transport failures and 5xx responses
            NobleError: Mapped from the provider's error message on 4xx
        """
        try:
            response = await self._client.post(
                url, params={"key": self.api_key}, json=json, data=data
            )
        except httpx.TransportError as e:
            logger.warning("Identity provider unreachable: %s", e)
            raise StoreUnavailable(f"Identity provider unreachable: {e}") from e

        if response.is_server_error:
            raise StoreUnavailable(
                f"Identity provider error: HTTP {response.status_code}"
            )
        if response.is_client_error:
            raise self._provider_error(response)
        return cast(dict[str, Any], response.json())

    @staticmethod
    def _provider_error(response: httpx.Response) -> Exception:
        try:
            message = response.json()["error"]["message"]
        except (ValueError, KeyError, TypeError):
            message = f"HTTP {response.status_code}"
        # Messages look like "INVALID_CODE" or "TOO_SHORT : details".
        code = message.split(":")[0].strip()
        if code in _EXPIRED_CODES:
            return VerificationExpired("Verification session expired. Please try again.")
        if code in _INVALID_CODES:
            return InvalidVerificationCode("Invalid verification code")
        if code in _REJECTED_SESSION_CODES:
            return NotAuthenticated(f"Session rejected: {code}")
        if "PHONE_NUMBER" in code:
            return ValueError(f"Invalid phone number: {message}")
        return NobleError(f"Identity provider rejected the request: {message}")

    async def request_code(
        self, phone_number: str, recaptcha_token: str | None = None
    ) -> str:
        """Send a verification code to a phone number.

        Args:
            phone_number: Number in E.164 format
            recaptcha_token: App verification token, if the provider requires one

        Returns:
            The verification id to submit together with the code

        Raises:
            ValueError: If the phone number is malformed
            StoreUnavailable: If the identity provider is unreachable
        """
        if not PHONE_NUMBER.match(phone_number):
            raise ValueError("Phone number must be in E.164 format")

        payload = {"phoneNumber": phone_number}
        if recaptcha_token:
            payload["recaptchaToken"] = recaptcha_token
        body = await self._post(
            f"{self.identity_base_url}/accounts:sendVerificationCode", json=payload
        )

        handle = VerificationHandle(
            verification_id=str(uuid4()),
            phone_number=phone_number,
            session_info=body["sessionInfo"],
            expires_at=datetime.now(UTC) + self.verification_ttl,
        )
        await self.credentials.save_verification(handle)
        return handle.verification_id

    async def verify_code(self, verification_id: str, code: str) -> AuthSession:
        """Exchange a verification code for a session.

        A wrong code leaves the verification pending so the user can retry.

        Raises:
            VerificationExpired: If the verification is unknown or expired
            InvalidVerificationCode: If the code is wrong
        """
        handle = await self.credentials.get_verification(verification_id)
        if handle is None:
            raise VerificationExpired("Verification session expired. Please try again.")
        if not VERIFICATION_CODE.match(code):
            raise InvalidVerificationCode("Verification codes have six digits")

        try:
            body = await self._post(
                f"{self.identity_base_url}/accounts:signInWithPhoneNumber",
                json={"sessionInfo": handle.session_info, "code": code},
            )
        except VerificationExpired:
            await self.credentials.remove_verification(verification_id)
            raise

        session = AuthSession(
            user_id=body["localId"],
            phone_number=body.get("phoneNumber", handle.phone_number),
            id_token=body["idToken"],
            refresh_token=body["refreshToken"],
            expires_at=datetime.now(UTC) + timedelta(seconds=int(body["expiresIn"])),
            is_new_user=body.get("isNewUser", False),
        )
        await self.credentials.remove_verification(verification_id)
        await self.credentials.save_session(session)
        logger.info("User %s signed in", session.user_id)
        return session

    async def refresh_session(
        self, user_id: str, refresh_token: str | None = None
    ) -> AuthSession:
        """Get a fresh id token for a signed in user.

        Args:
            user_id: ID of the signed in user
            refresh_token: If given, must equal the stored refresh token

        Raises:
            NotAuthenticated: If there is no session, the refresh token does
                not match or the provider rejects it
        """
        session = await self.credentials.get_session(user_id)
        if session is None:
            raise NotAuthenticated("You must be logged in.")
        if refresh_token is not None and refresh_token != session.refresh_token:
            raise NotAuthenticated("Refresh token does not match the session")

        try:
            body = await self._post(
                f"{self.token_base_url}/token",
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": session.refresh_token,
                },
            )
        except NotAuthenticated:
            await self.credentials.remove_session(user_id)
            raise

        refreshed = session.model_copy(
            update={
                "id_token": body["id_token"],
                "refresh_token": body["refresh_token"],
                "expires_at": datetime.now(UTC)
                + timedelta(seconds=int(body["expires_in"])),
                "is_new_user": False,
            }
        )
        await self.credentials.save_session(refreshed)
        return refreshed

    async def sign_out(self, user_id: str) -> None:
        """Drop the user's session. Safe to call when already signed out."""
        if await self.credentials.remove_session(user_id):
            logger.info("User %s signed out", user_id)

    async def require_session(self, user_id: str) -> None:
        """Ensure a user is signed in.

        Raises:
            NotAuthenticated: If no session is stored for the user
        """
        if not user_id or await self.credentials.get_session(user_id) is None:
            raise NotAuthenticated("You must be logged in.")

    async def _signing_keys(self, refresh: bool = False) -> list[dict[str, Any]]:
        if refresh or not self._jwks:
            try:
                response = await self._client.get(self.jwks_url)
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise StoreUnavailable(f"Failed to fetch signing keys: {e}") from e
            self._jwks = response.json()["keys"]
        return self._jwks

    async def _find_key(self, kid: str) -> dict[str, Any] | None:
        for refresh in (False, True):
            # Keys rotate, so an unknown kid triggers one refetch.
            for key in await self._signing_keys(refresh=refresh):
                if key["kid"] == kid:
                    return {
                        "kty": key["kty"],
                        "kid": key["kid"],
                        "use": key["use"],
                        "n": key["n"],
                        "e": key["e"],
                    }
        return None

    async def validate_token(self, token: str) -> dict[str, Any]:
        """Validate an id token issued by the identity provider.

        Returns:
            The decoded token payload

        Raises:
            NotAuthenticated: If the token is invalid or expired
        """
        try:
            unverified_header = jwt.get_unverified_header(token)
            rsa_key = await self._find_key(unverified_header.get("kid", ""))
            if not rsa_key:
                raise NotAuthenticated("Unable to find appropriate key")

            payload = jwt.decode(
                token,
                rsa_key,
                algorithms=self.algorithms,
                audience=self.project_id,
                issuer=f"https://securetoken.google.com/{self.project_id}",
            )
            return cast(dict[str, Any], payload)
        except ExpiredSignatureError as e:
            raise NotAuthenticated("Token has expired") from e
        except JWTClaimsError as e:
            raise NotAuthenticated(f"Invalid claims: {e}") from e
        except JWTError as e:
            raise NotAuthenticated(f"Invalid token: {e}") from e

    async def authenticate(self, token: str) -> str:
        """Resolve a bearer token to the id of a signed in user.

        Raises:
            NotAuthenticated: If the token is invalid or the user signed out
        """
        payload = await self.validate_token(token)
        user_id = payload.get("sub")
        if not isinstance(user_id, str):
            raise NotAuthenticated("Token has no subject")
        await self.require_session(user_id)
        return user_id
