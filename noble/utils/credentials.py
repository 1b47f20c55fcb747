import logging
from datetime import UTC, datetime

from noble.models.auth import AuthSession, VerificationHandle
from noble.store.base import DocumentStore, Query
from noble.store.collections import SESSIONS, VERIFICATIONS

logger = logging.getLogger(__name__)


class CredentialStore:
    """Session credentials and pending verifications kept in the document store.

    Sessions are keyed by user id, verification handles by verification id.
    Keeping them in the shared store lets every worker and restart see the
    same sessions. Expired verification handles are purged whenever a new
    one is saved, and dropped when looked up.
    """

    def __init__(self, store: DocumentStore) -> None:
        self.store = store

    async def save_session(self, session: AuthSession) -> None:
        await self.store.batch().set(
            SESSIONS, session.user_id, session.model_dump()
        ).commit()

    async def get_session(self, user_id: str) -> AuthSession | None:
        document = await self.store.get(SESSIONS, user_id)
        return AuthSession.model_validate(document) if document else None

    async def remove_session(self, user_id: str) -> bool:
        if await self.store.get(SESSIONS, user_id) is None:
            return False
        await self.store.batch().delete(SESSIONS, user_id).commit()
        return True

    async def save_verification(self, handle: VerificationHandle) -> None:
        expired = await self.store.query(
            Query(collection=VERIFICATIONS).where(
                "expires_at", "<=", datetime.now(UTC)
            )
        )
        batch = self.store.batch()
        for document in expired:
            batch.delete(VERIFICATIONS, document["verification_id"])
        batch.set(VERIFICATIONS, handle.verification_id, handle.model_dump())
        await batch.commit()
        if expired:
            logger.debug("Purged %d expired verifications", len(expired))

    async def get_verification(
        self, verification_id: str
    ) -> VerificationHandle | None:
        """Return a pending verification, None if unknown or expired."""
        document = await self.store.get(VERIFICATIONS, verification_id)
        if document is None:
            return None
        handle = VerificationHandle.model_validate(document)
        if handle.is_expired:
            await self.remove_verification(verification_id)
            return None
        return handle

    async def remove_verification(self, verification_id: str) -> None:
        await self.store.batch().delete(VERIFICATIONS, verification_id).commit()
