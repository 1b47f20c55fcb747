import logging
from dataclasses import dataclass

from noble.config import Settings
from noble.db import DatabaseManager
from noble.services.auth import AuthService
from noble.services.conversation import ConversationStore
from noble.services.like import LikeService
from noble.services.match import MatchResolver
from noble.services.profile import ProfileDirectory
from noble.services.swipe import SwipeRecorder
from noble.store.base import DocumentStore
from noble.store.memory import MemoryDocumentStore
from noble.store.neo4j import Neo4jDocumentStore
from noble.utils.credentials import CredentialStore
from noble.utils.storage import MemoryStorage, S3Storage, Storage

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Wired service graph for one process.

    Built once at startup from settings and passed to whoever needs it.
    """

    settings: Settings
    store: DocumentStore
    storage: Storage
    credentials: CredentialStore
    auth: AuthService
    profiles: ProfileDirectory
    matches: MatchResolver
    swipes: SwipeRecorder
    conversations: ConversationStore
    likes: LikeService

    @classmethod
    def build(
        cls,
        settings: Settings,
        store: DocumentStore,
        storage: Storage,
        auth: AuthService | None = None,
    ) -> "ServiceContainer":
        """Wire the services on top of an already opened store and storage."""
        credentials = auth.credentials if auth else CredentialStore(store)
        auth = auth or AuthService(settings, credentials)
        profiles = ProfileDirectory(
            store, storage, scan_limit=settings.candidate_scan_limit
        )
        matches = MatchResolver(store)
        return cls(
            settings=settings,
            store=store,
            storage=storage,
            credentials=credentials,
            auth=auth,
            profiles=profiles,
            matches=matches,
            swipes=SwipeRecorder(store, auth, profiles, matches),
            conversations=ConversationStore(store, profiles),
            likes=LikeService(store),
        )

    async def close(self) -> None:
        await self.store.close()
        await self.auth.aclose()


async def open_store(settings: Settings) -> DocumentStore:
    """Create the configured document store.

    Raises:
        neo4j.exceptions.ServiceUnavailable: If Neo4j is selected and cannot
            be reached
    """
    if settings.store_backend == "memory":
        return MemoryDocumentStore()
    db = DatabaseManager(settings)
    await db.verify_connectivity()
    store = Neo4jDocumentStore(db, poll_interval=settings.subscription_poll_seconds)
    await store.ensure_schema()
    return store


def open_storage(settings: Settings) -> Storage:
    if settings.storage_backend == "memory":
        return MemoryStorage()
    return S3Storage(settings)


async def create_container(settings: Settings) -> ServiceContainer:
    store = await open_store(settings)
    container = ServiceContainer.build(settings, store, open_storage(settings))
    logger.info(
        "Services ready (store=%s, storage=%s)",
        settings.store_backend,
        settings.storage_backend,
    )
    return container
