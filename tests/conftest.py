import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio

from noble.config import Settings
from noble.container import ServiceContainer
from noble.db import DatabaseManager
from noble.models.auth import AuthSession
from noble.models.user import Gender, Location, User
from noble.services.auth import AuthService
from noble.services.conversation import ConversationStore
from noble.services.like import LikeService
from noble.services.match import MatchResolver
from noble.services.profile import ProfileDirectory
from noble.services.swipe import SwipeRecorder
from noble.store.collections import USERS
from noble.store.memory import MemoryDocumentStore
from noble.store.neo4j import Neo4jDocumentStore
from noble.utils.credentials import CredentialStore
from noble.utils.storage import MemoryStorage

# Test configuration
TEST_NEO4J_URI = os.getenv("TEST_NEO4J_URI")
TEST_NEO4J_USER = os.getenv("TEST_NEO4J_USER", "neo4j")
TEST_NEO4J_PASSWORD = os.getenv("TEST_NEO4J_PASSWORD", "password")
TEST_NEO4J_DATABASE = os.getenv("TEST_NEO4J_DATABASE", "neo4j")


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        identity_api_key="test-api-key",
        identity_project_id="noble-test",
        identity_base_url="https://identity.test/v1",
        token_base_url="https://token.test/v1",
        jwks_url="https://keys.test/jwks",
    )


# Backend fixtures
@pytest_asyncio.fixture
async def store() -> AsyncGenerator[MemoryDocumentStore, None]:
    store = MemoryDocumentStore()
    yield store
    await store.close()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def credentials(store: MemoryDocumentStore) -> CredentialStore:
    return CredentialStore(store)


# Service fixtures
@pytest_asyncio.fixture
async def auth_service(
    settings: Settings, credentials: CredentialStore
) -> AsyncGenerator[AuthService, None]:
    service = AuthService(settings, credentials)
    yield service
    await service.aclose()


@pytest.fixture
def profile_service(
    store: MemoryDocumentStore, storage: MemoryStorage
) -> ProfileDirectory:
    return ProfileDirectory(store, storage)


@pytest.fixture
def match_service(store: MemoryDocumentStore) -> MatchResolver:
    return MatchResolver(store)


@pytest.fixture
def swipe_service(
    store: MemoryDocumentStore,
    auth_service: AuthService,
    profile_service: ProfileDirectory,
    match_service: MatchResolver,
) -> SwipeRecorder:
    return SwipeRecorder(store, auth_service, profile_service, match_service)


@pytest.fixture
def conversation_service(
    store: MemoryDocumentStore, profile_service: ProfileDirectory
) -> ConversationStore:
    return ConversationStore(store, profile_service)


@pytest.fixture
def like_service(store: MemoryDocumentStore) -> LikeService:
    return LikeService(store)


@pytest.fixture
def services(
    settings: Settings,
    store: MemoryDocumentStore,
    storage: MemoryStorage,
    auth_service: AuthService,
) -> ServiceContainer:
    return ServiceContainer.build(settings, store, storage, auth=auth_service)


# Test data fixtures
def make_user(user_id: str, **overrides) -> User:
    now = datetime.now(UTC)
    fields = {
        "user_id": user_id,
        "display_name": user_id.title(),
        "age": 28,
        "gender": Gender.FEMALE,
        "location": Location(
            latitude=37.7749, longitude=-122.4194, city="San Francisco", state="CA"
        ),
        "created_at": now,
        "last_active": now,
    }
    fields.update(overrides)
    return User(**fields)


def make_session(user_id: str) -> AuthSession:
    return AuthSession(
        user_id=user_id,
        phone_number="+15555550100",
        id_token=f"id-token-{user_id}",
        refresh_token=f"refresh-token-{user_id}",
        expires_at=datetime.now(UTC) + timedelta(hours=1),
    )


async def seed_user(store: MemoryDocumentStore, user: User) -> User:
    await store.batch().create(USERS, user.user_id, user.model_dump()).commit()
    return user


@pytest.fixture
def user_factory():
    return make_user


@pytest.fixture
def session_factory():
    return make_session


@pytest.fixture
def add_user(store: MemoryDocumentStore, credentials: CredentialStore):
    """Seed a profile and sign its user in."""

    async def _add_user(user_id: str, **overrides) -> User:
        await credentials.save_session(make_session(user_id))
        return await seed_user(store, make_user(user_id, **overrides))

    return _add_user


@pytest_asyncio.fixture
async def alice(store: MemoryDocumentStore, credentials: CredentialStore) -> User:
    await credentials.save_session(make_session("alice"))
    return await seed_user(store, make_user("alice"))


@pytest_asyncio.fixture
async def bob(store: MemoryDocumentStore, credentials: CredentialStore) -> User:
    await credentials.save_session(make_session("bob"))
    return await seed_user(store, make_user("bob", gender=Gender.MALE, age=31))


# Database fixtures
@pytest_asyncio.fixture
async def neo4j_store() -> AsyncGenerator[Neo4jDocumentStore, None]:
    if TEST_NEO4J_URI is None:
        pytest.skip("TEST_NEO4J_URI is not set")
    settings = Settings(
        _env_file=None,
        store_backend="neo4j",
        neo4j_uri=TEST_NEO4J_URI,
        neo4j_user=TEST_NEO4J_USER,
        neo4j_password=TEST_NEO4J_PASSWORD,
        neo4j_database=TEST_NEO4J_DATABASE,
    )
    db = DatabaseManager(settings)
    store = Neo4jDocumentStore(db, poll_interval=0.1)
    await store.ensure_schema()
    yield store
    # Clean up all test data after each test
    async with db.driver.session(database=TEST_NEO4J_DATABASE) as session:
        await session.run("MATCH (d:Document) DETACH DELETE d")
    await store.close()
