from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta

import pytest
import structlog

from homeplus.config import Environment, Settings, StoreType
from homeplus.domain.households import Household
from homeplus.domain.users import UserProfile
from homeplus.exceptions import StorageFailureError
from homeplus.repositories.households import UserProfileRepository
from homeplus.repositories.interfaces import USERS
from homeplus.repositories.memory import InMemoryDocumentStore
from homeplus.services.consistency import ConsistencySweeper
from homeplus.services.identity import LocalIdentityProvider
from homeplus.services.membership import MembershipManager
from homeplus.services.registry import HouseholdRegistry

PASSWORD = "secret-password-1"


class FakeClock:
    """Controllable replacement for datetime.now(UTC)."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class ScriptedDocumentStore(InMemoryDocumentStore):
    """In-memory store that can simulate outages and concurrent writers.

    fail_user_writes makes householdIds set updates raise StorageFailureError.
    Each callable queued in interleaved_writes runs just before the next
    conditional (expected_version) update, the way another client's write
    would land between our read and our write.
    """

    def __init__(self) -> None:
        super().__init__()
        self.fail_user_writes = False
        self.interleaved_writes: list[Callable[[], Awaitable[object]]] = []

    def _check_outage(self, collection: str) -> None:
        if self.fail_user_writes and collection == USERS:
            raise StorageFailureError("simulated outage")

    async def add_to_set_field(self, collection, document_id, path, *values):
        self._check_outage(collection)
        return await super().add_to_set_field(collection, document_id, path, *values)

    async def remove_from_set_field(self, collection, document_id, path, *values):
        self._check_outage(collection)
        return await super().remove_from_set_field(collection, document_id, path, *values)

    async def update_fields(self, collection, document_id, patch, *, expected_version=None):
        if expected_version is not None and self.interleaved_writes:
            await self.interleaved_writes.pop(0)()
        return await super().update_fields(
            collection, document_id, patch, expected_version=expected_version
        )


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()


@pytest.fixture
def settings() -> Settings:
    return Settings(environment=Environment.TESTING, store_type=StoreType.MEMORY)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def store() -> "ScriptedDocumentStore":
    return ScriptedDocumentStore()


@pytest.fixture
def identity(store: InMemoryDocumentStore, clock: FakeClock) -> LocalIdentityProvider:
    return LocalIdentityProvider(
        UserProfileRepository(store), clock=clock, hash_iterations=1_000
    )


@pytest.fixture
def registry(store, identity, settings, clock) -> HouseholdRegistry:
    return HouseholdRegistry(store, identity, settings=settings, clock=clock)


@pytest.fixture
def membership(store, identity, settings, clock) -> MembershipManager:
    return MembershipManager(store, identity, settings=settings, clock=clock)


@pytest.fixture
def sweeper(store) -> ConsistencySweeper:
    return ConsistencySweeper(store)


@pytest.fixture
def password() -> str:
    return PASSWORD


@pytest.fixture
def sign_in(identity: LocalIdentityProvider) -> Callable[[UserProfile], Awaitable[str]]:
    async def _sign_in(profile: UserProfile) -> str:
        return await identity.login(profile.email, PASSWORD)

    return _sign_in


@pytest.fixture
def register_user(
    identity: LocalIdentityProvider,
) -> Callable[[str], Awaitable[UserProfile]]:
    async def _register(name: str) -> UserProfile:
        return await identity.register(f"{name.lower()}@example.com", PASSWORD, name)

    return _register


@pytest.fixture
async def alice(register_user) -> UserProfile:
    return await register_user("Alice")


@pytest.fixture
async def bob(register_user) -> UserProfile:
    return await register_user("Bob")


@pytest.fixture
async def carol(register_user) -> UserProfile:
    return await register_user("Carol")


@pytest.fixture
async def household(registry, alice, sign_in) -> Household:
    """'Appart Centre-Ville', founded by Alice."""
    await sign_in(alice)
    return await registry.create_household(
        "Appart Centre-Ville", "colocation", alice.uid, "Alice"
    )
