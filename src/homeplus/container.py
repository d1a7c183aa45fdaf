"""Dependency container for HomePlus.

Builds the document store and the services that share it. There is no
module-level instance: the application creates one Container at startup and
passes it (or the services it exposes) to its callers.

Usage:
    from homeplus.container import Container

    async with Container() as container:
        household = await container.registry.create_household(
            "Appart Centre-Ville", "colocation", uid, "Alice"
        )
"""

from collections.abc import Callable
from datetime import UTC, datetime
from functools import cached_property
from typing import TYPE_CHECKING

from homeplus.config import Settings, StoreType, get_settings
from homeplus.logging_config import get_logger

if TYPE_CHECKING:
    from homeplus.repositories.interfaces import DocumentStore
    from homeplus.services.consistency import ConsistencySweeper
    from homeplus.services.identity import IdentityProvider
    from homeplus.services.membership import MembershipManager
    from homeplus.services.registry import HouseholdRegistry

logger = get_logger(__name__)


def _utc_now() -> datetime:
    return datetime.now(UTC)


class Container:
    """Dependency injection container.

    Services are instantiated on first access and cached for reuse. Tests
    can pass custom settings, a prebuilt store, an identity provider or a
    clock:

        container = Container(settings=Settings(store_type=StoreType.MEMORY))
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: "DocumentStore | None" = None,
        identity: "IdentityProvider | None" = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._settings = settings or get_settings()
        self._clock = clock
        if store is not None:
            self.__dict__["store"] = store
        if identity is not None:
            self.__dict__["identity"] = identity
        logger.debug(
            "container_created",
            store_type=self._settings.store_type.value,
            environment=self._settings.environment.value,
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    @cached_property
    def store(self) -> "DocumentStore":
        """Get the document store selected by settings.store_type."""
        if self._settings.store_type == StoreType.POSTGRES:
            return self._create_postgres_store()
        if self._settings.store_type == StoreType.MEMORY:
            from homeplus.repositories.memory import InMemoryDocumentStore

            return InMemoryDocumentStore()
        return self._create_sqlite_store()

    def _create_sqlite_store(self) -> "DocumentStore":
        from homeplus.repositories.sqlite import SQLiteDocumentStore

        db_path = str(self._settings.sqlite_path)
        logger.info("initializing_sqlite_store", path=db_path)
        return SQLiteDocumentStore(db_path)

    def _create_postgres_store(self) -> "DocumentStore":
        from homeplus.repositories.postgres import PostgresDocumentStore

        url = self._settings.database_url
        if not url:
            raise ValueError("database_url must be set when store_type is postgres")

        logger.info(
            "initializing_postgres_store",
            # Don't log the full URL as it may contain credentials
            host=url.split("@")[-1].split("/")[0] if "@" in url else "localhost",
        )
        return PostgresDocumentStore(url)

    @cached_property
    def identity(self) -> "IdentityProvider":
        from homeplus.repositories.households import UserProfileRepository
        from homeplus.services.identity import LocalIdentityProvider

        return LocalIdentityProvider(UserProfileRepository(self.store), clock=self._clock)

    @cached_property
    def registry(self) -> "HouseholdRegistry":
        from homeplus.services.registry import HouseholdRegistry

        return HouseholdRegistry(
            self.store, self.identity, settings=self._settings, clock=self._clock
        )

    @cached_property
    def membership(self) -> "MembershipManager":
        from homeplus.services.membership import MembershipManager

        return MembershipManager(
            self.store, self.identity, settings=self._settings, clock=self._clock
        )

    @cached_property
    def sweeper(self) -> "ConsistencySweeper":
        from homeplus.services.consistency import ConsistencySweeper

        return ConsistencySweeper(self.store)

    async def start(self) -> None:
        """Create the store's tables if needed."""
        await self.store.initialize()

    async def close(self) -> None:
        """Release the store connection. Call during application shutdown."""
        if "store" in self.__dict__:
            logger.info("closing_document_store")
            await self.store.close()

    async def __aenter__(self) -> "Container":
        await self.start()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
