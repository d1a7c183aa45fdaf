from homeplus.repositories.households import HouseholdRepository, UserProfileRepository
from homeplus.repositories.interfaces import (
    HOUSEHOLDS,
    USERS,
    DocumentStore,
    StoredDocument,
)
from homeplus.repositories.memory import InMemoryDocumentStore
from homeplus.repositories.sqlite import SQLiteDocumentStore

__all__ = [
    "HOUSEHOLDS",
    "USERS",
    "DocumentStore",
    "HouseholdRepository",
    "InMemoryDocumentStore",
    "SQLiteDocumentStore",
    "StoredDocument",
    "UserProfileRepository",
]

# PostgreSQL support is optional - only available if psycopg2 is installed
try:
    from homeplus.repositories.postgres import PostgresDocumentStore

    __all__ += ["PostgresDocumentStore"]
except ImportError:
    # psycopg2 not installed, PostgreSQL store not available
    pass
