from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

HOUSEHOLDS = "households"
USERS = "users"


@dataclass(frozen=True)
class StoredDocument:
    """A document as read from the store, with its write version."""

    id: str
    data: dict[str, Any]
    version: int


class DocumentStore(ABC):
    """Key-addressed, schema-less store of collections of documents.

    Every write bumps the document's version. Mutations of a missing document
    raise DocumentNotFoundError; a write with a stale expected_version raises
    VersionConflictError; driver failures surface as StorageFailureError.
    Field paths are dotted ("members.uid").
    """

    @abstractmethod
    async def initialize(self) -> None:
        pass

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    async def get_document(self, collection: str, document_id: str) -> StoredDocument | None:
        pass

    async def get(self, collection: str, document_id: str) -> dict[str, Any] | None:
        stored = await self.get_document(collection, document_id)
        return stored.data if stored else None

    @abstractmethod
    async def put(
        self, collection: str, document_id: str, document: Mapping[str, Any]
    ) -> int:
        """Create or replace a document; returns the new version."""

    @abstractmethod
    async def update_fields(
        self,
        collection: str,
        document_id: str,
        patch: Mapping[str, Any],
        *,
        expected_version: int | None = None,
    ) -> int:
        """Assign each dotted path in patch; returns the new version."""

    @abstractmethod
    async def delete_field(
        self,
        collection: str,
        document_id: str,
        path: str,
        *,
        expected_version: int | None = None,
    ) -> int:
        pass

    @abstractmethod
    async def add_to_set_field(
        self, collection: str, document_id: str, path: str, *values: Any
    ) -> int:
        pass

    @abstractmethod
    async def remove_from_set_field(
        self, collection: str, document_id: str, path: str, *values: Any
    ) -> int:
        pass

    @abstractmethod
    async def query(
        self, collection: str, field_equals: Mapping[str, Any]
    ) -> list[StoredDocument]:
        pass

    @abstractmethod
    async def list_all(self, collection: str) -> Iterable[StoredDocument]:
        pass

    @abstractmethod
    async def delete(self, collection: str, document_id: str) -> None:
        pass
