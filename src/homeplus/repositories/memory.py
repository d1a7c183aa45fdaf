"""In-process document store for tests and single-process development."""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from homeplus.exceptions import DocumentNotFoundError, VersionConflictError
from homeplus.repositories.documents import (
    add_to_set,
    apply_patch,
    matches,
    remove_from_set,
    without_path,
)
from homeplus.repositories.interfaces import DocumentStore, StoredDocument


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed store. Datetimes are kept as native objects.

    Documents are deep-copied on the way in and out so callers never share
    state with the store.
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, StoredDocument]] = {}

    async def initialize(self) -> None:
        pass

    async def close(self) -> None:
        pass

    def _collection(self, collection: str) -> dict[str, StoredDocument]:
        return self._collections.setdefault(collection, {})

    def _copy_out(self, stored: StoredDocument) -> StoredDocument:
        return StoredDocument(stored.id, copy.deepcopy(stored.data), stored.version)

    async def get_document(
        self, collection: str, document_id: str
    ) -> StoredDocument | None:
        stored = self._collection(collection).get(document_id)
        return self._copy_out(stored) if stored else None

    async def put(
        self, collection: str, document_id: str, document: Mapping[str, Any]
    ) -> int:
        docs = self._collection(collection)
        current = docs.get(document_id)
        version = current.version + 1 if current else 1
        docs[document_id] = StoredDocument(
            document_id, copy.deepcopy(dict(document)), version
        )
        return version

    def _mutate(
        self,
        collection: str,
        document_id: str,
        change: Callable[[dict[str, Any]], dict[str, Any]],
        expected_version: int | None = None,
    ) -> int:
        docs = self._collection(collection)
        current = docs.get(document_id)
        if current is None:
            raise DocumentNotFoundError(collection, document_id)
        if expected_version is not None and current.version != expected_version:
            raise VersionConflictError(
                collection, document_id, expected_version, current.version
            )
        version = current.version + 1
        docs[document_id] = StoredDocument(document_id, change(current.data), version)
        return version

    async def update_fields(
        self,
        collection: str,
        document_id: str,
        patch: Mapping[str, Any],
        *,
        expected_version: int | None = None,
    ) -> int:
        return self._mutate(
            collection, document_id, lambda data: apply_patch(data, patch), expected_version
        )

    async def delete_field(
        self,
        collection: str,
        document_id: str,
        path: str,
        *,
        expected_version: int | None = None,
    ) -> int:
        return self._mutate(
            collection, document_id, lambda data: without_path(data, path), expected_version
        )

    async def add_to_set_field(
        self, collection: str, document_id: str, path: str, *values: Any
    ) -> int:
        return self._mutate(
            collection, document_id, lambda data: add_to_set(data, path, values)
        )

    async def remove_from_set_field(
        self, collection: str, document_id: str, path: str, *values: Any
    ) -> int:
        return self._mutate(
            collection, document_id, lambda data: remove_from_set(data, path, values)
        )

    async def query(
        self, collection: str, field_equals: Mapping[str, Any]
    ) -> list[StoredDocument]:
        return [
            self._copy_out(stored)
            for stored in self._collection(collection).values()
            if matches(stored.data, field_equals)
        ]

    async def list_all(self, collection: str) -> Iterable[StoredDocument]:
        return [self._copy_out(stored) for stored in self._collection(collection).values()]

    async def delete(self, collection: str, document_id: str) -> None:
        self._collection(collection).pop(document_id, None)
