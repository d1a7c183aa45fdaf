"""PostgreSQL implementation of the document store."""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Callable, Iterable, Mapping
from typing import Any, TypeVar

import psycopg2
import psycopg2.extras

from homeplus.exceptions import (
    DocumentNotFoundError,
    StorageFailureError,
    VersionConflictError,
)
from homeplus.logging_config import get_logger
from homeplus.repositories.documents import (
    add_to_set,
    apply_patch,
    decode_document,
    encode_document,
    matches,
    remove_from_set,
    split_path,
    without_path,
)
from homeplus.repositories.interfaces import DocumentStore, StoredDocument

logger = get_logger(__name__)

T = TypeVar("T")


class PostgresDocumentStore(DocumentStore):
    """Documents stored as JSONB rows; mutations lock the row (SELECT ... FOR UPDATE)."""

    def __init__(self, connection_string: str) -> None:
        self._connection_string = connection_string
        self._connection: psycopg2.extensions.connection | None = None
        self._lock = threading.Lock()

    def get_connection(self) -> psycopg2.extensions.connection:
        """Get or create the database connection."""
        if self._connection is None or self._connection.closed:
            self._connection = psycopg2.connect(
                self._connection_string,
                cursor_factory=psycopg2.extras.RealDictCursor,
            )
        return self._connection

    async def _run(self, fn: Callable[[Any], T]) -> T:
        def call() -> T:
            with self._lock:
                try:
                    conn = self.get_connection()
                    # Commits on success, rolls back on any exception.
                    with conn:
                        with conn.cursor() as cur:
                            return fn(cur)
                except psycopg2.Error as exc:
                    logger.error("postgres_operation_failed", error=str(exc))
                    raise StorageFailureError(f"PostgreSQL error: {exc}") from exc

        return await asyncio.to_thread(call)

    async def initialize(self) -> None:
        """Create the documents table."""

        def create(cur: Any) -> None:
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data JSONB NOT NULL,
                    version INTEGER NOT NULL,
                    PRIMARY KEY (collection, id)
                );
                CREATE INDEX IF NOT EXISTS idx_documents_invite_code
                    ON documents (collection, (data ->> 'inviteCode'));
                """
            )

        await self._run(create)

    async def close(self) -> None:
        with self._lock:
            if self._connection is not None and not self._connection.closed:
                self._connection.close()
            self._connection = None

    def _read(
        self, cur: Any, collection: str, document_id: str, for_update: bool = False
    ) -> StoredDocument | None:
        sql = (
            "SELECT id, data::text AS data, version FROM documents "
            "WHERE collection = %s AND id = %s"
        )
        if for_update:
            sql += " FOR UPDATE"
        cur.execute(sql, (collection, document_id))
        row = cur.fetchone()
        if row is None:
            return None
        return self._row_to_document(row)

    def _row_to_document(self, row: Mapping[str, Any]) -> StoredDocument:
        return StoredDocument(
            id=row["id"], data=decode_document(row["data"]), version=row["version"]
        )

    async def get_document(
        self, collection: str, document_id: str
    ) -> StoredDocument | None:
        return await self._run(lambda cur: self._read(cur, collection, document_id))

    async def put(
        self, collection: str, document_id: str, document: Mapping[str, Any]
    ) -> int:
        data = encode_document(document)

        def write(cur: Any) -> int:
            cur.execute(
                """
                INSERT INTO documents (collection, id, data, version)
                VALUES (%s, %s, %s::jsonb, 1)
                ON CONFLICT (collection, id)
                DO UPDATE SET data = EXCLUDED.data, version = documents.version + 1
                RETURNING version
                """,
                (collection, document_id, data),
            )
            return cur.fetchone()["version"]

        return await self._run(write)

    async def _mutate(
        self,
        collection: str,
        document_id: str,
        change: Callable[[dict[str, Any]], dict[str, Any]],
        expected_version: int | None = None,
    ) -> int:
        def write(cur: Any) -> int:
            current = self._read(cur, collection, document_id, for_update=True)
            if current is None:
                raise DocumentNotFoundError(collection, document_id)
            if expected_version is not None and current.version != expected_version:
                raise VersionConflictError(
                    collection, document_id, expected_version, current.version
                )
            version = current.version + 1
            cur.execute(
                """
                UPDATE documents SET data = %s::jsonb, version = %s
                WHERE collection = %s AND id = %s
                """,
                (encode_document(change(current.data)), version, collection, document_id),
            )
            return version

        return await self._run(write)

    async def update_fields(
        self,
        collection: str,
        document_id: str,
        patch: Mapping[str, Any],
        *,
        expected_version: int | None = None,
    ) -> int:
        return await self._mutate(
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
        return await self._mutate(
            collection, document_id, lambda data: without_path(data, path), expected_version
        )

    async def add_to_set_field(
        self, collection: str, document_id: str, path: str, *values: Any
    ) -> int:
        return await self._mutate(
            collection, document_id, lambda data: add_to_set(data, path, values)
        )

    async def remove_from_set_field(
        self, collection: str, document_id: str, path: str, *values: Any
    ) -> int:
        return await self._mutate(
            collection, document_id, lambda data: remove_from_set(data, path, values)
        )

    async def query(
        self, collection: str, field_equals: Mapping[str, Any]
    ) -> list[StoredDocument]:
        clauses = ["collection = %s"]
        params: list[Any] = [collection]
        for path, value in field_equals.items():
            if isinstance(value, str):
                clauses.append("data #>> %s::text[] = %s")
                params.extend([split_path(path), value])

        def select(cur: Any) -> list[StoredDocument]:
            cur.execute(
                "SELECT id, data::text AS data, version FROM documents "
                f"WHERE {' AND '.join(clauses)}",
                params,
            )
            return [self._row_to_document(row) for row in cur.fetchall()]

        documents = await self._run(select)
        return [doc for doc in documents if matches(doc.data, field_equals)]

    async def list_all(self, collection: str) -> Iterable[StoredDocument]:
        def select(cur: Any) -> list[StoredDocument]:
            cur.execute(
                "SELECT id, data::text AS data, version FROM documents "
                "WHERE collection = %s ORDER BY id",
                (collection,),
            )
            return [self._row_to_document(row) for row in cur.fetchall()]

        return await self._run(select)

    async def delete(self, collection: str, document_id: str) -> None:
        def remove(cur: Any) -> None:
            cur.execute(
                "DELETE FROM documents WHERE collection = %s AND id = %s",
                (collection, document_id),
            )

        await self._run(remove)
