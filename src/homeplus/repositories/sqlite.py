"""SQLite implementation of the document store."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from collections.abc import Callable, Iterable, Iterator, Mapping
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

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


class SQLiteDocumentStore(DocumentStore):
    """Documents stored as JSON text in a single table.

    The connection is shared by worker threads; a lock serializes access and
    every mutation runs inside a BEGIN IMMEDIATE transaction so the
    read-modify-write is atomic against other connections too.
    """

    def __init__(self, path: str | Path = ":memory:") -> None:
        self._path = str(path)
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._connection is None:
            self._connection = sqlite3.connect(
                self._path, check_same_thread=False, isolation_level=None
            )
            self._connection.row_factory = sqlite3.Row
        return self._connection

    async def _run(self, fn: Callable[[sqlite3.Connection], T]) -> T:
        def call() -> T:
            with self._lock:
                try:
                    return fn(self.get_connection())
                except sqlite3.Error as exc:
                    logger.error("sqlite_operation_failed", path=self._path, error=str(exc))
                    raise StorageFailureError(f"SQLite error: {exc}") from exc

        return await asyncio.to_thread(call)

    @contextmanager
    def _transaction(self, conn: sqlite3.Connection) -> Iterator[None]:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    async def initialize(self) -> None:
        """Create the documents table."""

        def create(conn: sqlite3.Connection) -> None:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    PRIMARY KEY (collection, id)
                );
                CREATE INDEX IF NOT EXISTS idx_documents_invite_code
                    ON documents(collection, json_extract(data, '$.inviteCode'));
                """
            )

        await self._run(create)

    async def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    def _read(
        self, conn: sqlite3.Connection, collection: str, document_id: str
    ) -> StoredDocument | None:
        row = conn.execute(
            "SELECT id, data, version FROM documents WHERE collection = ? AND id = ?",
            (collection, document_id),
        ).fetchone()
        if row is None:
            return None
        return self._row_to_document(row)

    def _row_to_document(self, row: sqlite3.Row) -> StoredDocument:
        return StoredDocument(
            id=row["id"], data=decode_document(row["data"]), version=row["version"]
        )

    async def get_document(
        self, collection: str, document_id: str
    ) -> StoredDocument | None:
        return await self._run(lambda conn: self._read(conn, collection, document_id))

    async def put(
        self, collection: str, document_id: str, document: Mapping[str, Any]
    ) -> int:
        data = encode_document(document)

        def write(conn: sqlite3.Connection) -> int:
            with self._transaction(conn):
                current = self._read(conn, collection, document_id)
                version = current.version + 1 if current else 1
                conn.execute(
                    """
                    INSERT INTO documents (collection, id, data, version)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT (collection, id)
                    DO UPDATE SET data = excluded.data, version = excluded.version
                    """,
                    (collection, document_id, data, version),
                )
            return version

        return await self._run(write)

    async def _mutate(
        self,
        collection: str,
        document_id: str,
        change: Callable[[dict[str, Any]], dict[str, Any]],
        expected_version: int | None = None,
    ) -> int:
        def write(conn: sqlite3.Connection) -> int:
            with self._transaction(conn):
                current = self._read(conn, collection, document_id)
                if current is None:
                    raise DocumentNotFoundError(collection, document_id)
                if expected_version is not None and current.version != expected_version:
                    raise VersionConflictError(
                        collection, document_id, expected_version, current.version
                    )
                version = current.version + 1
                conn.execute(
                    """
                    UPDATE documents SET data = ?, version = ?
                    WHERE collection = ? AND id = ? AND version = ?
                    """,
                    (
                        encode_document(change(current.data)),
                        version,
                        collection,
                        document_id,
                        current.version,
                    ),
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
        # String equality is pushed into SQL; matches() settles every other type.
        clauses = ["collection = ?"]
        params: list[Any] = [collection]
        for path, value in field_equals.items():
            if isinstance(value, str):
                clauses.append("json_extract(data, ?) = ?")
                params.extend(["$." + ".".join(split_path(path)), value])

        def select(conn: sqlite3.Connection) -> list[StoredDocument]:
            rows = conn.execute(
                f"SELECT id, data, version FROM documents WHERE {' AND '.join(clauses)}",
                params,
            ).fetchall()
            return [self._row_to_document(row) for row in rows]

        documents = await self._run(select)
        return [doc for doc in documents if matches(doc.data, field_equals)]

    async def list_all(self, collection: str) -> Iterable[StoredDocument]:
        def select(conn: sqlite3.Connection) -> list[StoredDocument]:
            rows = conn.execute(
                "SELECT id, data, version FROM documents WHERE collection = ? ORDER BY id",
                (collection,),
            ).fetchall()
            return [self._row_to_document(row) for row in rows]

        return await self._run(select)

    async def delete(self, collection: str, document_id: str) -> None:
        def remove(conn: sqlite3.Connection) -> None:
            conn.execute(
                "DELETE FROM documents WHERE collection = ? AND id = ?",
                (collection, document_id),
            )

        await self._run(remove)
