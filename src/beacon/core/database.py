"""
Database Infrastructure for Beacon

Provides an SQLite-backed document store with connection pooling,
migrations and transaction management. Documents are stored as JSON,
one row per document, keyed by collection and id.
"""

import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .document_store import (
    Document, NotFoundError, ObservableDocumentStore, PersistenceError, Query,
    resolve_server_values
)


@dataclass
class Migration:
    """Database migration definition"""
    version: int
    name: str
    sql: str


class DatabaseError(PersistenceError):
    """Database-related errors"""
    pass


TIMESTAMP_TAG = "$timestamp"


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return {TIMESTAMP_TAG: value.isoformat()}
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _decode(obj: Dict[str, Any]) -> Any:
    if len(obj) == 1 and TIMESTAMP_TAG in obj:
        return datetime.fromisoformat(obj[TIMESTAMP_TAG])
    return obj


def dumps_document(data: Dict[str, Any]) -> str:
    """Serialize document data, tagging timestamps so they round-trip"""
    return json.dumps(data, default=_encode, sort_keys=True)


def loads_document(text: str) -> Dict[str, Any]:
    return json.loads(text, object_hook=_decode)


class ConnectionPool:
    """Simple SQLite connection pool"""

    def __init__(self, database_path: str, max_connections: int = 10):
        self.database_path = database_path
        self.max_connections = max_connections
        self.connections: List[sqlite3.Connection] = []
        self.in_use = set()
        self.lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def get_connection(self) -> sqlite3.Connection:
        """Get a connection from the pool"""
        with self.lock:
            for conn in self.connections:
                if conn not in self.in_use:
                    self.in_use.add(conn)
                    return conn

            if len(self.connections) < self.max_connections:
                try:
                    conn = sqlite3.connect(
                        self.database_path,
                        check_same_thread=False,
                        timeout=30.0,
                        isolation_level=None
                    )
                except sqlite3.Error as e:
                    raise DatabaseError(f"Cannot open database {self.database_path}: {e}")
                conn.row_factory = sqlite3.Row
                if self.database_path != ":memory:":
                    conn.execute("PRAGMA journal_mode = WAL")
                self.connections.append(conn)
                self.in_use.add(conn)
                return conn

            raise DatabaseError("Connection pool exhausted")

    def return_connection(self, conn: sqlite3.Connection):
        """Return a connection to the pool"""
        with self.lock:
            self.in_use.discard(conn)

    def close_all(self):
        """Close all connections in the pool"""
        with self.lock:
            for conn in self.connections:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    self.logger.warning(f"Error closing connection: {e}")
            self.connections.clear()
            self.in_use.clear()


class SQLiteDocumentStore(ObservableDocumentStore):
    """
    Document store persisted in a local SQLite database.

    Observation covers writes made through this store instance.

    The async methods call sqlite3 directly on the event loop thread. A
    write blocked on another process's lock stalls the loop for up to the
    30 second busy timeout, so the database file should not be shared
    with other busy writers. Use the in-memory store where the loop must
    never block.
    """

    def __init__(self, database_path: str, max_connections: int = 10):
        super().__init__()
        self.logger = logging.getLogger(__name__)
        self.database_path = database_path
        if database_path == ":memory:":
            # Every connection to :memory: is a separate database
            max_connections = 1
        else:
            Path(database_path).parent.mkdir(parents=True, exist_ok=True)
        self.pool = ConnectionPool(database_path, max_connections)
        self.migrations = self._get_migrations()

        self._initialize_database()

    @contextmanager
    def get_connection(self):
        """Context manager for database connections"""
        conn = self.pool.get_connection()
        try:
            yield conn
        except sqlite3.Error as e:
            raise DatabaseError(str(e)) from e
        finally:
            self.pool.return_connection(conn)

    @contextmanager
    def transaction(self):
        """Context manager for database transactions"""
        with self.get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _initialize_database(self):
        """Initialize database with schema and migrations"""
        self.logger.info(f"Initializing document store at {self.database_path}")

        with self.get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS migrations (
                    version INTEGER PRIMARY KEY,
                    name TEXT NOT NULL,
                    applied_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """)

        self._run_migrations()

    def _get_migrations(self) -> List[Migration]:
        """Get all database migrations"""
        return [
            Migration(
                version=1,
                name="initial_schema",
                sql="""
                CREATE TABLE documents (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    data TEXT NOT NULL, -- JSON object
                    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (collection, id)
                );

                CREATE INDEX idx_documents_collection ON documents (collection);
                """
            ),
        ]

    def _run_migrations(self):
        """Run pending database migrations"""
        with self.get_connection() as conn:
            result = conn.execute("SELECT MAX(version) FROM migrations").fetchone()
            current_version = result[0] if result[0] is not None else 0

            for migration in self.migrations:
                if migration.version <= current_version:
                    continue

                self.logger.info(f"Running migration {migration.version}: {migration.name}")
                try:
                    conn.executescript(f"BEGIN;\n{migration.sql}\nCOMMIT;")
                    conn.execute(
                        "INSERT INTO migrations (version, name) VALUES (?, ?)",
                        (migration.version, migration.name)
                    )
                except sqlite3.Error as e:
                    if conn.in_transaction:
                        conn.execute("ROLLBACK")
                    self.logger.error(f"Migration {migration.version} failed: {e}")
                    raise DatabaseError(f"Migration failed: {e}")

                self.logger.info(f"Migration {migration.version} completed successfully")

    def _read(self, collection: str, doc_id: str) -> Optional[Document]:
        with self.get_connection() as conn:
            row = conn.execute(
                "SELECT id, data FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id)
            ).fetchone()

        if row is None:
            return None
        return Document(row["id"], loads_document(row["data"]))

    def _run_query(self, collection: str, query: Query) -> List[Document]:
        sql = "SELECT id, data FROM documents WHERE collection = ?"
        params: List[Any] = [collection]

        # Push scalar equality filters down to SQLite; Query.apply re-checks
        for f in query.filters:
            if f.op == '==' and isinstance(f.value, (str, int, float)) and not isinstance(f.value, bool):
                sql += " AND json_extract(data, ?) = ?"
                params.extend([f"$.{f.field}", f.value])

        with self.get_connection() as conn:
            rows = conn.execute(sql, params).fetchall()

        docs = [Document(row["id"], loads_document(row["data"])) for row in rows]
        return query.apply(docs)

    def _write(self, conn: sqlite3.Connection, collection: str, doc_id: str,
               data: Dict[str, Any]) -> None:
        conn.execute(
            """
            INSERT INTO documents (collection, id, data, updated_at)
            VALUES (?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(collection, id) DO UPDATE SET
                data = excluded.data,
                updated_at = excluded.updated_at
            """,
            (collection, doc_id, dumps_document(data))
        )

    def _load_for_update(self, conn: sqlite3.Connection, collection: str,
                         doc_id: str) -> Dict[str, Any]:
        row = conn.execute(
            "SELECT data FROM documents WHERE collection = ? AND id = ?",
            (collection, doc_id)
        ).fetchone()
        if row is None:
            raise NotFoundError(f"{collection}/{doc_id} does not exist")
        return loads_document(row["data"])

    async def create(self, collection, fields):
        doc_id = uuid.uuid4().hex
        with self.transaction() as conn:
            self._write(conn, collection, doc_id, resolve_server_values(fields, self.clock.now()))
        self._notify(collection, doc_id)
        return doc_id

    async def get(self, collection, doc_id):
        return self._read(collection, doc_id)

    async def query(self, collection, query):
        return self._run_query(collection, query)

    async def list(self, collection):
        return self._run_query(collection, Query())

    async def update(self, collection, doc_id, fields):
        with self.transaction() as conn:
            data = self._load_for_update(conn, collection, doc_id)
            data.update(resolve_server_values(fields, self.clock.now()))
            self._write(conn, collection, doc_id, data)
        self._notify(collection, doc_id)

    async def update_if(self, collection, doc_id, fields, expected):
        with self.transaction() as conn:
            data = self._load_for_update(conn, collection, doc_id)
            if any(data.get(key) != value for key, value in expected.items()):
                return False
            data.update(resolve_server_values(fields, self.clock.now()))
            self._write(conn, collection, doc_id, data)
        self._notify(collection, doc_id)
        return True

    async def upsert(self, collection, key, fields):
        with self.transaction() as conn:
            self._write(conn, collection, key, resolve_server_values(fields, self.clock.now()))
        self._notify(collection, key)

    async def delete(self, collection, doc_id):
        with self.transaction() as conn:
            deleted = conn.execute(
                "DELETE FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id)
            ).rowcount
        if deleted:
            self._notify(collection, doc_id)

    async def close(self) -> None:
        """Close all database connections"""
        self.pool.close_all()
