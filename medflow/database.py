from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Sequence
from urllib.parse import urlparse

import aiosqlite

from medflow.config import DATABASE_MAX_CONNECTIONS, DATABASE_URL
from medflow.errors import PatientNotFoundError
from medflow.services.merge import merge

try:  # Optional: only required when DATABASE_URL is a Postgres DSN
    import asyncpg  # type: ignore
except Exception:  # pragma: no cover - optional dependency
    asyncpg = None

logger = logging.getLogger(__name__)

FeedListener = Callable[[list[dict[str, Any]]], None]


class DatabaseAdapter:
    engine: str

    async def execute(self, query: str, params: Sequence | None = None) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def fetch_one(self, query: str, params: Sequence | None = None):  # pragma: no cover - interface
        raise NotImplementedError

    async def fetch_all(self, query: str, params: Sequence | None = None):  # pragma: no cover - interface
        raise NotImplementedError

    async def commit(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def close(self) -> None:  # pragma: no cover - interface
        raise NotImplementedError


@dataclass
class SQLiteAdapter(DatabaseAdapter):
    conn: aiosqlite.Connection
    engine: str = "sqlite"

    async def execute(self, query: str, params: Sequence | None = None) -> None:
        await self.conn.execute(query, params or ())

    async def fetch_one(self, query: str, params: Sequence | None = None):
        cursor = await self.conn.execute(query, params or ())
        return await cursor.fetchone()

    async def fetch_all(self, query: str, params: Sequence | None = None):
        cursor = await self.conn.execute(query, params or ())
        return await cursor.fetchall()

    async def commit(self) -> None:
        await self.conn.commit()

    async def close(self) -> None:
        await self.conn.close()


@dataclass
class PostgresAdapter(DatabaseAdapter):
    pool: "asyncpg.Pool"  # type: ignore[name-defined]
    engine: str = "postgres"

    @staticmethod
    def _translate_query(query: str) -> str:
        # Convert SQLite-style ? placeholders to asyncpg-style $1, $2, ...
        if "$1" in query:
            return query
        idx = 1
        out = []
        for ch in query:
            if ch == "?":
                out.append(f"${idx}")
                idx += 1
            else:
                out.append(ch)
        return "".join(out)

    async def execute(self, query: str, params: Sequence | None = None) -> None:
        q = self._translate_query(query)
        async with self.pool.acquire() as conn:
            await conn.execute(q, *(params or ()))

    async def fetch_one(self, query: str, params: Sequence | None = None):
        q = self._translate_query(query)
        async with self.pool.acquire() as conn:
            return await conn.fetchrow(q, *(params or ()))

    async def fetch_all(self, query: str, params: Sequence | None = None):
        q = self._translate_query(query)
        async with self.pool.acquire() as conn:
            return await conn.fetch(q, *(params or ()))

    async def commit(self) -> None:
        # asyncpg autocommits per statement unless an explicit transaction is used.
        return

    async def close(self) -> None:
        await self.pool.close()


def _sqlite_path_from_url(url: str) -> str:
    parsed = urlparse(url)
    path = parsed.path or ""
    if not path or path == "/":
        return ""
    # sqlite:////absolute/path.db -> keep absolute path
    if url.startswith("sqlite:////"):
        return path
    # sqlite:///relative.db -> strip leading slash
    if path.startswith("/"):
        return path[1:]
    return path


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS patients (
        id TEXT PRIMARY KEY,
        registration_time TEXT NOT NULL,
        document TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS collection_events (
        collection TEXT NOT NULL,
        document TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
]


# --- Persistence contract consumed by the record store and audit sink ---


class PersistenceAdapter:
    """Document store with a change feed.

    ``subscribe`` registers a callback that receives the full patient
    collection every time it changes. Unconfigured adapters never call it,
    which is how the record store knows to run local-only.
    """

    configured: bool = False

    def subscribe(self, on_change: FeedListener) -> Callable[[], None]:  # pragma: no cover - interface
        raise NotImplementedError

    async def put(self, id: str, document: dict[str, Any]) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def patch(self, id: str, partial: dict[str, Any]) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def append(self, collection: str, event: dict[str, Any]) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def close(self) -> None:
        return


class NullPersistenceAdapter(PersistenceAdapter):
    """Stand-in used when no backend is configured. Every call is a no-op."""

    configured = False

    def subscribe(self, on_change: FeedListener) -> Callable[[], None]:
        return lambda: None

    async def put(self, id: str, document: dict[str, Any]) -> None:
        return

    async def patch(self, id: str, partial: dict[str, Any]) -> None:
        return

    async def append(self, collection: str, event: dict[str, Any]) -> None:
        return


class DocumentPersistenceAdapter(PersistenceAdapter):
    """Patients stored as JSON documents over a SQL ``DatabaseAdapter``.

    Each successful write re-reads the patient collection (newest
    registration first) and delivers it to every subscriber, mirroring a
    real-time snapshot listener.
    """

    configured = True

    def __init__(self, db: DatabaseAdapter) -> None:
        self.db = db
        self._listeners: list[FeedListener] = []
        self._tasks: set[asyncio.Task] = set()

    async def init(self) -> None:
        for stmt in SCHEMA:
            await self.db.execute(stmt)
        await self.db.commit()

    def subscribe(self, on_change: FeedListener) -> Callable[[], None]:
        self._listeners.append(on_change)
        task = asyncio.get_running_loop().create_task(self._deliver([on_change]))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        def _unsubscribe() -> None:
            if on_change in self._listeners:
                self._listeners.remove(on_change)

        return _unsubscribe

    async def fetch_documents(self) -> list[dict[str, Any]]:
        rows = await self.db.fetch_all(
            "SELECT document FROM patients ORDER BY registration_time DESC, id ASC"
        )
        return [json.loads(row["document"]) for row in rows]

    async def fetch_document(self, id: str) -> dict[str, Any] | None:
        row = await self.db.fetch_one("SELECT document FROM patients WHERE id = ?", (id,))
        if not row:
            return None
        return json.loads(row["document"])

    async def fetch_events(self, collection: str) -> list[dict[str, Any]]:
        rows = await self.db.fetch_all(
            "SELECT document FROM collection_events WHERE collection = ? ORDER BY created_at ASC",
            (collection,),
        )
        return [json.loads(row["document"]) for row in rows]

    async def _write(self, id: str, document: dict[str, Any]) -> None:
        now = datetime.now(UTC).isoformat()
        await self.db.execute(
            """INSERT INTO patients (id, registration_time, document, updated_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (id) DO UPDATE SET
                registration_time = excluded.registration_time,
                document = excluded.document,
                updated_at = excluded.updated_at""",
            (id, document.get("registration_time") or now, json.dumps(document), now),
        )
        await self.db.commit()

    async def put(self, id: str, document: dict[str, Any]) -> None:
        await self._write(id, document)
        await self._deliver(list(self._listeners))

    async def patch(self, id: str, partial: dict[str, Any]) -> None:
        existing = await self.fetch_document(id)
        if existing is None:
            raise PatientNotFoundError(id)
        await self._write(id, merge(existing, partial))
        await self._deliver(list(self._listeners))

    async def append(self, collection: str, event: dict[str, Any]) -> None:
        await self.db.execute(
            "INSERT INTO collection_events (collection, document, created_at) VALUES (?, ?, ?)",
            (collection, json.dumps(event), datetime.now(UTC).isoformat()),
        )
        await self.db.commit()

    async def _deliver(self, listeners: list[FeedListener]) -> None:
        if not listeners:
            return
        documents = await self.fetch_documents()
        for listener in listeners:
            try:
                listener([dict(doc) for doc in documents])
            except Exception as exc:
                logger.error("Change feed listener failed: %s", exc)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._listeners.clear()
        await self.db.close()


async def connect_database(database_url: str) -> DatabaseAdapter:
    if database_url.startswith("sqlite"):
        sqlite_path = _sqlite_path_from_url(database_url) or ":memory:"
        conn = await aiosqlite.connect(sqlite_path)
        conn.row_factory = aiosqlite.Row
        logger.info("Connected to SQLite database at %s", sqlite_path)
        return SQLiteAdapter(conn)

    if asyncpg is None:
        raise RuntimeError(
            "DATABASE_URL is set but asyncpg is not installed. "
            "Install asyncpg or unset DATABASE_URL."
        )
    pool = await asyncpg.create_pool(
        dsn=database_url,
        min_size=1,
        max_size=DATABASE_MAX_CONNECTIONS,
    )
    logger.info("Connected to Postgres database")
    return PostgresAdapter(pool)


async def create_persistence_adapter(database_url: str | None = None) -> PersistenceAdapter:
    """Pick the backend once at startup. No URL means local-only mode."""
    url = DATABASE_URL if database_url is None else database_url
    if not url:
        logger.info("No DATABASE_URL configured; records will stay local to this process")
        return NullPersistenceAdapter()

    adapter = DocumentPersistenceAdapter(await connect_database(url))
    await adapter.init()
    return adapter
