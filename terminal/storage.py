"""Document storage layer for the faction terminal.

Documents are JSON blobs grouped by collection path in one SQLite table, each
with a version number. ``run_transaction`` gives optimistic read-then-write
transactions: reads remember versions, writes are buffered, and commit checks
under a write lock that nothing read has changed since. A conflict re-runs the
transaction body.

A second table is the fast-append buffer used to stage battle logs, and a
third keeps small key/value flags.
"""

import datetime
import json
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import aiosqlite

from .config import DATABASE_PATH, TRANSACTION_ATTEMPTS
from .errors import NotFoundError, TransactionConflict, TransactionFailedError
from .timeutils import now, isoformat

logger = logging.getLogger(__name__)

USERS = "users"
ITEMS = "items"
SKILLS = "skills"
TITLES = "titles"
TASKS = "tasks"
TASK_TYPES = "task_types"
RECIPES = "craft_recipes"
ENCOUNTERS = "combat_encounters"
SEASONS = "war_seasons"
SEASON_ARCHIVE = "war_seasons_archive"
CURRENT_SEASON = "current"


def combat_logs_path(battle_id: str) -> str:
    return f"{ENCOUNTERS}/{battle_id}/combat_logs"


def activity_logs_path(user_id: str) -> str:
    return f"{USERS}/{user_id}/activity_logs"


def battle_buffer_key(battle_id: str) -> str:
    return f"battle_buffer/{battle_id}"


class _ServerTimestamp:
    """Placeholder resolved to the commit time when a write is applied."""

    def __repr__(self):
        return "SERVER_TIMESTAMP"

    # dataclasses.asdict deep-copies field values; the sentinel must survive it
    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self


SERVER_TIMESTAMP = _ServerTimestamp()


class Increment:
    """Add ``amount`` to a numeric field (missing counts as 0)."""

    def __init__(self, amount):
        self.amount = amount

    def apply(self, current):
        return (current or 0) + self.amount


class ArrayUnion:
    """Append values not already present in a list field."""

    def __init__(self, *values):
        self.values = values

    def apply(self, current):
        result = list(current or [])
        for value in self.values:
            if value not in result:
                result.append(value)
        return result


class ArrayRemove:
    """Remove every occurrence of the values from a list field."""

    def __init__(self, *values):
        self.values = values

    def apply(self, current):
        return [value for value in (current or []) if value not in self.values]


def new_id() -> str:
    return uuid.uuid4().hex


def _resolve(value, timestamp: str):
    if value is SERVER_TIMESTAMP:
        return timestamp
    if isinstance(value, dict):
        return {key: _resolve(inner, timestamp) for key, inner in value.items()}
    if isinstance(value, list):
        return [_resolve(inner, timestamp) for inner in value]
    return value


def apply_changes(document: Dict[str, Any], changes: Dict[str, Any], timestamp: str) -> Dict[str, Any]:
    """Apply a Firestore-style update. Keys may be dotted paths into nested maps."""
    updated = json.loads(json.dumps(document))
    for path, value in changes.items():
        parts = path.split(".")
        target = updated
        for part in parts[:-1]:
            if not isinstance(target.get(part), dict):
                target[part] = {}
            target = target[part]
        leaf = parts[-1]
        if isinstance(value, (Increment, ArrayUnion, ArrayRemove)):
            target[leaf] = value.apply(target.get(leaf))
        else:
            target[leaf] = _resolve(value, timestamp)
    return updated


class Transaction:
    """One attempt of a transaction body. Created by DocumentStore.run_transaction."""

    def __init__(self, store: "DocumentStore"):
        self.store = store
        self._reads: Dict[Tuple[str, str], int] = {}
        self._writes: List[Tuple[str, str, str, Optional[Dict[str, Any]]]] = []

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        data, version = await self.store._read(collection, doc_id)
        self._reads.setdefault((collection, doc_id), version)
        return data

    def set(self, collection: str, doc_id: str, data: Dict[str, Any]):
        self._writes.append(("set", collection, doc_id, data))

    def update(self, collection: str, doc_id: str, changes: Dict[str, Any]):
        self._writes.append(("update", collection, doc_id, changes))

    def delete(self, collection: str, doc_id: str):
        self._writes.append(("delete", collection, doc_id, None))

    def add(self, collection: str, data: Dict[str, Any]) -> str:
        """Queue a new document with a generated id, stored under ``id`` too."""
        doc_id = new_id()
        self.set(collection, doc_id, {**data, "id": doc_id})
        return doc_id


class DocumentStore:
    """Handles all database operations for the game."""

    def __init__(self, db_path: str = DATABASE_PATH, max_attempts: int = TRANSACTION_ATTEMPTS):
        self.db_path = db_path
        self.max_attempts = max_attempts
        self._last_timestamp = None

    async def initialize(self):
        """Initialize the database with required tables."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    data TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 1,
                    PRIMARY KEY(collection, doc_id)
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS buffer (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    key TEXT NOT NULL,
                    data TEXT NOT NULL
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)

            await db.commit()

    def server_timestamp(self) -> str:
        """A timestamp that never goes backwards within this process."""
        current = now()
        if self._last_timestamp is not None and current <= self._last_timestamp:
            current = self._last_timestamp + datetime.timedelta(microseconds=1)
        self._last_timestamp = current
        return isoformat(current)

    async def _read(self, collection: str, doc_id: str) -> Tuple[Optional[Dict[str, Any]], int]:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT data, version FROM documents WHERE collection = ? AND doc_id = ?",
                (collection, doc_id)
            ) as cursor:
                row = await cursor.fetchone()
                if row:
                    return json.loads(row[0]), row[1]
                return None, 0

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """Get a document, or None if it does not exist."""
        data, _ = await self._read(collection, doc_id)
        return data

    async def query(self, collection: str,
                    predicate: Optional[Callable[[Dict[str, Any]], bool]] = None) -> List[Dict[str, Any]]:
        """Get every document in a collection, optionally filtered."""
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute(
                "SELECT data FROM documents WHERE collection = ? ORDER BY rowid", (collection,)
            ) as cursor:
                rows = await cursor.fetchall()
        documents = [json.loads(row[0]) for row in rows]
        if predicate is None:
            return documents
        return [document for document in documents if predicate(document)]

    async def set(self, collection: str, doc_id: str, data: Dict[str, Any]):
        async def body(txn):
            txn.set(collection, doc_id, data)
        await self.run_transaction(body)

    async def update(self, collection: str, doc_id: str, changes: Dict[str, Any]):
        async def body(txn):
            txn.update(collection, doc_id, changes)
        await self.run_transaction(body)

    async def delete(self, collection: str, doc_id: str):
        async def body(txn):
            txn.delete(collection, doc_id)
        await self.run_transaction(body)

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        async def body(txn):
            return txn.add(collection, data)
        return await self.run_transaction(body)

    async def run_transaction(self, body: Callable[[Transaction], Awaitable[Any]]) -> Any:
        """Run ``body`` in an optimistic transaction, retrying on conflict.

        Exceptions raised by the body abort the attempt without writing
        anything and propagate unchanged.
        """
        for attempt in range(1, self.max_attempts + 1):
            txn = Transaction(self)
            result = await body(txn)
            try:
                await self._commit(txn)
                return result
            except TransactionConflict as e:
                logger.info(f"Transaction conflict on attempt {attempt}/{self.max_attempts}: {e}")
        logger.error(f"Transaction gave up after {self.max_attempts} attempts")
        raise TransactionFailedError()

    async def _commit(self, txn: Transaction):
        if not txn._writes:
            return
        timestamp = self.server_timestamp()
        async with aiosqlite.connect(self.db_path, isolation_level=None) as db:
            await db.execute("BEGIN IMMEDIATE")
            try:
                for (collection, doc_id), version in txn._reads.items():
                    async with db.execute(
                        "SELECT version FROM documents WHERE collection = ? AND doc_id = ?",
                        (collection, doc_id)
                    ) as cursor:
                        row = await cursor.fetchone()
                    current = row[0] if row else 0
                    if current != version:
                        raise TransactionConflict(f"{collection}/{doc_id} changed")

                for op, collection, doc_id, payload in txn._writes:
                    async with db.execute(
                        "SELECT data, version FROM documents WHERE collection = ? AND doc_id = ?",
                        (collection, doc_id)
                    ) as cursor:
                        row = await cursor.fetchone()

                    if op == "delete":
                        await db.execute(
                            "DELETE FROM documents WHERE collection = ? AND doc_id = ?", (collection, doc_id)
                        )
                        continue

                    if op == "set":
                        document = _resolve(payload, timestamp)
                    else:
                        if not row:
                            raise NotFoundError(f"Document {collection}/{doc_id} does not exist.")
                        document = apply_changes(json.loads(row[0]), payload, timestamp)

                    version = (row[1] if row else 0) + 1
                    await db.execute("""
                        INSERT OR REPLACE INTO documents (collection, doc_id, data, version)
                        VALUES (?, ?, ?, ?)
                    """, (collection, doc_id, json.dumps(document), version))

                await db.execute("COMMIT")
            except Exception:
                await db.execute("ROLLBACK")
                raise

    async def push_buffer(self, key: str, entry: Dict[str, Any]):
        """Append an entry under a buffer key."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("INSERT INTO buffer (key, data) VALUES (?, ?)", (key, json.dumps(entry)))
            await db.commit()

    async def read_buffer(self, key: str) -> List[Dict[str, Any]]:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT data FROM buffer WHERE key = ? ORDER BY seq", (key,)) as cursor:
                rows = await cursor.fetchall()
                return [json.loads(row[0]) for row in rows]

    async def drain_buffer(self, key: str, handler: Callable[[List[Dict[str, Any]]], Awaitable[Any]]) -> Any:
        """Hand every entry under ``key`` to ``handler``, then delete them.

        Entries are only deleted once the handler returns, and only the ones it
        was given, so a failed handler leaves the buffer intact and new pushes
        made meanwhile survive.
        """
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT seq, data FROM buffer WHERE key = ? ORDER BY seq", (key,)) as cursor:
                rows = await cursor.fetchall()
        if not rows:
            return await handler([])

        result = await handler([json.loads(row[1]) for row in rows])
        last_seq = rows[-1][0]
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("DELETE FROM buffer WHERE key = ? AND seq <= ?", (key, last_seq))
            await db.commit()
        return result

    async def buffer_keys(self) -> List[str]:
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT DISTINCT key FROM buffer") as cursor:
                rows = await cursor.fetchall()
                return [row[0] for row in rows]

    async def get_state(self, key: str) -> Optional[str]:
        """Get a state value."""
        async with aiosqlite.connect(self.db_path) as db:
            async with db.execute("SELECT value FROM state WHERE key = ?", (key,)) as cursor:
                row = await cursor.fetchone()
                return row[0] if row else None

    async def set_state(self, key: str, value: str):
        """Set a state value."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("INSERT OR REPLACE INTO state (key, value) VALUES (?, ?)", (key, value))
            await db.commit()
