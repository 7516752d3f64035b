"""Local state management for the sync client.

This module provides:
- LocalStore: SQLite-based durable store for room replicas, the sync
  queue and a small metadata table

Architecture:
    All SQLite work runs on a single dedicated worker thread, so calls
    issued sequentially by one coroutine apply in program order and the
    event loop never blocks on disk I/O. The store holds no business
    logic: dirty tracking, conflict resolution and retry decisions live
    in the coordinator and the orchestrator.

Schema versioning:
    The schema version is kept in PRAGMA user_version. Migrations are
    additive only (new tables, new columns) so unsynced queue items
    survive every upgrade.
"""

from __future__ import annotations

import asyncio
import contextlib
import functools
import json
import logging
import sqlite3
import threading
from collections.abc import Callable, Collection, Iterator
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, TypeVar

from roomsync.client.sync.types import (
    ROOM_FIELDS,
    RoomReplica,
    StorageFailure,
    SyncChangeType,
    SyncItemStatus,
    SyncQueueItem,
    format_timestamp,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# (replicas by id, sync queue) -> (replicas to write, queue items to write)
Mutation = Callable[
    [dict[int, RoomReplica], list[SyncQueueItem]],
    tuple[list[RoomReplica], list[SyncQueueItem]],
]

MEMORY = ":memory:"

# Each entry upgrades the schema by one version. Append only.
MIGRATIONS: list[str] = [
    # 1: initial schema
    """
    CREATE TABLE IF NOT EXISTS room_replicas (
        id INTEGER PRIMARY KEY,
        room_number TEXT NOT NULL,
        status TEXT NOT NULL,
        priority TEXT NOT NULL,
        occupancy TEXT NOT NULL,
        service_status TEXT NOT NULL,
        checkout_time TEXT,
        estimated_time TEXT,
        notes TEXT,
        guest_checkout TEXT,
        next_checkin TEXT,
        guest_name TEXT,
        occupancy_status TEXT,
        bed_type TEXT,
        assigned_to TEXT,
        created_at TEXT,
        updated_at TEXT NOT NULL,
        last_synced_at TEXT,
        is_dirty INTEGER NOT NULL DEFAULT 0
    );
    CREATE INDEX IF NOT EXISTS idx_room_replicas_dirty ON room_replicas (is_dirty);

    CREATE TABLE IF NOT EXISTS sync_queue (
        id TEXT PRIMARY KEY,
        room_id INTEGER NOT NULL,
        change_type TEXT NOT NULL,
        payload TEXT NOT NULL,
        status TEXT NOT NULL,
        retry_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        last_attempt_at TEXT,
        error TEXT
    );
    CREATE INDEX IF NOT EXISTS idx_sync_queue_status ON sync_queue (status, created_at);
    CREATE INDEX IF NOT EXISTS idx_sync_queue_room ON sync_queue (room_id);

    CREATE TABLE IF NOT EXISTS metadata (
        key TEXT PRIMARY KEY,
        value TEXT
    );
    """,
    # 2: version tracking on replicas
    """
    ALTER TABLE room_replicas ADD COLUMN version INTEGER NOT NULL DEFAULT 0;
    """,
]

SCHEMA_VERSION = len(MIGRATIONS)

_REPLICA_COLUMNS: tuple[str, ...] = (
    "id",
    "room_number",
    *ROOM_FIELDS.keys(),
    "created_at",
    "updated_at",
    "last_synced_at",
    "is_dirty",
    "version",
)

_QUEUE_COLUMNS: tuple[str, ...] = (
    "id",
    "room_id",
    "change_type",
    "payload",
    "status",
    "retry_count",
    "created_at",
    "last_attempt_at",
    "error",
)


def _upsert_sql(table: str, columns: tuple[str, ...]) -> str:
    """Build an upsert that keeps the rowid (and so insertion order) stable."""
    placeholders = ", ".join("?" for _ in columns)
    updates = ", ".join(f"{c} = excluded.{c}" for c in columns if c != "id")
    return (
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) "
        f"ON CONFLICT(id) DO UPDATE SET {updates}"
    )


_UPSERT_REPLICA = _upsert_sql("room_replicas", _REPLICA_COLUMNS)
_UPSERT_QUEUE_ITEM = _upsert_sql("sync_queue", _QUEUE_COLUMNS)


def replica_to_row(replica: RoomReplica) -> tuple[Any, ...]:
    """Flatten a replica into a row matching _REPLICA_COLUMNS."""
    values: list[Any] = [replica.id, replica.room_number]
    for attr in ROOM_FIELDS:
        value = getattr(replica, attr)
        values.append(value.value if isinstance(value, Enum) else value)
    values.extend(
        [
            format_timestamp(replica.created_at),
            format_timestamp(replica.updated_at),
            format_timestamp(replica.last_synced_at),
            int(replica.is_dirty),
            replica.version,
        ]
    )
    return tuple(values)


def _required_timestamp(row: sqlite3.Row, column: str) -> datetime:
    try:
        value = parse_timestamp(row[column])
    except ValueError as e:
        raise StorageFailure(f"Corrupt row in local store: bad {column}: {e}") from e
    if value is None:
        raise StorageFailure(f"Corrupt row in local store: {column} is missing")
    return value


def replica_from_row(row: sqlite3.Row) -> RoomReplica:
    """Create a RoomReplica from a database row.

    Raises:
        StorageFailure: If the row has no usable updated_at.
    """
    return RoomReplica(
        id=row["id"],
        room_number=row["room_number"],
        updated_at=_required_timestamp(row, "updated_at"),
        created_at=parse_timestamp(row["created_at"]),
        last_synced_at=parse_timestamp(row["last_synced_at"]),
        is_dirty=bool(row["is_dirty"]),
        version=row["version"],
        **{attr: row[attr] for attr in ROOM_FIELDS},
    )


def queue_item_to_row(item: SyncQueueItem) -> tuple[Any, ...]:
    """Flatten a queue item into a row matching _QUEUE_COLUMNS."""
    return (
        item.id,
        item.room_id,
        item.change_type.value,
        json.dumps(item.payload),
        item.status.value,
        item.retry_count,
        format_timestamp(item.created_at),
        format_timestamp(item.last_attempt_at),
        item.error,
    )


def queue_item_from_row(row: sqlite3.Row) -> SyncQueueItem:
    """Create a SyncQueueItem from a database row."""
    created_at = _required_timestamp(row, "created_at")
    return SyncQueueItem(
        id=row["id"],
        room_id=row["room_id"],
        change_type=SyncChangeType(row["change_type"]),
        payload=json.loads(row["payload"]),
        status=SyncItemStatus(row["status"]),
        retry_count=row["retry_count"],
        created_at=created_at,
        last_attempt_at=parse_timestamp(row["last_attempt_at"]),
        error=row["error"],
    )


class LocalStore:
    """Durable keyed persistence for room replicas, queue items and metadata.

    Usage:
        store = LocalStore(db_path)
        await store.open()
        await store.put(replica)
        ...
        await store.close()

    or as an async context manager:
        async with LocalStore(db_path) as store:
            ...
    """

    def __init__(self, db_path: Path | str) -> None:
        """Initialize the store (no I/O until open()).

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self._db_path = db_path if db_path == MEMORY else Path(db_path)
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = None
        self._executor: ThreadPoolExecutor | None = None

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def __aenter__(self) -> LocalStore:
        await self.open()
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    # === Lifecycle ===

    async def open(self) -> None:
        """Open the database and bring the schema up to date."""
        if self._conn is not None:
            return
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="LocalStore")
        try:
            await self._run(self._open_sync, require_open=False)
        except StorageFailure:
            self._executor.shutdown(wait=False)
            self._executor = None
            raise

    async def close(self) -> None:
        """Close the database connection and stop the worker thread."""
        if self._conn is None:
            return
        await self._run(self._close_sync)
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _open_sync(self) -> None:
        if isinstance(self._db_path, Path):
            self._db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self._db_path),
            check_same_thread=False,
            isolation_level=None,  # Autocommit mode, explicit transactions
        )
        conn.row_factory = sqlite3.Row
        if self._db_path != MEMORY:
            conn.execute("PRAGMA journal_mode=WAL")
        self._conn = conn
        self._migrate()
        logger.debug("Opened local store at %s", self._db_path)

    def _close_sync(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _migrate(self) -> None:
        """Apply pending additive migrations."""
        conn = self._require_conn()
        current = conn.execute("PRAGMA user_version").fetchone()[0]
        for version in range(current, SCHEMA_VERSION):
            logger.info("Migrating local store schema to version %d", version + 1)
            with self._transaction() as tx:
                for statement in MIGRATIONS[version].split(";"):
                    if statement.strip():
                        tx.execute(statement)
                tx.execute(f"PRAGMA user_version = {version + 1}")

    def _require_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageFailure("Local store is not open. Call open() first.")
        return self._conn

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run statements in one all-or-nothing transaction."""
        conn = self._require_conn()
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    async def _run(
        self,
        func: Callable[..., T],
        *args: Any,
        require_open: bool = True,
    ) -> T:
        """Run a synchronous database function on the store thread."""
        if require_open:
            self._require_conn()
        if self._executor is None:
            raise StorageFailure("Local store is not open. Call open() first.")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, functools.partial(self._guarded, func, *args)
        )

    def _guarded(self, func: Callable[..., T], *args: Any) -> T:
        with self._lock:
            try:
                return func(*args)
            except (sqlite3.Error, OSError) as e:
                logger.error("Local store error in %s: %s", func.__name__, e)
                raise StorageFailure(str(e)) from e

    @property
    def schema_version(self) -> int:
        """Current schema version (after open)."""
        with self._lock:
            return int(self._require_conn().execute("PRAGMA user_version").fetchone()[0])

    # === Room replicas ===

    async def get(self, room_id: int) -> RoomReplica | None:
        """Get a replica by id."""
        return await self._run(self._get_sync, room_id)

    def _get_sync(self, room_id: int) -> RoomReplica | None:
        row = self._require_conn().execute(
            "SELECT * FROM room_replicas WHERE id = ?", (room_id,)
        ).fetchone()
        return replica_from_row(row) if row else None

    async def get_all(self) -> list[RoomReplica]:
        """List all replicas, ordered by id."""
        return await self._run(self._get_all_sync)

    def _get_all_sync(self) -> list[RoomReplica]:
        rows = self._require_conn().execute(
            "SELECT * FROM room_replicas ORDER BY id"
        ).fetchall()
        return [replica_from_row(row) for row in rows]

    async def get_dirty(self) -> list[RoomReplica]:
        """List replicas with unconfirmed local changes."""
        return await self._run(self._get_dirty_sync)

    def _get_dirty_sync(self) -> list[RoomReplica]:
        rows = self._require_conn().execute(
            "SELECT * FROM room_replicas WHERE is_dirty = 1 ORDER BY id"
        ).fetchall()
        return [replica_from_row(row) for row in rows]

    async def put(self, replica: RoomReplica) -> None:
        """Insert or replace a replica."""
        await self._run(self._put_sync, replica)

    def _put_sync(self, replica: RoomReplica) -> None:
        self._require_conn().execute(_UPSERT_REPLICA, replica_to_row(replica))

    async def put_many(self, replicas: list[RoomReplica]) -> None:
        """Insert or replace several replicas in one transaction.

        Raises:
            StorageFailure: If any write fails; nothing is persisted.
        """
        if not replicas:
            return
        await self._run(self._put_many_sync, list(replicas))

    def _put_many_sync(self, replicas: list[RoomReplica]) -> None:
        with self._transaction() as tx:
            tx.executemany(_UPSERT_REPLICA, [replica_to_row(r) for r in replicas])

    async def put_with_queue_item(self, replica: RoomReplica, item: SyncQueueItem) -> None:
        """Persist a replica mutation and its sync queue entry atomically."""
        await self._run(self._put_with_queue_item_sync, replica, item)

    def _put_with_queue_item_sync(self, replica: RoomReplica, item: SyncQueueItem) -> None:
        with self._transaction() as tx:
            tx.execute(_UPSERT_REPLICA, replica_to_row(replica))
            tx.execute(_UPSERT_QUEUE_ITEM, queue_item_to_row(item))

    async def update_atomically(
        self,
        room_ids: Collection[int] | None,
        mutate: Mutation,
    ) -> tuple[list[RoomReplica], list[SyncQueueItem]]:
        """Read, modify and write replicas in one transaction.

        `mutate` receives the current replicas (keyed by id; all of them
        when room_ids is None) and the whole sync queue, and returns the
        replicas and queue items to write. It runs on the store thread
        while the transaction is open, so it must not await or do I/O.

        Returns:
            The replicas and queue items that were written.
        """
        ids = None if room_ids is None else list(room_ids)
        return await self._run(self._update_atomically_sync, ids, mutate)

    def _update_atomically_sync(
        self,
        room_ids: list[int] | None,
        mutate: Mutation,
    ) -> tuple[list[RoomReplica], list[SyncQueueItem]]:
        with self._transaction() as tx:
            if room_ids is None:
                rows = tx.execute("SELECT * FROM room_replicas").fetchall()
            elif room_ids:
                placeholders = ", ".join("?" for _ in room_ids)
                rows = tx.execute(
                    f"SELECT * FROM room_replicas WHERE id IN ({placeholders})", room_ids
                ).fetchall()
            else:
                rows = []
            current = {row["id"]: replica_from_row(row) for row in rows}
            queue = self._select_queue_sync("", ())

            replicas, items = mutate(current, queue)
            if replicas:
                tx.executemany(_UPSERT_REPLICA, [replica_to_row(r) for r in replicas])
            if items:
                tx.executemany(_UPSERT_QUEUE_ITEM, [queue_item_to_row(i) for i in items])
        return replicas, items

    # === Sync queue ===

    async def get_queue_item(self, item_id: str) -> SyncQueueItem | None:
        """Get a queue item by id."""
        return await self._run(self._get_queue_item_sync, item_id)

    def _get_queue_item_sync(self, item_id: str) -> SyncQueueItem | None:
        row = self._require_conn().execute(
            "SELECT * FROM sync_queue WHERE id = ?", (item_id,)
        ).fetchone()
        return queue_item_from_row(row) if row else None

    async def get_queue(self) -> list[SyncQueueItem]:
        """List all queue items, oldest first."""
        return await self._run(self._select_queue_sync, "", ())

    async def get_queue_items_by_status(
        self,
        status: SyncItemStatus,
        limit: int | None = None,
    ) -> list[SyncQueueItem]:
        """List queue items with the given status, oldest first."""
        return await self._run(
            self._select_queue_sync, "WHERE status = ?", (status.value,), limit
        )

    async def get_queue_items_for_room(self, room_id: int) -> list[SyncQueueItem]:
        """List queue items targeting a room, oldest first."""
        return await self._run(self._select_queue_sync, "WHERE room_id = ?", (room_id,))

    def _select_queue_sync(
        self,
        where: str,
        params: tuple[Any, ...],
        limit: int | None = None,
    ) -> list[SyncQueueItem]:
        # rowid breaks ties between items stamped with the same created_at
        sql = f"SELECT * FROM sync_queue {where} ORDER BY created_at, rowid"
        if limit is not None:
            sql += " LIMIT ?"
            params = (*params, limit)
        rows = self._require_conn().execute(sql, params).fetchall()
        return [queue_item_from_row(row) for row in rows]

    async def put_queue_item(self, item: SyncQueueItem) -> None:
        """Insert or update a queue item."""
        await self._run(self._put_queue_item_sync, item)

    def _put_queue_item_sync(self, item: SyncQueueItem) -> None:
        self._require_conn().execute(_UPSERT_QUEUE_ITEM, queue_item_to_row(item))

    async def delete_queue_item(self, item_id: str) -> None:
        """Remove a queue item (no error if absent)."""
        await self._run(self._delete_queue_item_sync, item_id)

    def _delete_queue_item_sync(self, item_id: str) -> None:
        self._require_conn().execute("DELETE FROM sync_queue WHERE id = ?", (item_id,))

    async def count_queue_items(self, status: SyncItemStatus | None = None) -> int:
        """Count queue items, optionally filtered by status."""
        return await self._run(self._count_queue_sync, status)

    def _count_queue_sync(self, status: SyncItemStatus | None) -> int:
        conn = self._require_conn()
        if status is None:
            row = conn.execute("SELECT COUNT(*) FROM sync_queue").fetchone()
        else:
            row = conn.execute(
                "SELECT COUNT(*) FROM sync_queue WHERE status = ?", (status.value,)
            ).fetchone()
        return int(row[0])

    # === Metadata ===

    async def get_metadata(self, key: str) -> str | None:
        """Get a metadata value."""
        return await self._run(self._get_metadata_sync, key)

    def _get_metadata_sync(self, key: str) -> str | None:
        row = self._require_conn().execute(
            "SELECT value FROM metadata WHERE key = ?", (key,)
        ).fetchone()
        return row["value"] if row else None

    async def set_metadata(self, key: str, value: str) -> None:
        """Set a metadata value."""
        await self._run(self._set_metadata_sync, key, value)

    def _set_metadata_sync(self, key: str, value: str) -> None:
        self._require_conn().execute(
            "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
            (key, value),
        )

    # === Utility ===

    async def clear_all(self) -> None:
        """Delete every replica, queue item and metadata entry."""
        await self._run(self._clear_all_sync)

    def _clear_all_sync(self) -> None:
        with self._transaction() as tx:
            tx.execute("DELETE FROM room_replicas")
            tx.execute("DELETE FROM sync_queue")
            tx.execute("DELETE FROM metadata")
        logger.info("Cleared all local data")
