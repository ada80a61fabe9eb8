"""SQLite checkpoint store.

Uses the standard library ``sqlite3`` driver. Every blocking call runs in the
default executor so the event loop is never blocked, and a single connection
is shared behind a lock so concurrent executions serialize their writes.
"""

import asyncio
import functools
import os
import sqlite3
import threading
from pathlib import Path
from typing import List, Optional, Union

from graphflow.core.checkpoint.base import Checkpoint, CheckpointStore
from graphflow.core.checkpoint.serde import (
    CheckpointSerializer,
    format_timestamp,
    parse_timestamp,
)
from graphflow.core.errors import NotFoundError, StoreError
from graphflow.core.logging import LogComponent, get_logger

logger = get_logger(LogComponent.CHECKPOINT)

MEMORY_DATABASE = ":memory:"


class SQLiteCheckpointStore(CheckpointStore):
    """SQLite-backed checkpoint store.

    Attributes:
        db_path: Database file, or ``":memory:"``
        table_name: Name of the checkpoints table

    Example:
        store = SQLiteCheckpointStore("~/.graphflow/checkpoints.db")
        await store.save(checkpoint)
        history = await store.list("thread-123")
    """

    def __init__(
        self,
        db_path: Union[str, Path] = MEMORY_DATABASE,
        table_name: str = "checkpoints",
        serializer: Optional[CheckpointSerializer] = None,
    ):
        if not table_name.isidentifier():
            raise ValueError(f"invalid table name: {table_name!r}")
        if str(db_path) == MEMORY_DATABASE:
            self.db_path = MEMORY_DATABASE
        else:
            self.db_path = str(Path(os.path.expanduser(str(db_path))))
        self.table_name = table_name
        self.serializer = serializer or CheckpointSerializer()
        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection. Caller holds the lock."""
        if self._conn is None:
            if self.db_path != MEMORY_DATABASE:
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            self._init_schema(conn)
            self._conn = conn
        return self._conn

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.table_name} (
                id TEXT PRIMARY KEY,
                execution_id TEXT NOT NULL,
                thread_id TEXT,
                session_id TEXT,
                node_name TEXT NOT NULL,
                state TEXT,
                metadata TEXT,
                timestamp TEXT NOT NULL,
                version INTEGER NOT NULL
            )
        """)
        for column in ("execution_id", "thread_id", "session_id"):
            conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{self.table_name}_{column}
                ON {self.table_name}({column})
            """)
        conn.commit()
        logger.debug(f"Initialized checkpoint schema: {self.db_path}")

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self._locked, func, *args))

    def _locked(self, func, *args):
        with self._lock:
            try:
                return func(self._get_connection(), *args)
            except sqlite3.Error as e:
                raise StoreError(f"sqlite {func.__name__.strip('_')} failed: {e}") from e

    async def save(self, checkpoint: Checkpoint) -> None:
        row = (
            checkpoint.id,
            checkpoint.metadata.get("execution_id") or "",
            checkpoint.metadata.get("thread_id"),
            checkpoint.metadata.get("session_id"),
            checkpoint.node_name,
            self.serializer.dump_state(checkpoint.state),
            self.serializer.dump_metadata(checkpoint.metadata),
            format_timestamp(checkpoint.timestamp),
            checkpoint.version,
        )
        await self._run(self._save_sync, row)
        logger.debug(f"Saved checkpoint {checkpoint.id} (version {checkpoint.version})")

    def _save_sync(self, conn: sqlite3.Connection, row: tuple) -> None:
        conn.execute(
            f"""
            INSERT INTO {self.table_name}
            (id, execution_id, thread_id, session_id, node_name, state, metadata, timestamp, version)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                execution_id = excluded.execution_id,
                thread_id = excluded.thread_id,
                session_id = excluded.session_id,
                node_name = excluded.node_name,
                state = excluded.state,
                metadata = excluded.metadata,
                timestamp = excluded.timestamp,
                version = excluded.version
        """,
            row,
        )
        conn.commit()

    async def load(self, checkpoint_id: str) -> Checkpoint:
        row = await self._run(self._load_sync, checkpoint_id)
        if row is None:
            raise NotFoundError(f"checkpoint not found: {checkpoint_id}")
        return self._row_to_checkpoint(row)

    def _load_sync(self, conn: sqlite3.Connection, checkpoint_id: str):
        return conn.execute(
            f"SELECT * FROM {self.table_name} WHERE id = ?",
            (checkpoint_id,),
        ).fetchone()

    async def list(self, key: str) -> List[Checkpoint]:
        rows = await self._run(self._list_sync, key)
        return [self._row_to_checkpoint(row) for row in rows]

    def _list_sync(self, conn: sqlite3.Connection, key: str):
        return conn.execute(
            f"""
            SELECT * FROM {self.table_name}
            WHERE execution_id = ? OR thread_id = ? OR session_id = ?
            ORDER BY version ASC, timestamp ASC
        """,
            (key, key, key),
        ).fetchall()

    async def delete(self, checkpoint_id: str) -> None:
        await self._run(self._delete_sync, checkpoint_id)

    def _delete_sync(self, conn: sqlite3.Connection, checkpoint_id: str) -> None:
        conn.execute(f"DELETE FROM {self.table_name} WHERE id = ?", (checkpoint_id,))
        conn.commit()

    async def clear(self, key: str) -> None:
        deleted = await self._run(self._clear_sync, key)
        logger.debug(f"Cleared {deleted} checkpoints for {key}")

    def _clear_sync(self, conn: sqlite3.Connection, key: str) -> int:
        cursor = conn.execute(
            f"""
            DELETE FROM {self.table_name}
            WHERE execution_id = ? OR thread_id = ? OR session_id = ?
        """,
            (key, key, key),
        )
        conn.commit()
        return cursor.rowcount

    async def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _row_to_checkpoint(self, row: sqlite3.Row) -> Checkpoint:
        return Checkpoint(
            id=row["id"],
            node_name=row["node_name"],
            state=self.serializer.load_state(row["state"]) if row["state"] is not None else None,
            metadata=self.serializer.load_metadata(row["metadata"]),
            timestamp=parse_timestamp(row["timestamp"]),
            version=row["version"],
        )
