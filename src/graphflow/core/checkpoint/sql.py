"""Relational checkpoint store built on SQLAlchemy Core.

Works with any SQLAlchemy URL. On PostgreSQL the ``state`` and ``metadata``
columns are ``JSONB`` and the timestamp is ``TIMESTAMPTZ``; SQLite is handy for
tests. Upserts use the dialect's ``ON CONFLICT (id) DO UPDATE`` where
available, and every call runs in its own transaction.

Example:
    ```python
    store = SQLCheckpointStore("postgresql+psycopg://user:pw@localhost/app")
    await store.save(checkpoint)
    ```
"""

import asyncio
import functools
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    create_engine,
    delete,
    or_,
    select,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from graphflow.core.checkpoint.base import Checkpoint, CheckpointStore
from graphflow.core.checkpoint.serde import CheckpointSerializer, parse_timestamp, to_utc
from graphflow.core.errors import NotFoundError, StoreError
from graphflow.core.logging import LogComponent, get_logger

logger = get_logger(LogComponent.CHECKPOINT)

JSONColumn = JSON().with_variant(postgresql.JSONB(), "postgresql")


def checkpoints_table(name: str, metadata: MetaData) -> Table:
    """Table definition for checkpoint rows."""
    return Table(
        name,
        metadata,
        Column("id", Text, primary_key=True),
        Column("execution_id", Text, nullable=False),
        Column("thread_id", Text),
        Column("session_id", Text),
        Column("node_name", Text, nullable=False),
        Column("state", JSONColumn),
        Column("metadata", JSONColumn),
        Column("timestamp", DateTime(timezone=True), nullable=False),
        Column("version", Integer, nullable=False),
        Index(f"idx_{name}_execution_id", "execution_id"),
        Index(f"idx_{name}_thread_id", "thread_id"),
        Index(f"idx_{name}_session_id", "session_id"),
    )


class SQLCheckpointStore(CheckpointStore):
    """Checkpoint store for PostgreSQL or any SQLAlchemy-supported database.

    Args:
        url: Database URL or an existing ``Engine``
        table_name: Name of the checkpoints table
        serializer: Serializer for state values
        create_tables: Create the table and indexes if missing
        **engine_kwargs: Passed to ``create_engine`` when ``url`` is a string
    """

    def __init__(
        self,
        url: Union[str, Engine],
        table_name: str = "checkpoints",
        serializer: Optional[CheckpointSerializer] = None,
        create_tables: bool = True,
        **engine_kwargs: Any,
    ):
        self.engine = url if isinstance(url, Engine) else create_engine(url, **engine_kwargs)
        self._owns_engine = not isinstance(url, Engine)
        self.serializer = serializer or CheckpointSerializer()
        self._metadata = MetaData()
        self.table = checkpoints_table(table_name, self._metadata)
        if create_tables:
            self.create_tables()

    def create_tables(self) -> None:
        """Create the table and indexes if they do not exist."""
        try:
            self._metadata.create_all(self.engine, checkfirst=True)
        except SQLAlchemyError as e:
            raise StoreError(f"failed to create checkpoint table: {e}") from e
        logger.debug(f"Initialized checkpoint schema: {self.table.name}")

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self._guarded, func, *args))

    def _guarded(self, func, *args):
        try:
            return func(*args)
        except SQLAlchemyError as e:
            raise StoreError(f"{self.engine.dialect.name} {func.__name__.strip('_')} failed: {e}") from e

    async def save(self, checkpoint: Checkpoint) -> None:
        row = {
            "id": checkpoint.id,
            "execution_id": checkpoint.metadata.get("execution_id") or "",
            "thread_id": checkpoint.metadata.get("thread_id"),
            "session_id": checkpoint.metadata.get("session_id"),
            "node_name": checkpoint.node_name,
            "state": self.serializer.state_to_jsonable(checkpoint.state),
            "metadata": self.serializer.metadata_to_jsonable(checkpoint.metadata),
            "timestamp": to_utc(checkpoint.timestamp),
            "version": checkpoint.version,
        }
        await self._run(self._save_sync, row)
        logger.debug(f"Saved checkpoint {checkpoint.id} (version {checkpoint.version})")

    def _save_sync(self, row: Dict[str, Any]) -> None:
        dialect = self.engine.dialect.name
        with self.engine.begin() as conn:
            if dialect in ("postgresql", "sqlite"):
                insert = postgresql.insert if dialect == "postgresql" else sqlite.insert
                stmt = insert(self.table).values(**row)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[self.table.c.id],
                    set_={name: stmt.excluded[name] for name in row if name != "id"},
                )
                conn.execute(stmt)
            else:
                conn.execute(delete(self.table).where(self.table.c.id == row["id"]))
                conn.execute(self.table.insert().values(**row))

    async def load(self, checkpoint_id: str) -> Checkpoint:
        row = await self._run(self._load_sync, checkpoint_id)
        if row is None:
            raise NotFoundError(f"checkpoint not found: {checkpoint_id}")
        return self._row_to_checkpoint(row)

    def _load_sync(self, checkpoint_id: str):
        with self.engine.connect() as conn:
            return conn.execute(
                select(self.table).where(self.table.c.id == checkpoint_id)
            ).mappings().first()

    async def list(self, key: str) -> List[Checkpoint]:
        rows = await self._run(self._list_sync, key)
        return [self._row_to_checkpoint(row) for row in rows]

    def _matching(self, key: str):
        c = self.table.c
        return or_(c.execution_id == key, c.thread_id == key, c.session_id == key)

    def _list_sync(self, key: str):
        stmt = (
            select(self.table)
            .where(self._matching(key))
            .order_by(self.table.c.version.asc(), self.table.c.timestamp.asc())
        )
        with self.engine.connect() as conn:
            return conn.execute(stmt).mappings().all()

    async def delete(self, checkpoint_id: str) -> None:
        await self._run(self._delete_sync, checkpoint_id)

    def _delete_sync(self, checkpoint_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(self.table).where(self.table.c.id == checkpoint_id))

    async def clear(self, key: str) -> None:
        deleted = await self._run(self._clear_sync, key)
        logger.debug(f"Cleared {deleted} checkpoints for {key}")

    def _clear_sync(self, key: str) -> int:
        with self.engine.begin() as conn:
            return conn.execute(delete(self.table).where(self._matching(key))).rowcount

    async def close(self) -> None:
        if self._owns_engine:
            self.engine.dispose()

    def _row_to_checkpoint(self, row) -> Checkpoint:
        return Checkpoint(
            id=row["id"],
            node_name=row["node_name"],
            state=self.serializer.state_from_jsonable(row["state"]),
            metadata=row["metadata"] or {},
            timestamp=parse_timestamp(row["timestamp"]),
            version=row["version"],
        )
