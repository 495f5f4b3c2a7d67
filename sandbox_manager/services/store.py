"""SQLite-backed durable store for container records.

One row per active container. Rows are committed only after the runtime
start succeeded and removed only after runtime deletion is confirmed, so the
table is the source of truth for reconciliation after a restart.
"""

import asyncio
import json
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Union

import aiosqlite
import structlog

from ..config import settings
from ..models import ContainerRecord, ContainerState
from ..models.errors import StoreError
from .interfaces import RecordStoreInterface

logger = structlog.get_logger(__name__)

# SQL Schema
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS containers (
    id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    ports TEXT NOT NULL,
    state TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_containers_expires_at ON containers(expires_at);
"""


class SQLiteRecordStore(RecordStoreInterface):
    """Container record table on a local SQLite database."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or settings.store_path
        self._db: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        return self._db is not None

    async def start(self) -> None:
        """Open the database and create the schema."""
        if self._db is not None:
            return

        try:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            self._db = await aiosqlite.connect(self.db_path)
            self._db.row_factory = aiosqlite.Row

            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.execute("PRAGMA synchronous=FULL")
            await self._db.executescript(SCHEMA_SQL)
            await self._db.commit()
        except (aiosqlite.Error, OSError) as e:
            logger.error("Failed to open record store", db_path=self.db_path, error=str(e))
            if self._db is not None:
                await self._db.close()
                self._db = None
            raise StoreError("open", f"Cannot open record store at {self.db_path}: {e}") from e

        logger.info("Record store opened", db_path=self.db_path)

    async def close(self) -> None:
        """Close the database connection."""
        if self._db is None:
            return
        try:
            await self._db.close()
        finally:
            self._db = None
        logger.info("Record store closed")

    async def insert(self, record: ContainerRecord) -> None:
        db = self._connection("insert")
        try:
            async with self._write_lock:
                await db.execute(
                    "INSERT INTO containers (id, created_at, expires_at, ports, state) VALUES (?, ?, ?, ?, ?)",
                    (
                        record.id,
                        record.created_at.isoformat(),
                        record.expires_at.isoformat(),
                        json.dumps(record.ports),
                        record.state.value,
                    ),
                )
                await db.commit()
        except aiosqlite.IntegrityError as e:
            raise StoreError("insert", f"Container record already exists: {record.id}") from e
        except aiosqlite.Error as e:
            raise StoreError("insert", f"Failed to insert container record: {e}") from e

    async def get(self, container_id: str) -> Optional[ContainerRecord]:
        db = self._connection("get")
        try:
            async with db.execute(
                "SELECT id, created_at, expires_at, ports, state FROM containers WHERE id = ?",
                (container_id,),
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StoreError("get", f"Failed to read container record: {e}") from e

        return self._row_to_record(row) if row else None

    async def list_active(self) -> List[ContainerRecord]:
        db = self._connection("list")
        try:
            async with db.execute(
                "SELECT id, created_at, expires_at, ports, state FROM containers ORDER BY created_at"
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StoreError("list", f"Failed to list container records: {e}") from e

        return [self._row_to_record(row) for row in rows]

    async def compare_and_set_state(
        self,
        container_id: str,
        expected: Union[ContainerState, Iterable[ContainerState]],
        new_state: ContainerState,
    ) -> bool:
        """Single conditional UPDATE; True only for the caller that changed the row."""
        if isinstance(expected, ContainerState):
            expected = [expected]
        expected_values = [state.value for state in expected]
        if not expected_values:
            return False

        placeholders = ", ".join("?" for _ in expected_values)
        db = self._connection("compare_and_set_state")
        try:
            async with self._write_lock:
                cursor = await db.execute(
                    f"UPDATE containers SET state = ? WHERE id = ? AND state IN ({placeholders})",
                    (new_state.value, container_id, *expected_values),
                )
                changed = cursor.rowcount == 1
                await cursor.close()
                await db.commit()
        except aiosqlite.Error as e:
            raise StoreError("compare_and_set_state", f"Failed to update container state: {e}") from e

        if changed:
            logger.debug(
                "Container state changed",
                container_id=container_id,
                new_state=new_state.value,
            )
        return changed

    async def delete(self, container_id: str) -> bool:
        db = self._connection("delete")
        try:
            async with self._write_lock:
                cursor = await db.execute("DELETE FROM containers WHERE id = ?", (container_id,))
                deleted = cursor.rowcount == 1
                await cursor.close()
                await db.commit()
        except aiosqlite.Error as e:
            raise StoreError("delete", f"Failed to delete container record: {e}") from e
        return deleted

    async def ping(self) -> bool:
        if self._db is None:
            return False
        try:
            async with self._db.execute("SELECT 1") as cursor:
                await cursor.fetchone()
            return True
        except aiosqlite.Error as e:
            logger.warning("Record store ping failed", error=str(e))
            return False

    def _connection(self, operation: str) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreError(operation, "Record store is not open")
        return self._db

    @staticmethod
    def _row_to_record(row) -> ContainerRecord:
        return ContainerRecord(
            id=row["id"],
            created_at=datetime.fromisoformat(row["created_at"]),
            expires_at=datetime.fromisoformat(row["expires_at"]),
            ports=json.loads(row["ports"]),
            state=ContainerState(row["state"]),
        )
