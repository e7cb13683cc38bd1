"""Alias and step-tracking stores.

`AliasStore` maps ``(generation_id, asset_id)`` pairs to content-addressed
blobs; `StepStore` records pipeline step status. `SQLiteAliasStore`
implements both on one database, `InMemoryAliasStore` is the test and
offline variant.
"""

import asyncio
import json
import logging
import sqlite3
import threading
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from .models import AliasRecord, StepRecord, StepStatus, utc_now

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
-- One row per (generation, asset); many rows may share a checksum
CREATE TABLE IF NOT EXISTS image_aliases (
    generation_id TEXT NOT NULL,
    asset_id TEXT NOT NULL,
    url TEXT NOT NULL,
    width INTEGER NOT NULL,
    height INTEGER NOT NULL,
    format TEXT NOT NULL,
    checksum TEXT NOT NULL,
    prompt TEXT,
    model TEXT,
    seed TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (generation_id, asset_id)
);

-- Pipeline step status per generation
CREATE TABLE IF NOT EXISTS generation_steps (
    generation_id TEXT NOT NULL,
    step TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    attempts INTEGER NOT NULL DEFAULT 0,
    error TEXT,  -- JSON
    started_at TEXT,
    completed_at TEXT,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (generation_id, step)
);

CREATE INDEX IF NOT EXISTS idx_image_aliases_checksum ON image_aliases(checksum);
CREATE INDEX IF NOT EXISTS idx_generation_steps_status ON generation_steps(status);
"""


@runtime_checkable
class AliasStore(Protocol):
    """Persistence of image alias records."""

    async def get(self, generation_id: str, asset_id: str) -> AliasRecord | None:
        """Alias of one asset in one generation."""
        ...

    async def find_by_checksum(self, checksum: str) -> AliasRecord | None:
        """Any alias pointing at the blob with this checksum."""
        ...

    async def upsert(self, record: AliasRecord) -> AliasRecord:
        """Insert or update the alias keyed by ``(generation_id, asset_id)``."""
        ...

    async def list_for_generation(self, generation_id: str) -> list[AliasRecord]:
        """All aliases of a generation, ordered by asset id."""
        ...


@runtime_checkable
class StepStore(Protocol):
    """Persistence of pipeline step status."""

    async def get_step(self, generation_id: str, step: str) -> StepRecord | None:
        ...

    async def save_step(self, record: StepRecord) -> StepRecord:
        ...

    async def list_steps(self, generation_id: str) -> list[StepRecord]:
        ...


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# =============================================================================
# SQLite
# =============================================================================


class SQLiteAliasStore:
    """SQLite-backed alias and step store.

    Blocking database work runs in worker threads via `asyncio.to_thread`;
    a lock serializes access to the shared connection.

    Args:
        db_path: Path to the SQLite database file, or ":memory:".
    """

    def __init__(self, db_path: Path | str):
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def _get_conn(self) -> sqlite3.Connection:
        """Get database connection, creating if needed."""
        if self._conn is None:
            self.initialize()
        return self._conn

    def initialize(self) -> None:
        """Create the database file and schema."""
        if self._conn is not None:
            return
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.executescript(SCHEMA_SQL)
        self._conn.commit()

        logger.info(f"Initialized alias store at {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _fetchone(self, sql: str, params: tuple) -> sqlite3.Row | None:
        with self._lock:
            return self._get_conn().execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: tuple) -> list[sqlite3.Row]:
        with self._lock:
            return self._get_conn().execute(sql, params).fetchall()

    def _write(self, sql: str, params: tuple) -> None:
        with self._lock:
            conn = self._get_conn()
            conn.execute(sql, params)
            conn.commit()

    # =========================================================================
    # Alias Operations
    # =========================================================================

    async def get(self, generation_id: str, asset_id: str) -> AliasRecord | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT * FROM image_aliases WHERE generation_id = ? AND asset_id = ?",
            (generation_id, asset_id),
        )
        return self._row_to_alias(row) if row else None

    async def find_by_checksum(self, checksum: str) -> AliasRecord | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT * FROM image_aliases WHERE checksum = ? ORDER BY created_at LIMIT 1",
            (checksum,),
        )
        return self._row_to_alias(row) if row else None

    async def upsert(self, record: AliasRecord) -> AliasRecord:
        record = replace(record, updated_at=utc_now())
        await asyncio.to_thread(
            self._write,
            """
            INSERT INTO image_aliases (
                generation_id, asset_id, url, width, height, format, checksum,
                prompt, model, seed, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(generation_id, asset_id) DO UPDATE SET
                url = excluded.url,
                width = excluded.width,
                height = excluded.height,
                format = excluded.format,
                checksum = excluded.checksum,
                prompt = excluded.prompt,
                model = excluded.model,
                seed = excluded.seed,
                updated_at = excluded.updated_at
            """,
            (
                record.generation_id,
                record.asset_id,
                record.url,
                record.width,
                record.height,
                record.format,
                record.checksum,
                record.prompt,
                record.model,
                record.seed,
                record.created_at.isoformat(),
                record.updated_at.isoformat(),
            ),
        )
        return record

    async def list_for_generation(self, generation_id: str) -> list[AliasRecord]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT * FROM image_aliases WHERE generation_id = ? ORDER BY asset_id",
            (generation_id,),
        )
        return [self._row_to_alias(row) for row in rows]

    # =========================================================================
    # Step Operations
    # =========================================================================

    async def get_step(self, generation_id: str, step: str) -> StepRecord | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT * FROM generation_steps WHERE generation_id = ? AND step = ?",
            (generation_id, step),
        )
        return self._row_to_step(row) if row else None

    async def save_step(self, record: StepRecord) -> StepRecord:
        record = replace(record, updated_at=utc_now())
        await asyncio.to_thread(
            self._write,
            """
            INSERT INTO generation_steps (
                generation_id, step, status, attempts, error,
                started_at, completed_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(generation_id, step) DO UPDATE SET
                status = excluded.status,
                attempts = excluded.attempts,
                error = excluded.error,
                started_at = excluded.started_at,
                completed_at = excluded.completed_at,
                updated_at = excluded.updated_at
            """,
            (
                record.generation_id,
                record.step,
                StepStatus(record.status).value,
                record.attempts,
                json.dumps(record.error) if record.error is not None else None,
                _iso(record.started_at),
                _iso(record.completed_at),
                record.updated_at.isoformat(),
            ),
        )
        return record

    async def list_steps(self, generation_id: str) -> list[StepRecord]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT * FROM generation_steps WHERE generation_id = ? ORDER BY updated_at",
            (generation_id,),
        )
        return [self._row_to_step(row) for row in rows]

    # =========================================================================
    # Row Conversion
    # =========================================================================

    def _row_to_alias(self, row: sqlite3.Row) -> AliasRecord:
        return AliasRecord(
            generation_id=row["generation_id"],
            asset_id=row["asset_id"],
            url=row["url"],
            width=row["width"],
            height=row["height"],
            format=row["format"],
            checksum=row["checksum"],
            prompt=row["prompt"],
            model=row["model"],
            seed=row["seed"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def _row_to_step(self, row: sqlite3.Row) -> StepRecord:
        return StepRecord(
            generation_id=row["generation_id"],
            step=row["step"],
            status=StepStatus(row["status"]),
            attempts=row["attempts"],
            error=json.loads(row["error"]) if row["error"] else None,
            started_at=_parse_dt(row["started_at"]),
            completed_at=_parse_dt(row["completed_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )


# =============================================================================
# In-Memory
# =============================================================================


class InMemoryAliasStore:
    """Dictionary-backed alias and step store."""

    def __init__(self):
        self._aliases: dict[tuple[str, str], AliasRecord] = {}
        self._steps: dict[tuple[str, str], StepRecord] = {}

    async def get(self, generation_id: str, asset_id: str) -> AliasRecord | None:
        return self._aliases.get((generation_id, asset_id))

    async def find_by_checksum(self, checksum: str) -> AliasRecord | None:
        matches = [r for r in self._aliases.values() if r.checksum == checksum]
        return min(matches, key=lambda r: r.created_at) if matches else None

    async def upsert(self, record: AliasRecord) -> AliasRecord:
        key = (record.generation_id, record.asset_id)
        existing = self._aliases.get(key)
        created_at = existing.created_at if existing else record.created_at
        record = replace(record, created_at=created_at, updated_at=utc_now())
        self._aliases[key] = record
        return record

    async def list_for_generation(self, generation_id: str) -> list[AliasRecord]:
        records = [r for r in self._aliases.values() if r.generation_id == generation_id]
        return sorted(records, key=lambda r: r.asset_id)

    async def get_step(self, generation_id: str, step: str) -> StepRecord | None:
        return self._steps.get((generation_id, step))

    async def save_step(self, record: StepRecord) -> StepRecord:
        record = replace(record, updated_at=utc_now())
        self._steps[(record.generation_id, record.step)] = record
        return record

    async def list_steps(self, generation_id: str) -> list[StepRecord]:
        records = [r for r in self._steps.values() if r.generation_id == generation_id]
        return sorted(records, key=lambda r: r.updated_at)


__all__ = [
    "SCHEMA_SQL",
    "AliasStore",
    "StepStore",
    "SQLiteAliasStore",
    "InMemoryAliasStore",
]
