"""Run history persisted in SQLite."""

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import aiosqlite
import structlog

from ..core.errors import StorageError

logger = structlog.get_logger()


@dataclass
class RunRecord:
    """One recorded run."""
    run_id: str
    automation_id: Optional[str]
    timestamp: str
    success: bool
    duration: float
    status: str
    error: Optional[str]
    steps: list[dict[str, Any]]
    visited: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.run_id,
            "automationId": self.automation_id,
            "timestamp": self.timestamp,
            "success": self.success,
            "duration": self.duration,
            "status": self.status,
            "error": self.error,
            "steps": self.steps,
            "visited": self.visited,
        }


class RunHistory:
    """Execution logs of past runs, one row per run."""

    def __init__(self, db_path: str = "./data/history.db"):
        self.db_path = Path(db_path)
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open the database and create tables."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(str(self.db_path))
        except (OSError, aiosqlite.Error) as e:
            raise StorageError(f"Cannot open run history: {e}", path=str(self.db_path))
        self._db.row_factory = aiosqlite.Row

        await self._db.executescript("""
            CREATE TABLE IF NOT EXISTS runs (
                run_id TEXT PRIMARY KEY,
                automation_id TEXT,
                timestamp TEXT NOT NULL,
                success INTEGER NOT NULL,
                duration REAL NOT NULL,
                status TEXT NOT NULL,
                error TEXT,
                steps_json TEXT NOT NULL,
                visited_json TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_runs_automation ON runs(automation_id, timestamp);
        """)
        await self._db.commit()

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> "RunHistory":
        await self.initialize()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def record(self, log) -> RunRecord:
        """Store an ExecutionLog (anything with ``to_dict()`` in its shape)."""
        data = log.to_dict()
        record = RunRecord(
            run_id=data["id"],
            automation_id=data.get("automationId"),
            timestamp=data["timestamp"],
            success=bool(data["success"]),
            duration=float(data["duration"]),
            status=data["status"],
            error=data.get("error"),
            steps=data.get("steps", []),
            visited=data.get("visited", []),
        )

        async with self._lock:
            await self._db.execute("""
                INSERT OR REPLACE INTO runs
                (run_id, automation_id, timestamp, success, duration,
                 status, error, steps_json, visited_json)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.run_id,
                record.automation_id,
                record.timestamp,
                1 if record.success else 0,
                record.duration,
                record.status,
                record.error,
                json.dumps(record.steps),
                json.dumps(record.visited),
            ))
            await self._db.commit()

        logger.debug("run_recorded", run_id=record.run_id, automation_id=record.automation_id)
        return record

    async def get(self, run_id: str) -> Optional[RunRecord]:
        cursor = await self._db.execute(
            "SELECT * FROM runs WHERE run_id = ?",
            (run_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_record(row) if row else None

    async def list_runs(
        self,
        automation_id: Optional[str] = None,
        limit: int = 20,
    ) -> list[RunRecord]:
        """Most recent runs first, optionally for one automation."""
        if automation_id is None:
            cursor = await self._db.execute(
                "SELECT * FROM runs ORDER BY timestamp DESC LIMIT ?",
                (limit,)
            )
        else:
            cursor = await self._db.execute("""
                SELECT * FROM runs
                WHERE automation_id = ?
                ORDER BY timestamp DESC
                LIMIT ?
            """, (automation_id, limit))
        rows = await cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    async def statistics(self, automation_id: Optional[str] = None) -> dict[str, Any]:
        """Run count, success count, success rate and mean duration."""
        query = """
            SELECT COUNT(*) AS total,
                   COALESCE(SUM(success), 0) AS succeeded,
                   AVG(duration) AS avg_duration
            FROM runs
        """
        params: tuple = ()
        if automation_id is not None:
            query += " WHERE automation_id = ?"
            params = (automation_id,)

        cursor = await self._db.execute(query, params)
        row = await cursor.fetchone()
        total = row["total"]
        succeeded = row["succeeded"]
        return {
            "total": total,
            "succeeded": succeeded,
            "failed": total - succeeded,
            "success_rate": succeeded / total if total else 0.0,
            "avg_duration": row["avg_duration"] or 0.0,
        }

    async def delete_for(self, automation_id: str) -> int:
        """Drop every run of an automation. Returns the number removed."""
        async with self._lock:
            cursor = await self._db.execute(
                "DELETE FROM runs WHERE automation_id = ?",
                (automation_id,)
            )
            await self._db.commit()
            return cursor.rowcount

    def _row_to_record(self, row) -> RunRecord:
        return RunRecord(
            run_id=row["run_id"],
            automation_id=row["automation_id"],
            timestamp=row["timestamp"],
            success=bool(row["success"]),
            duration=row["duration"],
            status=row["status"],
            error=row["error"],
            steps=json.loads(row["steps_json"]),
            visited=json.loads(row["visited_json"]),
        )
