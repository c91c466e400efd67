"""SQLite implementation of the run repository."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from pathlib import Path
from typing import Any, Optional

from ..models import WorkflowRun
from .repository import RunRepository


class SQLiteRunRepository(RunRepository):
    """Persist run snapshots using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_runs (
                run_id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TEXT NOT NULL,
                snapshot TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    def _execute(self, query: str, *params: Any) -> None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            self._conn.commit()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Repository API
    async def save_run(self, run: WorkflowRun) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_runs (run_id, workflow_id, status, created_at, snapshot)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(run_id) DO UPDATE SET status = excluded.status,
                snapshot = excluded.snapshot
            """,
            run.run_id,
            run.workflow_id,
            run.status.value,
            run.created_at.isoformat(),
            run.to_json(),
        )

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT snapshot FROM workflow_runs WHERE run_id = ?",
            run_id,
        )
        if not rows:
            return None
        return WorkflowRun.from_json(rows[0]["snapshot"])

    async def list_runs(self, workflow_id: Optional[str] = None) -> list[WorkflowRun]:
        if workflow_id is None:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT snapshot FROM workflow_runs ORDER BY created_at",
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT snapshot FROM workflow_runs WHERE workflow_id = ? ORDER BY created_at",
                workflow_id,
            )
        return [WorkflowRun.from_json(row["snapshot"]) for row in rows]
