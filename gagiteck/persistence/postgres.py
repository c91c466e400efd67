"""PostgreSQL implementation of the run repository."""

from __future__ import annotations

from typing import Optional

import asyncpg

from ..models import WorkflowRun
from .repository import RunRepository


class PostgresRunRepository(RunRepository):
    """Persist run snapshots using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_runs (
                run_id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL,
                status TEXT NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                snapshot JSONB NOT NULL
            )
            """
        )

    # ------------------------------------------------------------------
    async def save_run(self, run: WorkflowRun) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO workflow_runs (run_id, workflow_id, status, created_at, snapshot)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (run_id) DO UPDATE
                SET status = EXCLUDED.status, snapshot = EXCLUDED.snapshot
                """,
                run.run_id,
                run.workflow_id,
                run.status.value,
                run.created_at,
                run.to_json(),
            )
        finally:
            await conn.close()

    async def get_run(self, run_id: str) -> WorkflowRun | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT snapshot::text AS snapshot FROM workflow_runs WHERE run_id = $1",
                run_id,
            )
        finally:
            await conn.close()
        if not row:
            return None
        return WorkflowRun.from_json(row["snapshot"])

    async def list_runs(self, workflow_id: Optional[str] = None) -> list[WorkflowRun]:
        conn = await self._connect()
        try:
            if workflow_id is None:
                rows = await conn.fetch(
                    "SELECT snapshot::text AS snapshot FROM workflow_runs ORDER BY created_at"
                )
            else:
                rows = await conn.fetch(
                    "SELECT snapshot::text AS snapshot FROM workflow_runs "
                    "WHERE workflow_id = $1 ORDER BY created_at",
                    workflow_id,
                )
        finally:
            await conn.close()
        return [WorkflowRun.from_json(r["snapshot"]) for r in rows]
