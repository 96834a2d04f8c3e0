"""PostgreSQL implementation of the process storage."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, AsyncIterator, Mapping, Optional

import asyncpg

from ..models import ProcessRecord, as_utc
from .repository import ProcessStorage, apply_update, build_new_record, new_claim_token

COLUMNS = (
    "id",
    "process_type",
    "status",
    "current_step",
    "run_at",
    "state",
    "claim_token",
    "last_error",
    "last_step",
    "created_at",
    "updated_at",
)
_SELECT = f"SELECT {', '.join(COLUMNS)} FROM longsteps_process"


class PostgresProcessStorage(ProcessStorage):
    """Persist processes using PostgreSQL."""

    def __init__(self, dsn: str, batch_size: int = 100):
        self._dsn = dsn
        self.batch_size = batch_size
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
            CREATE TABLE IF NOT EXISTS longsteps_process (
                id TEXT PRIMARY KEY,
                process_type TEXT NOT NULL,
                status TEXT NOT NULL,
                current_step TEXT,
                run_at TIMESTAMPTZ,
                state JSONB,
                claim_token TEXT,
                last_error TEXT,
                last_step TEXT,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL
            )
            """
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS longsteps_process_due "
            "ON longsteps_process (status, run_at)"
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS longsteps_process_claim "
            "ON longsteps_process (claim_token)"
        )

    @staticmethod
    def _to_params(record: ProcessRecord) -> tuple:
        return (
            record.id,
            record.process_type,
            record.status.value,
            record.current_step,
            record.run_at,
            json.dumps(record.state),
            record.claim_token,
            record.last_error,
            record.last_step,
            record.created_at,
            record.updated_at,
        )

    @staticmethod
    def _to_record(row: asyncpg.Record) -> ProcessRecord:
        return ProcessRecord(
            id=row["id"],
            process_type=row["process_type"],
            status=row["status"],
            current_step=row["current_step"],
            run_at=row["run_at"],
            state=json.loads(row["state"]) if row["state"] is not None else None,
            claim_token=row["claim_token"],
            last_error=row["last_error"],
            last_step=row["last_step"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # ------------------------------------------------------------------
    async def create(self, fields: Mapping[str, Any]) -> ProcessRecord:
        record = build_new_record(fields)
        placeholders = ", ".join(f"${i}" for i in range(1, len(COLUMNS) + 1))
        conn = await self._connect()
        try:
            await conn.execute(
                f"INSERT INTO longsteps_process ({', '.join(COLUMNS)}) VALUES ({placeholders})",
                *self._to_params(record),
            )
        finally:
            await conn.close()
        return record

    async def find(self, process_id: str) -> ProcessRecord | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(f"{_SELECT} WHERE id = $1", process_id)
        finally:
            await conn.close()
        return self._to_record(row) if row else None

    async def claim_due_batch(self, now: datetime) -> AsyncIterator[ProcessRecord]:
        token = new_claim_token()
        conn = await self._connect()
        try:
            status = await conn.execute(
                """
                UPDATE longsteps_process
                SET status = 'running', claim_token = $1, run_at = NULL, updated_at = now()
                WHERE id IN (
                    SELECT id FROM longsteps_process
                    WHERE status IN ('pending', 'paused') AND run_at <= $2
                    FOR UPDATE SKIP LOCKED
                )
                """,
                token,
                as_utc(now),
            )
        finally:
            await conn.close()
        if status.endswith(" 0"):
            return

        last_id = ""
        while True:
            conn = await self._connect()
            try:
                rows = await conn.fetch(
                    f"{_SELECT} WHERE claim_token = $1 AND id > $2 ORDER BY id LIMIT $3",
                    token,
                    last_id,
                    self.batch_size,
                )
            finally:
                await conn.close()
            if not rows:
                return
            for row in rows:
                yield self._to_record(row)
            last_id = rows[-1]["id"]

    async def update(
        self,
        process_id: str,
        fields: Mapping[str, Any],
        claim_token: Optional[str] = None,
    ) -> ProcessRecord:
        assignments = ", ".join(
            f"{column} = ${i}" for i, column in enumerate(COLUMNS[1:], start=2)
        )
        conn = await self._connect()
        try:
            async with conn.transaction():
                row = await conn.fetchrow(
                    f"{_SELECT} WHERE id = $1 FOR UPDATE", process_id
                )
                current = self._to_record(row) if row else None
                updated = apply_update(process_id, current, fields, claim_token)
                await conn.execute(
                    f"UPDATE longsteps_process SET {assignments} WHERE id = $1",
                    *self._to_params(updated),
                )
        finally:
            await conn.close()
        return updated
