"""SQLite implementation of the process storage."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Iterator, Mapping, Optional

from ..models import ProcessRecord, as_utc, utc_now
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


def _format_ts(value: datetime | None) -> str | None:
    # Fixed-width ISO strings compare chronologically in SQL.
    if value is None:
        return None
    return as_utc(value).isoformat(timespec="microseconds")


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteProcessStorage(ProcessStorage):
    """Persist processes using SQLite."""

    def __init__(self, db_path: str | Path, batch_size: int = 100):
        self.db_path = str(db_path)
        self.batch_size = batch_size
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level=None
        )
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS longsteps_process (
                    id TEXT PRIMARY KEY,
                    process_type TEXT NOT NULL,
                    status TEXT NOT NULL,
                    current_step TEXT,
                    run_at TEXT,
                    state TEXT,
                    claim_token TEXT,
                    last_error TEXT,
                    last_step TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS longsteps_process_due "
                "ON longsteps_process (status, run_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS longsteps_process_claim "
                "ON longsteps_process (claim_token)"
            )

    # ------------------------------------------------------------------
    # Helper methods
    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(query, params).fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(query, params).fetchall()

    @staticmethod
    def _to_params(record: ProcessRecord) -> tuple:
        return (
            record.id,
            record.process_type,
            record.status.value,
            record.current_step,
            _format_ts(record.run_at),
            json.dumps(record.state),
            record.claim_token,
            record.last_error,
            record.last_step,
            _format_ts(record.created_at),
            _format_ts(record.updated_at),
        )

    @staticmethod
    def _to_record(row: sqlite3.Row) -> ProcessRecord:
        return ProcessRecord(
            id=row["id"],
            process_type=row["process_type"],
            status=row["status"],
            current_step=row["current_step"],
            run_at=_parse_ts(row["run_at"]),
            state=json.loads(row["state"]) if row["state"] is not None else None,
            claim_token=row["claim_token"],
            last_error=row["last_error"],
            last_step=row["last_step"],
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    def _insert(self, record: ProcessRecord) -> None:
        placeholders = ", ".join("?" for _ in COLUMNS)
        with self._transaction() as conn:
            conn.execute(
                f"INSERT INTO longsteps_process ({', '.join(COLUMNS)}) VALUES ({placeholders})",
                self._to_params(record),
            )

    def _claim(self, token: str, now: datetime) -> int:
        with self._transaction() as conn:
            cur = conn.execute(
                """
                UPDATE longsteps_process
                SET status = 'running', claim_token = ?, run_at = NULL, updated_at = ?
                WHERE status IN ('pending', 'paused') AND run_at <= ?
                """,
                (token, _format_ts(utc_now()), _format_ts(now)),
            )
            return cur.rowcount

    def _update(
        self, process_id: str, fields: Mapping[str, Any], claim_token: Optional[str]
    ) -> ProcessRecord:
        with self._transaction() as conn:
            row = conn.execute(f"{_SELECT} WHERE id = ?", (process_id,)).fetchone()
            current = self._to_record(row) if row else None
            updated = apply_update(process_id, current, fields, claim_token)
            assignments = ", ".join(f"{column} = ?" for column in COLUMNS[1:])
            conn.execute(
                f"UPDATE longsteps_process SET {assignments} WHERE id = ?",
                (*self._to_params(updated)[1:], process_id),
            )
        return updated

    # ------------------------------------------------------------------
    # Storage API
    async def create(self, fields: Mapping[str, Any]) -> ProcessRecord:
        record = build_new_record(fields)
        await asyncio.to_thread(self._insert, record)
        return record

    async def find(self, process_id: str) -> ProcessRecord | None:
        row = await asyncio.to_thread(
            self._fetchone, f"{_SELECT} WHERE id = ?", process_id
        )
        return self._to_record(row) if row else None

    async def claim_due_batch(self, now: datetime) -> AsyncIterator[ProcessRecord]:
        token = new_claim_token()
        claimed = await asyncio.to_thread(self._claim, token, now)
        if not claimed:
            return
        last_id = ""
        while True:
            rows = await asyncio.to_thread(
                self._fetchall,
                f"{_SELECT} WHERE claim_token = ? AND id > ? ORDER BY id LIMIT ?",
                token,
                last_id,
                self.batch_size,
            )
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
        return await asyncio.to_thread(self._update, process_id, fields, claim_token)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
