"""In-memory implementation of the process storage."""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Mapping, Optional

from ..models import WAITING_STATUSES, ProcessRecord, ProcessStatus, as_utc, utc_now
from .repository import ProcessStorage, apply_update, build_new_record, new_claim_token


class InMemoryProcessStorage(ProcessStorage):
    """Store processes in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Every record handed out is a deep
    copy, so callers can never mutate stored state behind the storage's back.
    """

    def __init__(self) -> None:
        self._processes: Dict[str, ProcessRecord] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    async def create(self, fields: Mapping[str, Any]) -> ProcessRecord:
        record = build_new_record(fields).model_copy(deep=True)
        with self._lock:
            self._processes[record.id] = record
        return record.model_copy(deep=True)

    async def find(self, process_id: str) -> ProcessRecord | None:
        with self._lock:
            record = self._processes.get(process_id)
            return record.model_copy(deep=True) if record else None

    async def claim_due_batch(self, now: datetime) -> AsyncIterator[ProcessRecord]:
        now = as_utc(now)
        token = new_claim_token()
        claimed: list[ProcessRecord] = []
        with self._lock:
            for process_id, record in self._processes.items():
                if record.status not in WAITING_STATUSES or record.run_at > now:
                    continue
                running = record.model_copy(
                    update={
                        "status": ProcessStatus.RUNNING,
                        "claim_token": token,
                        "run_at": None,
                        "updated_at": utc_now(),
                    }
                )
                self._processes[process_id] = running
                claimed.append(running.model_copy(deep=True))
        for record in claimed:
            yield record

    async def update(
        self,
        process_id: str,
        fields: Mapping[str, Any],
        claim_token: Optional[str] = None,
    ) -> ProcessRecord:
        with self._lock:
            updated = apply_update(
                process_id, self._processes.get(process_id), fields, claim_token
            ).model_copy(deep=True)
            self._processes[process_id] = updated
            return updated.model_copy(deep=True)

    def __len__(self) -> int:
        return len(self._processes)
