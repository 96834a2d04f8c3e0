"""Storage contract for persisted processes."""

from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any, AsyncIterator, Mapping, Optional, Protocol

from pydantic import ValidationError

from ..errors import StorageContractViolation
from ..models import ProcessRecord, utc_now

UPDATABLE_FIELDS = frozenset(
    {
        "status",
        "current_step",
        "run_at",
        "state",
        "claim_token",
        "last_error",
        "last_step",
    }
)

CREATE_FIELDS = UPDATABLE_FIELDS | {"process_type"}


class ProcessStorage(Protocol):
    """Protocol for process persistence backends.

    Backends only persist; they hold no scheduling logic beyond the
    atomic claim of due processes.
    """

    async def create(self, fields: Mapping[str, Any]) -> ProcessRecord:
        """Persist a new process and return it with its assigned id."""

    async def find(self, process_id: str) -> ProcessRecord | None:
        """Retrieve the process by id."""

    def claim_due_batch(self, now: datetime) -> AsyncIterator[ProcessRecord]:
        """Claim every waiting process due at ``now`` and yield them once.

        Claimed processes are switched to ``running`` under a fresh claim
        token with ``run_at`` cleared. Two concurrent callers never claim
        the same process.
        """

    async def update(
        self,
        process_id: str,
        fields: Mapping[str, Any],
        claim_token: Optional[str] = None,
    ) -> ProcessRecord:
        """Apply ``fields`` to a process.

        Raises:
            StorageContractViolation: If the process no longer exists, is
                terminated, or is not held under ``claim_token`` (when given).
        """


def new_process_id() -> str:
    return str(uuid.uuid4())


def new_claim_token() -> str:
    return uuid.uuid4().hex


def ensure_storable_state(process_id: str, state: Any) -> None:
    """Raise ``StorageContractViolation`` unless ``state`` encodes as JSON.

    Every backend enforces this so the in-memory storage accepts exactly
    what the SQL storages can persist.
    """
    try:
        json.dumps(state)
    except (TypeError, ValueError) as exc:
        raise StorageContractViolation(
            f"State of process '{process_id}' is not JSON serializable: {exc}"
        ) from exc


def build_new_record(fields: Mapping[str, Any]) -> ProcessRecord:
    """Validate creation fields and return the record to insert."""
    unknown = set(fields) - CREATE_FIELDS
    if unknown:
        raise ValueError(f"Cannot create process with fields: {sorted(unknown)}")
    ensure_storable_state("<new>", fields.get("state"))
    now = utc_now()
    return ProcessRecord(
        **dict(fields), id=new_process_id(), created_at=now, updated_at=now
    )


def apply_update(
    process_id: str,
    current: ProcessRecord | None,
    fields: Mapping[str, Any],
    claim_token: Optional[str] = None,
) -> ProcessRecord:
    """Return ``current`` with ``fields`` applied, enforcing the update contract."""
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update process fields: {sorted(unknown)}")
    if current is None:
        raise StorageContractViolation(f"Process '{process_id}' no longer exists")
    if current.is_terminated:
        raise StorageContractViolation(
            f"Process '{process_id}' is terminated and cannot be updated"
        )
    if claim_token is not None and current.claim_token != claim_token:
        raise StorageContractViolation(
            f"Process '{process_id}' is not claimed by run {claim_token}"
        )
    if "state" in fields:
        ensure_storable_state(process_id, fields["state"])
    data = current.model_dump()
    data.update(fields)
    data["updated_at"] = utc_now()
    try:
        return ProcessRecord.model_validate(data)
    except ValidationError as exc:
        raise StorageContractViolation(
            f"Invalid update for process '{process_id}': {exc}"
        ) from exc
