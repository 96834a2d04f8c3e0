"""Data models for persisted processes and step transitions."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalise ``value`` to an aware UTC datetime; naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ProcessStatus(str, Enum):
    PENDING = "pending"
    PAUSED = "paused"
    RUNNING = "running"
    TERMINATED = "terminated"


WAITING_STATUSES = frozenset({ProcessStatus.PENDING, ProcessStatus.PAUSED})


class ProcessRecord(BaseModel):
    """Persisted process data.

    Construction enforces the record invariants, so a storage backend can
    never hand out (or persist) a record in an impossible state:

    - ``run_at`` is set exactly while the process waits (pending/paused).
    - ``claim_token`` is set exactly while the process is running.
    - ``current_step`` is set for every status but terminated.
    """

    id: str
    process_type: str
    status: ProcessStatus = ProcessStatus.PENDING
    current_step: Optional[str] = None
    run_at: Optional[datetime] = None
    state: Any = None
    claim_token: Optional[str] = None
    last_error: Optional[str] = None
    last_step: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("run_at", "created_at", "updated_at")
    @classmethod
    def _ensure_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    @model_validator(mode="after")
    def _check_invariants(self) -> "ProcessRecord":
        waiting = self.status in WAITING_STATUSES
        if waiting != (self.run_at is not None):
            raise ValueError(
                f"run_at must be set if and only if the process is waiting "
                f"(status={self.status.value})"
            )
        if (self.status is ProcessStatus.RUNNING) != (self.claim_token is not None):
            raise ValueError(
                f"claim_token must be set if and only if the process is running "
                f"(status={self.status.value})"
            )
        if (self.status is ProcessStatus.TERMINATED) != (self.current_step is None):
            raise ValueError(
                f"current_step must be cleared if and only if the process is terminated "
                f"(status={self.status.value})"
            )
        if self.last_error is not None and self.status is not ProcessStatus.TERMINATED:
            raise ValueError("last_error may only be set on a terminated process")
        return self

    @property
    def is_terminated(self) -> bool:
        return self.status is ProcessStatus.TERMINATED


class NextStep(BaseModel):
    """Continuation: run ``next_step`` at ``run_at`` with ``state``.

    Leaving ``state`` unset keeps the process's current state.
    """

    model_config = ConfigDict(frozen=True)

    next_step: str
    run_at: datetime = Field(default_factory=utc_now)
    state: Any = None

    @field_validator("next_step")
    @classmethod
    def _ensure_step_name(cls, value: str) -> str:
        if not value:
            raise ValueError("next_step must be a non-empty step name")
        return value

    @field_validator("run_at")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    def state_or(self, current: Any) -> Any:
        return self.state if "state" in self.model_fields_set else current


class FinalStep(BaseModel):
    """Terminal marker carrying the final state of a process."""

    model_config = ConfigDict(frozen=True)

    state: Any = None

    def state_or(self, current: Any) -> Any:
        return self.state if "state" in self.model_fields_set else current


StepResult = Union[NextStep, FinalStep]


class ProcessView(BaseModel):
    """Read-only view of a terminated process handed to fork/join resolvers."""

    model_config = ConfigDict(frozen=True)

    id: str
    process_type: str
    state: Any = None
    last_error: Optional[str] = None

    @classmethod
    def from_record(cls, record: ProcessRecord) -> "ProcessView":
        return cls(
            id=record.id,
            process_type=record.process_type,
            state=record.state,
            last_error=record.last_error,
        )


__all__ = [
    "ProcessStatus",
    "ProcessRecord",
    "NextStep",
    "FinalStep",
    "StepResult",
    "ProcessView",
    "WAITING_STATUSES",
    "utc_now",
    "as_utc",
]
