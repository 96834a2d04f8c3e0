"""Exceptions raised by the longsteps scheduling core."""

from __future__ import annotations


class LongStepsError(Exception):
    """Base class for every longsteps error."""


class UnknownProcessType(LongStepsError):
    """A process type identifier does not resolve to business logic."""

    def __init__(self, type_id: str, reason: str | None = None) -> None:
        self.type_id = type_id
        message = f"Unknown process type '{type_id}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class InvalidInitialStep(LongStepsError):
    """The initial-step producer did not return a usable continuation."""


class DanglingProcessReference(LongStepsError):
    """A fork/join referenced a process id that does not exist."""

    def __init__(self, process_id: str) -> None:
        self.process_id = process_id
        super().__init__(f"Process '{process_id}' does not exist")


class UnexpectedStepError(LongStepsError):
    """A step was reached from a predecessor it does not accept."""


class StorageContractViolation(LongStepsError):
    """Storage could not apply a change without breaking its contract."""


class ProcessNotFound(LongStepsError):
    def __init__(self, process_id: str) -> None:
        self.process_id = process_id
        super().__init__(f"Process '{process_id}' not found")


class StepExecutionFailure(LongStepsError):
    """Failure of a single step, contained to the record it ran for.

    The driver returns this as a value rather than raising it so one
    failing process never interrupts the rest of a sweep.
    """

    def __init__(self, process_id: str, step: str | None, cause: BaseException) -> None:
        self.process_id = process_id
        self.step = step
        self.cause = cause
        super().__init__(self.describe())

    def describe(self) -> str:
        return f"{self.step}: {type(self.cause).__name__}: {self.cause}"


__all__ = [
    "LongStepsError",
    "UnknownProcessType",
    "InvalidInitialStep",
    "DanglingProcessReference",
    "UnexpectedStepError",
    "StorageContractViolation",
    "ProcessNotFound",
    "StepExecutionFailure",
]
