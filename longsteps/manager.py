"""Process manager: instantiates processes and runs their due steps."""

from __future__ import annotations

import inspect
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional, Union

from .config import LongStepsConfig, load_config
from .errors import (
    InvalidInitialStep,
    ProcessNotFound,
    StepExecutionFailure,
    StorageContractViolation,
    UnexpectedStepError,
)
from .models import (
    FinalStep,
    NextStep,
    ProcessRecord,
    ProcessStatus,
    StepResult,
    as_utc,
    utc_now,
)
from .process import is_step_name
from .registry import REGISTRY, ProcessRegistry
from .storage import InMemoryProcessStorage, ProcessStorage, get_storage

logger = logging.getLogger(__name__)

# Construction keywords owned by the manager; context may not override them.
RESERVED_CONTEXT_KEYS = frozenset(
    {"manager", "process_id", "state", "current_step", "last_step"}
)


class LongSteps:
    """Entry point for managing long running processes.

    Keep one instance per application (and per storage). The embedding
    application calls :meth:`instantiate_process` to start processes and
    :meth:`run_due_processes` on a regular cadence (cron, timer...) to
    advance them. Any number of managers may sweep the same storage
    concurrently: each due process is claimed by exactly one of them.
    """

    def __init__(
        self,
        storage: Optional[ProcessStorage] = None,
        registry: Optional[ProcessRegistry] = None,
        config: Optional[LongStepsConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.config = config or LongStepsConfig()
        if storage is None:
            logger.warning("No storage specified. Will use in-memory storage")
            storage = InMemoryProcessStorage()
        self.storage = storage
        self.registry = registry or REGISTRY
        self._clock = clock or utc_now

    @classmethod
    def from_config(
        cls,
        config: Optional[LongStepsConfig] = None,
        registry: Optional[ProcessRegistry] = None,
    ) -> "LongSteps":
        """Build a manager whose storage is selected by ``config``."""
        config = config or load_config()
        return cls(storage=get_storage(config=config), registry=registry, config=config)

    def now(self) -> datetime:
        return as_utc(self._clock())

    # ------------------------------------------------------------------
    async def run_due_processes(self, context: Optional[Mapping[str, Any]] = None) -> int:
        """Run the current step of every due process.

        Args:
            context: Stable objects injected into every process built
                during this sweep.

        Returns:
            Number of processes run, failed ones included.
        """
        context = self._check_context(context)
        count = 0
        async for record in self.storage.claim_due_batch(self.now()):
            count += 1
            outcome = await self._execute(record, context)
            await self._persist(record, outcome)
        if count:
            logger.info(f"Ran {count} due process step(s)")
        return count

    async def instantiate_process(
        self,
        process_type: Union[str, type],
        build_args: Optional[Mapping[str, Any]] = None,
        init_state: Any = None,
    ) -> ProcessRecord:
        """Create and persist a new process.

        Args:
            process_type: Registered identifier, dotted import path or the
                process class itself.
            build_args: Context used to build the process for its first step.
            init_state: Initial state of the process (default: empty dict).

        Raises:
            UnknownProcessType: If ``process_type`` does not resolve.
            InvalidInitialStep: If ``build_first_step`` does not return a
                continuation to a known step. Nothing is persisted then.
        """
        if isinstance(process_type, type):
            type_id = self.registry.type_id_for(process_type)
        else:
            type_id = process_type
        process_cls = self.registry.resolve(type_id)
        build_args = self._check_context(build_args)
        if init_state is None:
            init_state = {}

        process = process_cls(manager=self, **build_args)
        first_step = process.build_first_step()
        if inspect.isawaitable(first_step):
            first_step = await first_step

        if isinstance(first_step, FinalStep):
            raise InvalidInitialStep(
                f"{type_id}.build_first_step returned a final step"
            )
        if not isinstance(first_step, NextStep):
            raise InvalidInitialStep(
                f"{type_id}.build_first_step returned {type(first_step).__name__}, "
                "expected NextStep"
            )
        if not is_step_name(process_cls, first_step.next_step):
            raise InvalidInitialStep(
                f"{type_id} has no step named '{first_step.next_step}'"
            )

        record = await self.storage.create(
            {
                "process_type": type_id,
                "status": ProcessStatus.PENDING,
                "current_step": first_step.next_step,
                "run_at": first_step.run_at,
                "state": init_state,
            }
        )
        logger.info(
            f"Instantiated process {type_id}:{record.id} starting at "
            f"{record.current_step} ({record.run_at.isoformat()})"
        )
        return record

    async def find_process(self, process_id: str) -> ProcessRecord | None:
        return await self.storage.find(process_id)

    async def get_process(self, process_id: str) -> ProcessRecord:
        """Like :meth:`find_process` but raises ``ProcessNotFound``."""
        record = await self.storage.find(process_id)
        if record is None:
            raise ProcessNotFound(process_id)
        return record

    # ------------------------------------------------------------------
    @staticmethod
    def _check_context(context: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        context = dict(context or {})
        clashing = RESERVED_CONTEXT_KEYS.intersection(context)
        if clashing:
            raise ValueError(f"Context cannot define reserved keys: {sorted(clashing)}")
        return context

    async def _execute(
        self, record: ProcessRecord, context: Mapping[str, Any]
    ) -> Union[StepResult, StepExecutionFailure]:
        """Run the claimed step of ``record``; failures are returned, not raised."""
        step_name = record.current_step
        try:
            process_cls = self.registry.resolve(record.process_type)
            if not is_step_name(process_cls, step_name):
                raise UnexpectedStepError(
                    f"{record.process_type} has no step named '{step_name}'"
                )
            process = process_cls(
                manager=self,
                process_id=record.id,
                state=record.state,
                current_step=step_name,
                last_step=record.last_step,
                **context,
            )
            result = getattr(process, step_name)()
            if inspect.isawaitable(result):
                result = await result
            if not isinstance(result, (NextStep, FinalStep)):
                raise TypeError(
                    f"step returned {type(result).__name__}, expected NextStep or FinalStep"
                )
            if isinstance(result, NextStep) and not is_step_name(
                process_cls, result.next_step
            ):
                raise UnexpectedStepError(
                    f"{record.process_type} has no step named '{result.next_step}'"
                )
        except Exception as exc:
            logger.error(
                f"Error running process {record.process_type}:{record.id} "
                f"step {step_name}: {exc}",
                exc_info=True,
            )
            return StepExecutionFailure(record.id, step_name, exc)
        return result

    async def _persist(
        self, record: ProcessRecord, outcome: Union[StepResult, StepExecutionFailure]
    ) -> None:
        """Store the outcome of ``record``'s step without raising.

        When the outcome itself cannot be stored (unencodable state,
        database error...), the process is terminated with that error
        instead.
        """
        try:
            await self.storage.update(
                record.id,
                self._transition(record, outcome),
                claim_token=record.claim_token,
            )
            return
        except Exception as exc:
            logger.error(
                f"Could not persist step {record.current_step} of process "
                f"{record.process_type}:{record.id}: {exc}",
                exc_info=not isinstance(exc, StorageContractViolation),
            )
            if isinstance(outcome, StepExecutionFailure):
                return
            failure = StepExecutionFailure(record.id, record.current_step, exc)

        try:
            await self.storage.update(
                record.id,
                self._transition(record, failure),
                claim_token=record.claim_token,
            )
        except Exception as exc:
            logger.error(
                f"Process {record.process_type}:{record.id} left running, "
                f"could not record its failure: {exc}"
            )

    @staticmethod
    def _transition(
        record: ProcessRecord, outcome: Union[StepResult, StepExecutionFailure]
    ) -> Dict[str, Any]:
        fields: Dict[str, Any] = {"claim_token": None, "last_step": record.current_step}
        if isinstance(outcome, StepExecutionFailure):
            fields.update(
                status=ProcessStatus.TERMINATED,
                current_step=None,
                run_at=None,
                last_error=outcome.describe(),
            )
        elif isinstance(outcome, FinalStep):
            fields.update(
                status=ProcessStatus.TERMINATED,
                current_step=None,
                run_at=None,
                state=outcome.state_or(record.state),
            )
        else:
            fields.update(
                status=ProcessStatus.PAUSED,
                current_step=outcome.next_step,
                run_at=outcome.run_at,
                state=outcome.state_or(record.state),
            )
        logger.debug(
            f"Process {record.process_type}:{record.id} {record.current_step} -> "
            f"{fields['status'].value} {fields.get('current_step') or ''}".rstrip()
        )
        return fields
