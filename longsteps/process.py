"""Business process definitions.

A process type is any class that can be built from
``manager``/``process_id``/``state``/``current_step``/``last_step`` plus the
caller's context keywords and exposes ``build_first_step`` and its step
methods. :class:`Process` is an optional base class providing the usual
helpers.
"""

from __future__ import annotations

from datetime import datetime
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Optional,
    Protocol,
    Sequence,
    Union,
    runtime_checkable,
)

from .errors import UnexpectedStepError
from .join import JoinResolver, wait_processes
from .models import FinalStep, NextStep, StepResult

if TYPE_CHECKING:
    from .manager import LongSteps

_KEEP = object()

RESERVED_NAMES = frozenset(
    {"build_first_step", "new_step", "final_step", "wait_for_steps", "wait_processes"}
)


def is_step_name(process_cls: type, name: str) -> bool:
    """Return ``True`` when ``name`` denotes a step method of ``process_cls``."""
    if not name or name.startswith("_") or name in RESERVED_NAMES:
        return False
    return callable(getattr(process_cls, name, None))


@runtime_checkable
class ProcessDefinition(Protocol):
    """Capability every process type must provide."""

    def build_first_step(self) -> Union[StepResult, Awaitable[StepResult]]:
        """Return the continuation the process starts with."""


class Process:
    """Base class for long running processes.

    Context supplied by the application (``run_due_processes(context)`` or
    the build args of ``instantiate_process``) is available as
    ``self.context``; subclasses may also accept context entries as explicit
    keyword arguments. Context must be stable configuration only: per
    process parameters belong in the state.
    """

    def __init__(
        self,
        *,
        manager: "LongSteps",
        process_id: Optional[str] = None,
        state: Any = None,
        current_step: Optional[str] = None,
        last_step: Optional[str] = None,
        **context: Any,
    ) -> None:
        self.manager = manager
        self.process_id = process_id
        self.state = state
        self.current_step = current_step
        self.last_step = last_step
        self.context = context

    def build_first_step(self) -> Union[StepResult, Awaitable[StepResult]]:
        raise NotImplementedError(
            f"{type(self).__name__} must implement build_first_step()"
        )

    # ------------------------------------------------------------------
    def new_step(
        self, what: str, run_at: Optional[datetime] = None, state: Any = _KEEP
    ) -> NextStep:
        """Continue with step ``what`` at ``run_at`` (default: now)."""
        fields: dict[str, Any] = {"next_step": what, "run_at": run_at or self.manager.now()}
        if state is not _KEEP:
            fields["state"] = state
        return NextStep(**fields)

    def final_step(self, state: Any = _KEEP) -> FinalStep:
        """Terminate the process, optionally replacing its state."""
        if state is _KEEP:
            return FinalStep()
        return FinalStep(state=state)

    def wait_for_steps(self, *step_names: str) -> None:
        """Assert this step was reached from one of ``step_names``.

        A step that reschedules itself (such as a join step polling with
        :meth:`wait_processes`) is its own predecessor on later runs, so
        list the step itself when it may reschedule::

            self.wait_for_steps("fork", "join")

        Raises:
            UnexpectedStepError: If the previous step is not listed.
        """
        if self.last_step not in step_names:
            raise UnexpectedStepError(
                f"Step {self.current_step} of process {self.process_id} reached from "
                f"{self.last_step!r}, expected one of {list(step_names)}"
            )

    async def wait_processes(
        self,
        process_ids: Sequence[str],
        resolve: JoinResolver,
        poll_interval: Optional[float] = None,
    ) -> StepResult:
        """Resume with ``resolve(views)`` once all ``process_ids`` terminated."""
        if self.current_step is None:
            raise UnexpectedStepError("wait_processes can only be used from a step")
        return await wait_processes(
            self.manager.storage,
            process_ids,
            resolve,
            current_step=self.current_step,
            state=self.state,
            poll_interval=(
                self.manager.config.join_poll_interval
                if poll_interval is None
                else poll_interval
            ),
            now=self.manager.now(),
        )

    def __repr__(self) -> str:  # pragma: no cover - simple formatting
        return f"<{type(self).__name__} id={self.process_id} step={self.current_step}>"


__all__ = ["Process", "ProcessDefinition", "is_step_name", "RESERVED_NAMES"]
