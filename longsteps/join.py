"""Fork/join: resume a process once other processes have terminated.

Waiting never blocks. While any awaited process is still alive, the waiting
step simply reschedules itself a poll interval later with its state
untouched, and a later sweep tries again.
"""

from __future__ import annotations

import inspect
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Sequence, Union

from .errors import DanglingProcessReference
from .models import NextStep, ProcessView, StepResult, utc_now

if TYPE_CHECKING:
    from .storage import ProcessStorage

logger = logging.getLogger(__name__)

JoinResolver = Callable[[list[ProcessView]], Union[StepResult, Awaitable[StepResult]]]


async def wait_processes(
    storage: "ProcessStorage",
    process_ids: Sequence[str],
    resolve: JoinResolver,
    *,
    current_step: str,
    state: Any,
    poll_interval: float,
    now: datetime | None = None,
) -> StepResult:
    """Join on ``process_ids``.

    Returns ``resolve(views)`` once every referenced process is terminated,
    views being in the same order as ``process_ids``. Otherwise returns a
    continuation re-running ``current_step`` after ``poll_interval`` seconds.

    Raises:
        DanglingProcessReference: If any id does not exist.
    """
    records = []
    for process_id in process_ids:
        record = await storage.find(process_id)
        if record is None:
            raise DanglingProcessReference(process_id)
        records.append(record)

    pending = [record.id for record in records if not record.is_terminated]
    if pending:
        run_at = (now or utc_now()) + timedelta(seconds=poll_interval)
        logger.debug(
            f"Step {current_step} still waiting on {len(pending)} process(es); "
            f"retrying at {run_at.isoformat()}"
        )
        return NextStep(next_step=current_step, run_at=run_at, state=state)

    result = resolve([ProcessView.from_record(record) for record in records])
    if inspect.isawaitable(result):
        result = await result
    return result
