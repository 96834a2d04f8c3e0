"""Tests for asserting the predecessor of a step."""

from datetime import timedelta

import pytest

from longsteps import Process, UnexpectedStepError


class Approval(Process):
    def build_first_step(self):
        return self.new_step("request")

    def request(self):
        return self.new_step(self.state.get("route", "review"))

    def review(self):
        self.wait_for_steps("request", "review")
        if self.state.get("reviews", 0) < 1:
            return self.new_step("review", state={**self.state, "reviews": 1})
        return self.final_step({"approved": True})

    def shortcut(self):
        return self.new_step("review")


class Task(Process):
    def build_first_step(self):
        return self.new_step("finish", self.manager.now() + timedelta(days=1))

    def finish(self):
        return self.final_step()


class Delegation(Process):
    def build_first_step(self):
        return self.new_step("fork")

    async def fork(self):
        task = await self.manager.instantiate_process("Task")
        return self.new_step("join", state={"tasks": [task.id]})

    async def join(self):
        self.wait_for_steps("fork", "join")
        return await self.wait_processes(
            self.state["tasks"], lambda views: self.final_step({"done": len(views)})
        )


@pytest.fixture(autouse=True)
def _register(registry):
    registry.register(Approval, name="Approval")
    registry.register(Task, name="Task")
    registry.register(Delegation, name="Delegation")


@pytest.mark.asyncio
async def test_expected_predecessors_pass(manager):
    record = await manager.instantiate_process("Approval")
    for _ in range(3):
        await manager.run_due_processes()

    stored = await manager.find_process(record.id)
    assert stored.is_terminated
    assert stored.last_error is None
    assert stored.state == {"approved": True}


@pytest.mark.asyncio
async def test_unexpected_predecessor_terminates_with_error(manager):
    record = await manager.instantiate_process("Approval", {}, {"route": "shortcut"})
    for _ in range(3):
        await manager.run_due_processes()

    stored = await manager.find_process(record.id)
    assert stored.is_terminated
    assert stored.last_step == "review"
    assert "UnexpectedStepError" in stored.last_error
    assert "'shortcut'" in stored.last_error


def test_guard_on_first_step_has_no_predecessor(manager):
    process = Approval(manager=manager, process_id="p", state={}, current_step="review")
    with pytest.raises(UnexpectedStepError):
        process.wait_for_steps("request")


@pytest.mark.asyncio
async def test_guarded_join_step_accepts_its_own_reschedule(manager, clock):
    record = await manager.instantiate_process("Delegation")
    await manager.run_due_processes()
    await manager.run_due_processes()

    polling = await manager.find_process(record.id)
    assert polling.current_step == "join"
    assert polling.last_step == "join"

    clock.advance(days=1)
    await manager.run_due_processes()
    clock.advance(minutes=1)
    await manager.run_due_processes()

    stored = await manager.find_process(record.id)
    assert stored.is_terminated
    assert stored.last_error is None
    assert stored.state == {"done": 1}
