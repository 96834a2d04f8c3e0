"""Contract tests shared by the in-memory and SQLite storages."""

from datetime import datetime, timedelta, timezone

import pytest

from longsteps.errors import StorageContractViolation
from longsteps.models import ProcessStatus
from longsteps.storage import InMemoryProcessStorage, SQLiteProcessStorage

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(params=["inmemory", "sqlite"])
def any_storage(request, tmp_path):
    if request.param == "inmemory":
        yield InMemoryProcessStorage()
        return
    storage = SQLiteProcessStorage(tmp_path / "processes.db", batch_size=2)
    yield storage
    storage.close()


def _fields(run_at=NOW, state=None, step="start"):
    return {
        "process_type": "demo",
        "status": ProcessStatus.PENDING,
        "current_step": step,
        "run_at": run_at,
        "state": {"n": 0} if state is None else state,
    }


async def _claim(storage, now):
    return [record async for record in storage.claim_due_batch(now)]


@pytest.mark.asyncio
async def test_create_and_find(any_storage):
    created = await any_storage.create(_fields(state={"nested": [1, {"a": None}]}))
    assert created.id
    assert created.status is ProcessStatus.PENDING

    found = await any_storage.find(created.id)
    assert found is not None
    assert found.id == created.id
    assert found.current_step == "start"
    assert found.run_at == NOW
    assert found.state == {"nested": [1, {"a": None}]}

    assert await any_storage.find("missing") is None


@pytest.mark.asyncio
async def test_create_rejects_inconsistent_records(any_storage):
    with pytest.raises(ValueError):
        await any_storage.create({**_fields(), "run_at": None})
    with pytest.raises(ValueError):
        await any_storage.create({**_fields(), "id": "chosen"})


@pytest.mark.asyncio
async def test_claim_only_due_waiting_records(any_storage):
    due = await any_storage.create(_fields(run_at=NOW - timedelta(minutes=1)))
    exactly_due = await any_storage.create(_fields(run_at=NOW))
    future = await any_storage.create(_fields(run_at=NOW + timedelta(seconds=1)))

    claimed = await _claim(any_storage, NOW)

    assert {r.id for r in claimed} == {due.id, exactly_due.id}
    for record in claimed:
        assert record.status is ProcessStatus.RUNNING
        assert record.claim_token
        assert record.run_at is None
    assert len({r.claim_token for r in claimed}) == 1

    stored = await any_storage.find(due.id)
    assert stored.status is ProcessStatus.RUNNING

    # Running records are not claimed again, the future one becomes due later.
    assert await _claim(any_storage, NOW) == []
    later = await _claim(any_storage, NOW + timedelta(seconds=1))
    assert [r.id for r in later] == [future.id]


@pytest.mark.asyncio
async def test_claim_pages_through_large_batches(any_storage):
    ids = {(await any_storage.create(_fields())).id for _ in range(5)}
    claimed = await _claim(any_storage, NOW)
    assert sorted(r.id for r in claimed) == sorted(ids)


@pytest.mark.asyncio
async def test_update_after_claim(any_storage):
    created = await any_storage.create(_fields())
    [claimed] = await _claim(any_storage, NOW)

    updated = await any_storage.update(
        created.id,
        {
            "status": ProcessStatus.PAUSED,
            "current_step": "next",
            "run_at": NOW + timedelta(days=2),
            "state": {"n": 1},
            "claim_token": None,
            "last_step": "start",
        },
        claim_token=claimed.claim_token,
    )
    assert updated.status is ProcessStatus.PAUSED
    assert updated.updated_at >= created.updated_at

    stored = await any_storage.find(created.id)
    assert stored.current_step == "next"
    assert stored.run_at == NOW + timedelta(days=2)
    assert stored.state == {"n": 1}
    assert stored.claim_token is None
    assert stored.last_step == "start"


@pytest.mark.asyncio
async def test_update_missing_record_fails_loudly(any_storage):
    with pytest.raises(StorageContractViolation):
        await any_storage.update("missing", {"state": {}})


@pytest.mark.asyncio
async def test_update_with_stale_claim_token_fails(any_storage):
    created = await any_storage.create(_fields())
    await _claim(any_storage, NOW)

    with pytest.raises(StorageContractViolation):
        await any_storage.update(created.id, {"state": {"n": 9}}, claim_token="not-mine")
    assert (await any_storage.find(created.id)).state == {"n": 0}


@pytest.mark.asyncio
async def test_update_rejecting_invalid_transition(any_storage):
    created = await any_storage.create(_fields())
    with pytest.raises(StorageContractViolation):
        await any_storage.update(created.id, {"run_at": None})
    with pytest.raises(ValueError):
        await any_storage.update(created.id, {"process_type": "other"})


@pytest.mark.asyncio
async def test_terminated_records_are_immutable(any_storage):
    created = await any_storage.create(_fields())
    await any_storage.update(
        created.id,
        {
            "status": ProcessStatus.TERMINATED,
            "current_step": None,
            "run_at": None,
            "state": {"final": True},
        },
    )

    with pytest.raises(StorageContractViolation):
        await any_storage.update(created.id, {"state": {"final": False}})
    assert await _claim(any_storage, NOW + timedelta(days=365)) == []

    stored = await any_storage.find(created.id)
    assert stored.is_terminated
    assert stored.state == {"final": True}


@pytest.mark.asyncio
async def test_returned_records_do_not_alias_storage(any_storage):
    created = await any_storage.create(_fields(state={"items": [1]}))
    found = await any_storage.find(created.id)
    found.state["items"].append(2)

    assert (await any_storage.find(created.id)).state == {"items": [1]}


@pytest.mark.asyncio
async def test_create_rejects_state_that_is_not_json(any_storage):
    with pytest.raises(StorageContractViolation, match="not JSON serializable"):
        await any_storage.create(_fields(state={"when": NOW}))
    assert await _claim(any_storage, NOW) == []


@pytest.mark.asyncio
async def test_update_rejects_state_that_is_not_json(any_storage):
    created = await any_storage.create(_fields())
    [claimed] = await _claim(any_storage, NOW)

    with pytest.raises(StorageContractViolation, match="not JSON serializable"):
        await any_storage.update(
            created.id,
            {
                "status": ProcessStatus.PAUSED,
                "current_step": "start",
                "run_at": NOW,
                "state": {"tags": {"a", "b"}},
                "claim_token": None,
            },
            claim_token=claimed.claim_token,
        )

    stored = await any_storage.find(created.id)
    assert stored.status is ProcessStatus.RUNNING
    assert stored.claim_token == claimed.claim_token
    assert stored.state == {"n": 0}
