from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from rpa import store as store_module
from rpa.store import TaskStore
from rpa.tasks import CancellationToken, LogLevel, Task, TaskStatus, new_task_id


def _task(task_id: str = "task-1", total_steps: int = 3) -> Task:
    return Task(
        id=task_id,
        template_id="tpl",
        template_title="Template",
        profile_path="/tmp/profiles/a",
        profile_name="a",
        browser="chrome",
        total_steps=total_steps,
    )


def test_add_update_and_notify():
    store = TaskStore()
    events = []
    store.subscribe(events.append)

    store.add(_task())
    updated = store.update("task-1", status=TaskStatus.RUNNING, current_step=1, progress=0)

    assert updated.status is TaskStatus.RUNNING
    assert store.get("task-1") is updated
    assert [event.kind for event in events] == ["added", "updated"]
    assert events[-1].task is updated


def test_snapshot_records_are_stable():
    store = TaskStore()
    store.add(_task())
    before = store.get("task-1")

    store.update("task-1", status=TaskStatus.RUNNING)

    assert before.status is TaskStatus.PENDING
    assert store.get("task-1").status is TaskStatus.RUNNING


def test_duplicate_add_rejected():
    store = TaskStore()
    store.add(_task())

    with pytest.raises(KeyError):
        store.add(_task())


def test_update_unknown_task_returns_none():
    assert TaskStore().update("missing", status=TaskStatus.RUNNING) is None


def test_terminal_status_sets_end_time_and_freezes_fields():
    store = TaskStore()
    store.add(_task())
    store.update("task-1", status=TaskStatus.RUNNING, current_step=1)

    cancelled = store.update("task-1", status=TaskStatus.CANCELLED)
    assert cancelled.end_time is not None

    after = store.update("task-1", status=TaskStatus.COMPLETED, current_step=2, progress=100)
    assert after is cancelled
    assert after.status is TaskStatus.CANCELLED
    assert after.current_step == 1


def test_logs_still_append_after_terminal():
    store = TaskStore()
    store.add(_task())
    store.update("task-1", status=TaskStatus.FAILED)

    entry = store.append_log("task-1", LogLevel.WARN, 0, "late")

    assert entry.message == "late"
    assert store.get("task-1").logs[-1] is entry


def test_current_step_must_not_go_backwards_or_past_total():
    store = TaskStore()
    store.add(_task(total_steps=2))
    store.update("task-1", current_step=2)

    with pytest.raises(ValueError):
        store.update("task-1", current_step=1)
    with pytest.raises(ValueError):
        store.update("task-1", current_step=3)


def test_log_timestamps_never_decrease(monkeypatch):
    store = TaskStore()
    store.add(_task())
    base = datetime(2024, 1, 1, tzinfo=timezone.utc)
    times = iter([base, base - timedelta(seconds=5), base + timedelta(seconds=1)])
    monkeypatch.setattr(store_module, "utcnow", lambda: next(times))

    store.append_log("task-1", LogLevel.INFO, 0, "first")
    store.append_log("task-1", LogLevel.INFO, 0, "clock stepped back")
    store.append_log("task-1", LogLevel.INFO, 0, "third")

    stamps = [entry.timestamp for entry in store.get("task-1").logs]
    assert stamps == [base, base, base + timedelta(seconds=1)]


def test_append_log_unknown_task():
    assert TaskStore().append_log("missing", LogLevel.INFO, 0, "x") is None


def test_failing_listener_does_not_block_others():
    store = TaskStore()
    seen = []

    def broken(event):
        raise RuntimeError("listener bug")

    store.subscribe(broken)
    store.subscribe(seen.append)
    store.add(_task())

    assert len(seen) == 1


def test_unsubscribe_and_remove():
    store = TaskStore()
    events = []
    unsubscribe = store.subscribe(events.append)
    store.add(_task())

    removed = store.remove("task-1")
    unsubscribe()
    store.add(_task("task-2"))

    assert removed.id == "task-1"
    assert "task-1" not in store
    assert len(store) == 1
    assert [event.kind for event in events] == ["added", "removed"]
    assert store.remove("task-1") is None


def test_task_to_dict_without_logs():
    task = _task()
    payload = task.to_dict(include_logs=False)

    assert payload["task_id"] == "task-1"
    assert payload["status"] == "pending"
    assert payload["end_time"] is None
    assert "logs" not in payload
    assert task.duration is None


def test_task_ids_are_unique():
    ids = {new_task_id() for _ in range(200)}

    assert len(ids) == 200
    assert all(task_id.startswith("task-") for task_id in ids)


def test_cancellation_token():
    token = CancellationToken()
    assert not token.cancelled
    token.cancel()
    token.cancel()
    assert token.cancelled


def test_event_versions_increase_with_every_commit():
    store = TaskStore()
    versions = []
    store.subscribe(lambda event: versions.append(event.version))

    store.add(_task())
    store.update("task-1", status=TaskStatus.RUNNING)
    store.append_log("task-1", LogLevel.INFO, 0, "hello")
    store.remove("task-1")

    assert versions == sorted(versions)
    assert len(set(versions)) == 4


def test_versions_order_snapshots_delivered_out_of_order():
    store = TaskStore()
    store.add(_task())
    seen = []

    def cancel_when_running(event):
        if event.task.status is TaskStatus.RUNNING:
            store.update(event.task.id, status=TaskStatus.CANCELLED)

    store.subscribe(cancel_when_running)
    store.subscribe(lambda event: seen.append((event.version, event.task.status)))
    store.update("task-1", status=TaskStatus.RUNNING)

    assert [status for _, status in seen] == [TaskStatus.CANCELLED, TaskStatus.RUNNING]
    assert max(seen)[1] is TaskStatus.CANCELLED


def test_task_variables_are_read_only_copies():
    supplied = {"query": "tokyo"}
    store = TaskStore()
    store.add(replace(_task(), variables=supplied))
    supplied["query"] = "osaka"
    first = store.get("task-1")
    second = store.update("task-1", status=TaskStatus.RUNNING)

    with pytest.raises(TypeError):
        first.variables["query"] = "kyoto"
    assert first.variables == {"query": "tokyo"}
    assert second.variables == {"query": "tokyo"}
    assert first.to_dict()["variables"] == {"query": "tokyo"}
