"""Observable, copy-on-write collection of task records."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Literal, Optional

from .tasks import LogEntry, LogLevel, Task, TaskStatus, utcnow

log = logging.getLogger(__name__)

EventKind = Literal["added", "updated", "removed"]


@dataclass(frozen=True, slots=True)
class TaskEvent:
    """A committed change.

    ``version`` grows with every commit to the store, so a listener can drop a
    snapshot older than one it has already seen.
    """

    kind: EventKind
    task: Task
    version: int


Listener = Callable[[TaskEvent], None]


class TaskStore:
    """Holds every task and notifies listeners about each committed change.

    Records are replaced wholesale under a lock, so a reader holding a
    :class:`Task` never observes a half-applied update. Once a task reaches a
    terminal status its fields are frozen; only log appends are accepted.
    """

    def __init__(self) -> None:
        self._tasks: Dict[str, Task] = {}
        self._listeners: List[Listener] = []
        self._lock = threading.RLock()
        self._version = 0

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    def get(self, task_id: str) -> Optional[Task]:
        with self._lock:
            return self._tasks.get(task_id)

    def snapshot(self) -> List[Task]:
        with self._lock:
            return list(self._tasks.values())

    def __contains__(self, task_id: str) -> bool:
        with self._lock:
            return task_id in self._tasks

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------
    def add(self, task: Task) -> Task:
        with self._lock:
            if task.id in self._tasks:
                raise KeyError(f"Task '{task.id}' already registered")
            self._tasks[task.id] = task
            event = self._event("added", task)
        self._notify(event)
        return task

    def update(self, task_id: str, **changes: Any) -> Optional[Task]:
        """Replace the task with a copy carrying ``changes``.

        Returns the stored record after the call, which is the unchanged
        record when the task is already terminal, or ``None`` if unknown.
        """

        with self._lock:
            current = self._tasks.get(task_id)
            if current is None:
                return None
            if current.is_terminal:
                log.debug("Ignoring update %s for terminal task %s", sorted(changes), task_id)
                return current
            status = changes.get("status", current.status)
            if TaskStatus(status).is_terminal:
                changes.setdefault("end_time", utcnow())
            step = changes.get("current_step", current.current_step)
            if step < current.current_step or step > current.total_steps:
                raise ValueError(
                    f"current_step {step} out of range for task {task_id} "
                    f"(was {current.current_step}, total {current.total_steps})"
                )
            updated = replace(current, **changes)
            self._tasks[task_id] = updated
            event = self._event("updated", updated)
        self._notify(event)
        return updated

    def append_log(self, task_id: str, level: LogLevel, step: int, message: str) -> Optional[LogEntry]:
        with self._lock:
            current = self._tasks.get(task_id)
            if current is None:
                return None
            timestamp = utcnow()
            if current.logs and timestamp < current.logs[-1].timestamp:
                timestamp = current.logs[-1].timestamp
            entry = LogEntry(timestamp=timestamp, level=LogLevel(level), step=step, message=message)
            updated = replace(current, logs=current.logs + (entry,))
            self._tasks[task_id] = updated
            event = self._event("updated", updated)
        self._notify(event)
        return entry

    def remove(self, task_id: str) -> Optional[Task]:
        with self._lock:
            removed = self._tasks.pop(task_id, None)
            if removed is None:
                return None
            event = self._event("removed", removed)
        self._notify(event)
        return removed

    # ------------------------------------------------------------------
    # observation
    # ------------------------------------------------------------------
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def _event(self, kind: EventKind, task: Task) -> TaskEvent:
        # Caller holds the lock.
        self._version += 1
        return TaskEvent(kind, task, self._version)

    def _notify(self, event: TaskEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception as exc:
                log.exception("Task listener %r failed on %s event: %s", listener, event.kind, exc)
