"""Formatting helpers and the Python-logging mirror for task logs."""

from __future__ import annotations

import logging
import threading
from typing import Dict, Tuple

from .store import TaskEvent
from .tasks import LogEntry, LogLevel, Task

_LEVELS: Dict[LogLevel, int] = {
    LogLevel.INFO: logging.INFO,
    LogLevel.SUCCESS: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


def progress_for(step_number: int, total_steps: int) -> int:
    """Percentage of steps started before ``step_number`` (1-indexed)."""

    if total_steps <= 0:
        return 0
    return (100 * (step_number - 1)) // total_steps


def format_entry(entry: LogEntry) -> str:
    return f"{entry.timestamp.isoformat()} [{entry.level.value.upper():7}] step {entry.step}: {entry.message}"


def format_task_line(task: Task) -> str:
    return (
        f"{task.id} {task.template_title!r} on {task.profile_name or task.profile_path} "
        f"[{task.status.value}] {task.current_step}/{task.total_steps} ({task.progress}%)"
    )


class LoggingListener:
    """Store listener that echoes each new task log entry to ``logging``.

    Events can arrive out of order when several threads write to the store;
    a snapshot older than the last one seen for the task is ignored.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger("rpa.tasks")
        self._seen: Dict[str, Tuple[int, int]] = {}
        self._lock = threading.Lock()

    def __call__(self, event: TaskEvent) -> None:
        task = event.task
        with self._lock:
            if event.kind == "removed":
                self._seen.pop(task.id, None)
                return
            version, already = self._seen.get(task.id, (0, 0))
            if event.version <= version:
                return
            fresh = task.logs[already:]
            self._seen[task.id] = (event.version, max(already, len(task.logs)))
        for entry in fresh:
            self.logger.log(_LEVELS[entry.level], "[%s] %s", task.id, format_entry(entry))
