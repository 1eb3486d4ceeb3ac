"""Task and log records produced by the execution engine."""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple


class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED})
ACTIVE_STATUSES = frozenset({TaskStatus.RUNNING, TaskStatus.PAUSED})


class LogLevel(str, Enum):
    INFO = "info"
    WARN = "warn"
    ERROR = "error"
    SUCCESS = "success"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_task_id() -> str:
    return f"task-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


@dataclass(frozen=True, slots=True)
class LogEntry:
    timestamp: datetime
    level: LogLevel
    step: int
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "step": self.step,
            "message": self.message,
        }


@dataclass(frozen=True, slots=True)
class Task:
    """Snapshot of one execution attempt.

    Instances are never mutated; the store swaps in a new record for every
    change so readers always see a consistent task.
    """

    id: str
    template_id: str
    template_title: str
    profile_path: str
    profile_name: str
    browser: str
    total_steps: int
    status: TaskStatus = TaskStatus.PENDING
    current_step: int = 0
    progress: int = 0
    start_time: datetime = field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    variables: Mapping[str, Any] = field(default_factory=dict)
    logs: Tuple[LogEntry, ...] = ()
    session_id: Optional[str] = None

    def __post_init__(self) -> None:
        # Read-only, and not shared with the mapping the caller passed in.
        object.__setattr__(self, "variables", MappingProxyType(dict(self.variables)))

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def duration(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()

    def to_dict(self, *, include_logs: bool = True) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "task_id": self.id,
            "template_id": self.template_id,
            "template_title": self.template_title,
            "profile_path": self.profile_path,
            "profile_name": self.profile_name,
            "browser": self.browser,
            "status": self.status.value,
            "current_step": self.current_step,
            "total_steps": self.total_steps,
            "progress": self.progress,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration": self.duration,
            "variables": dict(self.variables),
            "session_id": self.session_id,
        }
        if include_logs:
            payload["logs"] = [entry.to_dict() for entry in self.logs]
        return payload


class CancellationToken:
    """Per-task cancel request, kept apart from the task record.

    The engine reads it at the top of each step iteration only; setting it
    never interrupts a step that is already running.
    """

    __slots__ = ("_event",)

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
