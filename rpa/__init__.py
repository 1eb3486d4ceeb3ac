"""Template automation engine for isolated browser profiles."""

from .config import EngineConfig, load_config
from .dsl import Step, Template, TemplateVariable
from .engine import ExecutionEngine
from .gateway import LaunchResult, SessionGateway
from .interpreter import StepInterpreter
from .registry import TaskRegistry
from .store import TaskEvent, TaskStore
from .tasks import LogEntry, LogLevel, Task, TaskStatus

__all__ = [
    "EngineConfig",
    "ExecutionEngine",
    "LaunchResult",
    "LogEntry",
    "LogLevel",
    "SessionGateway",
    "Step",
    "StepInterpreter",
    "Task",
    "TaskEvent",
    "TaskRegistry",
    "TaskStatus",
    "TaskStore",
    "Template",
    "TemplateVariable",
    "load_config",
]
