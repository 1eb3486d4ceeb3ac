"""Public task surface: start, cancel, remove and observe executions."""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Union

from .dsl.models import Template
from .engine import ExecutionEngine
from .formatting import format_task_line
from .store import Listener, TaskStore
from .tasks import CancellationToken, LogLevel, Task, TaskStatus, new_task_id

log = logging.getLogger(__name__)

Runner = Union["asyncio.Task[Any]", concurrent.futures.Future]


class TaskRegistry:
    """Creates tasks and hands them to the engine without waiting.

    The registry, not the spawned coroutine, is the source of truth for a
    task's progress. Tasks stay registered after they finish until
    :meth:`remove_task` is called.
    """

    def __init__(
        self,
        engine: ExecutionEngine,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.engine = engine
        self.store: TaskStore = engine.store
        self._loop = loop
        self._tokens: Dict[str, CancellationToken] = {}
        self._runners: Set[Runner] = set()

    # ------------------------------------------------------------------
    # commands
    # ------------------------------------------------------------------
    def start_task(
        self,
        template: Template,
        profile_path: str,
        profile_name: str,
        browser: str,
        variables: Optional[Mapping[str, Any]] = None,
    ) -> str:
        """Register a pending task and schedule its execution.

        Returns the new task id before any gateway call has been made.
        """

        self._require_scheduler()
        bindings = template.resolve_variables(dict(variables or {}))
        task = Task(
            id=new_task_id(),
            template_id=template.id,
            template_title=template.title,
            profile_path=profile_path,
            profile_name=profile_name,
            browser=browser,
            total_steps=len(template.steps),
            variables=bindings,
        )
        token = CancellationToken()
        self._tokens[task.id] = token
        self.store.add(task)

        missing = template.missing_required(bindings)
        if missing:
            self.store.append_log(
                task.id, LogLevel.WARN, 0, f"Missing required variable(s): {', '.join(missing)}"
            )

        log.info("Starting %s", format_task_line(task))
        self._spawn(self.engine.run(task.id, template, token))
        return task.id

    def cancel_task(self, task_id: str) -> bool:
        """Request cancellation and mark the task cancelled right away.

        The engine still finishes any in-flight gateway call and stops at the
        next step boundary. Returns ``False`` for unknown tasks.
        """

        token = self._tokens.get(task_id)
        if token is None or task_id not in self.store:
            return False
        token.cancel()
        self.store.update(task_id, status=TaskStatus.CANCELLED)
        log.info("Cancellation requested for task %s", task_id)
        return True

    def remove_task(self, task_id: str) -> None:
        self._tokens.pop(task_id, None)
        self.store.remove(task_id)

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    def get_task(self, task_id: str) -> Optional[Task]:
        return self.store.get(task_id)

    @property
    def tasks(self) -> List[Task]:
        return self.store.snapshot()

    @property
    def active_tasks(self) -> List[Task]:
        return [task for task in self.store.snapshot() if task.status.is_active]

    @property
    def task_history(self) -> List[Task]:
        return [task for task in self.store.snapshot() if task.is_terminal]

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.store.subscribe(listener)

    # ------------------------------------------------------------------
    # scheduling
    # ------------------------------------------------------------------
    def _require_scheduler(self) -> None:
        if self._loop is not None:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError as exc:
            raise RuntimeError("start_task needs a running event loop or a registry bound to one") from exc

    def _spawn(self, coro) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        runner: Runner
        if self._loop is not None and self._loop is not running:
            runner = asyncio.run_coroutine_threadsafe(coro, self._loop)
        else:
            runner = (running or self._loop).create_task(coro)

        self._runners.add(runner)
        runner.add_done_callback(self._runner_done)

    def _runner_done(self, runner: Runner) -> None:
        self._runners.discard(runner)
        if runner.cancelled():
            return
        exc = runner.exception()
        if exc is not None:
            log.error("Task runner crashed: %s", exc)

    async def drain(self) -> None:
        """Wait until every execution spawned so far has finished."""

        pending = list(self._runners)
        if not pending:
            return
        awaitables = [
            asyncio.wrap_future(runner) if isinstance(runner, concurrent.futures.Future) else runner
            for runner in pending
        ]
        await asyncio.gather(*awaitables, return_exceptions=True)
