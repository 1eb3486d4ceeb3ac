"""Drives a single task from launch to a terminal status."""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any, Mapping, Optional

from . import scripts
from .config import EngineConfig
from .dsl.models import Template
from .formatting import progress_for
from .gateway import SessionGateway
from .interpreter import Sleep, StepInterpreter
from .store import TaskStore
from .tasks import CancellationToken, LogLevel, Task, TaskStatus

log = logging.getLogger(__name__)

PRIME_METHOD = "Page.enable"


def _reports_miss(detail: str) -> bool:
    lowered = detail.lower()
    return (
        lowered.startswith(scripts.NO_ELEMENT_FOUND)
        or lowered.startswith("unsupported action")
        or "not found" in lowered
    )


class ExecutionEngine:
    """Runs templates against gateway sessions and records progress.

    Phases run strictly in order: launch, connect, prime, the step loop,
    finalize and a best-effort disconnect. Launch and connect failures end
    the task as ``failed``. A failing step is logged and the loop moves on.
    Cancellation is cooperative and only observed between steps.
    """

    def __init__(
        self,
        gateway: SessionGateway,
        store: TaskStore,
        config: Optional[EngineConfig] = None,
        *,
        interpreter: Optional[StepInterpreter] = None,
        sleep: Optional[Sleep] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.gateway = gateway
        self.store = store
        self.config = config or EngineConfig()
        self._rng = rng or random.Random()
        self.interpreter = interpreter or StepInterpreter(gateway, self.config, sleep=sleep, rng=self._rng)

    async def run(self, task_id: str, template: Template, token: CancellationToken) -> Optional[Task]:
        task = self.store.get(task_id)
        if task is None:
            log.warning("Task %s vanished before execution started", task_id)
            return None

        session_id: Optional[str] = None
        try:
            self._log(task_id, 0, LogLevel.INFO, f"Launching {task.browser} with CDP...")
            self.store.update(task_id, status=TaskStatus.RUNNING)

            launch = await self.gateway.launch(task.profile_path, task.browser)
            session_id = launch.session_id
            self.store.update(task_id, session_id=session_id)
            self._log(task_id, 0, LogLevel.SUCCESS, f"Browser ready, CDP endpoint {launch.endpoint}")

            await self.gateway.connect(session_id, launch.endpoint)
            self._log(task_id, 0, LogLevel.SUCCESS, "CDP session connected")

            await self.gateway.execute(session_id, PRIME_METHOD, {})

            await self._run_steps(task_id, template, session_id, task.variables, token)
            self._finalize(task_id, template, token)
        except asyncio.CancelledError:
            self._log(task_id, 0, LogLevel.ERROR, "Task interrupted")
            self.store.update(task_id, status=TaskStatus.FAILED)
            raise
        except Exception as exc:
            log.error("Failed execution for task %s: %s", task_id, exc)
            self._log(task_id, 0, LogLevel.ERROR, f"Task failed: {exc}")
            self.store.update(task_id, status=TaskStatus.FAILED)
        finally:
            if session_id is not None:
                await self._disconnect(session_id)

        return self.store.get(task_id)

    async def _run_steps(
        self,
        task_id: str,
        template: Template,
        session_id: str,
        variables: Mapping[str, Any],
        token: CancellationToken,
    ) -> None:
        total = len(template.steps)
        for number, step in enumerate(template.steps, start=1):
            if token.cancelled:
                self._log(task_id, number, LogLevel.WARN, "Task cancelled by user")
                break

            self.store.update(task_id, current_step=number, progress=progress_for(number, total))
            self._log(task_id, number, LogLevel.INFO, f"Step {number}/{total}: {step.description}")

            try:
                detail = await self.interpreter.execute(session_id, step, variables)
            except Exception as exc:
                log.warning("Task %s step %s failed: %s", task_id, number, exc)
                self._log(task_id, number, LogLevel.ERROR, f"Step {number} failed: {exc}")
            else:
                if detail:
                    level = LogLevel.WARN if _reports_miss(detail) else LogLevel.INFO
                    self._log(task_id, number, level, f"Step {number}: {detail}")
                self._log(task_id, number, LogLevel.SUCCESS, f"Step {number} completed")

            low, high = step.human_delay
            await self.interpreter.pause(self._rng.uniform(low, high))

    def _finalize(self, task_id: str, template: Template, token: CancellationToken) -> None:
        if token.cancelled:
            final = self.store.update(task_id, status=TaskStatus.CANCELLED)
        else:
            final = self.store.update(task_id, status=TaskStatus.COMPLETED, progress=100)
        status = final.status.value if final is not None else TaskStatus.COMPLETED.value
        self._log(task_id, len(template.steps), LogLevel.SUCCESS, f"Task {status}")

    async def _disconnect(self, session_id: str) -> None:
        try:
            await self.gateway.disconnect(session_id)
        except Exception as exc:
            # The browser may have been closed by hand.
            log.debug("Ignoring disconnect failure for session %s: %s", session_id, exc)

    def _log(self, task_id: str, step: int, level: LogLevel, message: str) -> None:
        self.store.append_log(task_id, level, step, message)
