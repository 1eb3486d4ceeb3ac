"""Pytest configuration ensuring local packages are importable, plus shared doubles."""

from __future__ import annotations

import asyncio
import json
import random
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest

_ROOT = Path(__file__).resolve().parents[1]
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from rpa.config import EngineConfig  # noqa: E402
from rpa.engine import ExecutionEngine  # noqa: E402
from rpa.gateway import LaunchResult  # noqa: E402
from rpa.interpreter import StepInterpreter  # noqa: E402
from rpa.registry import TaskRegistry  # noqa: E402
from rpa.store import TaskStore  # noqa: E402

_PRESENT_PREFIX = "!!document.querySelector("


class FakeGateway:
    """In-memory gateway recording every call.

    ``present`` holds selectors that exist on the page. ``scripted`` maps a
    substring of an evaluated expression to the value it returns, or to an
    exception to raise. A key equal to a whole queried selector makes that
    presence check raise instead.
    """

    def __init__(self) -> None:
        self.calls: List[Tuple[str, Any]] = []
        self.present: Set[str] = set()
        self.scripted: Dict[str, Any] = {}
        self.launch_error: Optional[Exception] = None
        self.connect_error: Optional[Exception] = None
        self.execute_error: Optional[Exception] = None
        self.disconnect_error: Optional[Exception] = None
        self.launch_gate: Optional[asyncio.Event] = None

    def names(self) -> List[str]:
        return [name for name, _ in self.calls]

    def executed(self, method: str) -> List[Dict[str, Any]]:
        return [args[1] for name, args in self.calls if name == "execute" and args[0] == method]

    def evaluated(self) -> List[str]:
        return [expression for name, expression in self.calls if name == "evaluate"]

    async def launch(self, profile_path: str, browser: str, url: Optional[str] = None) -> LaunchResult:
        self.calls.append(("launch", (profile_path, browser)))
        if self.launch_gate is not None:
            await self.launch_gate.wait()
        if self.launch_error is not None:
            raise self.launch_error
        return LaunchResult(session_id="session-1", endpoint="ws://127.0.0.1:9222/devtools/browser/fake", port=9222)

    async def connect(self, session_id: str, endpoint: str) -> None:
        self.calls.append(("connect", (session_id, endpoint)))
        if self.connect_error is not None:
            raise self.connect_error

    async def execute(self, session_id: str, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        self.calls.append(("execute", (method, params or {})))
        if self.execute_error is not None:
            raise self.execute_error
        return {}

    async def evaluate(self, session_id: str, expression: str) -> Dict[str, Any]:
        self.calls.append(("evaluate", expression))
        if expression.startswith(_PRESENT_PREFIX):
            selector = json.loads(expression[len(_PRESENT_PREFIX) : -1])
            outcome = self.scripted.get(selector)
            if isinstance(outcome, Exception):
                raise outcome
            found = any(part.strip() in self.present for part in selector.split(","))
            return {"type": "boolean", "value": found}
        for needle, outcome in self.scripted.items():
            if needle in expression:
                if isinstance(outcome, Exception):
                    raise outcome
                return {"type": "string", "value": outcome}
        return {"type": "undefined"}

    async def disconnect(self, session_id: str) -> None:
        self.calls.append(("disconnect", session_id))
        if self.disconnect_error is not None:
            raise self.disconnect_error


class FakeClock:
    """Monotonic clock that only advances when something sleeps on it."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


def build_registry(
    gateway: FakeGateway,
    clock: FakeClock,
    config: Optional[EngineConfig] = None,
    *,
    loop: Optional[asyncio.AbstractEventLoop] = None,
    seed: int = 7,
) -> TaskRegistry:
    config = config or EngineConfig()
    rng = random.Random(seed)
    interpreter = StepInterpreter(gateway, config, sleep=clock.sleep, clock=clock, rng=rng)
    engine = ExecutionEngine(gateway, TaskStore(), config, interpreter=interpreter, rng=rng)
    return TaskRegistry(engine, loop=loop)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def registry(gateway: FakeGateway, clock: FakeClock) -> TaskRegistry:
    return build_registry(gateway, clock)


@pytest.fixture
def make_registry():
    return build_registry
