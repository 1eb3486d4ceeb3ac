"""Maps declarative template steps onto session gateway primitives."""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from . import scripts
from .config import EngineConfig
from .dsl.models import Step
from .dsl.substitution import replace_variables, stringify
from .errors import StepError
from .gateway import SessionGateway

log = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]
Clock = Callable[[], float]
Handler = Callable[[str, Step, Mapping[str, Any]], Awaitable[Optional[str]]]


class StepInterpreter:
    """Executes one step at a time against a gateway session.

    Handlers return an optional human readable detail. Malformed steps and
    gateway failures raise; a selector that never shows up does not.
    """

    def __init__(
        self,
        gateway: SessionGateway,
        config: Optional[EngineConfig] = None,
        *,
        sleep: Optional[Sleep] = None,
        clock: Optional[Clock] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.gateway = gateway
        self.config = config or EngineConfig()
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic
        self._rng = rng or random.Random()
        self._handlers: Dict[str, Handler] = {
            "navigate": self._navigate,
            "click": self._click,
            "type": self._type,
            "scroll": self._scroll,
            "wait": self._wait,
            "extract": self._extract,
            "loop": self._loop,
        }

    async def execute(self, session_id: str, step: Step, variables: Mapping[str, Any]) -> Optional[str]:
        handler = self._handlers.get(step.action)
        if handler is None:
            log.info("Skipping unsupported action %r", step.action)
            return f"unsupported action: {step.action}"
        return await handler(session_id, step, variables)

    # ------------------------------------------------------------------
    # primitives
    # ------------------------------------------------------------------
    async def pause(self, milliseconds: float) -> None:
        await self._sleep(max(0.0, milliseconds) / 1000)

    async def evaluate(self, session_id: str, expression: str) -> Any:
        result = await self.gateway.evaluate(session_id, expression)
        if isinstance(result, dict):
            if result.get("value") is not None:
                return result["value"]
            if result.get("description"):
                return result["description"]
            return result.get("value")
        return result

    async def wait_for_selector(self, session_id: str, selector: str, timeout_ms: int) -> bool:
        """Poll until ``selector`` matches or ``timeout_ms`` runs out.

        Returns whether the element appeared. Running out of time is normal
        for defensive templates and is not raised; gateway errors are.
        """

        deadline = self._clock() + timeout_ms / 1000
        poll = self.config.selector_poll_ms / 1000
        while True:
            if await self.evaluate(session_id, scripts.selector_present(selector)) is True:
                return True
            remaining = deadline - self._clock()
            if remaining <= 0:
                log.debug("Selector %r not found within %sms", selector, timeout_ms)
                return False
            await self._sleep(min(poll, remaining))

    async def _run_script(self, session_id: str, step: Step, variables: Mapping[str, Any]) -> str:
        expression = replace_variables(step.js_expression, variables)
        return f"js: {stringify(await self.evaluate(session_id, expression))}"

    # ------------------------------------------------------------------
    # handlers
    # ------------------------------------------------------------------
    async def _navigate(self, session_id: str, step: Step, variables: Mapping[str, Any]) -> str:
        url = replace_variables(step.url, variables)
        if not url:
            raise StepError("Navigate step has no url")
        await self.gateway.execute(session_id, "Page.navigate", {"url": url})
        await self.pause(self.config.navigation_settle_ms)
        if step.wait_for_selector:
            await self.wait_for_selector(session_id, step.wait_for_selector, step.timeout)
        return f"navigated to {url}"

    async def _click(self, session_id: str, step: Step, variables: Mapping[str, Any]) -> str:
        if step.js_expression:
            return await self._run_script(session_id, step, variables)
        selectors = step.candidate_selectors()
        if not selectors:
            raise StepError("Click step has no selector")
        await self.wait_for_selector(session_id, ", ".join(selectors), step.timeout)
        return stringify(await self.evaluate(session_id, scripts.click_first(selectors)))

    async def _type(self, session_id: str, step: Step, variables: Mapping[str, Any]) -> str:
        if step.js_expression:
            return await self._run_script(session_id, step, variables)
        selectors = step.candidate_selectors()
        if not selectors:
            raise StepError("Type step has no selector")
        text = replace_variables(step.value, variables)
        if not text:
            raise StepError("Type step has no value")
        submit = "search" in (step.selector or "").lower() or "search" in step.description.lower()
        await self.wait_for_selector(session_id, ", ".join(selectors), step.timeout)
        detail = stringify(await self.evaluate(session_id, scripts.type_into_first(selectors, text, submit=submit)))
        if submit and not detail.startswith(scripts.NO_ELEMENT_FOUND):
            await self.pause(self.config.search_settle_ms)
        return detail

    async def _extract(self, session_id: str, step: Step, variables: Mapping[str, Any]) -> str:
        if step.js_expression:
            return await self._run_script(session_id, step, variables)
        selectors = step.candidate_selectors()
        if not selectors:
            return "no extract expression"
        await self.wait_for_selector(session_id, ", ".join(selectors), step.timeout)
        return stringify(await self.evaluate(session_id, scripts.extract_text(selectors)))

    async def _scroll(self, session_id: str, step: Step, variables: Mapping[str, Any]) -> str:
        if step.js_expression:
            return await self._run_script(session_id, step, variables)
        count = step.iterations if step.iterations is not None else self.config.scroll_iterations
        low_px, high_px = self.config.scroll_distance_px
        low_ms, high_ms = self.config.scroll_pause_ms
        for index in range(count):
            if index:
                await self.pause(self._rng.uniform(low_ms, high_ms))
            await self.evaluate(session_id, scripts.scroll_by(self._rng.randint(low_px, high_px)))
        return f"scrolled {count} times"

    async def _wait(self, session_id: str, step: Step, variables: Mapping[str, Any]) -> str:
        duration = step.wait_ms if step.wait_ms is not None else self.config.default_wait_ms
        await self.pause(duration)
        return f"waited {duration}ms"

    async def _loop(self, session_id: str, step: Step, variables: Mapping[str, Any]) -> None:
        # Repetition lives in the per-step ``iterations`` fields.
        return None
