"""Boundary between the engine and a remote browser-control transport."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class LaunchResult:
    session_id: str
    endpoint: str
    port: Optional[int] = None


@runtime_checkable
class SessionGateway(Protocol):
    """Primitive operations the engine needs from a browser session.

    Every method is a suspension point; failures surface as exceptions
    (normally :class:`rpa.errors.GatewayError`).
    """

    async def launch(self, profile_path: str, browser: str, url: Optional[str] = None) -> LaunchResult:
        ...

    async def connect(self, session_id: str, endpoint: str) -> None:
        ...

    async def execute(self, session_id: str, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        ...

    async def evaluate(self, session_id: str, expression: str) -> Dict[str, Any]:
        """Evaluate ``expression`` in the page; returns a remote object with ``value``."""
        ...

    async def disconnect(self, session_id: str) -> None:
        ...
