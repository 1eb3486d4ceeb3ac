"""Exception hierarchy shared by the engine and gateway implementations."""

from __future__ import annotations

from typing import Any, Dict, Optional


class AutomationError(Exception):
    def __init__(self, message: str, *, code: str = "AUTOMATION_ERROR", details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.details = details or {}


class GatewayError(AutomationError):
    """Transport or protocol failure reported by a session gateway."""

    def __init__(self, message: str, *, code: str = "GATEWAY_ERROR", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)


class LaunchError(GatewayError):
    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="LAUNCH_ERROR", details=details)


class ScriptEvaluationError(GatewayError):
    """The page threw while evaluating an expression."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="SCRIPT_ERROR", details=details)


class StepError(AutomationError):
    """A step is malformed and cannot be executed."""

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="STEP_ERROR", details=details)
