from __future__ import annotations

import asyncio
import atexit
import logging
import threading
import uuid
from pathlib import Path
from typing import Any, List, Optional

from flask import Flask, jsonify, request
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException

from cdp.playwright_gateway import PlaywrightCdpGateway
from rpa.config import EngineConfig, load_config
from rpa.dsl.models import Template
from rpa.engine import ExecutionEngine
from rpa.formatting import LoggingListener
from rpa.registry import TaskRegistry
from rpa.store import TaskStore
from rpa.tasks import Task, TaskStatus

app = Flask(__name__)
logging.basicConfig(level=logging.INFO)
log = logging.getLogger("rpa.server")

CONFIG: EngineConfig = load_config()


class _BackgroundLoop:
    """Event loop on a daemon thread; executions outlive the HTTP request."""

    def __init__(self) -> None:
        self.loop = asyncio.new_event_loop()
        self.thread = threading.Thread(target=self._run, name="rpa-engine-loop", daemon=True)
        self.thread.start()

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def run(self, coro, timeout: Optional[float] = None) -> Any:
        return asyncio.run_coroutine_threadsafe(coro, self.loop).result(timeout)

    def stop(self) -> None:
        self.loop.call_soon_threadsafe(self.loop.stop)
        self.thread.join(timeout=5)


_registry: TaskRegistry | None = None
_gateway: PlaywrightCdpGateway | None = None
_background: _BackgroundLoop | None = None
_init_lock = threading.Lock()


def _get_registry() -> TaskRegistry:
    global _registry, _gateway, _background
    with _init_lock:
        if _registry is None:
            _background = _BackgroundLoop()
            _gateway = PlaywrightCdpGateway(CONFIG)
            store = TaskStore()
            store.subscribe(LoggingListener())
            engine = ExecutionEngine(_gateway, store, CONFIG)
            _registry = TaskRegistry(engine, loop=_background.loop)
        return _registry


@atexit.register
def _shutdown() -> None:  # pragma: no cover - shutdown hook
    background = _background
    if background is None:
        return
    try:
        if _gateway is not None:
            background.run(_gateway.close_all(), timeout=10)
    except Exception as exc:
        log.debug("Error while closing CDP sessions: %s", exc)
    background.stop()


@app.errorhandler(Exception)
def handle_exception(error):
    if isinstance(error, HTTPException):
        return jsonify({"error": error.description}), error.code
    correlation_id = str(uuid.uuid4())[:8]
    log.exception("[%s] Uncaught exception: %s", correlation_id, error)
    return jsonify({"error": f"Internal failure - {error}", "correlation_id": correlation_id}), 500


@app.get("/health")
def health():
    registry = _get_registry()
    return jsonify({"status": "ok", "tasks": len(registry.tasks), "active": len(registry.active_tasks)})


@app.post("/automation/execute")
def execute_template():
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({"error": "request body must be a JSON object"}), 400
    document = data.get("template")
    if not isinstance(document, dict):
        return jsonify({"error": "template object required"}), 400
    profile_path = str(data.get("profile_path") or "").strip()
    if not profile_path:
        return jsonify({"error": "profile_path required"}), 400
    variables = data.get("variables") or {}
    if not isinstance(variables, dict):
        return jsonify({"error": "variables must be an object"}), 400

    try:
        template = Template.model_validate(document)
    except ValidationError as exc:
        return jsonify({"error": "invalid template", "details": str(exc)}), 400

    profile_name = str(data.get("profile_name") or Path(profile_path).name)
    browser = str(data.get("browser") or "chrome")
    registry = _get_registry()
    task_id = registry.start_task(template, profile_path, profile_name, browser, variables)
    task = registry.get_task(task_id)
    return jsonify(
        {
            "task_id": task_id,
            "status": task.status.value if task else TaskStatus.PENDING.value,
            "total_steps": template.total_steps,
        }
    )


@app.get("/automation/tasks")
def list_tasks():
    registry = _get_registry()
    status = (request.args.get("status") or "").strip().lower()
    tasks: List[Task]
    if not status:
        tasks = registry.tasks
    elif status == "active":
        tasks = registry.active_tasks
    elif status == "history":
        tasks = registry.task_history
    else:
        try:
            wanted = TaskStatus(status)
        except ValueError:
            return jsonify({"error": f"unknown status '{status}'"}), 400
        tasks = [task for task in registry.tasks if task.status is wanted]
    return jsonify({"tasks": [task.to_dict(include_logs=False) for task in tasks]})


@app.get("/automation/task")
def get_task():
    task_id = (request.args.get("task_id") or "").strip()
    if not task_id:
        return jsonify({"error": "task_id required"}), 400
    task = _get_registry().get_task(task_id)
    if task is None:
        return jsonify({"error": "task not found"}), 404
    return jsonify(task.to_dict())


@app.post("/automation/cancel")
def cancel_task():
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({"error": "request body must be a JSON object"}), 400
    task_id = str(data.get("task_id") or "").strip()
    if not task_id:
        return jsonify({"error": "task_id required"}), 400
    registry = _get_registry()
    if not registry.cancel_task(task_id):
        return jsonify({"error": "task not found"}), 404
    task = registry.get_task(task_id)
    return jsonify({"task_id": task_id, "status": task.status.value if task else TaskStatus.CANCELLED.value})


@app.delete("/automation/task")
def remove_task():
    task_id = (request.args.get("task_id") or "").strip()
    if not task_id:
        return jsonify({"error": "task_id required"}), 400
    registry = _get_registry()
    existed = registry.get_task(task_id) is not None
    registry.remove_task(task_id)
    return jsonify({"removed": existed})


def main() -> None:
    log.info("Automation API listening on %s:%s", CONFIG.server_host, CONFIG.server_port)
    app.run(host=CONFIG.server_host, port=CONFIG.server_port, threaded=True)


if __name__ == "__main__":
    main()
