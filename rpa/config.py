"""Configuration loader for the automation engine."""

from __future__ import annotations

import os
import sys
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Tuple


def _default_browser_binaries() -> Dict[str, str]:
    if sys.platform == "darwin":
        return {
            "chrome": "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
            "brave": "/Applications/Brave Browser.app/Contents/MacOS/Brave Browser",
            "edge": "/Applications/Microsoft Edge.app/Contents/MacOS/Microsoft Edge",
        }
    if sys.platform.startswith("win"):
        return {
            "chrome": r"C:\Program Files\Google\Chrome\Application\chrome.exe",
            "brave": r"C:\Program Files\BraveSoftware\Brave-Browser\Application\brave.exe",
            "edge": r"C:\Program Files (x86)\Microsoft\Edge\Application\msedge.exe",
        }
    return {
        "chrome": "/usr/bin/google-chrome",
        "chromium": "/usr/bin/chromium",
        "brave": "/usr/bin/brave-browser",
        "edge": "/usr/bin/microsoft-edge",
    }


DEFAULTS: Dict[str, Any] = {
    "navigation_settle_ms": 3000,
    "selector_poll_ms": 500,
    "default_wait_ms": 3000,
    "scroll_iterations": 3,
    "scroll_distance_px": (300, 800),
    "scroll_pause_ms": (1000, 3000),
    "search_settle_ms": 3000,
    "launch_timeout_ms": 15000,
    "launch_poll_ms": 200,
    "cdp_host": "127.0.0.1",
    "server_host": "0.0.0.0",
    "server_port": 7790,
}


@dataclass(slots=True)
class EngineConfig:
    navigation_settle_ms: int = DEFAULTS["navigation_settle_ms"]
    selector_poll_ms: int = DEFAULTS["selector_poll_ms"]
    default_wait_ms: int = DEFAULTS["default_wait_ms"]
    scroll_iterations: int = DEFAULTS["scroll_iterations"]
    scroll_distance_px: Tuple[int, int] = DEFAULTS["scroll_distance_px"]
    scroll_pause_ms: Tuple[int, int] = DEFAULTS["scroll_pause_ms"]
    search_settle_ms: int = DEFAULTS["search_settle_ms"]
    launch_timeout_ms: int = DEFAULTS["launch_timeout_ms"]
    launch_poll_ms: int = DEFAULTS["launch_poll_ms"]
    cdp_host: str = DEFAULTS["cdp_host"]
    server_host: str = DEFAULTS["server_host"]
    server_port: int = DEFAULTS["server_port"]
    browser_binaries: Dict[str, str] = field(default_factory=_default_browser_binaries)

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any]) -> "EngineConfig":
        data = dict(DEFAULTS)
        data.update(mapping)
        binaries = _default_browser_binaries()
        binaries.update({str(k).lower(): str(v) for k, v in dict(mapping.get("browser_binaries", {})).items()})
        return cls(
            navigation_settle_ms=int(data["navigation_settle_ms"]),
            selector_poll_ms=max(1, int(data["selector_poll_ms"])),
            default_wait_ms=int(data["default_wait_ms"]),
            scroll_iterations=int(data["scroll_iterations"]),
            scroll_distance_px=_parse_range(data["scroll_distance_px"]),
            scroll_pause_ms=_parse_range(data["scroll_pause_ms"]),
            search_settle_ms=int(data["search_settle_ms"]),
            launch_timeout_ms=int(data["launch_timeout_ms"]),
            launch_poll_ms=max(1, int(data["launch_poll_ms"])),
            cdp_host=str(data["cdp_host"]),
            server_host=str(data["server_host"]),
            server_port=int(data["server_port"]),
            browser_binaries=binaries,
        )


def _parse_range(value: Any) -> Tuple[int, int]:
    if isinstance(value, str):
        parts = [part.strip() for part in value.split(",") if part.strip()]
    else:
        parts = list(value)
    if len(parts) != 2:
        raise ValueError(f"Expected a 'min,max' range, got {value!r}")
    low, high = int(parts[0]), int(parts[1])
    if high < low:
        raise ValueError(f"Range minimum exceeds maximum: {value!r}")
    return low, high


def _load_toml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("rb") as fh:
        return tomllib.load(fh)


def load_config(config_path: Path | None = None) -> EngineConfig:
    """Load configuration from environment, optional TOML file, and defaults."""

    env_map: Dict[str, Any] = {}
    for key, value in os.environ.items():
        if key.startswith("RPA_BROWSER_"):
            env_map.setdefault("browser_binaries", {})[key[12:].lower()] = value
        elif key.startswith("RPA_"):
            env_map[key[4:].lower()] = value

    file_map: Dict[str, Any] = {}
    path = config_path or Path(os.getenv("RPA_CONFIG", "rpa.toml"))
    if path.exists():
        file_map = _load_toml(path).get("rpa", {})

    binaries = {**file_map.get("browser_binaries", {}), **env_map.pop("browser_binaries", {})}
    merged = {**file_map, **env_map}
    if binaries:
        merged["browser_binaries"] = binaries
    return EngineConfig.from_mapping(merged)
