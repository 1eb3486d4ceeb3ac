import os

import pytest

from rpa.config import DEFAULTS, EngineConfig, load_config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    for key in list(os.environ):
        if key.startswith("RPA_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("RPA_CONFIG", str(tmp_path / "absent.toml"))


def test_defaults_match_engine_timings():
    config = load_config()

    assert config.navigation_settle_ms == 3000
    assert config.selector_poll_ms == 500
    assert config.default_wait_ms == 3000
    assert config.scroll_iterations == 3
    assert config.scroll_distance_px == (300, 800)
    assert config.scroll_pause_ms == (1000, 3000)
    assert config.search_settle_ms == 3000
    assert "chrome" in config.browser_binaries
    assert EngineConfig().server_port == DEFAULTS["server_port"]


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("RPA_SELECTOR_POLL_MS", "250")
    monkeypatch.setenv("RPA_SCROLL_DISTANCE_PX", "100, 200")
    monkeypatch.setenv("RPA_BROWSER_CHROME", "/opt/chrome/chrome")
    monkeypatch.setenv("RPA_BROWSER_VIVALDI", "/opt/vivaldi/vivaldi")

    config = load_config()

    assert config.selector_poll_ms == 250
    assert config.scroll_distance_px == (100, 200)
    assert config.browser_binaries["chrome"] == "/opt/chrome/chrome"
    assert config.browser_binaries["vivaldi"] == "/opt/vivaldi/vivaldi"


def test_toml_file_then_environment(monkeypatch, tmp_path):
    path = tmp_path / "rpa.toml"
    path.write_text(
        "[rpa]\n"
        "navigation_settle_ms = 1500\n"
        "default_wait_ms = 800\n"
        "scroll_pause_ms = [200, 400]\n"
        "[rpa.browser_binaries]\n"
        "brave = \"/opt/brave/brave\"\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("RPA_DEFAULT_WAIT_MS", "900")

    config = load_config(path)

    assert config.navigation_settle_ms == 1500
    assert config.default_wait_ms == 900
    assert config.scroll_pause_ms == (200, 400)
    assert config.browser_binaries["brave"] == "/opt/brave/brave"


def test_config_path_from_environment(monkeypatch, tmp_path):
    path = tmp_path / "custom.toml"
    path.write_text("[rpa]\nsearch_settle_ms = 10\n", encoding="utf-8")
    monkeypatch.setenv("RPA_CONFIG", str(path))

    assert load_config().search_settle_ms == 10


def test_invalid_ranges_rejected():
    with pytest.raises(ValueError):
        EngineConfig.from_mapping({"scroll_pause_ms": "3000,1000"})
    with pytest.raises(ValueError):
        EngineConfig.from_mapping({"scroll_distance_px": [1, 2, 3]})


def test_poll_interval_is_never_zero():
    assert EngineConfig.from_mapping({"selector_poll_ms": 0}).selector_poll_ms == 1
