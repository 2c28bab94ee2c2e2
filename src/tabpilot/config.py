"""
tabpilot Config Management

Unified configuration loading from multiple sources:
1. Built-in defaults
2. Config file (YAML or JSON, passed with --config)
3. Environment variables (TABPILOT_*)
4. CLI flags

Priority: CLI > ENV > config file > defaults
"""

from __future__ import annotations

import os
import platform
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

from tabpilot.errors import ConfigurationError
from tabpilot.paths import output_file, sanitize_for_file_path

# ═══════════════════════════════════════════════════════════════════════════
# Config Models
# ═══════════════════════════════════════════════════════════════════════════

BrowserName = Literal["chromium", "firefox", "webkit"]

CHROMIUM_CHANNELS = {
    "chrome", "chrome-beta", "chrome-canary", "chrome-dev", "chromium",
    "msedge", "msedge-beta", "msedge-canary", "msedge-dev",
}


class BrowserOptions(BaseModel):
    """How the session handle is created."""
    browser_name: BrowserName = "chromium"
    isolated: bool = False
    user_data_dir: str | None = None
    # Passed verbatim to Playwright (snake_case keyword arguments)
    launch_options: dict[str, Any] = Field(default_factory=dict)
    context_options: dict[str, Any] = Field(default_factory=dict)
    cdp_endpoint: str | None = None
    remote_endpoint: str | None = None

    @property
    def channel(self) -> str | None:
        return self.launch_options.get("channel")


class NetworkOptions(BaseModel):
    """Origin allow/block lists applied with request interception."""
    allowed_origins: list[str] | None = None
    blocked_origins: list[str] | None = None


class TimeoutOptions(BaseModel):
    """Quiescence waiter timings, milliseconds."""
    network_settle_ms: int = 10_000
    quiescence_delay_ms: int = 1_000


class FullConfig(BaseModel):
    browser: BrowserOptions = Field(default_factory=BrowserOptions)
    network: NetworkOptions = Field(default_factory=NetworkOptions)
    timeouts: TimeoutOptions = Field(default_factory=TimeoutOptions)
    save_trace: bool = False
    output_dir: Path = Field(default_factory=lambda: default_output_dir())

    @property
    def traces_dir(self) -> Path:
        return self.output_dir / "traces"

    def output_file(self, name: str) -> Path:
        """Path for an artifact (download, trace) inside output_dir."""
        return output_file(self.output_dir, name)


def default_output_dir() -> Path:
    stamp = sanitize_for_file_path(datetime.now().isoformat())
    return Path(tempfile.gettempdir()) / "tabpilot-output" / stamp


def default_config_data() -> dict[str, Any]:
    return {
        "browser": {
            "browser_name": "chromium",
            "launch_options": {
                "channel": "chrome",
                "headless": platform.system() == "Linux" and not os.environ.get("DISPLAY"),
                "chromium_sandbox": True,
            },
            "context_options": {
                "no_viewport": True,
            },
        },
        "network": {},
    }


# ═══════════════════════════════════════════════════════════════════════════
# Merging
# ═══════════════════════════════════════════════════════════════════════════


def _pick_defined(data: dict[str, Any] | None) -> dict[str, Any]:
    return {k: v for k, v in (data or {}).items() if v is not None}


def merge_config(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """
    Merge two raw config dicts.

    Browser launch/context options and network lists merge key by key,
    every other key is replaced when the override defines it.
    """
    b = base.get("browser") or {}
    o = overrides.get("browser") or {}

    browser = {
        "browser_name": o.get("browser_name") or b.get("browser_name") or "chromium",
        "isolated": o.get("isolated") if o.get("isolated") is not None else b.get("isolated", False),
        "launch_options": {
            **_pick_defined(b.get("launch_options")),
            **_pick_defined(o.get("launch_options")),
        },
        "context_options": {
            **_pick_defined(b.get("context_options")),
            **_pick_defined(o.get("context_options")),
        },
        "user_data_dir": o.get("user_data_dir") or b.get("user_data_dir"),
        "cdp_endpoint": o.get("cdp_endpoint") or b.get("cdp_endpoint"),
        "remote_endpoint": o.get("remote_endpoint") or b.get("remote_endpoint"),
    }
    if browser["browser_name"] != "chromium":
        browser["launch_options"].pop("channel", None)

    return {
        **_pick_defined(base),
        **_pick_defined(overrides),
        "browser": browser,
        "network": {
            **_pick_defined(base.get("network")),
            **_pick_defined(overrides.get("network")),
        },
        "timeouts": {
            **_pick_defined(base.get("timeouts")),
            **_pick_defined(overrides.get("timeouts")),
        },
    }


# ═══════════════════════════════════════════════════════════════════════════
# Sources
# ═══════════════════════════════════════════════════════════════════════════


def load_config_file(config_file: str | Path | None) -> dict[str, Any]:
    """Load a YAML (or JSON, which is valid YAML) config file."""
    if not config_file:
        return {}
    try:
        with open(config_file, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load config file: {config_file}, {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {config_file} must contain a mapping")
    return data


def config_from_env(environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Environment variables override the config file."""
    env = os.environ if environ is None else environ
    browser: dict[str, Any] = {}
    launch: dict[str, Any] = {}

    if env.get("TABPILOT_USER_DATA_DIR"):
        browser["user_data_dir"] = env["TABPILOT_USER_DATA_DIR"]
    if env.get("TABPILOT_CDP_ENDPOINT"):
        browser["cdp_endpoint"] = env["TABPILOT_CDP_ENDPOINT"]
    if env.get("TABPILOT_REMOTE_ENDPOINT"):
        browser["remote_endpoint"] = env["TABPILOT_REMOTE_ENDPOINT"]
    if env.get("TABPILOT_HEADLESS"):
        launch["headless"] = env["TABPILOT_HEADLESS"].lower() in ("1", "true", "yes")
    if launch:
        browser["launch_options"] = launch

    result: dict[str, Any] = {}
    if browser:
        result["browser"] = browser
    if env.get("TABPILOT_OUTPUT_DIR"):
        result["output_dir"] = env["TABPILOT_OUTPUT_DIR"]
    return result


def _split_origins(value: str | list[str] | None) -> list[str] | None:
    if value is None:
        return None
    if isinstance(value, list):
        return value
    return [origin.strip() for origin in value.split(";") if origin.strip()]


def config_from_cli_options(options: dict[str, Any]) -> dict[str, Any]:
    """Translate parsed CLI flags into a raw config dict."""
    browser_name = None
    channel = None
    browser_flag = options.get("browser")
    if browser_flag in CHROMIUM_CHANNELS:
        browser_name = "chromium"
        channel = browser_flag
    elif browser_flag in ("firefox", "webkit"):
        browser_name = browser_flag
    elif browser_flag:
        raise ConfigurationError(f"Unknown browser: {browser_flag}")

    launch_options: dict[str, Any] = {
        "channel": channel,
        "executable_path": options.get("executable_path"),
        "headless": options.get("headless"),
    }
    if options.get("no_sandbox"):
        launch_options["chromium_sandbox"] = False
    if options.get("proxy_server"):
        launch_options["proxy"] = {"server": options["proxy_server"]}
        if options.get("proxy_bypass"):
            launch_options["proxy"]["bypass"] = options["proxy_bypass"]

    context_options: dict[str, Any] = {}
    if options.get("storage_state"):
        context_options["storage_state"] = options["storage_state"]
    if options.get("user_agent"):
        context_options["user_agent"] = options["user_agent"]
    if options.get("viewport_size"):
        try:
            width, height = (int(n) for n in options["viewport_size"].split(","))
        except ValueError as e:
            raise ConfigurationError(
                'Invalid viewport size format: use "width,height", for example --viewport-size="800,600"'
            ) from e
        context_options["viewport"] = {"width": width, "height": height}
        context_options["no_viewport"] = False
    if options.get("ignore_https_errors"):
        context_options["ignore_https_errors"] = True
    if options.get("block_service_workers"):
        context_options["service_workers"] = "block"

    return {
        "browser": {
            "browser_name": browser_name,
            "isolated": options.get("isolated") or None,
            "user_data_dir": options.get("user_data_dir"),
            "launch_options": launch_options,
            "context_options": context_options,
            "cdp_endpoint": options.get("cdp_endpoint"),
            "remote_endpoint": options.get("remote_endpoint"),
        },
        "network": {
            "allowed_origins": _split_origins(options.get("allowed_origins")),
            "blocked_origins": _split_origins(options.get("blocked_origins")),
        },
        "save_trace": options.get("save_trace") or None,
        "output_dir": options.get("output_dir"),
    }


# ═══════════════════════════════════════════════════════════════════════════
# Public API
# ═══════════════════════════════════════════════════════════════════════════


def resolve_config(overrides: dict[str, Any] | None = None) -> FullConfig:
    """Defaults merged with a raw override dict (programmatic use)."""
    return FullConfig.model_validate(merge_config(default_config_data(), overrides or {}))


def resolve_cli_config(options: dict[str, Any]) -> FullConfig:
    """Load config from all sources, CLI flags winning."""
    data = default_config_data()
    data = merge_config(data, load_config_file(options.get("config")))
    data = merge_config(data, config_from_env())
    data = merge_config(data, config_from_cli_options(options))

    config = FullConfig.model_validate(data)
    if config.save_trace:
        config.browser.launch_options.setdefault("traces_dir", str(config.traces_dir))
    return config
