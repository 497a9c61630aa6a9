"""Shared Flow Studio configuration utilities.

Centralises reading of ~/.flowstudio/configuration.json so that the CLI,
the scheduler and the HTTP server share one implementation. The location
can be overridden with the FLOWSTUDIO_CONFIG environment variable.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_MODEL = "gemini/gemini-2.5-flash"
DEFAULT_NODE_TIMEOUT_SECONDS = 120.0
DEFAULT_SERVER_HOST = "127.0.0.1"
DEFAULT_SERVER_PORT = 8080

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

FLOWSTUDIO_CONFIG_FILE = Path.home() / ".flowstudio" / "configuration.json"


def get_config_path() -> Path:
    """Return the configuration file path, honouring FLOWSTUDIO_CONFIG."""
    override = os.environ.get("FLOWSTUDIO_CONFIG")
    if override:
        return Path(override)
    return FLOWSTUDIO_CONFIG_FILE


def get_flowstudio_config() -> dict[str, Any]:
    """Load configuration from disk. Missing or unreadable files yield {}."""
    path = get_config_path()
    if not path.exists():
        return {}
    try:
        with open(path, encoding="utf-8-sig") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_preferred_model() -> str:
    """Return the default model string (e.g. 'gemini/gemini-2.5-flash')."""
    llm = get_flowstudio_config().get("llm", {})
    if llm.get("provider") and llm.get("model"):
        return f"{llm['provider']}/{llm['model']}"
    if llm.get("model"):
        return llm["model"]
    return DEFAULT_MODEL


def get_api_key() -> str | None:
    """Return the API key from the environment variable named in configuration."""
    llm = get_flowstudio_config().get("llm", {})
    api_key_env_var = llm.get("api_key_env_var")
    if api_key_env_var:
        return os.environ.get(api_key_env_var)
    return None


def get_api_base() -> str | None:
    return get_flowstudio_config().get("llm", {}).get("api_base")


def get_node_timeout() -> float:
    """Return the per-node call timeout in seconds."""
    execution = get_flowstudio_config().get("execution", {})
    try:
        return float(execution.get("node_timeout_seconds", DEFAULT_NODE_TIMEOUT_SECONDS))
    except (TypeError, ValueError):
        return DEFAULT_NODE_TIMEOUT_SECONDS


def get_server_host() -> str:
    return get_flowstudio_config().get("server", {}).get("host", DEFAULT_SERVER_HOST)


def get_server_port() -> int:
    return int(get_flowstudio_config().get("server", {}).get("port", DEFAULT_SERVER_PORT))


# ---------------------------------------------------------------------------
# RuntimeConfig - shared by the CLI, scheduler and server
# ---------------------------------------------------------------------------


@dataclass
class RuntimeConfig:
    """Runtime configuration loaded from ~/.flowstudio/configuration.json."""

    model: str = field(default_factory=get_preferred_model)
    api_key: str | None = field(default_factory=get_api_key)
    api_base: str | None = field(default_factory=get_api_base)
    node_timeout_seconds: float = field(default_factory=get_node_timeout)
    server_host: str = field(default_factory=get_server_host)
    server_port: int = field(default_factory=get_server_port)
