"""Shared Node Banana configuration utilities.

Centralises reading of ~/.nodebanana/configuration.json so the CLI, the run
controller and embedding hosts share one implementation.
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

DEFAULT_API_BASE = "http://localhost:3000"
DEFAULT_REQUEST_TIMEOUT = 300.0  # generate endpoint allows up to 5 minutes
DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_POLL_MAX_ATTEMPTS = 120  # 10 minutes at the default interval
DEFAULT_GENERATIONS_PATH = "generations"
DEFAULT_AUTOSAVE_INTERVAL = 90.0
DEFAULT_MODEL = "vertexai/imagen-3.0-generate-001"

LEGACY_MODELS = {"nano-banana", "nano-banana-pro"}

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

NODEBANANA_CONFIG_FILE = Path.home() / ".nodebanana" / "configuration.json"


def get_nodebanana_config() -> dict[str, Any]:
    """Load configuration from ~/.nodebanana/configuration.json."""
    if not NODEBANANA_CONFIG_FILE.exists():
        return {}
    try:
        with open(NODEBANANA_CONFIG_FILE, encoding="utf-8-sig") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_api_base() -> str:
    """Return the base URL of the generation service."""
    env = os.environ.get("NODE_BANANA_API_BASE")
    if env:
        return env.rstrip("/")
    return get_nodebanana_config().get("api", {}).get("base_url", DEFAULT_API_BASE).rstrip("/")


def get_request_timeout() -> float:
    return float(get_nodebanana_config().get("api", {}).get("timeout", DEFAULT_REQUEST_TIMEOUT))


def get_poll_interval() -> float:
    return float(get_nodebanana_config().get("polling", {}).get("interval", DEFAULT_POLL_INTERVAL))


def get_poll_max_attempts() -> int:
    polling = get_nodebanana_config().get("polling", {})
    return int(polling.get("max_attempts", DEFAULT_POLL_MAX_ATTEMPTS))


def get_generations_path() -> str | None:
    """Return the directory generated artifacts are auto-saved to.

    An explicit ``null`` in the config file disables auto-saving artifacts.
    """
    env = os.environ.get("NODE_BANANA_GENERATIONS_PATH")
    if env:
        return env
    storage = get_nodebanana_config().get("storage", {})
    if "generations_path" in storage:
        return storage["generations_path"]
    return DEFAULT_GENERATIONS_PATH


def get_autosave_interval() -> float:
    storage = get_nodebanana_config().get("storage", {})
    return float(storage.get("autosave_interval", DEFAULT_AUTOSAVE_INTERVAL))


def migrate_model_id(model: str) -> str:
    """Map retired model ids onto their current replacements.

    The short "nano-banana" aliases predate the model catalog, and the Vertex AI
    route for Gemini 3 image models is broken, so those are served through
    Google AI instead.
    """
    if model in LEGACY_MODELS:
        return DEFAULT_MODEL
    if "vertexai/gemini-3" in model:
        return model.replace("vertexai/", "googleai/")
    return model


def get_generator_defaults() -> dict[str, Any]:
    """Return sticky settings applied to newly created generator nodes."""
    defaults: dict[str, Any] = {
        "aspectRatio": "1:1",
        "resolution": "1K",
        "model": DEFAULT_MODEL,
        "useGoogleSearch": False,
    }
    stored = get_nodebanana_config().get("generator", {})
    if isinstance(stored, dict):
        defaults.update(stored)
    defaults["model"] = migrate_model_id(str(defaults.get("model") or DEFAULT_MODEL))
    return defaults


# ---------------------------------------------------------------------------
# EngineConfig – shared by the CLI and embedding hosts
# ---------------------------------------------------------------------------


@dataclass
class EngineConfig:
    """Engine configuration loaded from ~/.nodebanana/configuration.json."""

    api_base: str = field(default_factory=get_api_base)
    request_timeout: float = field(default_factory=get_request_timeout)
    poll_interval: float = field(default_factory=get_poll_interval)
    poll_max_attempts: int = field(default_factory=get_poll_max_attempts)
    generations_path: str | None = field(default_factory=get_generations_path)
    autosave_interval: float = field(default_factory=get_autosave_interval)
    generator_defaults: dict[str, Any] = field(default_factory=get_generator_defaults)
