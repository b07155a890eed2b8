"""
aiswitch.core.config — Key-path configuration store.

Holds a nested mapping addressed by dotted paths (``ai.activeModel``,
``ai.gemini.apiKey`` …), persisted as ``config.json`` in the user config
directory.  Changes are broadcast to subscribers with the set of affected
paths so consumers can filter by prefix.

Resolution order when loading (highest priority first):
  1. Environment variables (GEMINI_API_KEY, GROQ_API_KEY, AISWITCH_*)
  2. ``config.json`` in the global config directory
  3. Built-in defaults
"""

from __future__ import annotations

import copy
import inspect
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Union

from pydantic import ValidationError as PydanticValidationError

from aiswitch.core.errors import ConfigurationError
from aiswitch.core.models import VendorSettings, get_global_config_dir

logger = logging.getLogger("aiswitch.config")

NAMESPACE = "ai"
DEFAULT_VENDOR = "gemini"
CONFIG_FILENAME = "config.json"

DEFAULTS: dict[str, Any] = {
    "ai": {
        "activeModel": DEFAULT_VENDOR,
        "useSecureStorage": False,
        "userId": "local-user",
    }
}

# Environment variable → key path
ENV_OVERRIDES: dict[str, str] = {
    "AISWITCH_ACTIVE_MODEL": "ai.activeModel",
    "GEMINI_API_KEY": "ai.gemini.apiKey",
    "GROQ_API_KEY": "ai.groq.apiKey",
    "AISWITCH_SUPABASE_URL": "ai.supabaseUrl",
    "AISWITCH_SUPABASE_ANON_KEY": "ai.supabaseAnonKey",
}

ConfigListener = Callable[["ConfigurationChangeEvent"], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class ConfigurationChangeEvent:
    """The set of key paths whose value changed in one update."""
    paths: frozenset[str]

    def affects(self, prefix: str) -> bool:
        """True if any changed path equals *prefix* or lies beneath it."""
        return any(
            p == prefix or p.startswith(prefix + ".") or prefix.startswith(p + ".")
            for p in self.paths
        )


class ConfigurationStore:
    """
    In-memory nested configuration with optional JSON persistence.

    ``update()`` is a coroutine because listeners may be async (the
    orchestration service re-resolves adapters, which may probe the network).
    Listeners run one after another in registration order so consecutive
    notifications are observed in the order they were produced.
    """

    def __init__(self, data: dict[str, Any] | None = None, *, path: Path | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(DEFAULTS)
        if data:
            _deep_merge(self._data, data)
        self._path = path
        self._listeners: list[ConfigListener] = []

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def load(cls, path: Path | None = None, *, apply_env: bool = True) -> "ConfigurationStore":
        """Load from disk, returning defaults if the file is missing or unreadable."""
        path = path or get_global_config_dir() / CONFIG_FILENAME
        data: dict[str, Any] = {}
        if path.exists():
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning("Ignoring unreadable config %s: %s", path, exc)
                data = {}
        store = cls(data, path=path)
        if apply_env:
            for env_name, key_path in ENV_OVERRIDES.items():
                value = os.getenv(env_name)
                if value:
                    _set_path(store._data, key_path, value)
        return store

    def save(self, path: Path | None = None) -> Path:
        """Persist to disk. API keys are written only when secure storage is off."""
        path = path or self._path or get_global_config_dir() / CONFIG_FILENAME
        data = copy.deepcopy(self._data)
        if self.get("ai.useSecureStorage", False):
            for block in data.get(NAMESPACE, {}).values():
                if isinstance(block, dict):
                    block.pop("apiKey", None)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        self._path = path
        return path

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    def get(self, key_path: str, default: Any = None) -> Any:
        node: Any = self._data
        for part in key_path.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return copy.deepcopy(node)

    def inspect(self) -> dict[str, Any]:
        """A deep copy of the whole tree."""
        return copy.deepcopy(self._data)

    def vendor_settings(self, vendor: str) -> VendorSettings:
        """The validated ``ai.<vendor>`` block."""
        raw = self.get(f"{NAMESPACE}.{vendor}", {}) or {}
        try:
            return VendorSettings.model_validate(raw)
        except PydanticValidationError as exc:
            raise ConfigurationError(
                f"Invalid settings for '{vendor}': {exc.errors()[0].get('msg', exc)}",
                code="invalid_configuration",
            ) from exc

    async def update(self, key_path: str, value: Any) -> bool:
        """
        Set *key_path* to *value* (``None`` removes it) and notify listeners.

        Returns False, without notifying, when the stored value is unchanged.
        """
        if self.get(key_path) == value:
            return False
        if value is None:
            _delete_path(self._data, key_path)
        else:
            _set_path(self._data, key_path, copy.deepcopy(value))
        logger.debug("Configuration updated: %s", key_path)
        await self._notify(ConfigurationChangeEvent(frozenset({key_path})))
        return True

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    def on_did_change(self, listener: ConfigListener) -> Callable[[], None]:
        """Subscribe to changes; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _dispose() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return _dispose

    async def _notify(self, event: ConfigurationChangeEvent) -> None:
        for listener in list(self._listeners):
            result = listener(event)
            if inspect.isawaitable(result):
                await result


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _set_path(data: dict[str, Any], key_path: str, value: Any) -> None:
    parts = key_path.split(".")
    node = data
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = value


def _delete_path(data: dict[str, Any], key_path: str) -> None:
    parts = key_path.split(".")
    node: Any = data
    for part in parts[:-1]:
        node = node.get(part) if isinstance(node, dict) else None
        if node is None:
            return
    if isinstance(node, dict):
        node.pop(parts[-1], None)


def _deep_merge(base: dict[str, Any], incoming: dict[str, Any]) -> None:
    for key, value in incoming.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = copy.deepcopy(value)
