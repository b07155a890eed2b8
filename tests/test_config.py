"""Tests for the key-path configuration store."""

from __future__ import annotations

import json

import pytest

from aiswitch.core.config import ConfigurationChangeEvent, ConfigurationStore
from aiswitch.core.errors import ConfigurationError


def test_defaults() -> None:
    store = ConfigurationStore()
    assert store.get("ai.activeModel") == "gemini"
    assert store.get("ai.useSecureStorage") is False
    assert store.get("ai.missing", "fallback") == "fallback"


def test_get_returns_copies() -> None:
    store = ConfigurationStore({"ai": {"groq": {"apiKey": "k"}}})
    block = store.get("ai.groq")
    block["apiKey"] = "mutated"
    assert store.get("ai.groq.apiKey") == "k"


async def test_update_notifies_only_on_change() -> None:
    store = ConfigurationStore()
    events: list[ConfigurationChangeEvent] = []
    store.on_did_change(events.append)

    assert await store.update("ai.groq.model", "llama3-8b-8192") is True
    assert await store.update("ai.groq.model", "llama3-8b-8192") is False
    assert len(events) == 1
    assert events[0].affects("ai.groq")
    assert events[0].affects("ai.groq.model")
    assert not events[0].affects("ai.gemini")


async def test_update_none_removes_key() -> None:
    store = ConfigurationStore({"ai": {"groq": {"apiKey": "k"}}})
    await store.update("ai.groq.apiKey", None)
    assert store.get("ai.groq.apiKey") is None
    assert await store.update("ai.groq.apiKey", None) is False


async def test_listeners_run_in_order_and_async_ones_are_awaited() -> None:
    store = ConfigurationStore()
    seen: list[str] = []

    async def first(event: ConfigurationChangeEvent) -> None:
        seen.append("first")

    def second(event: ConfigurationChangeEvent) -> None:
        seen.append("second")

    store.on_did_change(first)
    dispose = store.on_did_change(second)
    await store.update("ai.activeModel", "groq")
    dispose()
    await store.update("ai.activeModel", "gemini")
    assert seen == ["first", "second", "first"]


def test_invalid_vendor_settings_raise_configuration_error() -> None:
    store = ConfigurationStore({"ai": {"groq": {"temperature": 7}}})
    with pytest.raises(ConfigurationError) as exc_info:
        store.vendor_settings("groq")
    assert exc_info.value.code == "invalid_configuration"


def test_load_applies_env_overrides(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"ai": {"activeModel": "gemini", "groq": {"model": "gemma-7b-it"}}}))
    monkeypatch.setenv("AISWITCH_ACTIVE_MODEL", "groq")
    monkeypatch.setenv("GROQ_API_KEY", "gsk_from_env")

    store = ConfigurationStore.load(path)
    assert store.get("ai.activeModel") == "groq"
    assert store.get("ai.groq.apiKey") == "gsk_from_env"
    assert store.get("ai.groq.model") == "gemma-7b-it"


def test_load_corrupt_file_falls_back_to_defaults(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{not json")
    store = ConfigurationStore.load(path)
    assert store.get("ai.activeModel") == "gemini"


def test_save_drops_keys_under_secure_storage(tmp_path) -> None:
    store = ConfigurationStore(
        {"ai": {"useSecureStorage": True, "groq": {"apiKey": "secret", "model": "gemma-7b-it"}}}
    )
    path = store.save(tmp_path / "config.json")
    saved = json.loads(path.read_text())
    assert "apiKey" not in saved["ai"]["groq"]
    assert saved["ai"]["groq"]["model"] == "gemma-7b-it"
    # the in-memory copy keeps the key
    assert store.get("ai.groq.apiKey") == "secret"


def test_save_round_trips_plain_settings(tmp_path) -> None:
    store = ConfigurationStore({"ai": {"groq": {"apiKey": "k"}}})
    path = store.save(tmp_path / "nested" / "config.json")
    assert ConfigurationStore.load(path, apply_env=False).get("ai.groq.apiKey") == "k"
