"""Tests for ApiKeyManager and the model catalogue."""

from __future__ import annotations

import httpx
import pytest

from aiswitch.core.config import ConfigurationStore
from aiswitch.core.errors import ConfigurationError, ValidationError
from aiswitch.credentials import CredentialStore
from aiswitch.keys import ApiKeyManager
from aiswitch.service import AIService

from conftest import GEMINI_KEY, GROQ_KEY, GROQ_KEY_2, RecordingTransport


class FakeCredentialStore:
    """In-memory stand-in for the hosted table."""

    def __init__(self, rows: dict[tuple[str, str], str] | None = None) -> None:
        self.rows = dict(rows or {})

    async def get_api_key(self, user_id: str, vendor: str) -> str | None:
        return self.rows.get((user_id, vendor))

    async def save_api_key(self, user_id: str, vendor: str, api_key: str) -> None:
        self.rows[(user_id, vendor)] = api_key

    async def delete_api_key(self, user_id: str, vendor: str) -> None:
        self.rows.pop((user_id, vendor), None)


@pytest.fixture
async def manager(recorder):
    config = ConfigurationStore()
    service = AIService(config, transport=recorder.transport)
    yield ApiKeyManager(config, service)
    await service.aclose()


async def test_catalogue_lists_every_vendor(manager) -> None:
    models = {m.id: m for m in manager.available_models()}
    assert set(models) == {"gemini", "groq"}
    assert models["gemini"].is_active
    assert models["gemini"].token_limit == 30720
    assert models["groq"].model == "mixtral-8x7b-32768"
    assert not models["groq"].is_configured
    assert not models["groq"].is_available


async def test_set_api_key_stores_and_notifies(manager, recorder) -> None:
    changed: list[str] = []
    manager.on_did_change_models.subscribe(changed.append)

    await manager.set_api_key("groq", GROQ_KEY)

    assert manager._config.get("ai.groq.apiKey") == GROQ_KEY
    assert changed == ["groq"]
    assert recorder.call_count == 1


async def test_implausible_key_rejected_without_network(manager, recorder) -> None:
    with pytest.raises(ValidationError) as exc_info:
        await manager.set_api_key("groq", "short-key")
    assert exc_info.value.code == "invalid_api_key"
    assert recorder.call_count == 0


async def test_key_rejected_by_vendor_is_not_stored() -> None:
    recorder = RecordingTransport(lambda r: httpx.Response(401, json={"error": {"message": "nope"}}))
    config = ConfigurationStore()
    async with AIService(config, transport=recorder.transport) as service:
        manager = ApiKeyManager(config, service)
        with pytest.raises(ConfigurationError):
            await manager.set_api_key("gemini", GEMINI_KEY)
    assert config.get("ai.gemini.apiKey") is None


async def test_new_key_replaces_cached_adapter(recorder) -> None:
    config = ConfigurationStore({"ai": {"activeModel": "groq", "groq": {"apiKey": GROQ_KEY}}})
    async with AIService(config, transport=recorder.transport) as service:
        manager = ApiKeyManager(config, service)
        before = await service.get_active_client()
        await manager.set_api_key("groq", GROQ_KEY_2)
        after = await service.get_active_client()
    assert after is not before
    assert after.api_key == GROQ_KEY_2


async def test_secure_storage_writes_through(recorder) -> None:
    config = ConfigurationStore({"ai": {"useSecureStorage": True}})
    backend = FakeCredentialStore()
    async with AIService(config, transport=recorder.transport) as service:
        manager = ApiKeyManager(config, service, backend, user_id="alice")
        await manager.set_api_key("gemini", GEMINI_KEY)
        assert backend.rows == {("alice", "gemini"): GEMINI_KEY}

        await manager.remove_api_key("gemini")
        assert backend.rows == {}
        assert config.get("ai.gemini.apiKey") is None


async def test_load_stored_keys_fills_missing_only(recorder) -> None:
    config = ConfigurationStore({"ai": {"useSecureStorage": True, "userId": "bob", "gemini": {"apiKey": GEMINI_KEY}}})
    backend = FakeCredentialStore({("bob", "gemini"): "AIza-other", ("bob", "groq"): GROQ_KEY})
    async with AIService(config, transport=recorder.transport) as service:
        manager = ApiKeyManager(config, service, backend)
        assert await manager.load_stored_keys() == ["groq"]
    assert config.get("ai.gemini.apiKey") == GEMINI_KEY
    assert config.get("ai.groq.apiKey") == GROQ_KEY


async def test_load_stored_keys_without_backend(manager) -> None:
    assert await manager.load_stored_keys() == []


async def test_real_backend_client_plugs_in(recorder) -> None:
    backend_recorder = RecordingTransport(lambda r: httpx.Response(201))
    config = ConfigurationStore({"ai": {"useSecureStorage": True}})
    async with CredentialStore("https://p.supabase.co", "anon", transport=backend_recorder.transport) as backend:
        async with AIService(config, transport=recorder.transport) as service:
            await ApiKeyManager(config, service, backend).set_api_key("groq", GROQ_KEY)
    assert backend_recorder.requests[0].method == "POST"


async def test_validate_api_key_is_local(manager) -> None:
    assert manager.validate_api_key("gemini", GEMINI_KEY)
    assert not manager.validate_api_key("gemini", GROQ_KEY)


async def test_unknown_vendor_rejected(manager) -> None:
    with pytest.raises(ConfigurationError):
        await manager.set_api_key("openai", GROQ_KEY)

