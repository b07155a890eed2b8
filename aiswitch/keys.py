"""
aiswitch.keys — API key management and the vendor catalogue.

``ApiKeyManager`` is what settings screens and the CLI talk to when a user
enters, replaces or removes a key:

  1. cheap local syntax gate (vendor prefix + length)
  2. live probe through a throwaway adapter (``AIService.test_connection``)
  3. optional write-through to the hosted credential backend
  4. write to configuration, which invalidates that vendor's cached adapter
"""

from __future__ import annotations

import logging

from pydantic import BaseModel

from aiswitch.adapters import ADAPTERS, VENDOR_DESCRIPTIONS, get_adapter_class, is_plausible_api_key
from aiswitch.core.config import NAMESPACE, ConfigurationStore
from aiswitch.core.errors import ConfigurationError, ValidationError
from aiswitch.core.events import Emitter
from aiswitch.credentials import CredentialStore
from aiswitch.service import AIService

logger = logging.getLogger("aiswitch.keys")


class ModelInfo(BaseModel):
    """One catalogue entry."""
    id: str
    name: str
    description: str
    model: str
    token_limit: int
    is_configured: bool
    is_available: bool
    is_active: bool


class ApiKeyManager:
    """Validate, store and remove vendor API keys."""

    def __init__(
        self,
        config: ConfigurationStore,
        service: AIService,
        credentials: CredentialStore | None = None,
        user_id: str | None = None,
    ) -> None:
        self._config = config
        self._service = service
        self._credentials = credentials
        self._user_id = user_id
        self.on_did_change_models: Emitter[str] = Emitter()

    @property
    def user_id(self) -> str:
        return self._user_id or self._config.get(f"{NAMESPACE}.userId") or "local-user"

    @property
    def uses_secure_storage(self) -> bool:
        return self._credentials is not None and bool(self._config.get(f"{NAMESPACE}.useSecureStorage"))

    # ------------------------------------------------------------------
    # Catalogue
    # ------------------------------------------------------------------

    def available_models(self) -> list[ModelInfo]:
        active = self._service.get_active_model()
        models: list[ModelInfo] = []
        for vendor, cls in ADAPTERS.items():
            settings = self._config.vendor_settings(vendor)
            client = self._service.cached_client(vendor)
            model = client.model if client is not None else settings.model or cls.default_model
            describe = VENDOR_DESCRIPTIONS.get(vendor, {})
            models.append(
                ModelInfo(
                    id=vendor,
                    name=describe.get("name", vendor),
                    description=describe.get("description", ""),
                    model=model,
                    token_limit=cls.token_limit_for(model),
                    is_configured=bool(settings.api_key),
                    is_available=client is not None and client.is_available(),
                    is_active=vendor == active,
                )
            )
        return models

    # ------------------------------------------------------------------
    # Key lifecycle
    # ------------------------------------------------------------------

    def validate_api_key(self, vendor: str, api_key: str) -> bool:
        """Local syntax check only; no network activity."""
        return is_plausible_api_key(vendor, api_key)

    async def set_api_key(self, vendor: str, api_key: str) -> None:
        vendor = get_adapter_class(vendor).vendor_id
        if not self.validate_api_key(vendor, api_key):
            raise ValidationError(
                f"API key does not look like a {vendor} key", code="invalid_api_key"
            )
        if not await self._service.test_connection(vendor, api_key):
            raise ConfigurationError(f"Invalid API key for {vendor}", code="invalid_api_key")

        if self.uses_secure_storage:
            await self._credentials.save_api_key(self.user_id, vendor, api_key)
        await self._config.update(f"{NAMESPACE}.{vendor}.apiKey", api_key)
        logger.info("Stored new %s API key", vendor)
        self.on_did_change_models.fire(vendor)

    async def remove_api_key(self, vendor: str) -> None:
        vendor = get_adapter_class(vendor).vendor_id
        if self.uses_secure_storage:
            await self._credentials.delete_api_key(self.user_id, vendor)
        await self._config.update(f"{NAMESPACE}.{vendor}.apiKey", None)
        logger.info("Removed %s API key", vendor)
        self.on_did_change_models.fire(vendor)

    async def load_stored_keys(self) -> list[str]:
        """Copy backend keys into configuration for vendors that have none."""
        if not self.uses_secure_storage:
            return []
        loaded: list[str] = []
        for vendor in ADAPTERS:
            if self._config.vendor_settings(vendor).api_key:
                continue
            api_key = await self._credentials.get_api_key(self.user_id, vendor)
            if api_key:
                await self._config.update(f"{NAMESPACE}.{vendor}.apiKey", api_key)
                loaded.append(vendor)
        if loaded:
            logger.info("Loaded stored API keys for: %s", ", ".join(loaded))
            for vendor in loaded:
                self.on_did_change_models.fire(vendor)
        return loaded
