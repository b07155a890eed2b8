"""
aiswitch.service — Orchestration over the active vendor.

``AIService`` owns:

  - the active-vendor pointer (persisted as ``ai.activeModel``; unknown values
    fall back to the default vendor)
  - one lazily constructed, cached adapter per vendor, invalidated when that
    vendor's credential or model changes in configuration
  - the merge of stored per-vendor tuning defaults under per-call options
  - the ``on_did_change_active_client`` event

There is no retry and no fallback to a second vendor: a failure on the active
vendor is returned to the caller as-is.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Callable, Sequence

import httpx

from aiswitch.adapters import ADAPTERS, create_adapter, get_adapter_class
from aiswitch.adapters.base import AIClient, BaseAdapter, ChunkCallback
from aiswitch.core.config import DEFAULT_VENDOR, NAMESPACE, ConfigurationChangeEvent, ConfigurationStore
from aiswitch.core.errors import NoActiveClientError
from aiswitch.core.events import Emitter
from aiswitch.core.models import CompletionOptions, CompletionResult, ConversationTurn

logger = logging.getLogger("aiswitch.service")

ACTIVE_MODEL_KEY = f"{NAMESPACE}.activeModel"

AdapterFactory = Callable[..., BaseAdapter]


class AIService:
    """Vendor-agnostic completion surface over the currently active adapter."""

    def __init__(
        self,
        config: ConfigurationStore,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: httpx.Timeout | float | None = None,
        adapter_factory: AdapterFactory = create_adapter,
    ) -> None:
        self._config = config
        self._transport = transport
        self._timeout = timeout
        self._adapter_factory = adapter_factory

        self._clients: dict[str, BaseAdapter] = {}
        self._client_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._resolve_lock = asyncio.Lock()
        self._active_client: AIClient | None = None
        self._own_updates = 0

        self.on_did_change_active_client: Emitter[AIClient | None] = Emitter()
        self._unsubscribe = config.on_did_change(self._on_configuration_changed)

    async def __aenter__(self) -> "AIService":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Active vendor
    # ------------------------------------------------------------------

    @property
    def active_client(self) -> AIClient | None:
        """The last resolved active adapter, without triggering resolution."""
        return self._active_client

    @staticmethod
    def available_vendors() -> list[str]:
        return list(ADAPTERS)

    def get_active_model(self) -> str:
        """The persisted active vendor id, or the default for absent/unknown values."""
        value = self._config.get(ACTIVE_MODEL_KEY)
        if isinstance(value, str):
            vendor = value.lower().strip()
            if vendor in ADAPTERS:
                return vendor
        if value:
            logger.warning("Unknown active model %r, falling back to %s", value, DEFAULT_VENDOR)
        return DEFAULT_VENDOR

    async def set_active_model(self, vendor: str) -> None:
        """
        Persist *vendor* as active and re-resolve unconditionally.

        Re-resolution happens even when the id is unchanged (credentials may
        have changed since), and the change event fires exactly once.
        """
        vendor = get_adapter_class(vendor).vendor_id
        self._own_updates += 1
        try:
            await self._config.update(ACTIVE_MODEL_KEY, vendor)
        finally:
            self._own_updates -= 1
        await self._initialize_active_client(always_fire=True)

    async def get_active_client(self) -> AIClient | None:
        """Resolve the adapter for the active vendor; None if resolution failed."""
        client = self._active_client
        if client is None or client.vendor_id != self.get_active_model():
            await self._initialize_active_client()
        return self._active_client

    # ------------------------------------------------------------------
    # Adapter cache
    # ------------------------------------------------------------------

    async def get_client(self, vendor: str) -> BaseAdapter:
        """
        Return the cached adapter for *vendor*, constructing it on first use.

        A stored credential is applied immediately, which probes the vendor,
        so the returned adapter's availability is freshly verified.
        """
        vendor = get_adapter_class(vendor).vendor_id
        cached = self._clients.get(vendor)
        if cached is not None:
            return cached

        async with self._client_locks[vendor]:
            cached = self._clients.get(vendor)
            if cached is not None:
                return cached

            settings = self._config.vendor_settings(vendor)
            client = self._adapter_factory(
                vendor,
                model=settings.model,
                transport=self._transport,
                timeout=self._timeout,
            )
            try:
                if settings.api_key:
                    await client.set_api_key(settings.api_key)
            except BaseException:
                await client.close()
                raise

            logger.info(
                "Initialised %s client (model=%s, available=%s)",
                vendor,
                client.model,
                client.is_available(),
            )
            self._clients[vendor] = client
            return client

    def cached_client(self, vendor: str) -> BaseAdapter | None:
        """The cached adapter for *vendor*, without constructing one."""
        return self._clients.get(vendor)

    async def invalidate_client(self, vendor: str) -> None:
        """Drop and close the cached adapter for *vendor* only."""
        client = self._clients.pop(vendor, None)
        if client is None:
            return
        if self._active_client is client:
            self._active_client = None
        logger.debug("Invalidated cached %s client", vendor)
        await client.close()

    # ------------------------------------------------------------------
    # Completion pass-through
    # ------------------------------------------------------------------

    async def complete(
        self,
        turns: Sequence[ConversationTurn],
        options: CompletionOptions | None = None,
    ) -> CompletionResult:
        client = await self._require_active_client()
        return await client.complete(turns, self._merged_options(client.vendor_id, options))

    async def stream_complete(
        self,
        turns: Sequence[ConversationTurn],
        on_chunk: ChunkCallback,
        options: CompletionOptions | None = None,
        *,
        cancel: asyncio.Event | None = None,
    ) -> CompletionResult:
        client = await self._require_active_client()
        return await client.stream_complete(
            turns,
            on_chunk,
            self._merged_options(client.vendor_id, options),
            cancel=cancel,
        )

    async def test_connection(self, vendor: str, api_key: str) -> bool:
        """
        Probe *api_key* with a throwaway adapter.

        The cached adapter for *vendor* is never touched, so testing a
        candidate key cannot disturb an already validated active client.
        """
        vendor = get_adapter_class(vendor).vendor_id
        settings = self._config.vendor_settings(vendor)
        client = self._adapter_factory(
            vendor,
            api_key=api_key,
            model=settings.model,
            transport=self._transport,
            timeout=self._timeout,
        )
        try:
            return await client.test_connection()
        except Exception:
            logger.exception("Failed to test %s connection", vendor)
            return False
        finally:
            await client.close()

    async def aclose(self) -> None:
        self._unsubscribe()
        clients, self._clients = list(self._clients.values()), {}
        self._active_client = None
        for client in clients:
            await client.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _require_active_client(self) -> AIClient:
        client = await self.get_active_client()
        if client is None:
            raise NoActiveClientError("No active AI client available")
        return client

    def _merged_options(self, vendor: str, options: CompletionOptions | None) -> CompletionOptions:
        defaults = self._config.vendor_settings(vendor).completion_defaults()
        return defaults.merged_with(options)

    async def _initialize_active_client(self, *, always_fire: bool = False) -> None:
        async with self._resolve_lock:
            vendor = self.get_active_model()
            previous = self._active_client
            client: AIClient | None
            try:
                client = await self.get_client(vendor)
            except Exception:
                logger.exception("Failed to initialize %s client", vendor)
                client = None

            self._active_client = client
            if always_fire or client is not previous:
                self.on_did_change_active_client.fire(client)

    async def _on_configuration_changed(self, event: ConfigurationChangeEvent) -> None:
        if not event.affects(NAMESPACE):
            return
        for vendor in list(self._clients):
            if event.affects(f"{NAMESPACE}.{vendor}.apiKey") or event.affects(f"{NAMESPACE}.{vendor}.model"):
                await self.invalidate_client(vendor)
        # set_active_model re-resolves on its own
        if self._own_updates:
            return
        await self._initialize_active_client()
