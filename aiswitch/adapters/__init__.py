"""
aiswitch.adapters — Vendor adapter registry.

``ADAPTERS`` is the single vendor-id → adapter-class mapping; adding a vendor
means adding one adapter module and one entry here.

Supported vendors:
    - ``gemini`` — Google Gemini (gemini-pro, gemini-1.5-*, gemini-2.x)
    - ``groq``   — Groq-hosted open models (Mixtral, Llama 3, Gemma)
"""

from __future__ import annotations

import httpx

from aiswitch.adapters.base import AIClient, BaseAdapter, validate_turns, error_result
from aiswitch.adapters.gemini import GeminiAdapter
from aiswitch.adapters.groq import GroqAdapter
from aiswitch.core.errors import UnknownVendorError

ADAPTERS: dict[str, type[BaseAdapter]] = {
    GeminiAdapter.vendor_id: GeminiAdapter,
    GroqAdapter.vendor_id: GroqAdapter,
}

# ---- Catalogue entries shown to users -----------------------------------
VENDOR_DESCRIPTIONS: dict[str, dict[str, str]] = {
    "gemini": {"name": "Google Gemini", "description": "Google's advanced AI model"},
    "groq": {"name": "Groq", "description": "High-performance AI inference"},
}


def get_adapter_class(vendor: str) -> type[BaseAdapter]:
    cls = ADAPTERS.get(vendor.lower().strip()) if isinstance(vendor, str) else None
    if cls is None:
        raise UnknownVendorError(
            f"Unknown vendor: '{vendor}'. Supported: {', '.join(ADAPTERS)}"
        )
    return cls


def create_adapter(
    vendor: str,
    api_key: str | None = None,
    model: str | None = None,
    *,
    base_url: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    timeout: httpx.Timeout | float | None = None,
) -> BaseAdapter:
    """
    Factory that returns an adapter for *vendor*, seeded with *api_key*.

    The key is stored but not probed; call ``set_api_key`` to verify it.
    """
    cls = get_adapter_class(vendor)
    return cls(api_key=api_key, model=model, base_url=base_url, transport=transport, timeout=timeout)


def is_plausible_api_key(vendor: str, api_key: str | None) -> bool:
    """Local prefix + length check for *vendor*; False for unknown vendors."""
    cls = ADAPTERS.get(vendor)
    return cls is not None and cls.is_plausible_api_key(api_key)


__all__ = [
    "ADAPTERS",
    "AIClient",
    "BaseAdapter",
    "GeminiAdapter",
    "GroqAdapter",
    "VENDOR_DESCRIPTIONS",
    "create_adapter",
    "error_result",
    "get_adapter_class",
    "is_plausible_api_key",
    "validate_turns",
]
