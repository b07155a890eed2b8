"""
aiswitch.credentials — Hosted credential backend (Supabase / PostgREST).

Keys live in an ``api_keys`` table keyed by ``(user_id, provider)``.  The
client is constructed explicitly by whoever composes the service and closed
with it; nothing here is a process-wide singleton.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from aiswitch.core.config import ConfigurationStore
from aiswitch.core.errors import ConfigurationError, CredentialStoreError
from aiswitch.core.models import utc_timestamp

logger = logging.getLogger("aiswitch.credentials")

TABLE = "api_keys"


class CredentialStore:
    """Thin async client for the ``api_keys`` table over the REST interface."""

    def __init__(
        self,
        url: str,
        anon_key: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: httpx.Timeout | float | None = 30.0,
    ) -> None:
        if not url or not anon_key:
            raise ConfigurationError(
                "Supabase URL and anon key must be provided for secure key storage",
                code="credential_store_unconfigured",
            )
        self._client = httpx.AsyncClient(
            base_url=f"{url.rstrip('/')}/rest/v1",
            headers={
                "apikey": anon_key,
                "Authorization": f"Bearer {anon_key}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_config(
        cls,
        config: ConfigurationStore,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "CredentialStore":
        return cls(
            config.get("ai.supabaseUrl", ""),
            config.get("ai.supabaseAnonKey", ""),
            transport=transport,
        )

    async def __aenter__(self) -> "CredentialStore":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def get_api_key(self, user_id: str, vendor: str) -> str | None:
        resp = await self._request(
            "GET",
            params={
                "select": "api_key",
                "user_id": f"eq.{user_id}",
                "provider": f"eq.{vendor}",
                "limit": "1",
            },
        )
        try:
            rows = resp.json()
        except ValueError:
            logger.warning("Credential backend returned a non-JSON body for %s", vendor)
            return None
        if isinstance(rows, list) and rows and isinstance(rows[0], dict):
            key = rows[0].get("api_key")
            return key if isinstance(key, str) and key else None
        return None

    async def save_api_key(self, user_id: str, vendor: str, api_key: str) -> None:
        await self._request(
            "POST",
            params={"on_conflict": "user_id,provider"},
            json={
                "user_id": user_id,
                "provider": vendor,
                "api_key": api_key,
                "updated_at": utc_timestamp(),
            },
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
            action="save",
        )
        logger.info("Saved %s API key for user %s", vendor, user_id)

    async def delete_api_key(self, user_id: str, vendor: str) -> None:
        await self._request(
            "DELETE",
            params={"user_id": f"eq.{user_id}", "provider": f"eq.{vendor}"},
            action="delete",
        )
        logger.info("Deleted %s API key for user %s", vendor, user_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        *,
        params: dict[str, str],
        json: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        action: str = "read",
    ) -> httpx.Response:
        try:
            resp = await self._client.request(
                method, f"/{TABLE}", params=params, json=json, headers=headers
            )
        except httpx.RequestError as exc:
            raise CredentialStoreError(f"Failed to {action} API key: {exc}") from exc
        if resp.is_error:
            raise CredentialStoreError(f"Failed to {action} API key: {_error_message(resp)}")
        return resp


def _error_message(resp: httpx.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        return resp.text[:200] or f"HTTP {resp.status_code}"
    if isinstance(payload, dict):
        return str(payload.get("message") or payload.get("error") or payload)[:200]
    return f"HTTP {resp.status_code}"
