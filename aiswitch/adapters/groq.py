"""
aiswitch.adapters.groq — Groq adapter.

Groq serves an OpenAI-compatible Chat Completions surface at
``api.groq.com/openai/v1``, so the three-way role vocabulary
(system / user / assistant) is preserved as-is and streaming uses the
familiar ``choices[0].delta.content`` frames terminated by ``[DONE]``.

Default model: ``mixtral-8x7b-32768``.
"""

from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from aiswitch.adapters.base import (
    DEFAULT_TEMPERATURE,
    PROBE_MAX_TOKENS,
    PROBE_PROMPT,
    BaseAdapter,
)
from aiswitch.core.errors import ParseError
from aiswitch.core.models import CompletionOptions, ConversationTurn

logger = logging.getLogger("aiswitch.adapters.groq")

GROQ_API_BASE = "https://api.groq.com/openai/v1"

DEFAULT_MODEL = "mixtral-8x7b-32768"
DEFAULT_TOKEN_LIMIT = 32768
DEFAULT_MAX_TOKENS = 4096

# ---- Context windows (tokens) --------------------------------------------
# Ids not listed here fall back to a trailing context-size suffix in the
# model id (e.g. ``llama3-70b-8192``), then to DEFAULT_TOKEN_LIMIT.
MODEL_TOKEN_LIMITS: dict[str, int] = {
    "mixtral-8x7b-32768": 32768,
    "gemma-7b-it": 8192,
    "gemma2-9b-it": 8192,
    "llama-3.1-8b-instant": 131072,
    "llama-3.3-70b-versatile": 131072,
}

_CONTEXT_SUFFIX = re.compile(r"-(\d{4,7})$")


class GroqAdapter(BaseAdapter):
    """Groq: bearer auth, OpenAI-style chat payloads."""

    vendor_id = "groq"
    display_vendor = "Groq"
    base_url = GROQ_API_BASE
    default_model = DEFAULT_MODEL
    default_max_tokens = DEFAULT_MAX_TOKENS
    key_prefix = "gsk_"

    @classmethod
    def token_limit_for(cls, model: str) -> int:
        if model in MODEL_TOKEN_LIMITS:
            return MODEL_TOKEN_LIMITS[model]
        match = _CONTEXT_SUFFIX.search(model)
        if match:
            return int(match.group(1))
        return DEFAULT_TOKEN_LIMIT

    # ------------------------------------------------------------------
    # Request
    # ------------------------------------------------------------------

    def _build_body(
        self,
        turns: list[ConversationTurn],
        options: CompletionOptions,
        *,
        stream: bool,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self._model,
            "messages": [{"role": str(t.role), "content": t.content} for t in turns],
            "temperature": (
                options.temperature if options.temperature is not None else DEFAULT_TEMPERATURE
            ),
            "max_tokens": options.max_tokens or self.default_max_tokens,
            "stream": stream,
        }
        if options.top_p is not None:
            body["top_p"] = options.top_p
        if options.stop_sequences:
            body["stop"] = list(options.stop_sequences)
        return body

    def _build_request(self, body: dict[str, Any], api_key: str, *, stream: bool) -> httpx.Request:
        return self._client.build_request(
            "POST",
            "/chat/completions",
            json=body,
            headers={"Authorization": f"Bearer {api_key}"},
        )

    def _probe_body(self) -> dict[str, Any]:
        return {
            "model": self._model,
            "messages": [{"role": "user", "content": PROBE_PROMPT}],
            "max_tokens": PROBE_MAX_TOKENS,
        }

    # ------------------------------------------------------------------
    # Response
    # ------------------------------------------------------------------

    def _parse_completion(self, data: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            raise ParseError("Invalid response format from Groq API")
        message = choices[0].get("message")
        if not isinstance(message, dict) or not isinstance(message.get("content"), str):
            raise ParseError("Invalid response format from Groq API")

        meta = self._envelope_metadata(data)
        finish_reason = choices[0].get("finish_reason")
        if finish_reason:
            meta["finish_reason"] = finish_reason
        return message["content"], meta

    def _stream_delta(self, frame: dict[str, Any]) -> str:
        choices = frame.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return ""
        content = (choices[0].get("delta") or {}).get("content")
        return content if isinstance(content, str) else ""

    def _stream_metadata(self, frame: dict[str, Any]) -> dict[str, Any]:
        meta = self._envelope_metadata(frame)
        # Groq reports streaming usage on the last frame under ``x_groq``
        x_groq = frame.get("x_groq")
        if "usage" not in meta and isinstance(x_groq, dict) and isinstance(x_groq.get("usage"), dict):
            meta["usage"] = _usage(x_groq["usage"])
        choices = frame.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            finish_reason = choices[0].get("finish_reason")
            if finish_reason:
                meta["finish_reason"] = finish_reason
        return meta

    def _error_code(self, error: dict[str, Any]) -> str | None:
        for key in ("code", "type"):
            value = error.get(key)
            if isinstance(value, str) and value:
                return value
        return None

    @staticmethod
    def _envelope_metadata(data: dict[str, Any]) -> dict[str, Any]:
        meta: dict[str, Any] = {}
        if isinstance(data.get("model"), str):
            meta["model"] = data["model"]
        if isinstance(data.get("usage"), dict):
            meta["usage"] = _usage(data["usage"])
        return meta


def _usage(raw: dict[str, Any]) -> dict[str, Any]:
    return {
        key: raw[key]
        for key in ("prompt_tokens", "completion_tokens", "total_tokens")
        if key in raw
    }
