"""
aiswitch.adapters.gemini — Google Gemini adapter.

Talks to the native ``generativelanguage.googleapis.com`` REST surface:

  - ``models/{model}:generateContent``                 (plain)
  - ``models/{model}:streamGenerateContent?alt=sse``   (streaming)

Gemini only knows two roles (``user`` / ``model``): ``assistant`` maps to
``model`` and ``system`` folds into ``user``.  Adjacent turns that fold into
the same Gemini role are merged into one content entry with several parts.

Default model: ``gemini-pro``.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from aiswitch.adapters.base import (
    DEFAULT_TEMPERATURE,
    PROBE_MAX_TOKENS,
    PROBE_PROMPT,
    BaseAdapter,
)
from aiswitch.core.errors import ParseError, VendorError
from aiswitch.core.models import CompletionOptions, ConversationTurn, Role

logger = logging.getLogger("aiswitch.adapters.gemini")

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"

DEFAULT_MODEL = "gemini-pro"
DEFAULT_MAX_TOKENS = 2048

# ---- Context windows (tokens) --------------------------------------------
MODEL_TOKEN_LIMITS: dict[str, int] = {
    "gemini-pro": 30720,
    "gemini-1.0-pro": 30720,
    "gemini-1.5-flash": 1048576,
    "gemini-1.5-pro": 2097152,
    "gemini-2.0-flash": 1048576,
    "gemini-2.5-flash": 1048576,
    "gemini-2.5-pro": 1048576,
}

_ROLE_MAP: dict[Role, str] = {
    Role.USER: "user",
    Role.SYSTEM: "user",
    Role.ASSISTANT: "model",
}

# finishReason / blockReason values that mean "no answer will come"
_BLOCKED_REASONS = {"SAFETY", "RECITATION", "BLOCKLIST", "PROHIBITED_CONTENT", "OTHER"}


class GeminiAdapter(BaseAdapter):
    """Google Gemini: API key in the x-goog-api-key header, two-role vocabulary."""

    vendor_id = "gemini"
    display_vendor = "Google"
    base_url = GEMINI_API_BASE
    default_model = DEFAULT_MODEL
    default_max_tokens = DEFAULT_MAX_TOKENS
    key_prefix = "AIza"

    @classmethod
    def token_limit_for(cls, model: str) -> int:
        return MODEL_TOKEN_LIMITS.get(model, MODEL_TOKEN_LIMITS[DEFAULT_MODEL])

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
        contents: list[dict[str, Any]] = []
        for turn in turns:
            role = _ROLE_MAP[Role(turn.role)]
            if contents and contents[-1]["role"] == role:
                contents[-1]["parts"].append({"text": turn.content})
            else:
                contents.append({"role": role, "parts": [{"text": turn.content}]})

        generation_config: dict[str, Any] = {
            "temperature": (
                options.temperature if options.temperature is not None else DEFAULT_TEMPERATURE
            ),
            "maxOutputTokens": options.max_tokens or self.default_max_tokens,
        }
        if options.top_p is not None:
            generation_config["topP"] = options.top_p
        if options.stop_sequences:
            generation_config["stopSequences"] = list(options.stop_sequences)

        return {"contents": contents, "generationConfig": generation_config}

    def _build_request(self, body: dict[str, Any], api_key: str, *, stream: bool) -> httpx.Request:
        # Credential goes in a header, never the URL
        headers = {"x-goog-api-key": api_key}
        if stream:
            url = f"/models/{self._model}:streamGenerateContent"
            params = {"alt": "sse"}
        else:
            url = f"/models/{self._model}:generateContent"
            params = {}
        return self._client.build_request("POST", url, params=params, json=body, headers=headers)

    def _probe_body(self) -> dict[str, Any]:
        return {
            "contents": [{"role": "user", "parts": [{"text": PROBE_PROMPT}]}],
            "generationConfig": {"maxOutputTokens": PROBE_MAX_TOKENS},
        }

    # ------------------------------------------------------------------
    # Response
    # ------------------------------------------------------------------

    def _parse_completion(self, data: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        candidates = data.get("candidates")
        if not isinstance(candidates, list) or not candidates:
            block_reason = (data.get("promptFeedback") or {}).get("blockReason")
            if block_reason:
                raise VendorError(
                    f"Gemini blocked the prompt ({block_reason})", code="content_blocked"
                )
            raise ParseError("Failed to parse Gemini API response")

        candidate = candidates[0] if isinstance(candidates[0], dict) else {}
        parts = (candidate.get("content") or {}).get("parts")
        if not isinstance(parts, list):
            finish_reason = candidate.get("finishReason")
            if finish_reason in _BLOCKED_REASONS:
                raise VendorError(
                    f"Gemini returned no content (finishReason={finish_reason})",
                    code="content_blocked",
                )
            raise ParseError("Failed to parse Gemini API response")

        texts = _visible_texts(parts)
        if texts is None:
            raise ParseError("Failed to parse Gemini API response")

        return "".join(texts), self._envelope_metadata(data)

    def _stream_delta(self, frame: dict[str, Any]) -> str:
        candidates = frame.get("candidates")
        if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
            return ""
        parts = (candidates[0].get("content") or {}).get("parts")
        if not isinstance(parts, list):
            return ""
        return "".join(_visible_texts(parts) or [])

    def _stream_metadata(self, frame: dict[str, Any]) -> dict[str, Any]:
        return self._envelope_metadata(frame)

    def _error_code(self, error: dict[str, Any]) -> str | None:
        status = error.get("status")
        if isinstance(status, str) and status:
            return status.lower()
        return None

    @staticmethod
    def _envelope_metadata(data: dict[str, Any]) -> dict[str, Any]:
        meta: dict[str, Any] = {}
        if isinstance(data.get("modelVersion"), str):
            meta["model"] = data["modelVersion"]

        candidates = data.get("candidates")
        if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict):
            finish_reason = candidates[0].get("finishReason")
            if finish_reason:
                meta["finish_reason"] = finish_reason

        usage = data.get("usageMetadata")
        if isinstance(usage, dict):
            meta["usage"] = {
                key: usage[src]
                for key, src in (
                    ("prompt_tokens", "promptTokenCount"),
                    ("completion_tokens", "candidatesTokenCount"),
                    ("total_tokens", "totalTokenCount"),
                )
                if src in usage
            }
        return meta


def _visible_texts(parts: list[Any]) -> list[str] | None:
    """Text of every non-thought part; None when no part carries text at all."""
    texts: list[str] = []
    found = False
    for part in parts:
        if not isinstance(part, dict) or not isinstance(part.get("text"), str):
            continue
        found = True
        # Thinking parts are model-internal, not user-visible output
        if part.get("thought"):
            continue
        texts.append(part["text"])
    return texts if found else None
