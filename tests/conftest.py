"""Shared fixtures: isolated config dir, recorded mock transports, key literals."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx
import pytest

from aiswitch.core.config import ENV_OVERRIDES, ConfigurationStore

GEMINI_KEY = "AIza" + "G" * 35
GEMINI_KEY_2 = "AIza" + "H" * 35
GROQ_KEY = "gsk_" + "Q" * 40
GROQ_KEY_2 = "gsk_" + "R" * 40


# =============================================================================
# Test doubles
# =============================================================================


@dataclass
class RecordingTransport:
    """Wrap a request handler and keep every request it sees."""

    handler: Callable[[httpx.Request], httpx.Response]
    requests: list[httpx.Request] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def bodies(self) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests if r.content]


def sse(*frames: Any, done: bool = True) -> bytes:
    """Encode *frames* as ``data:`` lines; str frames are sent verbatim."""
    lines = []
    for frame in frames:
        payload = frame if isinstance(frame, str) else json.dumps(frame)
        lines.append(f"data: {payload}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode()


def gemini_answer(text: str, **extra: Any) -> dict[str, Any]:
    return {
        "candidates": [{"content": {"role": "model", "parts": [{"text": text}]}, **extra}],
    }


def groq_answer(text: str) -> dict[str, Any]:
    return {
        "model": "mixtral-8x7b-32768",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": text}, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 3, "completion_tokens": 2, "total_tokens": 5},
    }


def groq_delta(text: str) -> dict[str, Any]:
    return {"choices": [{"index": 0, "delta": {"content": text}}]}


def gemini_delta(text: str) -> dict[str, Any]:
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}


def vendor_ok(request: httpx.Request) -> httpx.Response:
    """Answer any vendor call successfully, streaming or not."""
    if request.url.host == "api.groq.com":
        if json.loads(request.content).get("stream"):
            return httpx.Response(200, content=sse(groq_delta("Hel"), groq_delta("lo")))
        return httpx.Response(200, json=groq_answer("Hello"))
    if ":streamGenerateContent" in request.url.path:
        return httpx.Response(200, content=sse(gemini_delta("Hel"), gemini_delta("lo"), done=False))
    return httpx.Response(200, json=gemini_answer("Hello"))


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Keep real credentials and the real config dir out of every test."""
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))


@pytest.fixture
def recorder() -> RecordingTransport:
    return RecordingTransport(vendor_ok)


@pytest.fixture
def config() -> ConfigurationStore:
    return ConfigurationStore(
        {"ai": {"activeModel": "gemini", "gemini": {"apiKey": GEMINI_KEY}, "groq": {"apiKey": GROQ_KEY}}}
    )
