"""
aiswitch.core.models — Pydantic value types shared by every adapter.

* ``ConversationTurn`` — one role-tagged message (immutable).
* ``CompletionOptions`` — per-call tuning knobs; every field optional.
* ``CompletionResult`` — the uniform answer envelope: either ``content`` or
  ``error``, plus opaque ``metadata`` (timestamp, model, usage).
* ``VendorSettings`` — the persisted per-vendor configuration block.
"""

from __future__ import annotations

import os
import sys
from datetime import datetime, timezone
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Cross-platform directory helpers
# ---------------------------------------------------------------------------

def get_global_config_dir() -> Path:
    """
    Return the user-level config directory for aiswitch, created if needed.

    - Windows:  %LOCALAPPDATA%\\aiswitch
    - macOS:    ~/Library/Application Support/aiswitch
    - Linux:    $XDG_CONFIG_HOME/aiswitch  (default ~/.config/aiswitch)
    """
    if sys.platform == "win32":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    elif sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    d = base / "aiswitch"
    d.mkdir(parents=True, exist_ok=True)
    return d


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp used in result metadata."""
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------

class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ConversationTurn(BaseModel):
    """A single message in a conversation. Immutable once constructed."""
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str

    @classmethod
    def user(cls, content: str) -> "ConversationTurn":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "ConversationTurn":
        return cls(role=Role.ASSISTANT, content=content)

    @classmethod
    def system(cls, content: str) -> "ConversationTurn":
        return cls(role=Role.SYSTEM, content=content)


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------

class CompletionOptions(BaseModel):
    """
    Completion tuning knobs.  ``None`` means "let the vendor default apply".

    Options are layered: stored vendor defaults first, explicit per-call
    overrides last; see :meth:`merged_with`.
    """
    model_config = ConfigDict(frozen=True)

    temperature: float | None = Field(default=None, ge=0.0, le=1.0)
    max_tokens: int | None = Field(default=None, gt=0)
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    stop_sequences: list[str] | None = None

    def merged_with(self, overrides: "CompletionOptions | None") -> "CompletionOptions":
        """Return a copy where every field set on *overrides* wins."""
        if overrides is None:
            return self
        data = self.model_dump(exclude_none=True)
        data.update(overrides.model_dump(exclude_none=True))
        return CompletionOptions(**data)


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

class CompletionError(BaseModel):
    code: str
    message: str


class CompletionResult(BaseModel):
    """
    Exactly one semantic outcome: either ``content`` holds the answer and
    ``error`` is ``None``, or ``error`` is populated and ``content`` is empty.
    """
    content: str = ""
    error: CompletionError | None = None
    metadata: dict[str, Any] = Field(default_factory=lambda: {"timestamp": utc_timestamp()})

    @property
    def ok(self) -> bool:
        return self.error is None


# ---------------------------------------------------------------------------
# Persisted per-vendor configuration
# ---------------------------------------------------------------------------

class VendorSettings(BaseModel):
    """The ``ai.<vendor>`` block of the configuration store."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    api_key: str = Field(default="", alias="apiKey")
    model: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=1.0)
    max_tokens: int | None = Field(default=None, gt=0, alias="maxTokens")

    def completion_defaults(self) -> CompletionOptions:
        return CompletionOptions(temperature=self.temperature, max_tokens=self.max_tokens)
