"""Tests for the shared value types."""

from __future__ import annotations

import pydantic
import pytest

from aiswitch.core.models import (
    CompletionOptions,
    CompletionResult,
    ConversationTurn,
    Role,
    VendorSettings,
)


def test_turn_is_immutable() -> None:
    turn = ConversationTurn.user("hi")
    with pytest.raises(pydantic.ValidationError):
        turn.content = "changed"  # type: ignore[misc]


def test_turn_constructors_set_roles() -> None:
    assert ConversationTurn.user("a").role is Role.USER
    assert ConversationTurn.assistant("a").role is Role.ASSISTANT
    assert ConversationTurn.system("a").role is Role.SYSTEM


def test_unknown_role_rejected() -> None:
    with pytest.raises(pydantic.ValidationError):
        ConversationTurn(role="tool", content="x")


@pytest.mark.parametrize(
    "kwargs",
    [{"temperature": 1.5}, {"temperature": -0.1}, {"max_tokens": 0}, {"top_p": 2}],
)
def test_options_ranges(kwargs) -> None:
    with pytest.raises(pydantic.ValidationError):
        CompletionOptions(**kwargs)


def test_per_call_options_win_per_field() -> None:
    stored = CompletionOptions(temperature=0.2, max_tokens=100)
    merged = stored.merged_with(CompletionOptions(temperature=0.9))
    assert merged.temperature == 0.9
    assert merged.max_tokens == 100


def test_merge_with_nothing_keeps_defaults() -> None:
    stored = CompletionOptions(temperature=0.2)
    assert stored.merged_with(None) is stored


def test_result_has_timestamp_and_ok_flag() -> None:
    result = CompletionResult(content="x")
    assert result.ok
    assert "timestamp" in result.metadata


def test_vendor_settings_accepts_camel_case() -> None:
    settings = VendorSettings.model_validate({"apiKey": "k", "maxTokens": 64, "temperature": 0.3})
    assert settings.api_key == "k"
    defaults = settings.completion_defaults()
    assert defaults.max_tokens == 64
    assert defaults.temperature == 0.3
