"""Tests for the click command-line front end."""

from __future__ import annotations

import json

import httpx
import pytest
from click.testing import CliRunner

from aiswitch import cli
from aiswitch.core.config import ConfigurationStore

from conftest import GROQ_KEY, GROQ_KEY_2, RecordingTransport


@pytest.fixture
def wired(monkeypatch: pytest.MonkeyPatch, config, recorder):
    """Point the CLI at an in-memory config and the mock transport."""
    monkeypatch.setattr(cli, "_get_config", lambda: config)
    monkeypatch.setattr(cli, "_get_transport", lambda: recorder.transport)
    return config, recorder


def test_status(wired) -> None:
    result = CliRunner().invoke(cli.main, ["status"])
    assert result.exit_code == 0, result.output
    assert "gemini" in result.output
    assert "Google gemini-pro" in result.output


def test_models(wired) -> None:
    result = CliRunner().invoke(cli.main, ["models"])
    assert result.exit_code == 0, result.output
    assert "mixtral-8x7b-32768" in result.output


def test_use_switches_and_saves(wired) -> None:
    config, _ = wired
    result = CliRunner().invoke(cli.main, ["use", "groq"])
    assert result.exit_code == 0, result.output
    assert "Groq mixtral-8x7b-32768" in result.output
    assert config.get("ai.activeModel") == "groq"
    saved = ConfigurationStore.load(apply_env=False)
    assert saved.get("ai.activeModel") == "groq"


def test_use_unknown_vendor_fails(wired) -> None:
    result = CliRunner().invoke(cli.main, ["use", "openai"])
    assert result.exit_code == 1
    assert "unknown_vendor" in result.output


def test_ask(wired) -> None:
    _, recorder = wired
    result = CliRunner().invoke(cli.main, ["ask", "hi", "--system", "Be terse.", "--max-tokens", "12"])
    assert result.exit_code == 0, result.output
    assert "Hello" in result.output
    body = json.loads(recorder.requests[-1].content)
    assert body["generationConfig"]["maxOutputTokens"] == 12
    assert len(body["contents"][0]["parts"]) == 2


def test_ask_stream(wired) -> None:
    result = CliRunner().invoke(cli.main, ["ask", "hi", "--stream"])
    assert result.exit_code == 0, result.output
    assert "Hello" in result.output


def test_ask_reports_vendor_error(monkeypatch: pytest.MonkeyPatch, config) -> None:
    recorder = RecordingTransport(lambda r: httpx.Response(500, json={"error": {"message": "down"}}))
    monkeypatch.setattr(cli, "_get_config", lambda: config)
    monkeypatch.setattr(cli, "_get_transport", lambda: recorder.transport)
    result = CliRunner().invoke(cli.main, ["ask", "hi"])
    assert result.exit_code == 1
    assert "down" in result.output


def test_set_and_remove_key(wired) -> None:
    config, _ = wired
    result = CliRunner().invoke(cli.main, ["set-key", "groq", GROQ_KEY_2])
    assert result.exit_code == 0, result.output
    assert config.get("ai.groq.apiKey") == GROQ_KEY_2

    result = CliRunner().invoke(cli.main, ["remove-key", "groq"])
    assert result.exit_code == 0, result.output
    assert config.get("ai.groq.apiKey") is None


def test_set_key_rejects_malformed_key(wired) -> None:
    config, recorder = wired
    result = CliRunner().invoke(cli.main, ["set-key", "groq", "abc"])
    assert result.exit_code == 1
    assert config.get("ai.groq.apiKey") == GROQ_KEY
    assert recorder.call_count == 0


def test_test_key(wired) -> None:
    result = CliRunner().invoke(cli.main, ["test-key", "groq", GROQ_KEY])
    assert result.exit_code == 0, result.output
    assert "accepted" in result.output


def test_chat_keeps_alternating_history(wired) -> None:
    _, recorder = wired
    result = CliRunner().invoke(cli.main, ["chat", "--no-stream"], input="hi\nagain\n/exit\n")
    assert result.exit_code == 0, result.output
    assert result.output.count("Hello") == 2
    contents = json.loads(recorder.requests[-1].content)["contents"]
    assert [c["role"] for c in contents] == ["user", "model", "user"]
