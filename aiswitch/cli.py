"""
aiswitch.cli — Command-line interface for the completion layer.

Usage:
    aiswitch status                    Active vendor, model and availability
    aiswitch models                    Vendor catalogue
    aiswitch use <vendor>              Switch the active vendor
    aiswitch set-key <vendor> <key>    Validate and store an API key
    aiswitch remove-key <vendor>       Remove a stored API key
    aiswitch test-key <vendor> <key>   Probe a key without storing it
    aiswitch ask "question"            One-shot completion (--stream to stream)
    aiswitch chat                      Interactive conversation
    aiswitch serve                     Start the HTTP gateway on localhost:8765
"""

from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncIterator

import click
import httpx
from rich.console import Console
from rich.table import Table

from aiswitch.core.config import ConfigurationStore
from aiswitch.core.errors import AISwitchError, CredentialStoreError
from aiswitch.core.models import CompletionOptions, CompletionResult, ConversationTurn
from aiswitch.credentials import CredentialStore
from aiswitch.keys import ApiKeyManager
from aiswitch.service import AIService

console = Console()


def _setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(name)s] %(levelname)s — %(message)s",
        datefmt="%H:%M:%S",
    )


def _get_config() -> ConfigurationStore:
    return ConfigurationStore.load()


def _get_transport() -> httpx.AsyncBaseTransport | None:
    return None


@asynccontextmanager
async def _session() -> AsyncIterator[tuple[ConfigurationStore, AIService, ApiKeyManager]]:
    """Compose config, service and key manager for one command."""
    config = _get_config()
    transport = _get_transport()
    credentials: CredentialStore | None = None
    if config.get("ai.useSecureStorage") and config.get("ai.supabaseUrl"):
        credentials = CredentialStore.from_config(config, transport=transport)

    service = AIService(config, transport=transport)
    keys = ApiKeyManager(config, service, credentials)
    try:
        if credentials is not None:
            try:
                await keys.load_stored_keys()
            except CredentialStoreError as exc:
                console.print(f"[yellow]![/yellow] Could not load stored keys: {exc.message}")
        yield config, service, keys
    finally:
        await service.aclose()
        if credentials is not None:
            await credentials.aclose()


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except AISwitchError as exc:
        console.print(f"[red]✗[/red] {exc.message} [dim]({exc.code})[/dim]")
        sys.exit(1)


def _print_error(result: CompletionResult) -> None:
    console.print(f"[red]✗[/red] {result.error.message} [dim]({result.error.code})[/dim]")


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def main(verbose: bool) -> None:
    """aiswitch — one completion API over Gemini and Groq."""
    _setup_logging(verbose)


# ---------------------------------------------------------------------------
# status / models
# ---------------------------------------------------------------------------

@main.command()
def status() -> None:
    """Show the active vendor and whether its adapter is usable."""

    async def _status() -> None:
        async with _session() as (config, service, _keys):
            client = await service.get_active_client()

            table = Table(title="aiswitch Status")
            table.add_column("Key", style="cyan")
            table.add_column("Value", style="green")
            table.add_row("Active vendor", service.get_active_model())
            if client is not None:
                table.add_row("Model", client.model_name())
                table.add_row("Token limit", str(client.token_limit()))
                table.add_row("API key", "set" if client.api_key else "[yellow]missing[/yellow]")
                table.add_row("Available", "yes" if client.is_available() else "[red]no[/red]")
            else:
                table.add_row("Client", "[red]unavailable[/red]")
            table.add_row("Secure storage", "on" if config.get("ai.useSecureStorage") else "off")
            console.print(table)

    _run(_status())


@main.command()
def models() -> None:
    """List supported vendors and their configuration state."""

    async def _models() -> None:
        async with _session() as (_config, _service, keys):
            table = Table(title="Models")
            table.add_column("", width=2)
            table.add_column("Vendor", style="cyan")
            table.add_column("Name")
            table.add_column("Model", style="green")
            table.add_column("Tokens", justify="right")
            table.add_column("Key")
            for info in keys.available_models():
                table.add_row(
                    "●" if info.is_active else "",
                    info.id,
                    info.name,
                    info.model,
                    f"{info.token_limit:,}",
                    "✓" if info.is_configured else "—",
                )
            console.print(table)

    _run(_models())


# ---------------------------------------------------------------------------
# use / keys
# ---------------------------------------------------------------------------

@main.command()
@click.argument("vendor")
def use(vendor: str) -> None:
    """Switch the active vendor."""

    async def _use() -> None:
        async with _session() as (config, service, _keys):
            await service.set_active_model(vendor)
            config.save()
            client = service.active_client
            if client is None:
                console.print(f"[yellow]![/yellow] Active vendor is now {service.get_active_model()}, but its client failed to initialise")
            elif not client.is_available():
                console.print(f"[yellow]![/yellow] Switched to {client.model_name()} (not available: check its API key)")
            else:
                console.print(f"[green]✓[/green] Switched to [bold]{client.model_name()}[/bold]")

    _run(_use())


@main.command("set-key")
@click.argument("vendor")
@click.argument("api_key")
def set_key(vendor: str, api_key: str) -> None:
    """Validate API_KEY against VENDOR and store it."""

    async def _set_key() -> None:
        async with _session() as (config, _service, keys):
            with console.status(f"Testing {vendor} key…"):
                await keys.set_api_key(vendor, api_key)
            config.save()
            console.print(f"[green]✓[/green] Stored {vendor} API key")

    _run(_set_key())


@main.command("remove-key")
@click.argument("vendor")
def remove_key(vendor: str) -> None:
    """Remove the stored API key for VENDOR."""

    async def _remove_key() -> None:
        async with _session() as (config, _service, keys):
            await keys.remove_api_key(vendor)
            config.save()
            console.print(f"[green]✓[/green] Removed {vendor} API key")

    _run(_remove_key())


@main.command("test-key")
@click.argument("vendor")
@click.argument("api_key")
def test_key(vendor: str, api_key: str) -> None:
    """Probe API_KEY against VENDOR without storing it."""

    async def _test_key() -> None:
        async with _session() as (_config, service, keys):
            if not keys.validate_api_key(vendor, api_key):
                console.print(f"[yellow]![/yellow] Key does not look like a {vendor} key")
            if await service.test_connection(vendor, api_key):
                console.print(f"[green]✓[/green] {vendor} accepted the key")
            else:
                console.print(f"[red]✗[/red] {vendor} rejected the key")
                sys.exit(1)

    _run(_test_key())


# ---------------------------------------------------------------------------
# ask / chat
# ---------------------------------------------------------------------------

def _options(temperature: float | None, max_tokens: int | None) -> CompletionOptions | None:
    if temperature is None and max_tokens is None:
        return None
    return CompletionOptions(temperature=temperature, max_tokens=max_tokens)


async def _reply(
    service: AIService,
    turns: list[ConversationTurn],
    options: CompletionOptions | None,
    stream: bool,
) -> CompletionResult:
    if not stream:
        result = await service.complete(turns, options)
        if result.ok:
            console.print(result.content, markup=False, highlight=False)
        return result

    def _write(chunk: str) -> None:
        console.print(chunk, end="", markup=False, highlight=False)
        console.file.flush()

    result = await service.stream_complete(turns, _write, options)
    console.print()
    return result


@main.command()
@click.argument("prompt")
@click.option("--stream", "do_stream", is_flag=True, help="Print the answer as it arrives.")
@click.option("-s", "--system", default=None, help="System instruction sent before the prompt.")
@click.option("-t", "--temperature", type=float, default=None, help="Sampling temperature (0-1).")
@click.option("--max-tokens", type=int, default=None, help="Output token budget.")
def ask(
    prompt: str,
    do_stream: bool,
    system: str | None,
    temperature: float | None,
    max_tokens: int | None,
) -> None:
    """Send PROMPT to the active vendor and print the answer."""

    async def _ask() -> None:
        turns: list[ConversationTurn] = []
        if system:
            turns.append(ConversationTurn.system(system))
        turns.append(ConversationTurn.user(prompt))
        async with _session() as (_config, service, _keys):
            result = await _reply(service, turns, _options(temperature, max_tokens), do_stream)
            if not result.ok:
                _print_error(result)
                sys.exit(1)

    _run(_ask())


@main.command()
@click.option("--stream/--no-stream", "do_stream", default=True, help="Stream replies.")
@click.option("-s", "--system", default=None, help="System instruction for the conversation.")
def chat(do_stream: bool, system: str | None) -> None:
    """Interactive conversation with the active vendor (empty line or /exit to quit)."""

    async def _chat() -> None:
        turns: list[ConversationTurn] = []
        if system:
            turns.append(ConversationTurn.system(system))
        async with _session() as (_config, service, _keys):
            client = await service.get_active_client()
            if client is not None:
                console.print(f"[dim]Chatting with {client.model_name()}[/dim]")
            while True:
                try:
                    line = await asyncio.to_thread(console.input, "[bold cyan]you>[/bold cyan] ")
                except (EOFError, KeyboardInterrupt):
                    break
                line = line.strip()
                if not line or line in ("/exit", "/quit"):
                    break
                turns.append(ConversationTurn.user(line))
                result = await _reply(service, turns, None, do_stream)
                if result.ok:
                    turns.append(ConversationTurn.assistant(result.content))
                else:
                    # Drop the unanswered turn so the history still alternates
                    turns.pop()
                    _print_error(result)

    _run(_chat())


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------

@main.command()
@click.option("--host", default="127.0.0.1", help="Bind host.")
@click.option("--port", default=8765, type=int, help="Bind port.")
@click.option("--reload", "do_reload", is_flag=True, help="Enable auto-reload for development.")
def serve(host: str, port: int, do_reload: bool) -> None:
    """Start the aiswitch HTTP gateway."""
    import uvicorn

    console.print(f"[bold green]Starting aiswitch gateway[/] on {host}:{port}")
    config = _get_config()
    console.print(f"[dim]Active vendor: {config.get('ai.activeModel')}[/dim]")
    uvicorn.run(
        "aiswitch.proxy:app",
        host=host,
        port=port,
        reload=do_reload,
        log_level="info",
    )


if __name__ == "__main__":
    main()
