"""Terminal front end for localchat."""

from __future__ import annotations

import asyncio
import logging
import signal
from datetime import datetime
from pathlib import Path

import click
from prompt_toolkit import PromptSession
from prompt_toolkit.formatted_text import HTML
from prompt_toolkit.history import FileHistory
from rich.console import Console
from rich.markdown import Markdown
from rich.table import Table

from localchat import __version__
from localchat.config import AppConfig, load_config
from localchat.events.bus import EventBus
from localchat.llm.client import OllamaClient
from localchat.llm.directory import ModelDirectory, SQLiteModelCache
from localchat.llm.health import pick_model
from localchat.session.reconciler import SessionReconciler
from localchat.session.store import SQLiteHistoryStore
from localchat.types import ChatEvent, ChatSession, EventType, Role

console = Console()

_HELP = """
[bold]Commands:[/bold]
  /new             - Start a new conversation
  /history         - List saved conversations
  /load <id>       - Resume a saved conversation
  /delete <id>     - Delete a saved conversation
  /models [refresh]- List models served by the endpoint
  /model <name>    - Switch model
  /system [prompt] - Show or set the system prompt (/system - clears it)
  /check           - Check the connection
  /help            - Show this help
  /quit            - Exit

Ctrl-C while a reply is streaming stops it.
"""


def _fmt_ms(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M")


def _build(config: AppConfig) -> tuple[OllamaClient, SQLiteHistoryStore, SQLiteModelCache]:
    cache = SQLiteModelCache(config.storage.models_cache_db)
    client = OllamaClient(config.ollama, directory=ModelDirectory(cache=cache))
    store = SQLiteHistoryStore(config.storage.history_db)
    return client, store, cache


def _find_session(store: SQLiteHistoryStore, prefix: str) -> ChatSession | None:
    matches = [s for s in store.list() if s.id.startswith(prefix)]
    return matches[0] if len(matches) == 1 else None


def _sessions_table(sessions: list[ChatSession]) -> Table:
    table = Table(title="Conversations")
    table.add_column("ID", style="cyan")
    table.add_column("Title")
    table.add_column("Messages", justify="right")
    table.add_column("Updated", style="dim")
    for s in sessions:
        table.add_row(s.id[:8], s.title, str(len(s.messages)), _fmt_ms(s.updated_at))
    return table


def _print_transcript(session: ChatSession) -> None:
    for msg in session.messages:
        if msg.role == Role.USER:
            console.print(f"[bold green]you>[/bold green] {msg.content}")
        elif msg.role == Role.ASSISTANT:
            console.print(Markdown(msg.content))
        else:
            console.print(f"[red]{msg.content}[/red]")


# ---------------------------------------------------------------------------
# Interactive chat
# ---------------------------------------------------------------------------

class StreamingDisplay:
    """Render reconciler events as they arrive."""

    def __init__(self, console: Console):
        self.console = console

    def handle(self, event: ChatEvent) -> None:
        if event.type == EventType.STREAM_STARTED:
            self.console.print("[bold blue]assistant>[/bold blue] ", end="")
        elif event.type == EventType.STREAM_DELTA:
            self.console.print(
                event.data["delta"], end="", markup=False, highlight=False, soft_wrap=True,
            )
        elif event.type == EventType.STREAM_COMPLETED:
            usage = event.data.get("usage") or {}
            tokens = f", {usage['completion_tokens']} tokens" if "completion_tokens" in usage else ""
            self.console.print(f"\n[dim](done{tokens})[/dim]\n")
        elif event.type == EventType.STREAM_CANCELLED:
            self.console.print("\n[yellow](stopped)[/yellow]\n")
        elif event.type == EventType.STREAM_ERROR:
            self.console.print(f"\n[red]Error: {event.data['error']}[/red]\n")
        elif event.type == EventType.CONNECTION_CHECKED:
            if event.data["ok"]:
                self.console.print("[green]Connected.[/green]")
            else:
                self.console.print(f"[red]{event.data['error']}[/red]")


async def _send(reconciler: SessionReconciler, text: str) -> None:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, reconciler.cancel)
    except NotImplementedError:
        # Windows event loops have no signal handlers; Ctrl-C ends the REPL there
        await reconciler.send(text)
        return
    try:
        await reconciler.send(text)
    finally:
        loop.remove_signal_handler(signal.SIGINT)


async def handle_command(line: str, reconciler: SessionReconciler) -> str | None:
    """Run a slash command.  Returns ``"quit"`` to leave the REPL."""
    cmd, _, arg = line.partition(" ")
    arg = arg.strip()
    client = reconciler.client

    if cmd in ("/quit", "/exit", "/q"):
        return "quit"

    if cmd == "/help":
        console.print(_HELP)
    elif cmd == "/new":
        reconciler.new_chat()
        console.print("[dim]New conversation.[/dim]")
    elif cmd == "/history":
        sessions = reconciler.sessions()
        if sessions:
            console.print(_sessions_table(sessions))
        else:
            console.print("[dim]No saved conversations.[/dim]")
    elif cmd == "/load":
        session = _find_session(reconciler.store, arg) if arg else None
        if session is None:
            console.print(f"[red]No unique conversation matches '{arg}'.[/red]")
        else:
            reconciler.load(session)
            _print_transcript(session)
    elif cmd == "/delete":
        session = _find_session(reconciler.store, arg) if arg else None
        if session is None:
            console.print(f"[red]No unique conversation matches '{arg}'.[/red]")
        else:
            reconciler.delete(session.id)
            console.print(f"[dim]Deleted {session.title}.[/dim]")
    elif cmd == "/models":
        models = await client.list_models(force_refresh=arg == "refresh")
        if not models:
            console.print("[yellow]No models available (is the server running?)[/yellow]")
        for name in models:
            marker = "*" if name == client.config.model else " "
            console.print(f" {marker} {name}")
    elif cmd == "/model":
        if not arg:
            console.print(f"[dim]Model: {client.config.model}[/dim]")
        else:
            client.update_config(model=arg)
            await reconciler.check_connection()
    elif cmd == "/system":
        if not arg:
            prompt = client.config.system_prompt or "(none)"
            console.print(f"[dim]System prompt: {prompt}[/dim]")
        else:
            client.update_config(system_prompt="" if arg == "-" else arg)
            console.print("[dim]System prompt updated.[/dim]")
    elif cmd == "/check":
        await reconciler.check_connection()
    else:
        console.print(f"[red]Unknown command: {cmd}. Try /help[/red]")
    return None


async def _repl(config: AppConfig, verbose: bool) -> None:
    client, store, cache = _build(config)
    bus = EventBus()
    display = StreamingDisplay(console)
    bus.subscribe("*", display.handle)
    reconciler = SessionReconciler(client, store, bus=bus)

    models = await client.list_models()
    chosen = pick_model(client.config.model, models)
    if chosen != client.config.model:
        console.print(f"[yellow]Model '{client.config.model}' not found, using {chosen}[/yellow]")
        client.update_config(model=chosen)
    console.print(f"[dim]Model: {client.config.model} @ {client.config.base_url}[/dim]")
    await reconciler.check_connection()

    history_path = Path("~/.localchat/prompt_history").expanduser()
    history_path.parent.mkdir(parents=True, exist_ok=True)
    session = PromptSession(history=FileHistory(str(history_path)))

    try:
        while True:
            try:
                user_input = (await session.prompt_async(
                    HTML("<ansigreen><b>you&gt; </b></ansigreen>"),
                )).strip()
            except (EOFError, KeyboardInterrupt):
                console.print("\n[dim]Goodbye![/dim]")
                break
            if not user_input:
                continue

            try:
                if user_input.startswith("/"):
                    if await handle_command(user_input, reconciler) == "quit":
                        console.print("[dim]Goodbye![/dim]")
                        break
                    continue
                await _send(reconciler, user_input)
            except Exception as e:
                console.print(f"[red]Error: {e}[/red]")
                if verbose:
                    console.print_exception()
    finally:
        await client.close()
        store.close()
        cache.close()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

@click.group(invoke_without_command=True)
@click.option("--config", "-c", "config_path", default=None,
              help="Path to localchat.yaml (auto-detected from CWD or ~/.localchat/)")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
@click.version_option(__version__)
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool):
    """localchat - chat with models served by a local Ollama."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)
    config, config_file = load_config(config_path)
    if config_file:
        console.print(f"[dim]Config: {config_file}[/dim]")
    ctx.obj = {"config": config, "verbose": verbose}
    if ctx.invoked_subcommand is None:
        ctx.invoke(chat)


@main.command()
@click.pass_context
def chat(ctx: click.Context):
    """Interactive chat (default)."""
    console.print(f"[bold cyan]localchat[/bold cyan] [dim]v{__version__} - /help for commands[/dim]")
    asyncio.run(_repl(ctx.obj["config"], ctx.obj["verbose"]))


@main.command()
@click.option("--refresh", is_flag=True, help="Bypass the model cache")
@click.pass_context
def models(ctx: click.Context, refresh: bool):
    """List models served by the endpoint."""

    async def _run() -> list[str]:
        client, store, cache = _build(ctx.obj["config"])
        try:
            return await client.list_models(force_refresh=refresh)
        finally:
            await client.close()
            store.close()
            cache.close()

    names = asyncio.run(_run())
    if not names:
        console.print("[yellow]No models available (is the server running?)[/yellow]")
        raise SystemExit(1)
    for name in names:
        console.print(name)


@main.command()
@click.pass_context
def check(ctx: click.Context):
    """Check that the endpoint is up and serves the configured model."""

    async def _run():
        client, store, cache = _build(ctx.obj["config"])
        try:
            return await client.check_connection()
        finally:
            await client.close()
            store.close()
            cache.close()

    status = asyncio.run(_run())
    if status.ok:
        console.print("[green]OK[/green]")
        return
    console.print(f"[red]{status.reason.value}: {status.error}[/red]")
    raise SystemExit(1)


@main.group()
def history():
    """Manage saved conversations."""


@history.command("list")
@click.pass_context
def history_list(ctx: click.Context):
    """List saved conversations, newest first."""
    store = SQLiteHistoryStore(ctx.obj["config"].storage.history_db)
    try:
        console.print(_sessions_table(store.list()))
    finally:
        store.close()


@history.command("show")
@click.argument("session_id")
@click.pass_context
def history_show(ctx: click.Context, session_id: str):
    """Print a saved conversation (ID prefix accepted)."""
    store = SQLiteHistoryStore(ctx.obj["config"].storage.history_db)
    try:
        session = _find_session(store, session_id)
    finally:
        store.close()
    if session is None:
        console.print(f"[red]No unique conversation matches '{session_id}'.[/red]")
        raise SystemExit(1)
    console.print(f"[bold]{session.title}[/bold] [dim]{_fmt_ms(session.created_at)}[/dim]")
    _print_transcript(session)


@history.command("delete")
@click.argument("session_id")
@click.pass_context
def history_delete(ctx: click.Context, session_id: str):
    """Delete a saved conversation."""
    store = SQLiteHistoryStore(ctx.obj["config"].storage.history_db)
    try:
        session = _find_session(store, session_id)
        if session is None:
            console.print(f"[red]No unique conversation matches '{session_id}'.[/red]")
            raise SystemExit(1)
        store.delete(session.id)
        console.print(f"[dim]Deleted {session.title}.[/dim]")
    finally:
        store.close()


if __name__ == "__main__":
    main()
