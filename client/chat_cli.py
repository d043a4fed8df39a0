#!/usr/bin/env python3

from __future__ import annotations
import asyncio
from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Optional, Sequence, Tuple

import aioconsole
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from shared.config import ClientConfig, ConfigError, load_config
from shared.log import get_logger
from shared.protocol import Join, encode
from .events import SessionListener
from .session import SessionController, ValidationError, validate_name
from .state import Roster, SessionState

app = typer.Typer(help="relaychat terminal client")
console = Console()
logger = get_logger(__name__)

HELP_TEXT = "/users, /help, /quit  (anything else is sent as a message)"


def _now_hhmm() -> str:
    return datetime.now().strftime("%H:%M")


class ConsoleListener(SessionListener):
    """Renders session events on the terminal."""

    def __init__(self, roster: Roster) -> None:
        self.roster = roster
        self.rejection: Optional[str] = None
        # Set whenever the session drops back to DISCONNECTED
        self.ended = asyncio.Event()

    def on_message(self, author: str, content: str) -> None:
        style = "bold cyan" if self.roster.is_current(author) else "bold"
        console.print(f"[dim]{_now_hhmm()}[/] [{style}]{escape(author)}[/]: {escape(content)}")

    def on_roster_changed(self, members: Sequence[str]) -> None:
        console.print(f"[dim]{len(members)} online[/]")

    def on_rejected(self, reason: str) -> None:
        self.rejection = reason
        console.print(f"[red]❌ {escape(reason)}[/]")

    def on_state_changed(self, old: SessionState, new: SessionState) -> None:
        if new is SessionState.DISCONNECTED:
            self.ended.set()
        elif new is SessionState.CONNECTING:
            self.ended.clear()

    def on_connection_state_changed(self, is_live: bool) -> None:
        if is_live:
            console.print("[green]● connected[/]")
        else:
            console.print("[red]● disconnected[/]")

    def on_notice(self, text: str) -> None:
        console.print(f"[dim italic]{escape(text)}[/]")

    def take_rejection(self) -> Optional[str]:
        reason, self.rejection = self.rejection, None
        return reason


def print_roster(roster: Roster) -> None:
    table = Table(title=f"Online Users ({len(roster)})")
    table.add_column("Name")
    for member in roster.members:
        if roster.is_current(member):
            table.add_row(f"[bold cyan]{escape(member)}[/] (you)")
        else:
            table.add_row(escape(member))
    console.print(table)


def _prompt_identity(name: Optional[str], password: Optional[str],
                     password_first: bool = False) -> Tuple[str, Optional[str]]:
    # Blocking prompts are fine here: nothing runs while disconnected
    if password_first and name:
        password = typer.prompt("Password", default="", hide_input=True, show_default=False)
    if not name:
        name = typer.prompt("Display name")
    if password is None:
        password = typer.prompt("Password (optional)", default="", hide_input=True, show_default=False)
    return name, password or None


async def _read_line(listener: ConsoleListener) -> Optional[str]:
    """Read one input line, or return None as soon as the session ends."""
    reader = asyncio.ensure_future(aioconsole.ainput(": "))
    ended = asyncio.ensure_future(listener.ended.wait())
    try:
        done, _ = await asyncio.wait({reader, ended}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (reader, ended):
            if not task.done():
                task.cancel()
    if reader not in done:
        console.print()
        return None
    return reader.result().strip()


async def _chat_loop(config: ClientConfig, name: Optional[str], password: Optional[str]) -> None:
    controller = SessionController(config)
    listener = ConsoleListener(controller.roster)
    controller.subscribe(listener)

    try:
        while True:
            if controller.state is SessionState.DISCONNECTED:
                password_first = False
                reason = listener.take_rejection()
                if reason is not None:
                    # Retry with the same name when only the password was wrong
                    password_first = "password" in reason.lower()
                    if not password_first:
                        name = None
                    password = None

                name, password = _prompt_identity(name, password, password_first)
                try:
                    await controller.join(name, password)
                except ValidationError as e:
                    console.print(f"[red]{escape(str(e))}[/]")
                    name = None
                    continue
                if controller.identity is not None:
                    console.print(f"[bold green]relaychat[/] as {escape(controller.identity.name)} "
                                  f"({controller.state.value}) - {HELP_TEXT}")

            try:
                line = await _read_line(listener)
            except EOFError:
                break
            if not line:
                continue
            if line in {"/quit", "/exit"}:
                break
            if line == "/help":
                console.print(HELP_TEXT)
                continue
            if line == "/users":
                print_roster(controller.roster)
                continue
            if len(line) > config.message_max_length:
                console.print(f"[yellow]Message too long ({len(line)}/{config.message_max_length})[/]")
                continue
            controller.send_message(line)
    finally:
        controller.leave()
        await controller.drain()


@app.command()
def chat(
    name: Optional[str] = typer.Option(None, help="Display name (at least 2 characters)"),
    password: Optional[str] = typer.Option(None, help="Room password, if the relay requires one"),
    server: Optional[str] = typer.Option(None, help="WebSocket URL of the relay; overrides the config"),
    config: Optional[Path] = typer.Option(None, help="Path to a YAML config file"),
):
    """Join the chat room; falls back to demo mode if the relay is unreachable."""
    try:
        cfg = load_config(config)
    except ConfigError as e:
        console.print(f"[red]Config error[/]: {escape(str(e))}")
        raise typer.Exit(code=1)
    if server:
        cfg = replace(cfg, url=server)

    logger.info("Using relay %s", cfg.relay_url)
    try:
        asyncio.run(_chat_loop(cfg, name, password))
    except KeyboardInterrupt:
        pass
    console.print("[dim]Bye[/]")


@app.command()
def frame(
    name: str = typer.Option(..., help="Display name"),
    password: Optional[str] = typer.Option(None, help="Optional password"),
):
    """Print the join frame that would be sent for NAME and exit."""
    try:
        username = validate_name(name)
    except ValidationError as e:
        console.print(f"[red]{escape(str(e))}[/]")
        raise typer.Exit(code=1)
    console.print(encode(Join(name=username, password=password or None)),
                  markup=False, highlight=False, soft_wrap=True)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
