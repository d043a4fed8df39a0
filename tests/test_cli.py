import asyncio
import json

import pytest
from typer.testing import CliRunner

from client import chat_cli
from client.chat_cli import ConsoleListener, app, print_roster
from client.session import SessionController
from client.state import Roster, SessionState
from shared.config import ClientConfig
from conftest import TransportFactory, wait_for

runner = CliRunner()


def test_frame_prints_join_frame():
    result = runner.invoke(app, ["frame", "--name", "  Al ", "--password", "pw"])
    assert result.exit_code == 0
    assert json.loads(result.output.strip()) == {"type": "join", "username": "Al", "password": "pw"}


def test_frame_without_password():
    result = runner.invoke(app, ["frame", "--name", "Al"])
    assert result.exit_code == 0
    assert json.loads(result.output.strip()) == {"type": "join", "username": "Al"}


def test_frame_rejects_short_name():
    result = runner.invoke(app, ["frame", "--name", "A"])
    assert result.exit_code == 1


def test_chat_reports_bad_config(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("port: nope\n", encoding="utf-8")
    result = runner.invoke(app, ["chat", "--name", "Al", "--config", str(path)])
    assert result.exit_code == 1
    assert "Config error" in result.output


def test_console_listener_keeps_last_rejection():
    roster = Roster(own_name="Al")
    listener = ConsoleListener(roster)
    listener.on_rejected("wrong password")

    assert listener.take_rejection() == "wrong password"
    assert listener.take_rejection() is None


def test_print_roster_marks_current_user(capsys):
    roster = Roster(own_name="Al")
    roster.replace(["Al", "Bo"])
    print_roster(roster)
    out = capsys.readouterr().out
    assert "Al (you)" in out
    assert "Bo" in out


async def _never(prompt: str = "") -> str:
    await asyncio.Event().wait()
    return ""


def test_console_listener_tracks_session_end():
    listener = ConsoleListener(Roster())
    listener.on_state_changed(SessionState.DISCONNECTED, SessionState.CONNECTING)
    assert not listener.ended.is_set()

    listener.on_state_changed(SessionState.LIVE, SessionState.FAILED)
    assert not listener.ended.is_set()
    listener.on_state_changed(SessionState.FAILED, SessionState.DISCONNECTED)
    assert listener.ended.is_set()


@pytest.mark.asyncio
async def test_read_line_returns_none_when_session_ends(monkeypatch):
    monkeypatch.setattr(chat_cli.aioconsole, "ainput", _never)
    listener = ConsoleListener(Roster())

    pending = asyncio.ensure_future(chat_cli._read_line(listener))
    await asyncio.sleep(0.01)
    assert not pending.done()

    listener.on_state_changed(SessionState.LIVE, SessionState.DISCONNECTED)
    assert await asyncio.wait_for(pending, 0.5) is None


@pytest.mark.asyncio
async def test_read_line_strips_input(monkeypatch):
    async def typed(prompt: str = "") -> str:
        return "  hi there \n"

    monkeypatch.setattr(chat_cli.aioconsole, "ainput", typed)
    assert await chat_cli._read_line(ConsoleListener(Roster())) == "hi there"


@pytest.mark.asyncio
async def test_chat_loop_reprompts_after_rejection_without_input(monkeypatch):
    relay = TransportFactory()
    prompts = []

    class Stop(Exception):
        pass

    def fake_prompt(name, password, password_first=False):
        prompts.append((name, password, password_first))
        if len(prompts) > 1:
            raise Stop()
        return "Al", "wrong"

    monkeypatch.setattr(chat_cli, "SessionController",
                        lambda config: SessionController(config, transport_factory=relay))
    monkeypatch.setattr(chat_cli, "_prompt_identity", fake_prompt)
    monkeypatch.setattr(chat_cli.aioconsole, "ainput", _never)

    loop_task = asyncio.ensure_future(chat_cli._chat_loop(ClientConfig(), None, None))
    assert await wait_for(lambda: relay.created and relay.last.sent)
    relay.last.push({"type": "error", "error": "Invalid password"})

    with pytest.raises(Stop):
        await asyncio.wait_for(loop_task, 1.0)
    assert prompts == [(None, None, False), ("Al", None, True)]
