# tests/test_cli.py
import pytest
from typer.testing import CliRunner

from agents.main import app, dispatch_line, run_with_retries


class RecordingSession:
    def __init__(self):
        self.calls = []

    def snapshot(self):
        return {"active_agent": "discovery", "display_mode": "CHAT", "payload": {}}

    async def send_text(self, text):
        self.calls.append(("text", text))

    async def submit_verification_details(self, name, phone):
        self.calls.append(("verify", name, phone))

    async def submit_code(self, code):
        self.calls.append(("code", code))

    async def select_slot(self, date, time=None):
        self.calls.append(("slot", date, time))

    async def request_visit(self, name):
        self.calls.append(("visit", name))


@pytest.mark.asyncio
async def test_dispatch_line_routes_commands(capsys):
    s = RecordingSession()
    assert await dispatch_line(s, "Is there a pool?")
    assert await dispatch_line(s, "/verify Ann Lee +14155550123")
    assert await dispatch_line(s, "/code 123456")
    assert await dispatch_line(s, "/slot 2025-06-10 4:00 PM")
    assert await dispatch_line(s, "/slot 2025-06-11")
    assert await dispatch_line(s, "/visit Skyline Towers")
    assert await dispatch_line(s, "/state")
    assert await dispatch_line(s, "/dance")
    assert await dispatch_line(s, "   ")
    assert not await dispatch_line(s, "/quit")

    assert s.calls == [
        ("text", "Is there a pool?"),
        ("verify", "Ann Lee", "+14155550123"),
        ("code", "123456"),
        ("slot", "2025-06-10", "4:00 PM"),
        ("slot", "2025-06-11", None),
        ("visit", "Skyline Towers"),
    ]
    out = capsys.readouterr().out
    assert "display=CHAT" in out
    assert "/verify" in out


@pytest.mark.asyncio
async def test_run_with_retries_gives_up_after_max_tries():
    attempts = []

    async def flaky():
        attempts.append(1)
        raise RuntimeError("nope")

    with pytest.raises(RuntimeError):
        await run_with_retries(flaky, max_tries=3, base_delay=0.0, max_delay=0.0)
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_run_with_retries_recovers():
    attempts = []

    async def second_time_lucky():
        attempts.append(1)
        if len(attempts) < 2:
            raise ConnectionError("blip")

    await run_with_retries(second_time_lucky, base_delay=0.0, max_delay=0.0)
    assert len(attempts) == 2


def test_cli_help_lists_commands():
    result = CliRunner().invoke(app, ["--help"])
    assert result.exit_code == 0
    assert "chat" in result.output and "serve" in result.output
