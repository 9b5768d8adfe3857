# main.py
import os
import asyncio
import logging
from contextlib import suppress
from typing import Optional, Callable, Awaitable, Set

import typer
from dotenv import load_dotenv

from common.config_loader import build_settings, mask_key
from common.logging_config import configure_logging

for name in ("cloud.secrets.env", ".env.local", "env.local", ".env"):
    if os.path.exists(name):
        load_dotenv(name, override=False)

from common.realtime_channel import OpenAIRealtimeChannel
from common.session import STATE_CONNECTED, ConciergeSession
from db.models import init_db
from db.session import ping as db_ping
from services.hub import build_services

logger = logging.getLogger("property-concierge")

app = typer.Typer(
    add_completion=False,
    help="Property concierge: realtime dialogue orchestration for property discovery, verification and visits.",
)

HELP_TEXT = (
    "Commands: /verify <name> <phone>  /code <6 digits>  /slot <date> [time]  "
    "/visit <property>  /state  /quit"
)


# ----------------------------------------------------------------------------
# Helpers: robust retry with cancel, jitter, and backoff
# ----------------------------------------------------------------------------
async def run_with_retries(
    func: Callable[[], Awaitable[None]],
    *,
    max_tries: int = 4,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    on_error: Optional[Callable[[int, BaseException], Awaitable[None]]] = None,
) -> None:
    delay = base_delay
    for attempt in range(max_tries):
        try:
            await func()
            return
        except asyncio.CancelledError:
            raise
        except Exception as e:  # noqa: BLE001
            if on_error:
                with suppress(Exception):
                    await on_error(attempt, e)
            if attempt == max_tries - 1:
                raise
            jitter = (asyncio.get_running_loop().time() % 1.0) * (delay * 0.5)
            sleep_for = min(delay + jitter, max_delay)
            logger.warning(
                "Retrying after error (attempt %s/%s) in %.2fs: %r",
                attempt + 1,
                max_tries,
                sleep_for,
                e,
            )
            await asyncio.sleep(sleep_for)
            delay = min(delay * 2.0, max_delay)


async def _bootstrap_db() -> None:
    await init_db()
    with suppress(Exception):
        await db_ping()


# ----------------------------------------------------------------------------
# Console chat
# ----------------------------------------------------------------------------
async def dispatch_line(session: ConciergeSession, line: str) -> bool:
    """Route one console line to a session action. Returns False to quit."""
    line = line.strip()
    if not line:
        return True
    if line in ("/quit", "/exit"):
        return False
    if line == "/state":
        snap = session.snapshot()
        typer.echo(f"[{snap['active_agent']}] display={snap['display_mode']} payload={snap['payload']}")
        return True
    cmd, _, rest = line.partition(" ")
    rest = rest.strip()
    if cmd == "/verify":
        name, _, phone = rest.rpartition(" ")
        if not name or not phone:
            typer.echo("usage: /verify <name> <phone>")
            return True
        await session.submit_verification_details(name, phone)
    elif cmd == "/code":
        await session.submit_code(rest)
    elif cmd == "/slot":
        parts = rest.split(" ", 1)
        await session.select_slot(parts[0], parts[1] if len(parts) > 1 else None)
    elif cmd == "/visit":
        await session.request_visit(rest)
    elif cmd.startswith("/"):
        typer.echo(HELP_TEXT)
    else:
        await session.send_text(line)
    return True


def _print_new(session: ConciergeSession, shown: Set[str]) -> None:
    for item in session.transcript.visible():
        if item.item_id in shown or not item.done:
            continue
        shown.add(item.item_id)
        who = {"user": "you", "assistant": item.agent_name or "assistant"}.get(item.role, "--")
        typer.echo(f"{who}: {item.text}")


async def _chat(tenant_id: str, session_id: Optional[str]) -> None:
    settings = build_settings()
    logger.info("OpenAI key: %s", mask_key(settings.openai_api_key))
    if settings.history_enabled and settings.history_writer == "db":
        await _bootstrap_db()

    services = build_services(settings)
    session: Optional[ConciergeSession] = None

    async def _connect() -> None:
        nonlocal session
        s = ConciergeSession(
            tenant_id=tenant_id,
            channel=OpenAIRealtimeChannel(model=settings.realtime_model, api_key=settings.openai_api_key),
            services=services,
            settings=settings,
            session_id=session_id,
        )
        if await s.connect() != STATE_CONNECTED:
            raise RuntimeError("realtime connection failed")
        session = s

    async def _on_error(attempt: int, err: BaseException) -> None:
        logger.error("Connect attempt %s failed: %s", attempt + 1, err)

    try:
        await run_with_retries(_connect, on_error=_on_error)
        typer.echo(HELP_TEXT)
        shown: Set[str] = set()
        loop = asyncio.get_running_loop()
        while True:
            await asyncio.sleep(0.2)
            _print_new(session, shown)
            line = await loop.run_in_executor(None, input, "> ")
            if not await dispatch_line(session, line):
                break
            await asyncio.sleep(1.5)
            _print_new(session, shown)
    except (EOFError, KeyboardInterrupt):
        pass
    finally:
        if session is not None:
            await session.disconnect()
        await services.aclose()


@app.command()
def chat(
    tenant_id: str = typer.Argument(..., help="Chatbot (tenant) id to load."),
    session_id: Optional[str] = typer.Option(None, help="Reuse a session id instead of generating one."),
    log_level: str = typer.Option("INFO", help="Logging level."),
) -> None:
    """Chat with the concierge from the terminal."""
    configure_logging(log_level.upper())
    asyncio.run(_chat(tenant_id, session_id))


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Bind address."),
    port: int = typer.Option(8000, help="Bind port."),
    log_level: str = typer.Option("info", help="Uvicorn log level."),
) -> None:
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run("api.main:app", host=host, port=port, log_level=log_level)


if __name__ == "__main__":
    app()
