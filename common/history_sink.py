# common/history_sink.py
from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy import select

from common.metadata_store import MetadataStore
from common.transcript import Transcript, TranscriptItem
from constants.triggers import TRANSCRIBING_PLACEHOLDER
from services.http_client import ServiceClient

logger = logging.getLogger("property-concierge")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class HistoryKey:
    org_id: str
    tenant_id: str
    session_id: str
    phone_number: Optional[str] = None


class HistoryWriter(Protocol):
    async def write(self, key: HistoryKey, entries: List[Dict[str, Any]], start_time: str, end_time: str) -> None: ...


# =========================
# Writers
# =========================
class HttpHistoryWriter(ServiceClient):
    """POSTs new turns to the remote `update_agent_history` function."""

    name = "history"

    def __init__(self, base_url: str, *, path: str = "/functions/v1/update_agent_history", **kwargs) -> None:
        super().__init__(base_url, **kwargs)
        self.path = path

    async def write(self, key: HistoryKey, entries: List[Dict[str, Any]], start_time: str, end_time: str) -> None:
        await self.post_json(self.path, {
            "org_id": key.org_id,
            "chatbot_id": key.tenant_id,
            "session_id": key.session_id,
            "phone_number": key.phone_number,
            "chat_history": entries,
            "start_time": start_time,
            "end_time": end_time,
        })


class DbHistoryWriter:
    """Stores turns in the local database (Conversation / ConversationMessage)."""

    def __init__(self, session_factory=None) -> None:
        if session_factory is None:
            from db.session import Session

            session_factory = Session
        self._session_factory = session_factory

    async def write(self, key: HistoryKey, entries: List[Dict[str, Any]], start_time: str, end_time: str) -> None:
        from db.models import Conversation, ConversationMessage, MessageRole

        async with self._session_factory() as db:
            conv = (
                await db.execute(select(Conversation).where(Conversation.session_id == key.session_id))
            ).scalar_one_or_none()
            if conv is None:
                conv = Conversation(
                    org_id=key.org_id,
                    tenant_id=key.tenant_id,
                    session_id=key.session_id,
                    phone_number=key.phone_number,
                    started_at=datetime.fromisoformat(start_time),
                )
                db.add(conv)
                await db.flush()
            elif key.phone_number and not conv.phone_number:
                conv.phone_number = key.phone_number
            conv.ended_at = datetime.fromisoformat(end_time)
            for e in entries:
                db.add(ConversationMessage(
                    conversation_id=conv.id,
                    item_id=e["id"],
                    role=MessageRole(e["role"]),
                    content=e["content"],
                    created_at=datetime.fromtimestamp(e["timestamp"] / 1000, tz=timezone.utc),
                ))
            await db.commit()


# =========================
# Sink
# =========================
class HistorySink:
    """
    Debounced, fire-and-forget persistence of finished transcript turns.

    Usage:
      sink = HistorySink(transcript, store, writer)
      sink.start()
      sink.notify()        # after any transcript change
      await sink.shutdown()

    A turn is sent once: completed, not system, not hidden, non-empty and not
    the transcription placeholder. Nothing is sent until org, tenant and
    session ids are all known. Write failures are logged and retried with
    the next batch.
    """

    def __init__(self, transcript: Transcript, store: MetadataStore, writer: HistoryWriter, *,
                 debounce_s: float = 1.0) -> None:
        self.transcript = transcript
        self.store = store
        self.writer = writer
        self.debounce_s = debounce_s

        self._queue: "asyncio.Queue[None]" = asyncio.Queue()
        self._consumer_task: Optional[asyncio.Task] = None
        self._sent: set[str] = set()
        self._start_time = _now_iso()
        self._closed = False

    # -------- public API --------
    def start(self) -> None:
        if self._consumer_task is None:
            self._closed = False
            self._consumer_task = asyncio.create_task(self._consumer_loop(), name="history-consumer")

    def notify(self) -> None:
        if not self._closed:
            self._queue.put_nowait(None)

    async def shutdown(self) -> None:
        """Stop the consumer and flush whatever is left."""
        if self._closed:
            return
        self._closed = True
        if self._consumer_task:
            self._consumer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._consumer_task
            self._consumer_task = None
        await self.flush()
        close = getattr(self.writer, "close", None)
        if close is not None:
            await close()

    def reset(self) -> None:
        self._sent.clear()
        self._start_time = _now_iso()

    # -------- internals --------
    async def _consumer_loop(self) -> None:
        while True:
            await self._queue.get()
            # debounce: keep absorbing notifications until it is quiet
            try:
                while True:
                    await asyncio.wait_for(self._queue.get(), timeout=self.debounce_s)
            except asyncio.TimeoutError:
                pass
            await self.flush()

    def _key(self) -> Optional[HistoryKey]:
        md = self.store.metadata
        if not (md.org_id and md.tenant_id and md.session_id):
            return None
        return HistoryKey(md.org_id, md.tenant_id, md.session_id, md.phone_number)

    def _pending_items(self) -> List[TranscriptItem]:
        out = []
        for it in self.transcript.items():
            if it.item_id in self._sent or not it.done or it.hidden:
                continue
            if it.role == "system":
                continue
            text = (it.text or "").strip()
            if not text or text == TRANSCRIBING_PLACEHOLDER:
                continue
            out.append(it)
        return out

    async def flush(self) -> int:
        key = self._key()
        if key is None:
            logger.debug("History flush skipped: identifiers incomplete")
            return 0
        items = self._pending_items()
        if not items:
            return 0
        entries = [
            {"id": it.item_id, "role": it.role, "content": it.text.strip(), "timestamp": it.created_at_ms}
            for it in items
        ]
        try:
            await self.writer.write(key, entries, self._start_time, _now_iso())
        except Exception:
            logger.exception("Failed to write %d history entries (session=%s)", len(entries), key.session_id)
            return 0
        self._sent.update(it.item_id for it in items)
        logger.debug("History: wrote %d entries (session=%s)", len(entries), key.session_id)
        return len(entries)


def build_history_sink(settings, transcript: Transcript, store: MetadataStore, *, transport=None) -> Optional[HistorySink]:
    if not settings.history_enabled:
        return None
    if settings.history_writer == "db":
        writer: HistoryWriter = DbHistoryWriter()
    else:
        if not settings.services_base_url:
            logger.warning("History enabled but no services base URL; history disabled")
            return None
        writer = HttpHistoryWriter(
            settings.services_base_url,
            path=settings.history_path,
            api_key=settings.history_api_key,
            timeout=settings.services_timeout_s,
            transport=transport,
        )
    return HistorySink(transcript, store, writer, debounce_s=settings.history_debounce_s)
