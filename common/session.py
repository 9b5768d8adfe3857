# common/session.py
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError

from agents.registry import AgentRegistry, build_agents
from common.config_loader import Settings
from common.history_sink import HistorySink, build_history_sink
from common.metadata_store import MetadataConflictError, MetadataStore
from common.models import AgentName
from common.pipeline import EventPipeline
from common.utils import generate_session_id
from constants.realtime import language_code
from constants.triggers import (
    OPENING_UTTERANCE,
    slot_selection_sentence,
    verification_code_sentence,
    verification_details_sentence,
    visit_request_sentence,
)
from services.http_client import ServiceError
from utils.logger import EventLogger

logger = logging.getLogger("property-concierge")

DEGRADED_NOTICE = "Some property information could not be loaded. I can still help with general questions."
CONNECT_FAILED_NOTICE = "Could not connect to the voice assistant. Please try again."
VERIFYING_NOTICE = "Verifying your code..."

STATE_IDLE = "idle"
STATE_CONNECTED = "connected"
STATE_DISCONNECTED = "disconnected"


class ConciergeSession:
    """
    One user conversation: metadata record, agents, transcript, UI state and
    the realtime channel, glued together by an EventPipeline.

    Usage:
      s = ConciergeSession(tenant_id=..., channel=..., services=build_services(settings))
      await s.connect()
      await s.send_text("Tell me about Skyline Towers")
      ...
      await s.disconnect()
    """

    def __init__(
        self,
        *,
        tenant_id: str,
        channel,
        services: Any,
        settings: Optional[Settings] = None,
        agents: Optional[AgentRegistry] = None,
        session_id: Optional[str] = None,
        history_factory: Optional[Callable[..., Optional[HistorySink]]] = None,
    ) -> None:
        self.tenant_id = tenant_id
        self.channel = channel
        self.services = services
        self.settings = settings or Settings()
        self.agents = agents or build_agents()
        self.store = MetadataStore()
        self._requested_session_id = session_id
        self._history_factory = history_factory or build_history_sink

        self.pipeline = EventPipeline(
            channel=channel,
            agents=self.agents,
            store=self.store,
            services=services,
            settings=self.settings,
            event_logger=EventLogger(logger, session_id or "-"),
        )
        self.state = STATE_IDLE
        self.degraded = False
        self._opening_sent = False

    # -----------------------------
    # convenience views
    # -----------------------------
    @property
    def transcript(self):
        return self.pipeline.transcript

    @property
    def ui(self):
        return self.pipeline.ui

    @property
    def metadata(self):
        return self.store.metadata

    @property
    def session_id(self) -> Optional[str]:
        return self.store.metadata.session_id

    # -----------------------------
    # connect / disconnect
    # -----------------------------
    async def connect(self) -> str:
        if self.state == STATE_CONNECTED:
            return self.state

        sid = self.store.metadata.session_id or self._requested_session_id or generate_session_id()
        self.store.update({"session_id": sid, "tenant_id": self.tenant_id}, source="connect")
        self.pipeline.events.rebind(sid)
        await self._bootstrap(sid)
        self.store.ensure_language(self.settings.default_language)

        opener = getattr(self.channel, "open", None)
        if opener is not None:
            try:
                await opener()
            except Exception:
                logger.exception("Realtime connection failed (session=%s)", sid)
                self.transcript.add_system(CONNECT_FAILED_NOTICE)
                self.state = STATE_DISCONNECTED
                return self.state

        history = self._history_factory(self.settings, self.transcript, self.store)
        if history is not None:
            history.start()
        self.pipeline.history = history

        self.pipeline.start()
        self.pipeline.submit({"type": "local.send", "event": {"type": "session.update", "session": self._session_config()}})
        self.pipeline.submit({"type": "local.send", "event": {"type": "input_audio_buffer.clear"}})
        self._opening_turn()
        self.state = STATE_CONNECTED
        logger.info("Session %s connected (tenant=%s, degraded=%s)", sid, self.tenant_id, self.degraded)
        return self.state

    async def _bootstrap(self, sid: str) -> None:
        try:
            cfg = await self.services.bootstrap.fetch_tenant_metadata(sid, self.tenant_id)
            # bootstrap fields only; verification and scheduling state are left alone
            self.store.update(cfg.to_metadata(), source="bootstrap")
            self.degraded = False
        except (ServiceError, ValidationError, MetadataConflictError) as e:
            logger.warning("Bootstrap failed for tenant %s: %s; running degraded", self.tenant_id, e)
            self.degraded = True
            self.transcript.add_system(DEGRADED_NOTICE)

    def _session_config(self) -> Dict[str, Any]:
        md = self.store.metadata
        cfg = self.agents.active.session_update(md)
        cfg.update({
            "modalities": ["text", "audio"],
            "voice": self.settings.voice,
            "input_audio_transcription": {
                "model": self.settings.transcription_model,
                "language": language_code(md.language),
            },
            "turn_detection": dict(self.settings.turn_detection),
        })
        return cfg

    def _opening_turn(self) -> None:
        md = self.store.metadata
        agent = self.agents.active
        if md.pending_question and md.is_verified and self.agents.active_name == AgentName.discovery:
            self.pipeline.schedule(self.settings.settle_delay_s, {"type": "local.replay_pending"}, idle=True)
            return
        if self._opening_sent or agent.greets_on_connect or md.flow_context is not None:
            return
        self._opening_sent = True
        self.pipeline.submit({"type": "local.user_text", "text": OPENING_UTTERANCE, "hidden": True})

    async def disconnect(self) -> None:
        if self.state != STATE_CONNECTED:
            return
        await self.pipeline.stop()
        if self.pipeline.history is not None:
            await self.pipeline.history.shutdown()
            self.pipeline.history = None
        try:
            await self.channel.close()
        except Exception:
            logger.warning("Closing realtime channel failed", exc_info=True)
        self.ui.reset()
        self.agents.reset()
        self.store.reset()
        self._opening_sent = False
        self.state = STATE_DISCONNECTED
        logger.info("Session disconnected")

    # -----------------------------
    # user actions
    # -----------------------------
    def _submit_text(self, text: str, *, action: Optional[str] = None, **extra: Any) -> bool:
        if self.state != STATE_CONNECTED or not self.pipeline.connected:
            logger.info("Ignoring user action while %s", self.state)
            return False
        if action:
            token = self.ui.begin_submit(action)
            if token is None:
                logger.info("Submit of %s already in flight; ignoring", action)
                return False
            extra.update(action=action, token=token)
        self.pipeline.submit({"type": "local.user_text", "text": text, **extra})
        return True

    async def send_text(self, text: str) -> bool:
        text = (text or "").strip()
        if not text:
            return False
        return self._submit_text(text)

    async def submit_verification_details(self, name: str, phone_number: str) -> bool:
        return self._submit_text(verification_details_sentence(name.strip(), phone_number.strip()),
                                 action="verification_details")

    async def submit_code(self, code: str) -> bool:
        return self._submit_text(verification_code_sentence(code.strip()), action="code", notice=VERIFYING_NOTICE)

    async def select_slot(self, date: str, time: Optional[str] = None) -> bool:
        if self.state == STATE_CONNECTED:
            self.store.update({"selected_date": date, "selected_time": time}, source="slot-selection")
        return self._submit_text(slot_selection_sentence(date, time), action="slot")

    async def request_visit(self, property_name: str) -> bool:
        return self._submit_text(visit_request_sentence(property_name.strip()), action="visit_request")

    # -----------------------------
    # views
    # -----------------------------
    def snapshot(self) -> Dict[str, Any]:
        mode, payload = self.ui.snapshot()
        return {
            "session_id": self.session_id,
            "state": self.state if self.pipeline.connected or self.state != STATE_CONNECTED else STATE_DISCONNECTED,
            "degraded": self.degraded,
            "display_mode": mode,
            "payload": payload,
            "submitting": self.ui.submitting,
            "active_agent": self.agents.active_name.value,
            "transcript": [it.to_dict() for it in self.transcript.visible()],
            "metadata": self.store.snapshot(),
        }
