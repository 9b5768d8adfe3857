from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field, field_validator
from dotenv import load_dotenv

# --- Load env before importing models/engine ---
for name in ("cloud.secrets.env", ".env.local", "env.local", ".env"):
    if os.path.exists(name):
        load_dotenv(name, override=False)

# --- Project imports ---
from common.config_loader import build_settings
from common.logging_config import configure_logging
from common.realtime_channel import OpenAIRealtimeChannel
from common.session import STATE_CONNECTED, ConciergeSession
from common.utils import is_valid_code
from db.models import init_db, engine
from services.hub import build_services

logger = logging.getLogger("property-concierge")


def _default_channel_factory(settings):
    return OpenAIRealtimeChannel(model=settings.realtime_model, api_key=settings.openai_api_key)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(os.getenv("LOGLEVEL", "INFO"))
    state = app.state
    if getattr(state, "settings", None) is None:
        state.settings = build_settings()
    if getattr(state, "services", None) is None:
        state.services = build_services(state.settings)
    if getattr(state, "channel_factory", None) is None:
        state.channel_factory = _default_channel_factory
    state.sessions = {}
    uses_db = state.settings.history_enabled and state.settings.history_writer == "db"
    if uses_db:
        # Initialize DB once at startup
        await init_db()
    yield
    for s in list(state.sessions.values()):
        await s.disconnect()
    state.sessions.clear()
    close = getattr(state.services, "aclose", None)
    if close is not None:
        await close()
    if uses_db:
        await engine.dispose()


app = FastAPI(
    lifespan=lifespan,
    title="Property Concierge API",
    version="0.1.0",
)


# ---------------------------
# Pydantic Schemas (v2)
# ---------------------------
class SessionCreate(BaseModel):
    tenant_id: str = Field(description="Chatbot (tenant) id")
    session_id: Optional[str] = None


class SessionOut(BaseModel):
    session_id: Optional[str] = None
    state: str
    degraded: bool = False
    display_mode: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    submitting: List[str] = Field(default_factory=list)
    active_agent: str
    transcript: List[Dict[str, Any]] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ActionOut(BaseModel):
    accepted: bool
    session: SessionOut


class TextIn(BaseModel):
    text: str = Field(min_length=1)


class VerificationDetailsIn(BaseModel):
    name: str = Field(min_length=1)
    phone_number: str = Field(min_length=4)


class CodeIn(BaseModel):
    code: str

    @field_validator("code")
    @classmethod
    def _six_digits(cls, v: str):
        v = v.strip()
        if not is_valid_code(v):
            raise ValueError("code must be 6 digits")
        return v


class SlotIn(BaseModel):
    date: str = Field(min_length=1)
    time: Optional[str] = None


class VisitIn(BaseModel):
    property_name: str = Field(min_length=1)


# ---------------------------
# Helpers
# ---------------------------
def _get_session(request: Request, session_id: str) -> ConciergeSession:
    s = request.app.state.sessions.get(session_id)
    if s is None:
        raise HTTPException(404, "Session not found")
    return s


def _action_out(s: ConciergeSession, accepted: bool) -> ActionOut:
    return ActionOut(accepted=accepted, session=SessionOut(**s.snapshot()))


# ---------------------------
# Sessions
# ---------------------------
@app.post(
    "/sessions",
    response_model=SessionOut,
    status_code=201,
)
async def create_session(payload: SessionCreate, request: Request):
    state = request.app.state
    s = ConciergeSession(
        tenant_id=payload.tenant_id.strip(),
        channel=state.channel_factory(state.settings),
        services=state.services,
        settings=state.settings,
        session_id=payload.session_id,
    )
    if await s.connect() != STATE_CONNECTED:
        raise HTTPException(502, "Could not connect to the realtime service")
    state.sessions[s.session_id] = s
    return SessionOut(**s.snapshot())


@app.get(
    "/sessions/{session_id}",
    response_model=SessionOut,
)
async def get_session(session_id: str, request: Request):
    return SessionOut(**_get_session(request, session_id).snapshot())


@app.post("/sessions/{session_id}/text", response_model=ActionOut)
async def send_text(session_id: str, payload: TextIn, request: Request):
    s = _get_session(request, session_id)
    return _action_out(s, await s.send_text(payload.text))


@app.post("/sessions/{session_id}/verification", response_model=ActionOut)
async def submit_verification_details(session_id: str, payload: VerificationDetailsIn, request: Request):
    s = _get_session(request, session_id)
    return _action_out(s, await s.submit_verification_details(payload.name, payload.phone_number))


@app.post("/sessions/{session_id}/code", response_model=ActionOut)
async def submit_code(session_id: str, payload: CodeIn, request: Request):
    s = _get_session(request, session_id)
    return _action_out(s, await s.submit_code(payload.code))


@app.post("/sessions/{session_id}/slot", response_model=ActionOut)
async def select_slot(session_id: str, payload: SlotIn, request: Request):
    s = _get_session(request, session_id)
    return _action_out(s, await s.select_slot(payload.date, payload.time))


@app.post("/sessions/{session_id}/visit", response_model=ActionOut)
async def request_visit(session_id: str, payload: VisitIn, request: Request):
    s = _get_session(request, session_id)
    return _action_out(s, await s.request_visit(payload.property_name))


@app.delete("/sessions/{session_id}", status_code=204)
async def disconnect_session(session_id: str, request: Request):
    s = _get_session(request, session_id)
    await s.disconnect()
    request.app.state.sessions.pop(session_id, None)
