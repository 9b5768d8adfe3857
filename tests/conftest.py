# tests/conftest.py
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

# --- Path Setup ---
# Must come first so the flat top-level packages (common, agents, tools, ...) import.
REPO_ROOT = Path(__file__).resolve().parents[1]
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

import pytest
import pytest_asyncio

from common.config_loader import Settings
from common.metadata_store import MetadataStore
from common.models import SessionMetadata
from services.bootstrap_service import TenantConfig
from services.hub import ServiceHub
from services.http_client import ServiceError
from services.property_service import Property
from services.schedule_service import BookingReceipt
from services.verification_service import CodeCheck, CodeDelivery
from tools.registry import ToolContext

logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)

SESSION_ID = "s1"
ORG_ID = "o1"
TENANT_ID = "t1"
PHONE = "+14155550123"

PROJECTS = {"Skyline Towers": "P", "Green Meadows": "Q"}


# ---------- realtime channel ----------
class FakeChannel:
    """In-memory RealtimeChannel: records what is sent, yields what the test pushes."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self._inbound: "asyncio.Queue[Optional[Dict[str, Any]]]" = asyncio.Queue()
        self.fail_send = False
        self.opened = False
        self.closed = False

    async def open(self):
        self.opened = True
        return self

    async def send(self, event: Dict[str, Any]) -> None:
        if self.fail_send:
            raise ConnectionError("socket closed")
        self.sent.append(event)

    def push(self, event: Dict[str, Any]) -> None:
        self._inbound.put_nowait(event)

    async def __aiter__(self):
        while True:
            ev = await self._inbound.get()
            if ev is None:
                return
            yield ev

    async def close(self) -> None:
        self.closed = True
        self._inbound.put_nowait(None)

    # helpers
    def types(self) -> List[str]:
        return [e.get("type") for e in self.sent]

    def outputs(self) -> List[Dict[str, Any]]:
        """Decoded function_call_output payloads, in send order."""
        out = []
        for e in self.sent:
            item = e.get("item") or {}
            if e.get("type") == "conversation.item.create" and item.get("type") == "function_call_output":
                out.append({"call_id": item["call_id"], **json.loads(item["output"])})
        return out

    def user_texts(self) -> List[str]:
        out = []
        for e in self.sent:
            item = e.get("item") or {}
            if item.get("type") == "message" and item.get("role") == "user":
                out.append(item["content"][0]["text"])
        return out


# ---------- remote services ----------
class FakeBootstrap:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: List[tuple] = []

    async def fetch_tenant_metadata(self, session_id: str, tenant_id: str) -> TenantConfig:
        self.calls.append((session_id, tenant_id))
        if self.fail:
            raise ServiceError("bootstrap down", service="bootstrap", status=503)
        return TenantConfig.model_validate({
            "org_id": ORG_ID,
            "org_name": "Acme Realty",
            "language_default": "English",
            "project_ids": list(PROJECTS.values()),
            "project_names": list(PROJECTS),
            "project_locations": {"Skyline Towers": {"lat": 12.97, "lng": 77.59, "city": "Bangalore"}},
        })


class FakeCatalog:
    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.fail = False
        self.properties = {
            "P": Property.model_validate({
                "id": "P",
                "name": "Skyline Towers",
                "price": 125000,
                "location": {"city": "Bangalore", "mapUrl": "https://maps.example/p"},
                "images": ["https://img.example/p1.jpg", "https://img.example/p2.jpg"],
                "amenities": ["Pool", {"name": "Gym"}],
                "brochure": "https://docs.example/p.pdf",
            }),
            "Q": Property.model_validate({"id": "Q", "name": "Green Meadows", "location": "Pune"}),
        }

    async def list_properties(self, tenant_id, project_ids=None):
        self.calls.append(("list_properties", tenant_id, tuple(project_ids or [])))
        if self.fail:
            raise ServiceError("catalog down", service="property-catalog")
        ids = list(project_ids or []) or list(self.properties)
        return [self.properties[i] for i in ids if i in self.properties]

    async def lookup_property(self, tenant_id, query, k=3):
        self.calls.append(("lookup_property", query, k))
        return [{"name": "Skyline Towers", "snippet": "Pool and gym"}]

    async def get_property_images(self, tenant_id, property_name, query=None):
        self.calls.append(("get_property_images", property_name, query))
        return [{"url": "https://img.example/p2.jpg"}, {"url": "https://img.example/p3.jpg"}]

    async def calculate_route(self, origin, destination):
        self.calls.append(("calculate_route", origin, destination))
        return {"distance": "12 km", "duration": "25 min"}

    async def find_nearest_place(self, query, coords, k=2):
        self.calls.append(("find_nearest_place", query, coords, k))
        return [{"name": "City Hospital", "distance": "1.2 km"}]


class FakeVerification:
    def __init__(self, verified: Any = True, delivered: bool = True) -> None:
        self.verified = verified
        self.delivered = delivered
        self.sent: List[tuple] = []
        self.checked: List[tuple] = []

    async def send_code(self, name, phone, session_id, org_id, tenant_id):
        self.sent.append((name, phone, session_id, org_id, tenant_id))
        if not self.delivered:
            return CodeDelivery(ok=False, error="SMS failed")
        return CodeDelivery(ok=True)

    async def check_code(self, phone, code, session_id, org_id, tenant_id):
        self.checked.append((phone, code, session_id, org_id, tenant_id))
        return CodeCheck(verified=self.verified is True, message=None if self.verified is True else "Invalid code")


class FakeScheduling:
    def __init__(self, ok: bool = True) -> None:
        self.ok = ok
        self.bookings: List[Dict[str, Any]] = []

    async def book_visit(self, **kwargs):
        self.bookings.append(kwargs)
        if not self.ok:
            return BookingReceipt(ok=False, error="Slot taken")
        return BookingReceipt(ok=True, booking_id=f"B{len(self.bookings)}")


def make_services(**overrides) -> ServiceHub:
    parts = dict(
        bootstrap=FakeBootstrap(),
        properties=FakeCatalog(),
        verification=FakeVerification(),
        scheduling=FakeScheduling(),
    )
    parts.update(overrides)
    return ServiceHub(**parts)


def make_metadata(**fields) -> SessionMetadata:
    base = dict(
        session_id=SESSION_ID,
        org_id=ORG_ID,
        tenant_id=TENANT_ID,
        org_name="Acme Realty",
        project_ids=list(PROJECTS.values()),
        project_names=list(PROJECTS),
        project_id_map=dict(PROJECTS),
        project_locations={"Skyline Towers": {"lat": 12.97, "lng": 77.59, "city": "Bangalore"}},
    )
    base.update(fields)
    return SessionMetadata(**base)


def function_call(call_id: str, tool_name: str, **arguments) -> Dict[str, Any]:
    return {
        "type": "response.function_call_arguments.done",
        "call_id": call_id,
        "name": tool_name,
        "arguments": json.dumps(arguments),
    }


def _call(fn):
    """Tools are wrapped by @function_tool; tests call the original coroutine."""
    return getattr(fn, "__wrapped__", fn)


# ---------- fixtures ----------
@pytest.fixture
def settings() -> Settings:
    s = Settings()
    s.settle_delay_s = 0.0
    s.submit_timeout_s = 5.0
    s.history_enabled = False
    return s


@pytest.fixture
def services() -> ServiceHub:
    return make_services()


@pytest.fixture
def store() -> MetadataStore:
    return MetadataStore(make_metadata())


@pytest.fixture
def ctx(store, services, settings) -> ToolContext:
    return ToolContext(store=store, services=services, settings=settings)


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest_asyncio.fixture
async def pipeline(channel, store, services, settings):
    from agents.registry import build_agents
    from common.pipeline import EventPipeline

    p = EventPipeline(channel=channel, agents=build_agents(), store=store, services=services, settings=settings)
    p.start()
    yield p
    await p.stop()
