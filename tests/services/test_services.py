# tests/services/test_services.py
import json

import httpx
import pytest

from common.config_loader import Settings
from services.bootstrap_service import BootstrapService
from services.http_client import ServiceError
from services.hub import build_services
from services.property_service import PLACEHOLDER_IMAGE, Property, PropertyCatalog
from services.schedule_service import ScheduleService
from services.verification_service import VerificationService

BASE = "https://api.example"


def transport(responder, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content or b"{}")
        if seen is not None:
            seen.append((request.url.path, body))
        return responder(body)

    return httpx.MockTransport(handler)


def reply(payload, status=200):
    return lambda body: httpx.Response(status, json=payload)


@pytest.mark.asyncio
async def test_bootstrap_builds_project_id_map():
    seen = []
    svc = BootstrapService(BASE, transport=transport(reply({
        "org_id": "o1",
        "org_name": "Acme Realty",
        "language": "Hindi",
        "project_ids": ["P", "Q"],
        "project_names": ["Skyline Towers", "Green Meadows"],
    }), seen))
    cfg = await svc.fetch_tenant_metadata("s1", "t1")
    await svc.close()

    assert seen[0] == ("/functions/v1/realtime_tools", {"action": "fetchOrgMetadata", "session_id": "s1", "chatbot_id": "t1"})
    assert cfg.project_id_map == {"Skyline Towers": "P", "Green Meadows": "Q"}
    md = cfg.to_metadata()
    assert md["language"] == "Hindi"
    assert "is_verified" not in md and "phone_number" not in md


@pytest.mark.asyncio
async def test_bootstrap_error_field_raises():
    svc = BootstrapService(BASE, transport=transport(reply({"error": "unknown chatbot"})))
    with pytest.raises(ServiceError):
        await svc.fetch_tenant_metadata("s1", "t1")


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(500, json={"error": "boom"}),
    httpx.Response(200, text="<html>oops</html>"),
    httpx.Response(200, json=["not", "an", "object"]),
])
async def test_bad_responses_become_service_errors(response):
    svc = VerificationService(BASE, transport=transport(lambda body: response))
    with pytest.raises(ServiceError) as exc:
        await svc.send_code("Ann", "+14155550123", "s1", "o1", "t1")
    assert exc.value.service == "verification"


@pytest.mark.asyncio
async def test_transport_errors_become_service_errors():
    def broken(request):
        raise httpx.ConnectError("refused", request=request)

    svc = ScheduleService(BASE, transport=httpx.MockTransport(broken))
    with pytest.raises(ServiceError):
        await svc.book_visit(customer_name="Ann", phone_number=None, property_id="P",
                             visit_datetime="2025-06-10 4:00 PM", tenant_id="t1", session_id="s1")


@pytest.mark.asyncio
@pytest.mark.parametrize("payload,expected", [
    ({"verified": True}, True),
    ({"verified": "true"}, False),
    ({"verified": 1}, False),
    ({"success": True}, False),
])
async def test_check_code_trusts_only_explicit_true(payload, expected):
    svc = VerificationService(BASE, transport=transport(reply(payload)))
    check = await svc.check_code("+14155550123", "123456", "s1", "o1", "t1")
    assert check.verified is expected


@pytest.mark.asyncio
async def test_send_code_request_shape_and_failure():
    seen = []
    svc = VerificationService(BASE, api_key="secret", transport=transport(reply({"success": False, "error": "SMS failed"}), seen))
    delivery = await svc.send_code("Ann", "+14155550123", "s1", "o1", "t1")
    assert delivery.ok is False and delivery.error == "SMS failed"
    path, body = seen[0]
    assert path == "/functions/v1/phoneAuth"
    assert body["chatbot_id"] == "t1" and body["name"] == "Ann"


@pytest.mark.asyncio
async def test_book_visit_receipt():
    seen = []
    svc = ScheduleService(BASE, transport=transport(reply({"success": True, "id": 42}), seen))
    receipt = await svc.book_visit(customer_name="Ann", phone_number="+14155550123", property_id="P",
                                   visit_datetime="2025-06-10 4:00 PM", tenant_id="t1", session_id="s1")
    assert receipt.ok and receipt.booking_id == "42"
    assert seen[0][1]["propertyId"] == "P"
    assert seen[0][1]["visitDateTime"] == "2025-06-10 4:00 PM"


@pytest.mark.asyncio
async def test_catalog_actions():
    def responder(body):
        action = body["action"]
        if action == "getProjectDetails":
            return httpx.Response(200, json={"property": {"id": "P", "name": "Skyline Towers", "images": []}})
        if action == "getPropertyImages":
            return httpx.Response(200, json={"images": ["https://img.example/a.jpg", {"caption": "no url"}]})
        if action == "findNearestPlace":
            return httpx.Response(200, json={"results": [{"name": "City Hospital"}]})
        return httpx.Response(200, json={"error": "unsupported"})

    seen = []
    catalog = PropertyCatalog(BASE, transport=transport(responder, seen))
    props = await catalog.list_properties("t1", ["P"])
    assert [p.name for p in props] == ["Skyline Towers"]
    assert props[0].details()["mainImage"] == PLACEHOLDER_IMAGE
    assert await catalog.get_property_images("t1", "Skyline Towers") == [{"url": "https://img.example/a.jpg"}]
    assert (await catalog.find_nearest_place("hospital", {"lat": 1, "lng": 2}))[0]["name"] == "City Hospital"
    with pytest.raises(ServiceError):
        await catalog.calculate_route("Airport", "Skyline Towers")
    assert seen[0][1] == {"action": "getProjectDetails", "chatbot_id": "t1", "project_ids": ["P"]}
    await catalog.close()


def test_property_normalisation():
    p = Property.model_validate({
        "name": "Green Meadows",
        "price": 99,
        "location": "Pune",
        "images": [{"url": "https://img.example/1.jpg"}, "https://img.example/2.jpg", {}],
        "amenities": ["Pool", {"name": "Gym"}, {"label": "?"}],
    })
    assert p.price == "99"
    assert p.location == {"city": "Pune"}
    assert [i["url"] for i in p.images] == ["https://img.example/1.jpg", "https://img.example/2.jpg"]
    assert p.amenities == [{"name": "Pool"}, {"name": "Gym"}]
    assert p.card()["mainImage"] == "https://img.example/1.jpg"


@pytest.mark.asyncio
async def test_build_services_uses_configured_paths():
    s = Settings()
    s.services_base_url = BASE + "/"
    hub = build_services(s)
    assert hub.verification.path == s.phone_auth_path
    assert hub.scheduling.path == s.schedule_path
    assert hub.bootstrap.base_url == BASE
    await hub.aclose()
