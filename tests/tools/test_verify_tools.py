# tests/tools/test_verify_tools.py
import pytest

from common.envelope import UIHint
from common.models import AgentName, FlowContext
from services.http_client import ServiceError
from tools.tools_verify import CODE_SENT_MESSAGE, check_code, send_code

from conftest import PHONE, FakeVerification, _call


@pytest.mark.asyncio
async def test_send_code_success_shows_code_form(ctx):
    res = await _call(send_code)(ctx, name="Ann Lee", phone_number="+1 415 555 0123")
    assert res.success is True
    assert res.hint == UIHint.OTP_FORM
    assert res.message == CODE_SENT_MESSAGE
    md = ctx.metadata
    assert md.customer_name == "Ann Lee" and md.phone_number == PHONE
    assert md.is_verified is False
    assert ctx.services.verification.sent == [("Ann Lee", PHONE, "s1", "o1", "t1")]


@pytest.mark.asyncio
@pytest.mark.parametrize("phone", ["12ab", "+0123", "+"])
async def test_send_code_rejects_bad_phone(ctx, phone):
    res = await _call(send_code)(ctx, name="Ann", phone_number=phone)
    assert res.success is False
    assert res.hint == UIHint.VERIFICATION_FORM
    assert ctx.services.verification.sent == []


@pytest.mark.asyncio
async def test_send_code_delivery_failure_stays_on_form(ctx):
    ctx.services.verification = FakeVerification(delivered=False)
    res = await _call(send_code)(ctx, name="Ann", phone_number=PHONE)
    assert res.success is False
    assert res.hint == UIHint.VERIFICATION_FORM
    assert ctx.metadata.phone_number is None


@pytest.mark.asyncio
async def test_send_code_service_error_is_an_envelope(ctx):
    class Down:
        async def send_code(self, *a, **k):
            raise ServiceError("boom", service="verification", status=502)

    ctx.services.verification = Down()
    res = await _call(send_code)(ctx, name="Ann", phone_number=PHONE)
    assert res.success is False
    assert "boom" not in (res.message or "")


@pytest.mark.asyncio
async def test_check_code_requires_six_digits(ctx):
    ctx.store.update({"phone_number": PHONE})
    res = await _call(check_code)(ctx, otp="12ab")
    assert res.success is False and res.hint == UIHint.OTP_FORM
    assert ctx.services.verification.checked == []


@pytest.mark.asyncio
async def test_check_code_only_explicit_true_verifies(ctx):
    ctx.store.update({"phone_number": PHONE})
    ctx.services.verification = FakeVerification(verified="true")
    res = await _call(check_code)(ctx, otp="123456")
    assert res.success is False
    assert res.hint == UIHint.OTP_FORM
    assert ctx.metadata.is_verified is False


@pytest.mark.asyncio
async def test_check_code_direct_auth(ctx):
    ctx.store.update({"phone_number": PHONE, "customer_name": "Ann"})
    res = await _call(check_code)(ctx, otp="123456")
    assert res.success is True
    assert res.destination_agent == AgentName.discovery.value
    assert res.silent_transfer is True
    assert res.hint == UIHint.VERIFICATION_SUCCESS
    assert res.payload()["flow_context"] == FlowContext.from_direct_auth.value
    assert ctx.metadata.is_verified is True


@pytest.mark.asyncio
async def test_check_code_keeps_question_auth_flow(ctx):
    ctx.store.update({"phone_number": PHONE, "flow_context": "from_question_auth", "pending_question": "Price?"})
    res = await _call(check_code)(ctx, otp="123456")
    assert res.payload()["flow_context"] == FlowContext.from_question_auth.value


@pytest.mark.asyncio
async def test_check_code_from_scheduling_forwards_booking(ctx):
    ctx.store.update({
        "phone_number": PHONE,
        "customer_name": "Ann",
        "flow_context": "scheduling",
        "came_from": "scheduling",
        "property_id_to_schedule": "P",
        "property_name": "Skyline Towers",
        "selected_date": "2025-06-10",
        "selected_time": "4:00 PM",
    })
    res = await _call(check_code)(ctx, otp="123456")
    data = res.payload()
    assert res.hint == UIHint.BOOKING_CONFIRMATION
    assert data["flow_context"] == FlowContext.from_scheduling_verification.value
    assert data["has_scheduled"] is True
    assert data["property_id_to_schedule"] == "P"
    assert data["booking_details"]["date"] == "2025-06-10"
    assert data["booking_details"]["time"] == "4:00 PM"
    assert data["booking_details"]["propertyName"] == "Skyline Towers"
