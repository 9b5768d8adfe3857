## tools/tools_verify.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from common.envelope import UIHint, fail, ok, transfer_to
from common.models import AgentName, FlowContext
from common.utils import CONFLICT_ERROR, is_valid_code, is_valid_phone, normalize_phone, resolve_identifiers
from services.http_client import ServiceError
from tools.registry import ToolContext, ToolName, function_tool
from tools.tools_schedule import booking_details

logger = logging.getLogger("property-concierge")

CODE_SENT_MESSAGE = "I've sent a 6-digit verification code to your phone. Please enter it below."
VERIFIED_MESSAGE = "Verification successful! You're now verified."


class SendCodeArgs(BaseModel):
    name: str = Field(description="Customer's full name")
    phone_number: str = Field(description="Phone number in international format, e.g. +14155550123")
    session_id: Optional[str] = None
    org_id: Optional[str] = None
    chatbot_id: Optional[str] = None


class CheckCodeArgs(BaseModel):
    otp: str = Field(description="The 6-digit code the user received")
    phone_number: Optional[str] = None
    session_id: Optional[str] = None
    org_id: Optional[str] = None
    chatbot_id: Optional[str] = None


def _ids_or_error(context: ToolContext, session_id, org_id, chatbot_id, form: UIHint):
    ids, err = resolve_identifiers(
        {"session_id": session_id, "org_id": org_id, "tenant_id": chatbot_id},
        context.metadata.identifiers(),
    )
    if err is None:
        return ids, None
    hint = UIHint.CHAT if err["error"] == CONFLICT_ERROR else form
    logger.warning("identifier check failed: %s", err["error"])
    return ids, fail(err["error"], err["message"], hint)


@function_tool(
    ToolName.send_code,
    description="Send a 6-digit verification code to the user's phone.",
    args=SendCodeArgs,
)
async def send_code(
    context: ToolContext,
    name: str,
    phone_number: str,
    session_id: Optional[str] = None,
    org_id: Optional[str] = None,
    chatbot_id: Optional[str] = None,
):
    name = (name or "").strip()
    if not name:
        return fail("Missing name", "Please enter your name so I can verify you.", UIHint.VERIFICATION_FORM)
    phone = normalize_phone(phone_number)
    if not is_valid_phone(phone):
        return fail(
            "Invalid phone number",
            "That phone number doesn't look right. Please include the country code, e.g. +14155550123.",
            UIHint.VERIFICATION_FORM,
        )

    ids, error = _ids_or_error(context, session_id, org_id, chatbot_id, UIHint.VERIFICATION_FORM)
    if error:
        return error

    try:
        delivery = await context.services.verification.send_code(name, phone, ids["session_id"], ids["org_id"], ids["tenant_id"])
    except ServiceError as e:
        logger.warning("sendCode failed: %s", e)
        return fail(
            "Code delivery failed",
            "I couldn't send the code right now. Please check the number and try again.",
            UIHint.VERIFICATION_FORM,
        )
    if not delivery.ok:
        return fail(
            delivery.error or "Code delivery failed",
            delivery.message or "I couldn't send the code. Please check the number and try again.",
            UIHint.VERIFICATION_FORM,
        )

    context.store.update({"customer_name": name, "phone_number": phone}, source=ToolName.send_code.value)
    return ok(delivery.message or CODE_SENT_MESSAGE, UIHint.OTP_FORM, phone_number=phone, customer_name=name)


@function_tool(
    ToolName.check_code,
    description="Check the verification code the user entered.",
    args=CheckCodeArgs,
)
async def check_code(
    context: ToolContext,
    otp: str,
    phone_number: Optional[str] = None,
    session_id: Optional[str] = None,
    org_id: Optional[str] = None,
    chatbot_id: Optional[str] = None,
):
    md = context.metadata
    code = (otp or "").strip()
    if not is_valid_code(code):
        return fail("Invalid code format", "Please enter the 6-digit code we sent to your phone.", UIHint.OTP_FORM)
    phone = md.phone_number or normalize_phone(phone_number)
    if not is_valid_phone(phone):
        return fail("Missing phone number", "I need your phone number first. Please enter it in the form.",
                    UIHint.VERIFICATION_FORM)

    ids, error = _ids_or_error(context, session_id, org_id, chatbot_id, UIHint.OTP_FORM)
    if error:
        return error

    try:
        check = await context.services.verification.check_code(phone, code, ids["session_id"], ids["org_id"], ids["tenant_id"])
    except ServiceError as e:
        logger.warning("checkCode failed: %s", e)
        return fail("Verification service unavailable", "I couldn't check the code right now. Please try again.",
                    UIHint.OTP_FORM)

    # Only the backend's explicit boolean counts.
    if check.verified is not True:
        return fail(
            check.error or "Invalid code",
            check.message or "That code didn't work. Please check it and try again.",
            UIHint.OTP_FORM,
            verified=False,
        )

    context.store.update({"is_verified": True, "phone_number": phone}, source=ToolName.check_code.value)
    md = context.metadata
    base: Dict[str, Any] = {
        "is_verified": True,
        "customer_name": md.customer_name,
        "phone_number": phone,
        "came_from": AgentName.verification.value,
    }

    scheduling_origin = md.flow_context == FlowContext.scheduling or md.came_from == AgentName.scheduling.value
    if scheduling_origin:
        return transfer_to(
            AgentName.discovery,
            silent=True,
            message="Verification successful! Let me confirm your visit.",
            hint=UIHint.BOOKING_CONFIRMATION,
            flow_context=FlowContext.from_scheduling_verification.value,
            has_scheduled=True,
            property_id_to_schedule=md.property_id_to_schedule or md.active_property_id,
            property_name=md.property_name or md.active_property_name,
            selected_date=md.selected_date,
            selected_time=md.selected_time,
            booking_details=booking_details(md),
            **base,
        )

    flow = (
        FlowContext.from_question_auth
        if md.flow_context == FlowContext.from_question_auth
        else FlowContext.from_direct_auth
    )
    return transfer_to(
        AgentName.discovery,
        silent=True,
        message=VERIFIED_MESSAGE,
        hint=UIHint.VERIFICATION_SUCCESS,
        flow_context=flow.value,
        **base,
    )


VERIFICATION_TOOLS = [send_code, check_code]
