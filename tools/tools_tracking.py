## tools/tools_tracking.py
from __future__ import annotations

import logging
from typing import Any, Dict

from pydantic import BaseModel, Field

from common.envelope import UIHint, fail, ok, transfer_to
from common.models import AgentName, FlowContext
from constants.triggers import SAY_TRIGGER_PREFIX, SCHEDULE_PROMPT, VISIT_REQUEST_RE
from tools.registry import ToolContext, ToolName, function_tool
from tools.tools_property import resolve_property
from tools.tools_schedule import book_visit_once, booking_details

logger = logging.getLogger("property-concierge")

TRIGGER_PREFIX = SAY_TRIGGER_PREFIX.split(" Say")[0]


class TrackArgs(BaseModel):
    message: str = Field(description="The user's latest message, verbatim")


@function_tool(
    ToolName.track_user_message,
    description=(
        "Call on every user message. Handles follow-ups after verification or scheduling "
        "and tells you when to offer a visit."
    ),
    args=TrackArgs,
    affects_display=False,
)
async def track_user_message(context: ToolContext, message: str):
    """
    Flow bookkeeping for Discovery. Counting questions is done by the event
    pipeline; this tool only reads the count.
    """
    store = context.store
    md = context.metadata
    text = (message or "").strip()

    if text.startswith(TRIGGER_PREFIX):
        return ok(None, is_trigger_message=True)
    if text == ToolName.initiate_scheduling.value:
        return ok(None, trigger_scheduling=True, next_step="Call initiateScheduling now.")

    fc = md.flow_context
    if fc in (FlowContext.from_full_scheduling, FlowContext.from_scheduling_verification):
        store.update({"flow_context": None}, source=ToolName.track_user_message.value)
        return ok(
            None,
            action=ToolName.complete_scheduling.value,
            next_step="Call completeScheduling now to confirm the visit.",
        )
    if fc == FlowContext.from_direct_auth:
        store.update({"flow_context": None}, source=ToolName.track_user_message.value)
        return ok(None, flow_context_cleared=True)
    if fc == FlowContext.from_question_auth and md.is_verified:
        pending = md.pending_question
        store.update({"flow_context": None, "pending_question": None}, source=ToolName.track_user_message.value)
        if pending:
            return ok(None, action="answer_pending_question", pending_question=pending)
        return ok(None, flow_context_cleared=True)

    m = VISIT_REQUEST_RE.search(text)
    if m:
        requested = m.group(1).strip()
        pid, name = resolve_property(md, requested)
        name = name or requested
        return transfer_to(
            AgentName.scheduling,
            silent=True,
            hint=UIHint.SCHEDULING_FORM,
            property_id_to_schedule=pid,
            property_name=name,
            active_property_name=name,
            active_property_id=pid,
            came_from=AgentName.discovery.value,
        )

    threshold = int(context.setting("schedule_prompt_threshold", 12))
    if md.is_verified and not md.has_scheduled and md.user_question_count >= threshold:
        return ok(SCHEDULE_PROMPT, action="askToSchedule", question_count=md.user_question_count)

    return ok(None, question_count=md.user_question_count, is_verified=md.is_verified)


@function_tool(
    ToolName.initiate_scheduling,
    description="Start booking a visit for the active property.",
)
async def initiate_scheduling(context: ToolContext):
    md = context.metadata
    pid = md.active_property_id
    name = md.active_property_name
    if not pid and md.project_ids:
        pid = md.project_ids[0]
        name = next((n for n, i in md.project_id_map.items() if i == pid), name)
    if pid and not name:
        name = next((n for n, i in md.project_id_map.items() if i == pid), None)
    return transfer_to(
        AgentName.scheduling,
        silent=True,
        hint=UIHint.SCHEDULING_FORM,
        property_id_to_schedule=pid,
        property_name=name or "the selected property",
        came_from=AgentName.discovery.value,
    )


@function_tool(
    ToolName.request_verification,
    description="Send the user to phone verification before a visit can be booked.",
)
async def request_verification(context: ToolContext):
    md = context.metadata
    if md.is_verified:
        return fail("Already verified", "You're already verified, so we can go ahead.", None)
    return transfer_to(
        AgentName.verification,
        silent=True,
        hint=UIHint.VERIFICATION_FORM,
        flow_context=FlowContext.scheduling.value,
        came_from=AgentName.scheduling.value,
        property_id_to_schedule=md.property_id_to_schedule or md.active_property_id,
        property_name=md.property_name or md.active_property_name,
        selected_date=md.selected_date,
        selected_time=md.selected_time,
    )


@function_tool(
    ToolName.complete_scheduling,
    description="Confirm a booked visit to the user after scheduling or verification finished.",
    renders_locally=True,
)
async def complete_scheduling(context: ToolContext):
    md = context.metadata
    if not md.visit_booked:
        if not (md.selected_date and md.selected_time):
            return fail("Missing date or time", "Let's pick a date and time for your visit first.", UIHint.SCHEDULING_FORM)
        if not md.is_verified:
            return transfer_to(
                AgentName.verification,
                silent=True,
                hint=UIHint.VERIFICATION_FORM,
                flow_context=FlowContext.scheduling.value,
                came_from=AgentName.scheduling.value,
                property_id_to_schedule=md.property_id_to_schedule or md.active_property_id,
                property_name=md.property_name or md.active_property_name,
                selected_date=md.selected_date,
                selected_time=md.selected_time,
            )
        error = await book_visit_once(context)
        if error:
            return fail(
                error,
                "I couldn't confirm the booking right now. Please try again in a moment.",
                UIHint.CHAT,
            )

    details = booking_details(context.metadata)
    context.store.update({"flow_context": None}, source=ToolName.complete_scheduling.value)
    message = (
        f"Great news, {details['customerName']}! Your visit to {details['propertyName']} has been scheduled "
        f"for {details['date']} at {details['time']}. You'll receive all details shortly!"
    )
    extra: Dict[str, Any] = {"booking_confirmed": True, "booking_details": details}
    return ok(message, UIHint.BOOKING_CONFIRMATION, **extra)


DISCOVERY_FLOW_TOOLS = [
    track_user_message,
    initiate_scheduling,
    request_verification,
    complete_scheduling,
]
