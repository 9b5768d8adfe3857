## tools/tools_schedule.py
from __future__ import annotations

import logging
import re
from datetime import date, timedelta
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, Field

from common.envelope import UIHint, fail, ok, transfer_to
from common.models import AgentName, FlowContext, SessionMetadata
from constants.realtime import greeting_for
from services.http_client import ServiceError
from tools.registry import ToolContext, ToolName, function_tool
from tools.tools_property import resolve_property

logger = logging.getLogger("property-concierge")

SLOT_DAYS = 7
DEFAULT_SLOTS = ["11:00 AM", "4:00 PM"]

_DT_SPLIT = re.compile(r"\s+at\s+|(?<=\d)T(?=\d)|\s+(?=\d{1,2}(?::\d{2})?\s*(?:[AaPp][Mm])?$)")


def split_visit_datetime(value: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """'2025-06-10 at 4:00 PM' / '2025-06-10T16:00' -> (date, time)."""
    if not value or not value.strip():
        return None, None
    parts = _DT_SPLIT.split(value.strip(), maxsplit=1)
    if len(parts) == 2 and parts[0].strip() and parts[1].strip():
        return parts[0].strip(), parts[1].strip()
    return value.strip(), None


def booking_details(md: SessionMetadata) -> Dict[str, Any]:
    return {
        "customerName": md.customer_name or "Valued Customer",
        "propertyId": md.property_id_to_schedule or md.active_property_id,
        "propertyName": md.property_name or md.active_property_name or "the selected property",
        "date": md.selected_date or "your selected date",
        "time": md.selected_time or "your selected time",
        "phoneNumber": md.phone_number,
    }


async def book_visit_once(context: ToolContext) -> Optional[str]:
    """Book the visit remotely unless it is already booked. Returns an error text or None."""
    md = context.metadata
    if md.visit_booked:
        return None
    try:
        receipt = await context.services.scheduling.book_visit(
            customer_name=md.customer_name or "Valued Customer",
            phone_number=md.phone_number,
            property_id=md.property_id_to_schedule or md.active_property_id,
            visit_datetime=f"{md.selected_date} {md.selected_time}",
            tenant_id=md.tenant_id,
            session_id=md.session_id,
        )
    except ServiceError as e:
        logger.warning("book_visit failed: %s", e)
        return "Booking service unavailable"
    if not receipt.ok:
        return receipt.error or "Booking was rejected"
    updates: Dict[str, Any] = {"visit_booked": True, "has_scheduled": True}
    if receipt.booking_id:
        updates["booking_id"] = receipt.booking_id
    context.store.update(updates, source="book_visit")
    return None


# -----------------------------
# Argument models
# -----------------------------
class SlotsArgs(BaseModel):
    property_id: Optional[str] = Field(default=None, description="Property to schedule; defaults to the one in context")


class ScheduleVisitArgs(BaseModel):
    visitDateTime: Optional[str] = Field(default=None, description="Chosen date and time, e.g. '2025-06-10 at 4:00 PM'")
    selected_date: Optional[str] = None
    selected_time: Optional[str] = None
    property_id: Optional[str] = None


# -----------------------------
# Tools
# -----------------------------
@function_tool(
    ToolName.get_available_slots,
    description="Show the scheduling form with available visit dates and times.",
    args=SlotsArgs,
    renders_locally=True,
)
async def get_available_slots(context: ToolContext, property_id: Optional[str] = None):
    md = context.metadata
    pid = property_id or md.property_id_to_schedule or md.active_property_id
    name = md.property_name or md.active_property_name
    if pid and not name:
        for known, known_id in md.project_id_map.items():
            if known_id == pid:
                name = known
                break
    name = name or "the selected property"

    times = list(context.setting("default_time_slots", DEFAULT_SLOTS))
    start = date.today() + timedelta(days=1)
    slots = {(start + timedelta(days=i)).isoformat(): list(times) for i in range(SLOT_DAYS)}

    context.store.update({"property_id_to_schedule": pid, "property_name": name}, source=ToolName.get_available_slots.value)
    return ok(
        greeting_for(md.language),
        UIHint.SCHEDULING_FORM,
        slots=slots,
        timeSlots=times,
        property_id=pid,
        property_name=name,
        user_verification_status="verified" if md.is_verified else "unverified",
    )


@function_tool(
    ToolName.schedule_visit,
    description="Book the visit for the chosen date and time. Routes to verification first when needed.",
    args=ScheduleVisitArgs,
    renders_locally=True,
)
async def schedule_visit(
    context: ToolContext,
    visitDateTime: Optional[str] = None,
    selected_date: Optional[str] = None,
    selected_time: Optional[str] = None,
    property_id: Optional[str] = None,
):
    md = context.metadata
    d, t = split_visit_datetime(visitDateTime)
    d = selected_date or d or md.selected_date
    t = selected_time or t or md.selected_time

    updates: Dict[str, Any] = {"selected_date": d, "selected_time": t}
    if property_id:
        updates["property_id_to_schedule"] = property_id
    context.store.update({k: v for k, v in updates.items() if v}, source=ToolName.schedule_visit.value)

    if not d or not t:
        return fail("Missing date or time", "Please select a date and time for your visit.", UIHint.SCHEDULING_FORM)

    if not md.is_verified:
        return transfer_to(
            AgentName.verification,
            silent=True,
            hint=UIHint.VERIFICATION_FORM,
            came_from=AgentName.scheduling.value,
            flow_context=FlowContext.scheduling.value,
            property_id_to_schedule=md.property_id_to_schedule or md.active_property_id,
            property_name=md.property_name or md.active_property_name,
            selected_date=d,
            selected_time=t,
        )

    details = booking_details(md)
    if md.visit_booked:
        return ok(
            f"Your visit to {details['propertyName']} is already booked for {d} at {t}.",
            UIHint.BOOKING_CONFIRMATION,
            booking_confirmed=True,
            booking_details=details,
        )

    error = await book_visit_once(context)
    if error:
        return fail(error, "I couldn't book that slot right now. Please pick a time again or try shortly.",
                    UIHint.SCHEDULING_FORM)
    return ok(
        f"Your visit to {details['propertyName']} is booked for {d} at {t}.",
        UIHint.BOOKING_CONFIRMATION,
        booking_confirmed=True,
        booking_details=booking_details(context.metadata),
    )


@function_tool(
    ToolName.complete_scheduling,
    description="Finish scheduling and hand the user back to the property assistant.",
)
async def complete_scheduling_handoff(context: ToolContext):
    md = context.metadata
    if not md.has_scheduled:
        return fail("No visit booked yet", "Let's pick a date and time for your visit first.", UIHint.SCHEDULING_FORM)
    return transfer_to(
        AgentName.discovery,
        silent=True,
        hint=UIHint.BOOKING_CONFIRMATION,
        flow_context=FlowContext.from_full_scheduling.value,
        came_from=AgentName.scheduling.value,
        has_scheduled=True,
        booking_details=booking_details(md),
    )


@function_tool(
    ToolName.get_user_verification_status,
    description="Check whether the user is already verified.",
    affects_display=False,
)
async def get_user_verification_status(context: ToolContext):
    md = context.metadata
    _, name = resolve_property(md)
    return ok(
        None,
        is_verified=md.is_verified,
        customer_name=md.customer_name,
        has_phone=bool(md.phone_number),
        property_name=md.property_name or name,
    )
