## agents/scheduling.py`
from __future__ import annotations

from typing import Optional

from common.base_agent import BaseAgent
from common.envelope import UIHint
from common.models import AgentName, SessionMetadata
from constants.triggers import say_trigger
from tools.tools_schedule import (
    complete_scheduling_handoff,
    get_available_slots,
    get_user_verification_status,
    schedule_visit,
)
from tools.tools_tracking import request_verification


class Scheduling(BaseAgent):
    name = AgentName.scheduling
    label = "Scheduling Assistant"
    downstream = frozenset({AgentName.discovery, AgentName.verification})
    default_hint = UIHint.SCHEDULING_FORM
    entry_display = UIHint.SCHEDULING_FORM

    def __init__(self) -> None:
        super().__init__(tools=[
            get_available_slots,
            schedule_visit,
            request_verification,
            complete_scheduling_handoff,
            get_user_verification_status,
        ])

    def instructions(self, metadata: SessionMetadata) -> str:
        prop = metadata.property_name or metadata.active_property_name or "the selected property"
        return (
            f"You are the scheduling assistant. Speak ONLY in {metadata.language}.\n"
            f"You help the user book a site visit to {prop}.\n"
            "Start by calling getAvailableSlots; the form on screen shows the dates and times.\n"
            "When the user picks a date and time (e.g. 'Selected 2025-06-10 at 4:00 PM.'), call scheduleVisit. "
            "If the user is not verified, scheduleVisit sends them to verification automatically.\n"
            "After a visit is booked, call completeScheduling.\n"
            "Keep replies to one or two short sentences. Never read out the list of slots.\n"
            "Messages that start with '{Trigger msg: Say' contain a sentence to say verbatim and nothing else.\n"
            f"Current user data (YAML):\n{metadata.summarize()}"
        )

    def entry_trigger(self, metadata: SessionMetadata) -> Optional[str]:
        prop = metadata.property_name or metadata.active_property_name or "the selected property"
        return say_trigger(f"Let's find a time for your visit to {prop}. Please pick a date and time below.")
