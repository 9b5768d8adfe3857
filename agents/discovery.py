## agents/discovery.py`
from __future__ import annotations

from typing import Optional

from common.base_agent import BaseAgent
from common.envelope import UIHint
from common.models import AgentName, FlowContext, SessionMetadata
from constants.triggers import BOOKING_CONFIRMATION_TRIGGER, say_trigger
from tools.tools_property import DISCOVERY_CATALOG_TOOLS
from tools.tools_tracking import DISCOVERY_FLOW_TOOLS


class Discovery(BaseAgent):
    name = AgentName.discovery
    label = "Property Assistant"
    downstream = frozenset({AgentName.verification, AgentName.scheduling})
    default_hint = UIHint.CHAT
    entry_display = UIHint.CHAT

    def __init__(self) -> None:
        super().__init__(tools=[*DISCOVERY_CATALOG_TOOLS, *DISCOVERY_FLOW_TOOLS])

    def instructions(self, metadata: SessionMetadata) -> str:
        org = metadata.org_name or "our company"
        projects = ", ".join(metadata.project_names) or "(none loaded)"
        active = metadata.active_property_name or "none yet"
        verified = "yes" if metadata.is_verified else "no"
        flow = metadata.flow_context.value if metadata.flow_context else "none"
        return (
            f"You are the property assistant for {org}. Speak ONLY in {metadata.language}.\n"
            "Be warm and brief: at most two short sentences per turn, then one question.\n"
            f"Known projects: {projects}. Active project: {active}. User verified: {verified}. "
            f"Flow context: {flow}.\n"
            "ON EVERY USER MESSAGE: first call trackUserMessage with the exact text, then "
            "detectPropertyInMessage; if a project is detected call updateActiveProject.\n"
            "Use getProjectDetails for an overview or a specific project, getPropertyImages for pictures, "
            "showPropertyLocation for the map, showPropertyBrochure for the brochure, lookupProperty for "
            "other questions, calculateRoute for directions and findNearestPlace for nearby places.\n"
            "When a tool result has a message, say it in your own words and never read out raw data; "
            "the screen already shows cards, galleries and maps.\n"
            "If trackUserMessage returns action=completeScheduling, call completeScheduling immediately. "
            "If it returns answer_pending_question, answer that question. "
            "If it returns askToSchedule, ask the question it gives you.\n"
            "When the user wants to visit a property call initiateScheduling. "
            "Never ask for phone numbers or codes yourself; verification has its own agent.\n"
            "Messages that start with '{Trigger msg: Say' contain a sentence to say verbatim and nothing else.\n"
            f"Current user data (YAML):\n{metadata.summarize()}"
        )

    def entry_trigger(self, metadata: SessionMetadata) -> Optional[str]:
        fc = metadata.flow_context
        if fc in (FlowContext.from_scheduling_verification, FlowContext.from_full_scheduling):
            return BOOKING_CONFIRMATION_TRIGGER
        if fc == FlowContext.from_direct_auth:
            return say_trigger("Thank you, you're verified! How can I help you with our properties?")
        return None
