## agents/verification.py`
from __future__ import annotations

from typing import Optional

from common.base_agent import BaseAgent
from common.envelope import UIHint
from common.models import AgentName, FlowContext, SessionMetadata
from constants.triggers import say_trigger
from tools.tools_verify import VERIFICATION_TOOLS


class Verification(BaseAgent):
    name = AgentName.verification
    label = "Authentication"
    downstream = frozenset({AgentName.discovery, AgentName.scheduling})
    default_hint = UIHint.VERIFICATION_FORM
    entry_display = UIHint.VERIFICATION_FORM

    def __init__(self) -> None:
        super().__init__(tools=list(VERIFICATION_TOOLS))

    def instructions(self, metadata: SessionMetadata) -> str:
        why = (
            "to confirm their property visit"
            if metadata.flow_context == FlowContext.scheduling
            else "before continuing"
        )
        return (
            f"You are the verification assistant. Speak ONLY in {metadata.language}.\n"
            f"The user must verify their phone number {why}. A form on screen collects name and phone.\n"
            "1) When you have the name and phone number, call sendCode.\n"
            "2) When the user gives the 6-digit code, call checkCode.\n"
            "If a tool fails, tell the user the message it returns and what to do next. "
            "Never invent codes, ids or phone numbers. Do not answer property questions here; "
            "after checkCode succeeds the property assistant takes over.\n"
            "Messages that start with '{Trigger msg: Say' contain a sentence to say verbatim and nothing else.\n"
            f"Current user data (YAML):\n{metadata.summarize()}"
        )

    def entry_trigger(self, metadata: SessionMetadata) -> Optional[str]:
        if metadata.flow_context == FlowContext.from_question_auth:
            return say_trigger("Before we continue, please verify your phone number using the form below.")
        return say_trigger("Please share your name and phone number in the form below so I can verify you.")
