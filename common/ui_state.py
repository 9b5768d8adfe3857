# common/ui_state.py
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from common.envelope import ToolResult, UIHint
from common.models import AgentName
from constants.triggers import SUPPRESSION_PATTERNS

logger = logging.getLogger("property-concierge")


def should_hide_from_transcript(text: Optional[str]) -> bool:
    """Mechanical replays of structured submissions; the widget is their visible form."""
    if not text:
        return False
    stripped = " ".join(text.split())
    return any(p.match(stripped) for p in SUPPRESSION_PATTERNS)


# where each mode's payload lives in a tool result
_PAYLOAD_KEYS = {
    UIHint.PROPERTY_LIST: "properties",
    UIHint.PROPERTY_DETAILS: "property_details",
    UIHint.IMAGE_GALLERY: "images_data",
    UIHint.LOCATION_MAP: "location_data",
    UIHint.BROCHURE_VIEWER: "brochure_data",
    UIHint.BOOKING_CONFIRMATION: "booking_details",
}
_SCHEDULING_KEYS = ("slots", "timeSlots", "property_id", "property_name", "user_verification_status")
_OTP_KEYS = ("phone_number", "customer_name")

_AGENT_FORMS = {
    AgentName.verification: UIHint.VERIFICATION_FORM,
    AgentName.scheduling: UIHint.SCHEDULING_FORM,
    AgentName.discovery: UIHint.CHAT,
}

# tool -> structured action whose control it re-enables
SUBMIT_ACTIONS = {
    "sendCode": "verification_details",
    "checkCode": "code",
    "scheduleVisit": "slot",
    "initiateScheduling": "visit_request",
    "trackUserMessage": "visit_request",
}


def payload_for(mode: UIHint, result: ToolResult) -> Dict[str, Any]:
    data = result.payload()
    if mode in _PAYLOAD_KEYS:
        value = data.get(_PAYLOAD_KEYS[mode])
        if mode == UIHint.PROPERTY_LIST:
            return {"properties": list(value or [])}
        return dict(value or {}) if isinstance(value, dict) else {}
    if mode == UIHint.SCHEDULING_FORM:
        return {k: data[k] for k in _SCHEDULING_KEYS if k in data}
    if mode == UIHint.OTP_FORM:
        return {k: data[k] for k in _OTP_KEYS if k in data}
    return {}


class UIStateMachine:
    """
    Display mode derived only from tool-result hints and agent switches.
    Free text never changes the mode.
    """

    def __init__(
        self,
        *,
        verification_success_revert_s: float = 3.0,
        booking_confirmation_revert_s: float = 15.0,
    ) -> None:
        self.mode: UIHint = UIHint.CHAT
        self.payload: Dict[str, Any] = {}
        self.generation = 0
        self._reverts = {
            UIHint.VERIFICATION_SUCCESS: verification_success_revert_s,
            UIHint.BOOKING_CONFIRMATION: booking_confirmation_revert_s,
        }
        self._submitting: Dict[str, int] = {}
        self._submit_seq = 0

    def snapshot(self) -> Tuple[str, Dict[str, Any]]:
        return self.mode.value, dict(self.payload)

    # -----------------------------
    # transitions
    # -----------------------------
    def _set(self, mode: UIHint, payload: Optional[Dict[str, Any]] = None) -> bool:
        changed = mode != self.mode or (payload or {}) != self.payload
        self.mode = mode
        self.payload = dict(payload or {})
        if changed:
            self.generation += 1
            logger.debug("UI -> %s (gen %s)", mode.value, self.generation)
        return changed

    def apply_result(self, result: ToolResult, *, affects_display: bool = True) -> bool:
        if not affects_display:
            return False
        hint = result.hint
        if hint is None:
            # display tool without a usable hint: recover to chat
            return self._set(UIHint.CHAT)
        return self._set(hint, payload_for(hint, result))

    def on_agent_switch(self, agent: AgentName) -> bool:
        mode = _AGENT_FORMS.get(agent, UIHint.CHAT)
        if agent == AgentName.discovery:
            self._submitting.clear()
        return self._set(mode)

    def reset(self) -> None:
        self._submitting.clear()
        self._set(UIHint.CHAT)

    # -----------------------------
    # timed reverts
    # -----------------------------
    def revert_delay(self) -> Optional[float]:
        return self._reverts.get(self.mode)

    def revert(self, generation: int) -> bool:
        """Return to chat unless something else happened since the timer started."""
        if generation != self.generation or self.mode not in self._reverts:
            return False
        return self._set(UIHint.CHAT)

    # -----------------------------
    # structured submissions
    # -----------------------------
    def begin_submit(self, action: str) -> Optional[int]:
        """Disable the control. Returns a token, or None when already submitting."""
        if action in self._submitting:
            return None
        self._submit_seq += 1
        self._submitting[action] = self._submit_seq
        return self._submit_seq

    def finish_submit_for_tool(self, tool_name: str) -> None:
        action = SUBMIT_ACTIONS.get(tool_name)
        if action:
            self._submitting.pop(action, None)

    def expire_submit(self, action: str, token: int) -> bool:
        """Timeout: re-enable the control for retry; nothing else changes."""
        if self._submitting.get(action) == token:
            del self._submitting[action]
            logger.info("Submit of %s timed out; control re-enabled", action)
            return True
        return False

    def is_submitting(self, action: str) -> bool:
        return action in self._submitting

    @property
    def submitting(self) -> list[str]:
        return sorted(self._submitting)
