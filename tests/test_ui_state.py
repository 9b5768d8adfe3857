# tests/test_ui_state.py
import pytest

from common.envelope import UIHint, fail, ok
from common.models import AgentName
from common.ui_state import UIStateMachine, should_hide_from_transcript


def test_only_result_hints_change_mode():
    ui = UIStateMachine()
    assert ui.apply_result(ok("x", UIHint.PROPERTY_DETAILS, property_details={"name": "Skyline Towers"}))
    mode, payload = ui.snapshot()
    assert mode == "PROPERTY_DETAILS"
    assert payload == {"name": "Skyline Towers"}


def test_passive_result_keeps_mode():
    ui = UIStateMachine()
    ui.apply_result(ok(None, UIHint.IMAGE_GALLERY, images_data={"images": []}))
    assert not ui.apply_result(ok(None), affects_display=False)
    assert ui.mode == UIHint.IMAGE_GALLERY


def test_missing_or_garbage_hint_recovers_to_chat():
    ui = UIStateMachine()
    ui.apply_result(ok(None, UIHint.LOCATION_MAP, location_data={}))
    ui.apply_result(ok(None))
    assert ui.mode == UIHint.CHAT
    ui.apply_result(ok(None, UIHint.LOCATION_MAP, location_data={}))
    ui.apply_result(ok(None, "SPINNING_GLOBE"))
    assert ui.mode == UIHint.CHAT


def test_agent_switch_forms_and_explicit_hint_wins():
    ui = UIStateMachine()
    ui.on_agent_switch(AgentName.verification)
    assert ui.mode == UIHint.VERIFICATION_FORM
    ui.on_agent_switch(AgentName.scheduling)
    assert ui.mode == UIHint.SCHEDULING_FORM
    ui.on_agent_switch(AgentName.discovery)
    assert ui.mode == UIHint.CHAT
    ui.apply_result(ok(None, UIHint.BOOKING_CONFIRMATION, booking_details={"date": "2025-06-10"}))
    assert ui.snapshot() == ("BOOKING_CONFIRMATION", {"date": "2025-06-10"})


def test_scheduling_and_otp_payloads():
    ui = UIStateMachine()
    ui.apply_result(ok(None, UIHint.SCHEDULING_FORM, slots={"2025-06-10": ["11:00 AM"]}, timeSlots=["11:00 AM"],
                       property_id="P", unrelated=1))
    assert set(ui.payload) == {"slots", "timeSlots", "property_id"}
    ui.apply_result(fail("bad", None, UIHint.OTP_FORM, phone_number="+14155550123"))
    assert ui.payload == {"phone_number": "+14155550123"}


def test_revert_is_generation_guarded():
    ui = UIStateMachine(verification_success_revert_s=3, booking_confirmation_revert_s=15)
    ui.apply_result(ok(None, UIHint.VERIFICATION_SUCCESS))
    assert ui.revert_delay() == 3
    stale = ui.generation
    ui.apply_result(ok(None, UIHint.BOOKING_CONFIRMATION, booking_details={}))
    assert ui.revert_delay() == 15
    assert not ui.revert(stale)
    assert ui.mode == UIHint.BOOKING_CONFIRMATION
    assert ui.revert(ui.generation)
    assert ui.mode == UIHint.CHAT


def test_submit_lifecycle():
    ui = UIStateMachine()
    token = ui.begin_submit("code")
    assert token is not None
    assert ui.begin_submit("code") is None
    assert ui.is_submitting("code")
    ui.finish_submit_for_tool("checkCode")
    assert not ui.is_submitting("code")

    token = ui.begin_submit("slot")
    ui.apply_result(ok(None, UIHint.SCHEDULING_FORM))
    assert ui.expire_submit("slot", token)
    assert not ui.expire_submit("slot", token)
    assert ui.mode == UIHint.SCHEDULING_FORM
    assert ui.submitting == []


def test_suppression_of_structured_replays():
    assert should_hide_from_transcript("My name is Ann and my phone number is +14155550123.")
    assert should_hide_from_transcript("Yes, I'd like to schedule a visit for Skyline Towers.")
    assert should_hide_from_transcript("Selected 2025-06-10.")
    assert not should_hide_from_transcript("Is there a gym?")


@pytest.mark.parametrize("text", [
    "I didn't get my verification code",
    "Can I book an appointment for Saturday?",
    "What happens after I schedule a visit for Skyline Towers?",
    "Selected units come with parking?",
])
def test_typed_questions_are_not_hidden(text):
    assert not should_hide_from_transcript(text)


def test_generated_visit_sentence_is_hidden():
    assert should_hide_from_transcript(
        "Yes, I'd like to schedule a visit for Skyline Towers. Please help me book an appointment."
    )
    assert should_hide_from_transcript("My verification code is 123456.")
