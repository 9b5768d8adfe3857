"""Reserved utterances and the structured-submission sentences the UI sends.

Internally synthesized utterances carry one of the reserved prefixes so the
transcript can hide them while they are still dispatched to the active agent.
"""
from __future__ import annotations

import re

# ---------------------------------------------------------------------------
# Reserved markers for synthesized turns
# ---------------------------------------------------------------------------
OPENING_UTTERANCE = "hi"
SAY_TRIGGER_PREFIX = "{Trigger msg: Say "
BOOKING_CONFIRMATION_TRIGGER = "TRIGGER_BOOKING_CONFIRMATION"
SOMETHING_ELSE_TRIGGER = "I am interested in something else"
TRANSCRIBING_PLACEHOLDER = "[Transcribing...]"

HIDDEN_PREFIXES = (
    SAY_TRIGGER_PREFIX,
    "My verification code ",
    SOMETHING_ELSE_TRIGGER,
    BOOKING_CONFIRMATION_TRIGGER,
)


def say_trigger(sentence: str) -> str:
    """Wrap a sentence the agent must say verbatim."""
    return f'{SAY_TRIGGER_PREFIX}"{sentence}"}}'


def is_internal_trigger(text: str | None) -> bool:
    if not text:
        return False
    stripped = text.strip()
    return any(stripped.startswith(p) for p in HIDDEN_PREFIXES)


# ---------------------------------------------------------------------------
# Structured UI submissions
# ---------------------------------------------------------------------------
def verification_details_sentence(name: str, phone: str) -> str:
    return f"My name is {name} and my phone number is {phone}."


def verification_code_sentence(code: str) -> str:
    return f"My verification code is {code}."


def slot_selection_sentence(date: str, time: str | None = None) -> str:
    if time:
        return f"Selected {date} at {time}."
    return f"Selected {date}."


def visit_request_sentence(property_name: str) -> str:
    return f"Yes, I'd like to schedule a visit for {property_name}. Please help me book an appointment."


VISIT_REQUEST_RE = re.compile(r"yes, i'd like to schedule a visit for (.+?)(?:\.|$)", re.IGNORECASE)

# Mechanical replays of structured submissions (hidden at the render boundary).
# Whole-sentence matches only.
SUPPRESSION_PATTERNS = (
    re.compile(r"^my verification code is \d{4,6}\.?$", re.IGNORECASE),
    re.compile(r"^(?:my )?(?:code|otp) is \d{4,6}\.?$", re.IGNORECASE),
    re.compile(r"^my name is .+ and my phone number is \+?[\d\s().-]+\.?$", re.IGNORECASE),
    re.compile(r"^selected [^?]+\.?$", re.IGNORECASE),
    re.compile(
        r"^yes, i'd like to schedule a visit for [^?]+?\.(?: please help me book an appointment\.?)?$",
        re.IGNORECASE,
    ),
)

# Acknowledgements that never count as a real question
PHANTOM_UTTERANCES = frozenset({"thank you", "thanks", "mm-hmm", "uh-huh", "mm", "hmm"})
SHORT_ALLOWED = frozenset({"hi", "no", "ok"})

SCHEDULE_PROMPT = "Would you like to schedule a visit to see a property in person?"
