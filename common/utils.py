# common/utils.py

import logging
import re
import uuid
from difflib import SequenceMatcher
from typing import Any, Dict, Iterable, Optional, Tuple

from constants.realtime import MAX_ITEM_ID_LEN
from constants.triggers import PHANTOM_UTTERANCES, SHORT_ALLOWED, is_internal_trigger

logger = logging.getLogger("property-concierge")

UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)
HEX32_RE = re.compile(r"^[0-9a-f]{32}$", re.IGNORECASE)
SAFE_CHARS_RE = re.compile(r"^[A-Za-z0-9_-]+$")
E164_RE = re.compile(r"^\+[1-9]\d{1,14}$")
OTP_RE = re.compile(r"^\d{6}$")

CONFLICT_ERROR = "Internal ID conflict."
CONFLICT_MESSAGE = "An internal error occurred. Please try again."


# -----------------------------
# Identifiers
# -----------------------------
def generate_session_id() -> str:
    return uuid.uuid4().hex


def generate_safe_id() -> str:
    """Local item id: unique, never reused, bounded to the transport's 32 chars."""
    return uuid.uuid4().hex[:MAX_ITEM_ID_LEN]


def is_uuid(value: Any) -> bool:
    return isinstance(value, str) and bool(UUID_RE.match(value))


def is_dummy_session_id(value: Any, others: Iterable[Optional[str]] = ()) -> bool:
    """Heuristics for placeholder session ids a model tends to invent."""
    if not isinstance(value, str) or not value:
        return True
    if value.startswith("session_") or "123" in value:
        return True
    if len(value) < 16 or not SAFE_CHARS_RE.match(value):
        return True
    return any(value == o for o in others if o)


def is_valid_session_id(value: Any, others: Iterable[Optional[str]] = ()) -> bool:
    if not isinstance(value, str):
        return False
    if not (UUID_RE.match(value) or HEX32_RE.match(value)):
        return False
    return not is_dummy_session_id(value, others)


def is_well_formed(field: str, value: Any) -> bool:
    if field == "session_id":
        return is_valid_session_id(value)
    return is_uuid(value)


def resolve_identifiers(
    requested: Dict[str, Any],
    current: Dict[str, Any],
) -> Tuple[Dict[str, str], Optional[Dict[str, Any]]]:
    """
    Pick the identifiers a remote call should carry.
    - org_id / tenant_id: the session's own value wins (ids are immutable once
      assigned); a requested value is used only when the session has none and
      it is a well-formed UUID; otherwise a validation error
    - session_id: the session's own value, else a valid requested one, else freshly generated
    - all three must differ; duplicates yield the conflict error
    Returns (ids, error_envelope_fields).
    """
    ids: Dict[str, str] = {}
    for key, label in (("org_id", "organization"), ("tenant_id", "chatbot")):
        candidate = requested.get(key)
        known = current.get(key)
        if isinstance(known, str) and known:
            if candidate and candidate != known:
                logger.warning("Healed %s %r from session metadata", key, candidate)
            ids[key] = known
            continue
        if is_uuid(candidate):
            ids[key] = candidate
            continue
        return ids, {
            "error": f"Invalid {label} ID format",
            "message": f"Internal error: Invalid {label} ID.",
        }

    others = (ids.get("org_id"), ids.get("tenant_id"))
    known_sid = current.get("session_id")
    sid = requested.get("session_id")
    if isinstance(known_sid, str) and known_sid:
        sid = known_sid
    elif not is_valid_session_id(sid, others):
        sid = generate_session_id()
        logger.warning("Generated a fresh session_id; requested=%r", requested.get("session_id"))
    ids["session_id"] = sid

    if len(set(ids.values())) != len(ids):
        return ids, {"error": CONFLICT_ERROR, "message": CONFLICT_MESSAGE}
    return ids, None


# -----------------------------
# Contact fields
# -----------------------------
def normalize_phone(phone: Optional[str]) -> Optional[str]:
    if not phone:
        return None
    digits = re.sub(r"[\s\-().]", "", str(phone).strip())
    if not digits:
        return None
    if not digits.startswith("+"):
        digits = "+" + digits
    return digits


def is_valid_phone(phone: Optional[str]) -> bool:
    return bool(phone) and bool(E164_RE.match(phone))


def is_valid_code(code: Optional[str]) -> bool:
    return bool(code) and bool(OTP_RE.match(str(code).strip()))


# -----------------------------
# Text heuristics
# -----------------------------
def is_real_user_question(text: Optional[str], *, question_count: int = 0) -> bool:
    """True when an utterance should count toward the verification threshold."""
    if not text:
        return False
    norm = " ".join(text.split()).strip().lower().rstrip(".!?")
    if not norm or is_internal_trigger(text):
        return False
    if norm == "hi" and question_count == 0:
        return False
    if norm in PHANTOM_UTTERANCES:
        return False
    if len(norm) <= 2 and norm not in SHORT_ALLOWED:
        return False
    return True


def similarity(a: str, b: str) -> float:
    """Best of token Jaccard, SequenceMatcher ratio, substring and space-insensitive match."""
    a = (a or "").lower().strip()
    b = (b or "").lower().strip()
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    ta, tb = set(a.split()), set(b.split())
    jaccard = len(ta & tb) / len(ta | tb) if ta | tb else 0.0
    ratio = SequenceMatcher(None, a, b).ratio()
    substring = 0.8 if (a in b or b in a) else 0.0
    spaceless = 0.7 if a.replace(" ", "") == b.replace(" ", "") else 0.0
    return max(jaccard, ratio, substring, spaceless)
