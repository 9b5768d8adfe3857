# common/metadata_store.py
from __future__ import annotations

import copy
import logging
from dataclasses import fields, replace
from typing import Any, Dict, Mapping, Optional

from common.envelope import ENVELOPE_KEYS
from common.models import IDENTITY_FIELDS, FlowContext, SessionMetadata, scrub_metadata
from common.utils import CONFLICT_ERROR, is_well_formed

logger = logging.getLogger("property-concierge")

_BOOL_FIELDS = {"is_verified", "has_scheduled", "visit_booked"}
_INT_FIELDS = {"user_question_count"}
_LIST_FIELDS = {"project_ids", "project_names"}
_DICT_FIELDS = {"project_id_map", "project_locations"}

# camelCase spellings some tools and payloads still carry
_ALIASES = {
    "selectedDate": "selected_date",
    "selectedTime": "selected_time",
    "chatbot_id": "tenant_id",
    "active_project": "active_property_name",
    "active_project_id": "active_property_id",
    "customerName": "customer_name",
    "phoneNumber": "phone_number",
}


class MetadataConflictError(Exception):
    """An update would collapse two session identifiers."""

    def __init__(self, detail: str):
        super().__init__(f"{CONFLICT_ERROR} {detail}")
        self.detail = detail


class MetadataStore:
    """
    Owns the one SessionMetadata record of a session.
    - `update()` is the only way to change it
    - identifiers are immutable once set (a malformed one may be healed)
    - the three identifiers stay pairwise distinct; a violating update is
      rejected as a whole and leaves the record untouched
    """

    def __init__(self, metadata: Optional[SessionMetadata] = None) -> None:
        self._md = metadata or SessionMetadata()
        self._fields = SessionMetadata.field_names()

    @property
    def metadata(self) -> SessionMetadata:
        return self._md

    def snapshot(self) -> Dict[str, Any]:
        return self._md.as_dict()

    def get(self, key: str, default: Any = None) -> Any:
        key = _ALIASES.get(key, key)
        if key in self._fields and key != "extras":
            return getattr(self._md, key)
        return self._md.extras.get(key, default)

    # -----------------------------
    # Single update entry point
    # -----------------------------
    def update(self, changes: Mapping[str, Any], *, source: str = "orchestrator") -> SessionMetadata:
        if not changes:
            return self._md

        candidate = replace(
            self._md,
            project_ids=list(self._md.project_ids),
            project_names=list(self._md.project_names),
            project_id_map=dict(self._md.project_id_map),
            project_locations=copy.deepcopy(self._md.project_locations),
            extras=dict(self._md.extras),
        )

        applied = []
        for raw_key, value in changes.items():
            if raw_key in ENVELOPE_KEYS:
                continue
            key = _ALIASES.get(raw_key, raw_key)
            if key in IDENTITY_FIELDS:
                if self._apply_identifier(candidate, key, value, source):
                    applied.append(key)
                continue
            if key == "extras" and isinstance(value, Mapping):
                candidate.extras.update(value)
                applied.append(key)
                continue
            if key in self._fields:
                if self._apply_field(candidate, key, value):
                    applied.append(key)
                continue
            candidate.extras[key] = value
            applied.append(key)

        self._check_identifiers(candidate)

        for f in fields(SessionMetadata):
            setattr(self._md, f.name, getattr(candidate, f.name))
        if applied:
            logger.debug("metadata update from %s: %s", source, sorted(set(applied)))
        return self._md

    def ensure_language(self, default: str = "English") -> None:
        if not self._md.language:
            self.update({"language": default}, source="language-default")

    def scrub(self) -> None:
        scrub_metadata(self._md)

    def reset(self) -> None:
        """Discard the record (disconnect)."""
        fresh = SessionMetadata()
        for f in fields(SessionMetadata):
            setattr(self._md, f.name, getattr(fresh, f.name))

    # -----------------------------
    # internals
    # -----------------------------
    @staticmethod
    def _apply_identifier(md: SessionMetadata, key: str, value: Any, source: str) -> bool:
        if value is None or value == "":
            return False
        if not isinstance(value, str):
            logger.warning("Ignoring non-string %s from %s: %r", key, source, value)
            return False
        current = getattr(md, key)
        if current == value:
            return False
        if not current:
            setattr(md, key, value)
            return True
        if not is_well_formed(key, current) and is_well_formed(key, value):
            logger.warning("Healing malformed %s %r -> %r (source=%s)", key, current, value, source)
            setattr(md, key, value)
            return True
        logger.warning("Refusing to replace %s %r with %r (source=%s)", key, current, value, source)
        return False

    @staticmethod
    def _apply_field(md: SessionMetadata, key: str, value: Any) -> bool:
        if key in _BOOL_FIELDS:
            if not isinstance(value, bool):
                logger.warning("Ignoring non-boolean %s=%r", key, value)
                return False
            setattr(md, key, value)
            return True
        if key in _INT_FIELDS:
            try:
                setattr(md, key, max(0, int(value or 0)))
            except (TypeError, ValueError):
                logger.warning("Ignoring non-integer %s=%r", key, value)
                return False
            return True
        if key == "flow_context":
            if value is None or value == "":
                md.flow_context = None
                return True
            parsed = FlowContext.parse(value)
            if parsed is None:
                logger.warning("Ignoring unknown flow_context %r", value)
                return False
            md.flow_context = parsed
            return True
        if key in _LIST_FIELDS:
            setattr(md, key, [str(v) for v in (value or [])])
            return True
        if key in _DICT_FIELDS:
            setattr(md, key, dict(value or {}))
            return True
        if key == "language":
            setattr(md, key, str(value) if value else "English")
            return True
        setattr(md, key, value)
        return True

    @staticmethod
    def _check_identifiers(md: SessionMetadata) -> None:
        assigned = {k: v for k, v in md.identifiers().items() if v}
        seen: Dict[str, str] = {}
        for key, value in assigned.items():
            if value in seen:
                raise MetadataConflictError(f"{seen[value]} and {key} are both {value!r}")
            seen[value] = key
