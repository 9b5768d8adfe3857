# common/models.py

import copy
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional
import yaml


class AgentName(str, Enum):
    discovery = "discovery"
    verification = "verification"
    scheduling = "scheduling"

    @classmethod
    def parse(cls, value: Any) -> Optional["AgentName"]:
        if isinstance(value, AgentName):
            return value
        if not isinstance(value, str):
            return None
        key = value.strip().lower()
        alias = {
            "realestate": cls.discovery,
            "property": cls.discovery,
            "authentication": cls.verification,
            "auth": cls.verification,
            "schedulemeeting": cls.scheduling,
            "schedule": cls.scheduling,
        }
        if key in alias:
            return alias[key]
        try:
            return cls(key)
        except ValueError:
            return None


class FlowContext(str, Enum):
    scheduling = "scheduling"
    from_scheduling_verification = "from_scheduling_verification"
    from_full_scheduling = "from_full_scheduling"
    from_direct_auth = "from_direct_auth"
    from_question_auth = "from_question_auth"

    @classmethod
    def parse(cls, value: Any) -> Optional["FlowContext"]:
        if isinstance(value, FlowContext):
            return value
        try:
            return cls(str(value).strip())
        except ValueError:
            return None


IDENTITY_FIELDS = ("session_id", "org_id", "tenant_id")


@dataclass
class SessionMetadata:
    # Identity
    session_id: Optional[str] = None
    org_id: Optional[str] = None
    tenant_id: Optional[str] = None  # the chatbot id

    # Conversation
    language: str = "English"
    customer_name: Optional[str] = None
    phone_number: Optional[str] = None
    is_verified: bool = False
    flow_context: Optional[FlowContext] = None
    came_from: Optional[str] = None
    pending_question: Optional[str] = None
    user_question_count: int = 0

    # Transaction
    active_property_id: Optional[str] = None
    active_property_name: Optional[str] = None
    property_id_to_schedule: Optional[str] = None
    property_name: Optional[str] = None
    selected_date: Optional[str] = None
    selected_time: Optional[str] = None
    has_scheduled: bool = False
    visit_booked: bool = False

    # Tenant catalog
    org_name: Optional[str] = None
    project_ids: List[str] = field(default_factory=list)
    project_names: List[str] = field(default_factory=list)
    project_id_map: Dict[str, str] = field(default_factory=dict)
    project_locations: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    # Forwarded fields without a dedicated attribute
    extras: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def field_names(cls) -> set:
        return {f.name for f in fields(cls)}

    def identifiers(self) -> Dict[str, Optional[str]]:
        return {k: getattr(self, k) for k in IDENTITY_FIELDS}

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for f in fields(self):
            val = getattr(self, f.name)
            if isinstance(val, Enum):
                val = val.value
            elif isinstance(val, (list, dict)):
                val = copy.deepcopy(val)
            out[f.name] = val
        return out

    def summarize(self) -> str:
        data = {
            "organization": self.org_name or "unknown",
            "language": self.language,
            "customer": {
                "name": self.customer_name or "unknown",
                "phone": self.phone_number or "unknown",
                "verified": self.is_verified,
            },
            "flow": {
                "context": self.flow_context.value if self.flow_context else None,
                "came_from": self.came_from,
                "questions_asked": self.user_question_count,
            },
            "property": {
                "active": self.active_property_name,
                "active_id": self.active_property_id,
                "to_schedule": self.property_id_to_schedule,
            },
            "visit": {
                "date": self.selected_date,
                "time": self.selected_time,
                "scheduled": self.has_scheduled,
            },
            "projects": list(self.project_names),
        }
        return yaml.dump(data, sort_keys=False, allow_unicode=True)


def scrub_metadata(md: SessionMetadata) -> None:
    """Clear personal and transactional fields; identifiers and catalog stay."""
    md.customer_name = None
    md.phone_number = None
    md.is_verified = False
    md.flow_context = None
    md.came_from = None
    md.pending_question = None
    md.user_question_count = 0
    md.property_id_to_schedule = None
    md.property_name = None
    md.selected_date = None
    md.selected_time = None
    md.has_scheduled = False
    md.visit_booked = False
    md.extras.clear()
