# common/envelope.py
from __future__ import annotations

import json
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class UIHint(str, Enum):
    CHAT = "CHAT"
    PROPERTY_LIST = "PROPERTY_LIST"
    PROPERTY_DETAILS = "PROPERTY_DETAILS"
    IMAGE_GALLERY = "IMAGE_GALLERY"
    LOCATION_MAP = "LOCATION_MAP"
    BROCHURE_VIEWER = "BROCHURE_VIEWER"
    SCHEDULING_FORM = "SCHEDULING_FORM"
    VERIFICATION_FORM = "VERIFICATION_FORM"
    OTP_FORM = "OTP_FORM"
    VERIFICATION_SUCCESS = "VERIFICATION_SUCCESS"
    BOOKING_CONFIRMATION = "BOOKING_CONFIRMATION"

    @classmethod
    def parse(cls, value: Any) -> "UIHint":
        """Unknown or malformed hints recover to CHAT."""
        if isinstance(value, UIHint):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return cls.CHAT


# keys that describe the envelope itself and never land in metadata
ENVELOPE_KEYS = frozenset({
    "success",
    "error",
    "message",
    "ui_display_hint",
    "destination_agent",
    "silentTransfer",
    "silent_transfer",
    "suggested_action",
})


class ToolResult(BaseModel):
    """
    Result envelope every tool returns.
    - success/error and transfer intent are independent
    - message=None suppresses speech
    - anything else is domain payload (kept in model_extra)
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    success: bool = True
    error: Optional[str] = None
    message: Optional[str] = None
    ui_display_hint: Optional[str] = None
    destination_agent: Optional[str] = None
    silent_transfer: bool = Field(default=False, alias="silentTransfer")

    @property
    def is_transfer(self) -> bool:
        return bool(self.destination_agent)

    @property
    def hint(self) -> Optional[UIHint]:
        if self.ui_display_hint is None or self.ui_display_hint == "":
            return None
        return UIHint.parse(self.ui_display_hint)

    def payload(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})

    def forwarded_fields(self) -> Dict[str, Any]:
        """Domain fields a transfer merges into the session metadata."""
        return {k: v for k, v in self.payload().items() if k not in ENVELOPE_KEYS}

    def to_output(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    def to_json(self) -> str:
        return json.dumps(self.to_output(), ensure_ascii=False, default=str)


def _hint_value(hint: Optional[UIHint | str]) -> Optional[str]:
    if hint is None:
        return None
    return hint.value if isinstance(hint, UIHint) else str(hint)


def ok(message: Optional[str] = None, hint: Optional[UIHint | str] = None, **payload: Any) -> ToolResult:
    return ToolResult(success=True, message=message, ui_display_hint=_hint_value(hint), **payload)


def fail(
    error: str,
    message: Optional[str] = None,
    hint: Optional[UIHint | str] = None,
    **payload: Any,
) -> ToolResult:
    return ToolResult(success=False, error=error, message=message, ui_display_hint=_hint_value(hint), **payload)


def transfer_to(
    destination: Any,
    *,
    silent: bool = True,
    message: Optional[str] = None,
    hint: Optional[UIHint | str] = None,
    success: bool = True,
    **payload: Any,
) -> ToolResult:
    dest = getattr(destination, "value", destination)
    return ToolResult(
        success=success,
        message=message,
        ui_display_hint=_hint_value(hint),
        destination_agent=str(dest),
        silent_transfer=silent,
        **payload,
    )
