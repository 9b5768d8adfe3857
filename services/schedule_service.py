# services/schedule_service.py
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel

from services.http_client import ServiceClient


class BookingReceipt(BaseModel):
    ok: bool
    booking_id: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None


class ScheduleService(ServiceClient):
    name = "schedule"

    def __init__(self, base_url: str, *, path: str = "/functions/v1/schedule-visit-whatsapp", **kwargs) -> None:
        super().__init__(base_url, **kwargs)
        self.path = path

    async def book_visit(
        self,
        *,
        customer_name: str,
        phone_number: Optional[str],
        property_id: Optional[str],
        visit_datetime: str,
        tenant_id: Optional[str],
        session_id: Optional[str],
    ) -> BookingReceipt:
        data: dict[str, Any] = await self.post_json(self.path, {
            "customerName": customer_name,
            "phoneNumber": phone_number,
            "propertyId": property_id,
            "visitDateTime": visit_datetime,
            "chatbotId": tenant_id,
            "sessionId": session_id,
        })
        ok = data.get("success") is not False and not data.get("error")
        booking_id = data.get("booking_id") or data.get("id")
        return BookingReceipt(
            ok=ok,
            booking_id=str(booking_id) if booking_id else None,
            message=data.get("message"),
            error=data.get("error"),
        )
