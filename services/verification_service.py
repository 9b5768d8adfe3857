# services/verification_service.py
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

from services.http_client import ServiceClient


class CodeDelivery(BaseModel):
    ok: bool
    message: Optional[str] = None
    error: Optional[str] = None


class CodeCheck(BaseModel):
    verified: bool
    message: Optional[str] = None
    error: Optional[str] = None


class VerificationService(ServiceClient):
    """SMS code delivery and check. `verified` is taken only from the backend's explicit boolean."""

    name = "verification"

    def __init__(self, base_url: str, *, path: str = "/functions/v1/phoneAuth", **kwargs) -> None:
        super().__init__(base_url, **kwargs)
        self.path = path

    async def send_code(
        self,
        name: str,
        phone: str,
        session_id: str,
        org_id: str,
        tenant_id: str,
    ) -> CodeDelivery:
        data = await self.post_json(self.path, {
            "session_id": session_id,
            "phone_number": phone,
            "org_id": org_id,
            "name": name,
            "platform": "WebChat",
            "chat_mode": "voice",
            "chatbot_id": tenant_id,
        })
        ok = data.get("success") is not False and not data.get("error")
        return CodeDelivery(ok=ok, message=data.get("message"), error=data.get("error"))

    async def check_code(
        self,
        phone: str,
        code: str,
        session_id: str,
        org_id: str,
        tenant_id: str,
    ) -> CodeCheck:
        data = await self.post_json(self.path, {
            "session_id": session_id,
            "phone_number": phone,
            "org_id": org_id,
            "otp": code,
            "platform": "WebChat",
            "chat_mode": "voice",
            "chatbot_id": tenant_id,
        })
        return CodeCheck(
            verified=data.get("verified") is True,
            message=data.get("message"),
            error=data.get("error"),
        )
