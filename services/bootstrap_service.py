# services/bootstrap_service.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from services.http_client import ServiceClient, ServiceError

logger = logging.getLogger("property-concierge")


class TenantConfig(BaseModel):
    """Tenant (chatbot) context returned by the bootstrap call."""

    model_config = ConfigDict(extra="ignore")

    org_id: Optional[str] = None
    org_name: Optional[str] = None
    chatbot_id: Optional[str] = None
    language: Optional[str] = Field(default=None, alias="language_default")
    project_ids: List[str] = Field(default_factory=list)
    project_names: List[str] = Field(default_factory=list)
    project_id_map: Dict[str, str] = Field(default_factory=dict)
    project_locations: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    active_project_id: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _accept_language(cls, data: Any) -> Any:
        if isinstance(data, dict) and "language_default" not in data and "language" in data:
            data = {**data, "language_default": data["language"]}
        return data

    @model_validator(mode="after")
    def _build_id_map(self) -> "TenantConfig":
        if not self.project_id_map and self.project_ids and self.project_names:
            self.project_id_map = {
                name: pid for name, pid in zip(self.project_names, self.project_ids) if name and pid
            }
        return self

    def to_metadata(self) -> Dict[str, Any]:
        """Fields merged into the session record. Verification/scheduling state is never touched."""
        out: Dict[str, Any] = {
            "org_id": self.org_id,
            "org_name": self.org_name,
            "project_ids": self.project_ids,
            "project_names": self.project_names,
            "project_id_map": self.project_id_map,
            "project_locations": self.project_locations,
        }
        if self.language:
            out["language"] = self.language
        if self.active_project_id:
            out["active_property_id"] = self.active_project_id
        return {k: v for k, v in out.items() if v is not None}


class BootstrapService(ServiceClient):
    name = "bootstrap"

    def __init__(self, base_url: str, *, path: str = "/functions/v1/realtime_tools", **kwargs) -> None:
        super().__init__(base_url, **kwargs)
        self.path = path

    async def fetch_tenant_metadata(self, session_id: str, tenant_id: str) -> TenantConfig:
        data = await self.post_json(self.path, {
            "action": "fetchOrgMetadata",
            "session_id": session_id,
            "chatbot_id": tenant_id,
        })
        if data.get("error"):
            raise ServiceError(str(data["error"]), service=self.name)
        cfg = TenantConfig.model_validate(data)
        if not cfg.org_id:
            logger.warning("Bootstrap for tenant %s returned no org_id", tenant_id)
        return cfg
