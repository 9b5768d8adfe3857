# services/hub.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from common.config_loader import Settings, mask_key
from services.bootstrap_service import BootstrapService
from services.property_service import PropertyCatalog
from services.schedule_service import ScheduleService
from services.verification_service import VerificationService

logger = logging.getLogger("property-concierge")


@dataclass
class ServiceHub:
    """Remote collaborators a session talks to. Tests swap in fakes with the same methods."""

    bootstrap: Any
    properties: Any
    verification: Any
    scheduling: Any

    async def aclose(self) -> None:
        for svc in (self.bootstrap, self.properties, self.verification, self.scheduling):
            close = getattr(svc, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception:
                logger.warning("Closing %s failed", type(svc).__name__, exc_info=True)


def build_services(settings: Settings, *, transport: Optional[httpx.AsyncBaseTransport] = None) -> ServiceHub:
    base = settings.services_base_url
    if not base:
        logger.warning("services.base_url is empty; remote calls will fail and sessions run degraded.")
    logger.info("Services at %s (key %s)", base or "<unset>", mask_key(settings.services_api_key))
    common = dict(api_key=settings.services_api_key, timeout=settings.services_timeout_s, transport=transport)
    return ServiceHub(
        bootstrap=BootstrapService(base, path=settings.tools_path, **common),
        properties=PropertyCatalog(base, path=settings.tools_path, **common),
        verification=VerificationService(base, path=settings.phone_auth_path, **common),
        scheduling=ScheduleService(base, path=settings.schedule_path, **common),
    )
