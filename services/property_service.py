# services/property_service.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from services.http_client import ServiceClient, ServiceError

PLACEHOLDER_IMAGE = "/placeholder.svg"


class Property(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    name: str = ""
    price: Optional[str] = None
    area: Optional[str] = None
    location: Dict[str, Any] = Field(default_factory=dict)
    images: List[Dict[str, Any]] = Field(default_factory=list)
    amenities: List[Dict[str, str]] = Field(default_factory=list)
    units: List[Dict[str, Any]] = Field(default_factory=list)
    description: Optional[str] = None
    websiteUrl: Optional[str] = None
    brochure: Optional[str] = None

    @field_validator("price", "area", mode="before")
    @classmethod
    def _stringify(cls, v: Any) -> Any:
        return None if v is None else str(v)

    @field_validator("location", mode="before")
    @classmethod
    def _location(cls, v: Any) -> Dict[str, Any]:
        if isinstance(v, str):
            return {"city": v}
        return v or {}

    @field_validator("images", mode="before")
    @classmethod
    def _images(cls, v: Any) -> List[Dict[str, Any]]:
        out = []
        for img in v or []:
            if isinstance(img, str):
                out.append({"url": img})
            elif isinstance(img, dict) and img.get("url"):
                out.append(img)
        return out

    @field_validator("amenities", mode="before")
    @classmethod
    def _amenities(cls, v: Any) -> List[Dict[str, str]]:
        out = []
        for a in v or []:
            if isinstance(a, str):
                out.append({"name": a})
            elif isinstance(a, dict) and a.get("name"):
                out.append({"name": str(a["name"])})
        return out

    def details(self) -> Dict[str, Any]:
        """Shape the detail card expects: main image + gallery."""
        urls = [img for img in self.images if img.get("url")]
        return {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "area": self.area,
            "location": self.location,
            "mainImage": urls[0]["url"] if urls else PLACEHOLDER_IMAGE,
            "galleryImages": urls[1:],
            "amenities": self.amenities,
            "units": self.units,
            "description": self.description,
            "websiteUrl": self.websiteUrl,
            "brochure": self.brochure,
        }

    def card(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "price": self.price,
            "area": self.area,
            "location": self.location,
            "mainImage": self.images[0]["url"] if self.images else PLACEHOLDER_IMAGE,
        }


class PropertyCatalog(ServiceClient):
    """Property search and enrichment actions behind the tools edge function."""

    name = "property-catalog"

    def __init__(self, base_url: str, *, path: str = "/functions/v1/realtime_tools", **kwargs) -> None:
        super().__init__(base_url, **kwargs)
        self.path = path

    async def _action(self, action: str, **body: Any) -> Dict[str, Any]:
        data = await self.post_json(self.path, {"action": action, **body})
        if data.get("error"):
            raise ServiceError(str(data["error"]), service=self.name)
        return data

    async def list_properties(self, tenant_id: str, project_ids: Optional[List[str]] = None) -> List[Property]:
        data = await self._action("getProjectDetails", chatbot_id=tenant_id, project_ids=list(project_ids or []))
        raw = data.get("properties") or ([data["property"]] if data.get("property") else [])
        return [Property.model_validate(p) for p in raw if isinstance(p, dict)]

    async def lookup_property(self, tenant_id: str, query: str, k: int = 3) -> List[Dict[str, Any]]:
        data = await self._action("lookupProperty", chatbot_id=tenant_id, query=query, k=k)
        return list(data.get("search_results") or data.get("results") or [])

    async def get_property_images(
        self, tenant_id: str, property_name: str, query: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        data = await self._action(
            "getPropertyImages", chatbot_id=tenant_id, property_name=property_name, query=query
        )
        return Property(images=data.get("images") or []).images

    async def calculate_route(self, origin: str, destination: str) -> Any:
        data = await self._action("calculateRoute", origin=origin, destination=destination)
        return data.get("routeSummary") or data.get("route")

    async def find_nearest_place(self, query: str, coords: Dict[str, Any], k: int = 2) -> List[Dict[str, Any]]:
        data = await self._action("findNearestPlace", query=query, location=coords, k=k)
        return list(data.get("nearestPlaces") or data.get("results") or [])
