## tools/tools_property.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from common.envelope import UIHint, fail, ok
from common.models import SessionMetadata
from common.utils import similarity
from constants.triggers import VISIT_REQUEST_RE
from services.http_client import ServiceError
from services.property_service import Property
from tools.registry import ToolContext, ToolName, function_tool

logger = logging.getLogger("property-concierge")

MATCH_THRESHOLD = 0.6

LIST_MESSAGE = (
    "Here are our projects that you can choose from. "
    "You can click on the cards below for more details."
)
SERVICE_DOWN_MESSAGE = "I'm having trouble reaching our property records right now. Please try again in a moment."


# -----------------------------
# Helpers
# -----------------------------
def known_projects(md: SessionMetadata) -> Dict[str, Optional[str]]:
    """Project name -> id, merging the id map with bare names."""
    out: Dict[str, Optional[str]] = {name: None for name in md.project_names}
    out.update(md.project_id_map)
    return out


def resolve_property(md: SessionMetadata, name: Optional[str] = None) -> Tuple[Optional[str], Optional[str]]:
    """Case-insensitive lookup of (id, canonical name). Falls back to the active property."""
    if name:
        wanted = name.strip().lower()
        for known, pid in known_projects(md).items():
            if known.lower() == wanted:
                return pid, known
        return None, None
    return md.active_property_id, md.active_property_name


def _target_name(md: SessionMetadata, name: Optional[str]) -> Optional[str]:
    if name and name.strip():
        return resolve_property(md, name)[1] or name.strip()
    return md.active_property_name


async def _fetch_one(ctx: ToolContext, name: str) -> Optional[Property]:
    md = ctx.metadata
    pid, _ = resolve_property(md, name)
    props = await ctx.services.properties.list_properties(md.tenant_id, [pid] if pid else [])
    for p in props:
        if (pid and p.id == pid) or p.name.lower() == name.lower():
            return p
    return props[0] if len(props) == 1 else None


def _ngrams(words: List[str], n: int) -> List[str]:
    if n <= 0 or len(words) < n:
        return [" ".join(words)] if words else []
    return [" ".join(words[i:i + n]) for i in range(len(words) - n + 1)]


# -----------------------------
# Argument models
# -----------------------------
class ProjectDetailsArgs(BaseModel):
    project_id: Optional[str] = Field(default=None, description="Project id, when known")
    project_name: Optional[str] = Field(default=None, description="Project name as the user said it")


class PropertyNameArgs(BaseModel):
    property_name: Optional[str] = Field(default=None, description="Property name; defaults to the active property")


class ImagesArgs(PropertyNameArgs):
    query: Optional[str] = Field(default=None, description="What the user wants to see, e.g. 'kitchen'")


class LookupArgs(BaseModel):
    query: str = Field(description="The user's question about properties")
    k: int = Field(default=3, ge=1, le=10)


class RouteArgs(BaseModel):
    origin: str = Field(description="Where the user starts from")
    destination_property: str = Field(description="Property (or place) to drive to")


class NearestPlaceArgs(BaseModel):
    query: str = Field(description="Kind of place, e.g. 'hospitals', 'schools'")
    reference_property: Optional[str] = Field(default=None, description="Property to search around")


class MessageArgs(BaseModel):
    message: str = Field(description="The user's latest message, verbatim")


class ProjectNameArgs(BaseModel):
    project_name: str = Field(description="Project the user is now talking about")


# -----------------------------
# Catalog tools
# -----------------------------
@function_tool(
    ToolName.get_project_details,
    description="Show details for one project, or the list of all projects when none is named.",
    args=ProjectDetailsArgs,
    renders_locally=True,
)
async def get_project_details(
    context: ToolContext,
    project_id: Optional[str] = None,
    project_name: Optional[str] = None,
):
    md = context.metadata
    ids: List[str] = []
    if project_id:
        ids = [project_id]
    elif project_name:
        pid, _ = resolve_property(md, project_name)
        if pid:
            ids = [pid]
    if not ids and md.active_property_id and not project_name:
        ids = [md.active_property_id]
    if not ids:
        ids = list(md.project_ids)
    if not ids:
        return fail("No project specified for details.", "Which project would you like to know more about?", UIHint.CHAT)

    try:
        props = await context.services.properties.list_properties(md.tenant_id, ids)
    except ServiceError as e:
        logger.warning("getProjectDetails failed: %s", e)
        return fail("Property service unavailable", SERVICE_DOWN_MESSAGE, UIHint.CHAT)

    if not props:
        return ok("I couldn't find any project details.", UIHint.CHAT, properties=[])

    if len(props) == 1:
        p = props[0]
        context.store.update(
            {"active_property_id": p.id or md.active_property_id, "active_property_name": p.name},
            source=ToolName.get_project_details.value,
        )
        return ok(f"Here are the details for {p.name}.", UIHint.PROPERTY_DETAILS, property_details=p.details())

    return ok(LIST_MESSAGE, UIHint.PROPERTY_LIST, properties=[p.card() for p in props])


@function_tool(
    ToolName.lookup_property,
    description="Search the property knowledge base to answer a question.",
    args=LookupArgs,
)
async def lookup_property(context: ToolContext, query: str, k: int = 3):
    try:
        results = await context.services.properties.lookup_property(context.metadata.tenant_id, query, k)
    except ServiceError as e:
        logger.warning("lookupProperty failed: %s", e)
        return fail("Property search unavailable", SERVICE_DOWN_MESSAGE, UIHint.CHAT)
    if not results:
        return ok(f'I couldn\'t find anything about "{query}".', UIHint.CHAT, search_results=[])
    return ok(
        f'Regarding "{query}", I found information about {len(results)} item(s).',
        UIHint.CHAT,
        search_results=results,
    )


@function_tool(
    ToolName.get_property_images,
    description="Show the image gallery of a property.",
    args=ImagesArgs,
    renders_locally=True,
)
async def get_property_images(context: ToolContext, property_name: Optional[str] = None, query: Optional[str] = None):
    md = context.metadata
    target = _target_name(md, property_name)
    if not target:
        return fail("No property specified", "Please specify which property's images you'd like to see.", UIHint.CHAT)

    images: List[Dict[str, Any]] = []
    try:
        prop = await _fetch_one(context, target)
        if prop is not None:
            images.extend(prop.images)
        images.extend(await context.services.properties.get_property_images(md.tenant_id, target, query))
    except ServiceError as e:
        logger.warning("getPropertyImages failed: %s", e)
        return fail("Image service unavailable", SERVICE_DOWN_MESSAGE, UIHint.CHAT)

    seen = set()
    unique = []
    for img in images:
        url = img.get("url")
        if url and url not in seen:
            seen.add(url)
            unique.append(img)

    if not unique:
        return ok(f"I couldn't find any images for {target}.", UIHint.CHAT, images=[])
    return ok(
        "Here are the images you requested.",
        UIHint.IMAGE_GALLERY,
        images_data={"propertyName": target, "images": unique},
    )


@function_tool(
    ToolName.show_property_location,
    description="Show where a property is on the map.",
    args=PropertyNameArgs,
    renders_locally=True,
)
async def show_property_location(context: ToolContext, property_name: Optional[str] = None):
    md = context.metadata
    target = _target_name(md, property_name)
    if not target:
        return fail("No property specified", "Which property's location would you like to see?", UIHint.CHAT)
    try:
        prop = await _fetch_one(context, target)
    except ServiceError as e:
        logger.warning("showPropertyLocation failed: %s", e)
        return fail("Property service unavailable", SERVICE_DOWN_MESSAGE, UIHint.CHAT)

    loc = dict(prop.location) if prop else {}
    coords = loc.get("coords") or md.project_locations.get(target)
    location = {
        "city": loc.get("city") or "Location unavailable",
        "mapUrl": loc.get("mapUrl"),
        "coords": coords,
    }
    return ok(
        f"Here's the location of {target}. You can view it on the interactive map.",
        UIHint.LOCATION_MAP,
        location_data={
            "propertyName": target,
            "location": location,
            "description": loc.get("description") or f"View the location of {target} on the map.",
        },
    )


@function_tool(
    ToolName.show_property_brochure,
    description="Open the brochure of a property.",
    args=PropertyNameArgs,
    renders_locally=True,
)
async def show_property_brochure(context: ToolContext, property_name: Optional[str] = None):
    md = context.metadata
    target = _target_name(md, property_name)
    if not target:
        return fail("No property specified", "Which property's brochure would you like to see?", UIHint.CHAT)
    try:
        prop = await _fetch_one(context, target)
    except ServiceError as e:
        logger.warning("showPropertyBrochure failed: %s", e)
        return fail("Property service unavailable", SERVICE_DOWN_MESSAGE, UIHint.CHAT)
    url = prop.brochure if prop else None
    if not url:
        return ok(f"I couldn't find a brochure for {target}.", UIHint.CHAT)
    return ok(
        "You can check the brochure here.",
        UIHint.BROCHURE_VIEWER,
        brochure_data={"propertyName": target, "brochureUrl": url},
    )


@function_tool(
    ToolName.calculate_route,
    description="Driving directions from a place to a property.",
    args=RouteArgs,
)
async def calculate_route(context: ToolContext, origin: str, destination_property: str):
    md = context.metadata
    destination = destination_property
    _, known = resolve_property(md, destination_property)
    if known:
        city = (md.project_locations.get(known) or {}).get("city")
        destination = f"{known}, {city}" if city else known
    try:
        route = await context.services.properties.calculate_route(origin, destination)
    except ServiceError as e:
        logger.warning("calculateRoute failed: %s", e)
        return fail("Routing unavailable", "I couldn't calculate the route right now. Please try again.", UIHint.CHAT)
    return ok(
        f"Here are the driving directions from {origin} to {destination_property}:",
        UIHint.CHAT,
        routeSummary=route,
    )


@function_tool(
    ToolName.find_nearest_place,
    description="Find the nearest places of a kind (hospitals, schools, malls...) around a property.",
    args=NearestPlaceArgs,
)
async def find_nearest_place(context: ToolContext, query: str, reference_property: Optional[str] = None):
    md = context.metadata
    ref = _target_name(md, reference_property)
    coords = None
    if ref:
        for name, loc in md.project_locations.items():
            if name.lower() == ref.lower():
                coords = loc
                break
    if not coords:
        return fail(
            "Missing coordinates",
            f"Sorry, I don't have the location coordinates for {ref or 'that property'}.",
            UIHint.CHAT,
        )
    try:
        places = await context.services.properties.find_nearest_place(query, coords, k=2)
    except ServiceError as e:
        logger.warning("findNearestPlace failed: %s", e)
        return fail("Places search unavailable", "I couldn't search nearby places right now.", UIHint.CHAT)
    return ok(f"Here are the nearest {query} near {ref}:", UIHint.CHAT, nearestPlaces=places)


# -----------------------------
# Context tools (no display change)
# -----------------------------
@function_tool(
    ToolName.detect_property_in_message,
    description="Detect which known property, if any, the user's message refers to.",
    args=MessageArgs,
    affects_display=False,
)
async def detect_property_in_message(context: ToolContext, message: str):
    md = context.metadata
    text = (message or "").strip()
    projects = known_projects(md)
    if not text or not projects:
        return ok(None, propertyDetected=False)

    m = VISIT_REQUEST_RE.search(text)
    if m:
        text = m.group(1)
    lowered = text.lower()
    words = lowered.split()

    best_name, best_score = None, 0.0
    for name in projects:
        n = name.lower()
        if n in lowered or n.replace(" ", "") in lowered.replace(" ", ""):
            score = 1.0
        else:
            width = len(n.split())
            score = max((similarity(n, gram) for gram in _ngrams(words, width)), default=0.0)
        if score > best_score:
            best_name, best_score = name, score

    if best_name is None or best_score < MATCH_THRESHOLD:
        return ok(None, propertyDetected=False)
    return ok(
        None,
        propertyDetected=True,
        detectedProperty=best_name,
        propertyId=projects.get(best_name),
        confidence=round(best_score, 2),
    )


@function_tool(
    ToolName.update_active_project,
    description="Record the project the conversation is now about.",
    args=ProjectNameArgs,
    affects_display=False,
)
async def update_active_project(context: ToolContext, project_name: str):
    md = context.metadata
    pid, name = resolve_property(md, project_name)
    if not name:
        return fail(f'Project "{project_name}" is not recognized.', None)
    context.store.update(
        {"active_property_name": name, "active_property_id": pid},
        source=ToolName.update_active_project.value,
    )
    return ok(None, active_project=name, active_project_id=pid)


DISCOVERY_CATALOG_TOOLS = [
    get_project_details,
    lookup_property,
    get_property_images,
    show_property_location,
    show_property_brochure,
    calculate_route,
    find_nearest_place,
    detect_property_in_message,
    update_active_project,
]
