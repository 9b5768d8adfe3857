# tools/registry.py
from __future__ import annotations

import functools
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Type

from pydantic import BaseModel, ValidationError

from common.envelope import ToolResult, UIHint, fail
from common.metadata_store import MetadataStore
from common.models import AgentName, SessionMetadata

logger = logging.getLogger("property-concierge")


class ToolName(str, Enum):
    """Every tool identifier the system knows. Anything else hits the fallback."""

    transfer_agents = "transferAgents"
    # discovery
    track_user_message = "trackUserMessage"
    detect_property_in_message = "detectPropertyInMessage"
    update_active_project = "updateActiveProject"
    get_project_details = "getProjectDetails"
    get_property_images = "getPropertyImages"
    lookup_property = "lookupProperty"
    show_property_location = "showPropertyLocation"
    show_property_brochure = "showPropertyBrochure"
    calculate_route = "calculateRoute"
    find_nearest_place = "findNearestPlace"
    initiate_scheduling = "initiateScheduling"
    complete_scheduling = "completeScheduling"
    request_verification = "requestVerification"
    # verification
    send_code = "sendCode"
    check_code = "checkCode"
    # scheduling
    get_available_slots = "getAvailableSlots"
    schedule_visit = "scheduleVisit"
    get_user_verification_status = "getUserVerificationStatus"

    @classmethod
    def parse(cls, name: Any) -> Optional["ToolName"]:
        try:
            return cls(str(name).strip())
        except ValueError:
            return None


@dataclass
class ToolContext:
    """What a tool sees: the session's metadata store and the remote service clients."""

    store: MetadataStore
    services: Any = None
    agent_name: Optional[AgentName] = None
    settings: Any = None

    def setting(self, name: str, default: Any) -> Any:
        return getattr(self.settings, name, default) if self.settings is not None else default

    @property
    def metadata(self) -> SessionMetadata:
        return self.store.metadata


Handler = Callable[..., Awaitable[Any]]


@dataclass(frozen=True)
class ToolSpec:
    name: ToolName
    description: str
    handler: Handler
    args: Optional[Type[BaseModel]] = None
    renders_locally: bool = False
    affects_display: bool = True

    def definition(self) -> Dict[str, Any]:
        """Realtime-session function schema."""
        if self.args is not None:
            schema = self.args.model_json_schema()
            params = {
                "type": "object",
                "properties": schema.get("properties", {}),
                "required": schema.get("required", []),
                "additionalProperties": False,
            }
            if "$defs" in schema:
                params["$defs"] = schema["$defs"]
        else:
            params = {"type": "object", "properties": {}, "required": [], "additionalProperties": False}
        return {"type": "function", "name": self.name.value, "description": self.description, "parameters": params}


def function_tool(
    name: ToolName | str,
    *,
    description: str = "",
    args: Optional[Type[BaseModel]] = None,
    renders_locally: bool = False,
    affects_display: bool = True,
):
    """Register an async `(context, **kwargs) -> ToolResult` function as a tool."""

    tool_name = name if isinstance(name, ToolName) else ToolName(name)

    def deco(fn: Handler):
        @functools.wraps(fn)
        async def wrapper(context: ToolContext, **kwargs):
            return await fn(context, **kwargs)

        wrapper.tool_spec = ToolSpec(  # type: ignore[attr-defined]
            name=tool_name,
            description=description or (fn.__doc__ or "").strip(),
            handler=wrapper,
            args=args,
            renders_locally=renders_locally,
            affects_display=affects_display,
        )
        return wrapper

    return deco


def spec_of(tool: Any) -> ToolSpec:
    if isinstance(tool, ToolSpec):
        return tool
    spec = getattr(tool, "tool_spec", None)
    if not isinstance(spec, ToolSpec):
        raise TypeError(f"{tool!r} is not a registered tool")
    return spec


def parse_arguments(raw: Any) -> Dict[str, Any]:
    if raw is None or raw == "":
        return {}
    if isinstance(raw, dict):
        return raw
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError("tool arguments must be a JSON object")
    return data


class ToolRegistry:
    """
    Per-agent map from ToolName to handler.
    - own tools are executed
    - every other known tool answers with a harmless logged no-op
    - unknown names take the same total fallback instead of "not found"
    """

    def __init__(self, owner: str, tools: Iterable[Any], *, default_hint: UIHint = UIHint.CHAT) -> None:
        self.owner = owner
        self.default_hint = default_hint
        self._specs: Dict[ToolName, ToolSpec] = {}
        for t in tools:
            spec = spec_of(t)
            if spec.name in self._specs:
                continue
            self._specs[spec.name] = spec
        logger.info("Tools for %s: %s", owner, [n.value for n in self._specs])

    def __contains__(self, name: Any) -> bool:
        tool = ToolName.parse(name)
        return tool is not None and tool in self._specs

    def names(self) -> List[str]:
        return [n.value for n in self._specs]

    def spec(self, name: Any) -> Optional[ToolSpec]:
        tool = ToolName.parse(name)
        return self._specs.get(tool) if tool else None

    def definitions(self) -> List[Dict[str, Any]]:
        return [s.definition() for s in self._specs.values()]

    async def invoke(self, name: str, raw_arguments: Any, ctx: ToolContext) -> ToolResult:
        """Run a tool. Never raises: every failure becomes an error envelope."""
        spec = self.spec(name)
        if spec is None:
            return self._fallback(name)

        try:
            kwargs = parse_arguments(raw_arguments)
        except ValueError as e:
            logger.warning("[%s] bad arguments for %s: %s", self.owner, name, e)
            return fail(
                f"Invalid arguments for {name}.",
                "Sorry, I couldn't process that request. Could you say it again?",
                self.default_hint,
            )

        if spec.args is not None:
            try:
                kwargs = spec.args.model_validate(kwargs).model_dump()
            except ValidationError as e:
                logger.warning("[%s] argument validation failed for %s: %s", self.owner, name, e.errors())
                return fail(
                    f"Invalid arguments for {name}.",
                    "Some details were missing or malformed. Could you provide them again?",
                    self.default_hint,
                )
        else:
            kwargs = {}

        try:
            result = await spec.handler(ctx, **kwargs)
        except Exception as e:  # noqa: BLE001
            logger.exception("[%s] tool %s raised", self.owner, name)
            return fail(
                f"{name} failed: {type(e).__name__}",
                "Something went wrong on my side. Please try again in a moment.",
                self.default_hint,
            )
        return coerce_result(result)

    def _fallback(self, name: str) -> ToolResult:
        known = ToolName.parse(name)
        if known is not None:
            logger.warning("[%s] foreign tool %s called; answering with no-op", self.owner, name)
            error = f"{name} is not available for the {self.owner} agent."
        else:
            logger.warning("[%s] unknown tool %r called; answering with no-op", self.owner, name)
            error = f"Unknown tool {name!r}."
        return fail(
            error,
            None,
            self.default_hint,
            suggested_action="Use one of your own tools or transferAgents.",
        )


def coerce_result(result: Any) -> ToolResult:
    if isinstance(result, ToolResult):
        return result
    if isinstance(result, dict):
        return ToolResult.model_validate(result)
    if isinstance(result, str):
        return ToolResult(success=True, message=result)
    if result is None:
        return ToolResult(success=True)
    return ToolResult(success=True, message=str(result))
