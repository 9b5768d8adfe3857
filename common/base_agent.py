# common/base_agent.py
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field

from common.envelope import ToolResult, UIHint, fail, transfer_to
from common.models import AgentName, SessionMetadata
from tools.registry import ToolContext, ToolName, ToolRegistry, function_tool, spec_of

logger = logging.getLogger("property-concierge")

ALREADY_VERIFIED_MESSAGE = "You are already verified. How can I help you with property information?"


def _resolved_tool_name(fn: Any) -> str:
    """Public name of a tool (unwrap if decorated)."""
    try:
        return spec_of(fn).name.value
    except TypeError:
        target = getattr(fn, "__wrapped__", fn)
        return getattr(target, "__name__", str(target))


class TransferArgs(BaseModel):
    destination_agent: str = Field(description="Agent to hand the conversation to")
    reason: Optional[str] = Field(default=None, description="Short reason for the hand-off")


class BaseAgent:
    """
    Base class for all agents.
    - Adds the universal transfer tool:
        * transferAgents(destination_agent, reason?) -> hand-off restricted to `downstream`
    - Refuses transfer to verification when the user is already verified
    - Avoids duplicate tool names; every other known tool name answers with a no-op
    - `instructions(metadata)` is pure: same metadata, same text
    """

    name: AgentName = AgentName.discovery
    label: str = "Assistant"
    downstream: FrozenSet[AgentName] = frozenset()
    default_hint: UIHint = UIHint.CHAT
    entry_display: Optional[UIHint] = None
    greets_on_connect: bool = False

    def __init__(self, *, tools: List[Callable[..., Any]] | None = None) -> None:
        tool_list: List[Callable[..., Any]] = list(tools or [])

        # The transfer tool is provided universally
        tool_list = [t for t in tool_list if _resolved_tool_name(t) != ToolName.transfer_agents.value]

        # -----------------------------
        # TRANSFER (universal)
        # -----------------------------
        @function_tool(
            ToolName.transfer_agents,
            description=self._transfer_description(),
            args=TransferArgs,
        )
        async def transfer_agents(context: ToolContext, destination_agent: str, reason: Optional[str] = None):
            return self._transfer_impl(context, destination_agent, reason)

        tool_list.append(transfer_agents)

        self.registry = ToolRegistry(self.name.value, tool_list, default_hint=self.default_hint)

    # -----------------------------
    # Contract
    # -----------------------------
    def instructions(self, metadata: SessionMetadata) -> str:
        raise NotImplementedError

    def entry_trigger(self, metadata: SessionMetadata) -> Optional[str]:
        """Hidden utterance that makes this agent speak first after a transfer."""
        return None

    @property
    def tools(self) -> List[str]:
        return self.registry.names()

    def tool_definitions(self) -> List[Dict[str, Any]]:
        return self.registry.definitions()

    async def invoke(self, tool_name: str, arguments: Any, ctx: ToolContext) -> ToolResult:
        ctx.agent_name = self.name
        return await self.registry.invoke(tool_name, arguments, ctx)

    def session_update(self, metadata: SessionMetadata) -> Dict[str, Any]:
        return {
            "instructions": self.instructions(metadata),
            "tools": self.tool_definitions(),
            "tool_choice": "auto",
        }

    # -----------------------------
    # Transfer helper
    # -----------------------------
    def _transfer_description(self) -> str:
        names = ", ".join(sorted(a.value for a in self.downstream)) or "none"
        return f"Hand the conversation to another agent. Allowed destinations: {names}."

    def _transfer_impl(self, context: ToolContext, destination: str, reason: Optional[str]) -> ToolResult:
        target = AgentName.parse(destination)
        if target is None or target not in self.downstream:
            logger.warning("[%s] refused transfer to %r", self.name.value, destination)
            return fail(
                f"Cannot transfer to '{destination}'.",
                "Let's continue here. What would you like to know?",
                None,
            )
        if target == self.name:
            return fail("Already with this agent.", None, None)
        if target == AgentName.verification and context.metadata.is_verified:
            logger.info("[%s] transfer to verification refused: already verified", self.name.value)
            return fail("Already verified", ALREADY_VERIFIED_MESSAGE, None)
        return transfer_to(target, silent=False, message=f"Transferring you to our {target.value} assistant.",
                           reason=reason, came_from=self.name.value)
