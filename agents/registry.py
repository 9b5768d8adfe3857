## agents/registry.py`
from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional

from agents.discovery import Discovery
from agents.scheduling import Scheduling
from agents.verification import Verification
from common.base_agent import BaseAgent
from common.models import AgentName

logger = logging.getLogger("property-concierge")


class AgentRegistry:
    """Agents by name plus the active/previous pointers the orchestrator moves."""

    def __init__(self, agents: Iterable[BaseAgent], *, initial: AgentName = AgentName.discovery) -> None:
        self._agents: Dict[AgentName, BaseAgent] = {a.name: a for a in agents}
        if initial not in self._agents:
            raise ValueError(f"initial agent {initial.value!r} is not registered")
        self._active = initial
        self._previous: Optional[AgentName] = None

    def __contains__(self, name) -> bool:
        return AgentName.parse(name) in self._agents

    def get(self, name) -> Optional[BaseAgent]:
        key = AgentName.parse(name)
        return self._agents.get(key) if key else None

    @property
    def active(self) -> BaseAgent:
        return self._agents[self._active]

    @property
    def active_name(self) -> AgentName:
        return self._active

    @property
    def previous_name(self) -> Optional[AgentName]:
        return self._previous

    def activate(self, name: AgentName) -> BaseAgent:
        if name not in self._agents:
            raise KeyError(name)
        if name != self._active:
            self._previous = self._active
            self._active = name
            logger.info("Active agent: %s (previous %s)", name.value, self._previous.value)
        return self._agents[name]

    def reset(self, initial: AgentName = AgentName.discovery) -> None:
        self._active = initial
        self._previous = None


def build_agents() -> AgentRegistry:
    return AgentRegistry([Discovery(), Verification(), Scheduling()])
