# common/transfer.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from common.base_agent import ALREADY_VERIFIED_MESSAGE
from common.envelope import ToolResult, fail
from common.metadata_store import MetadataConflictError, MetadataStore
from common.models import AgentName
from common.utils import CONFLICT_ERROR, CONFLICT_MESSAGE

logger = logging.getLogger("property-concierge")


@dataclass
class TransferOutcome:
    accepted: bool
    source: AgentName
    destination: Optional[AgentName] = None
    silent: bool = True
    message: Optional[str] = None
    instructions: Optional[str] = None
    entry_trigger: Optional[str] = None
    pending_question: Optional[str] = None
    refusal: Optional[ToolResult] = None


class TransferCoordinator:
    """
    Applies a transfer request carried by a tool result:
      1) resolve + guard the destination (known, not self, downstream, not verification when verified)
      2) merge forwarded fields into the one metadata record (fails closed on id conflicts)
      3) activate the destination and regenerate its instructions
    """

    def __init__(self, agents, store: MetadataStore, *, default_language: str = "English") -> None:
        self.agents = agents
        self.store = store
        self.default_language = default_language

    def transfer(self, result: ToolResult, *, source: Optional[AgentName] = None) -> TransferOutcome:
        src = source or self.agents.active_name
        src_agent = self.agents.get(src)
        dest = AgentName.parse(result.destination_agent)

        if dest is None or self.agents.get(dest) is None:
            return self._refuse(src, f"Unknown agent '{result.destination_agent}'.", None)
        if dest == src:
            return self._refuse(src, "Already with this agent.", None)
        if src_agent is not None and dest not in src_agent.downstream:
            return self._refuse(src, f"Transfer from {src.value} to {dest.value} is not allowed.", None)
        if dest == AgentName.verification and self.store.metadata.is_verified:
            return self._refuse(src, "Already verified", ALREADY_VERIFIED_MESSAGE)

        forwarded = result.forwarded_fields()
        try:
            self.store.update(forwarded, source=f"transfer:{src.value}->{dest.value}")
        except MetadataConflictError as e:
            logger.error("Transfer %s -> %s rejected: %s", src.value, dest.value, e)
            return self._refuse(src, CONFLICT_ERROR, CONFLICT_MESSAGE)
        self.store.ensure_language(self.default_language)

        agent = self.agents.activate(dest)
        md = self.store.metadata
        pending = md.pending_question if dest == AgentName.discovery and md.is_verified else None
        outcome = TransferOutcome(
            accepted=True,
            source=src,
            destination=dest,
            silent=result.silent_transfer,
            message=None if result.silent_transfer else result.message,
            instructions=agent.instructions(md),
            entry_trigger=None if pending else agent.entry_trigger(md),
            pending_question=pending,
        )
        logger.info("Transferred %s -> %s (silent=%s, fields=%s)", src.value, dest.value, outcome.silent,
                    sorted(forwarded))
        return outcome

    @staticmethod
    def _refuse(src: AgentName, error: str, message: Optional[str]) -> TransferOutcome:
        logger.warning("Transfer refused from %s: %s", src.value, error)
        return TransferOutcome(accepted=False, source=src, refusal=fail(error, message, None))
