# common/transcript.py
from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from common.ui_state import should_hide_from_transcript
from common.utils import generate_safe_id
from constants.realtime import MAX_ITEM_ID_LEN
from constants.triggers import is_internal_trigger

logger = logging.getLogger("property-concierge")


class ItemStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class TranscriptItem:
    item_id: str
    role: str
    text: str = ""
    status: ItemStatus = ItemStatus.IN_PROGRESS
    agent_name: Optional[str] = None
    hidden: bool = False
    created_at_ms: int = field(default_factory=_now_ms)

    @property
    def done(self) -> bool:
        return self.status == ItemStatus.DONE

    def to_dict(self) -> dict:
        d = asdict(self)
        d["status"] = self.status.value
        return d


class Transcript:
    """
    Ordered conversation log, append/update only.
    - creating an existing id is a no-op (redelivery)
    - deltas concatenate in arrival order until the item completes
    - a completed item is frozen
    """

    def __init__(self) -> None:
        self._items: List[TranscriptItem] = []
        self._index: Dict[str, TranscriptItem] = {}
        self._aliases: Dict[str, str] = {}
        self._delta_seen: set[str] = set()

    def __len__(self) -> int:
        return len(self._items)

    # -----------------------------
    # ids
    # -----------------------------
    def local_id(self, item_id: Optional[str]) -> str:
        """Map a transport id to a bounded local id (stable for the same input)."""
        if not item_id:
            return generate_safe_id()
        if len(item_id) <= MAX_ITEM_ID_LEN:
            return item_id
        if item_id not in self._aliases:
            self._aliases[item_id] = generate_safe_id()
            logger.debug("Aliased long item id %s -> %s", item_id, self._aliases[item_id])
        return self._aliases[item_id]

    # -----------------------------
    # writes
    # -----------------------------
    def add(
        self,
        item_id: Optional[str],
        role: str,
        text: str = "",
        *,
        agent_name: Optional[str] = None,
        hidden: bool = False,
        done: bool = False,
    ) -> TranscriptItem:
        key = self.local_id(item_id)
        existing = self._index.get(key)
        if existing is not None:
            return existing
        item = TranscriptItem(
            item_id=key,
            role=role,
            text=text or "",
            status=ItemStatus.DONE if done else ItemStatus.IN_PROGRESS,
            agent_name=agent_name,
            hidden=hidden or is_internal_trigger(text),
        )
        self._items.append(item)
        self._index[key] = item
        return item

    def add_system(self, text: str, *, hidden: bool = False) -> TranscriptItem:
        return self.add(generate_safe_id(), "system", text, hidden=hidden, done=True)

    def append_delta(
        self, item_id: str, delta: str, *, role: str = "assistant", agent_name: Optional[str] = None
    ) -> Optional[TranscriptItem]:
        item = self.add(item_id, role, agent_name=agent_name)
        if item.done:
            logger.debug("Ignoring delta for completed item %s", item.item_id)
            return None
        if item.item_id not in self._delta_seen:
            # the first delta replaces any placeholder text
            item.text = ""
            self._delta_seen.add(item.item_id)
        item.text += delta or ""
        return item

    def set_text(self, item_id: str, text: str) -> Optional[TranscriptItem]:
        item = self.get(item_id)
        if item is None or item.done:
            return None
        item.text = text or ""
        if is_internal_trigger(item.text):
            item.hidden = True
        return item

    def complete(self, item_id: str, text: Optional[str] = None) -> Optional[TranscriptItem]:
        item = self.get(item_id)
        if item is None or item.done:
            return item
        if text is not None and item.item_id not in self._delta_seen:
            item.text = text
            if is_internal_trigger(text):
                item.hidden = True
        item.status = ItemStatus.DONE
        return item

    def hide(self, item_id: str) -> None:
        item = self.get(item_id)
        if item is not None:
            item.hidden = True

    # -----------------------------
    # reads
    # -----------------------------
    def get(self, item_id: Optional[str]) -> Optional[TranscriptItem]:
        if not item_id:
            return None
        return self._index.get(self._aliases.get(item_id, item_id))

    def items(self) -> List[TranscriptItem]:
        return list(self._items)

    def visible(self) -> List[TranscriptItem]:
        out = []
        for it in self._items:
            if it.hidden:
                continue
            if it.role == "user" and should_hide_from_transcript(it.text):
                continue
            out.append(it)
        return out

    def clear(self) -> None:
        self._items.clear()
        self._index.clear()
        self._aliases.clear()
        self._delta_seen.clear()
