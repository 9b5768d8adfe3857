from __future__ import annotations
import logging
import json
from typing import Any, Optional

__all__ = ["EventLogger", "truncate"]


def truncate(s: Any, limit: int = 4000) -> str:
    """Safely truncate long values for logs (keeps unicode; appends ellipsis)."""
    if not isinstance(s, str):
        try:
            s = json.dumps(s, ensure_ascii=False, default=str)
        except Exception:
            s = str(s)
    return s if len(s) <= limit else (s[:limit] + " …[truncated]")


class EventLogger:
    """High-signal logging for realtime traffic, tool calls and agent hand-offs."""

    # noisy frames that only go to DEBUG
    _QUIET = {
        "response.audio.delta",
        "response.audio_transcript.delta",
        "response.text.delta",
        "input_audio_buffer.append",
    }

    def __init__(self, logger: logging.Logger, session_id: str):
        self._log = logger
        self._sid = session_id

    def rebind(self, session_id: str) -> None:
        self._sid = session_id

    def inbound(self, event: dict):
        etype = event.get("type", "?")
        if etype in self._QUIET:
            self._log.debug("IN  | session=%s type=%s", self._sid, etype)
            return
        self._log.info("IN  | session=%s type=%s", self._sid, etype)
        self._log.debug("IN BODY | session=%s %s", self._sid, truncate(event, 2000))

    def outbound(self, event: dict):
        etype = event.get("type", "?")
        if etype in self._QUIET:
            self._log.debug("OUT | session=%s type=%s", self._sid, etype)
            return
        self._log.info("OUT | session=%s type=%s", self._sid, etype)
        self._log.debug("OUT BODY | session=%s %s", self._sid, truncate(event, 2000))

    def tool_call(self, agent: str, name: str, call_id: str, arguments: Any):
        self._log.info("TOOL CALL   | session=%s agent=%s tool=%s call_id=%s", self._sid, agent, name, call_id)
        self._log.debug("TOOL ARGS   | session=%s %s", self._sid, truncate(arguments))

    def tool_result(self, agent: str, name: str, call_id: str, payload: dict):
        self._log.info(
            "TOOL RESULT | session=%s agent=%s tool=%s call_id=%s success=%s hint=%s dest=%s",
            self._sid,
            agent,
            name,
            call_id,
            payload.get("success"),
            payload.get("ui_display_hint"),
            payload.get("destination_agent"),
        )
        self._log.debug("TOOL BODY   | session=%s %s", self._sid, truncate(payload))

    def transfer(self, source: str, destination: str, silent: bool, accepted: bool, reason: Optional[str] = None):
        self._log.info(
            "TRANSFER    | session=%s %s -> %s silent=%s accepted=%s reason=%s",
            self._sid,
            source,
            destination,
            silent,
            accepted,
            reason,
        )
