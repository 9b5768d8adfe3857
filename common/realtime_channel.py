# common/realtime_channel.py
from __future__ import annotations

import logging
from typing import Any, AsyncIterator, Dict, Optional, Protocol, runtime_checkable

from openai import AsyncOpenAI

from constants.realtime import WEBRTC_ONLY_EVENTS

logger = logging.getLogger("property-concierge")


@runtime_checkable
class RealtimeChannel(Protocol):
    """Ordered bidirectional event stream. Connection negotiation happens elsewhere."""

    async def send(self, event: Dict[str, Any]) -> None: ...

    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]: ...

    async def close(self) -> None: ...


class OpenAIRealtimeChannel:
    """RealtimeChannel over the OpenAI Realtime websocket (AsyncOpenAI().beta.realtime)."""

    def __init__(self, *, model: str, api_key: Optional[str] = None, client: Optional[AsyncOpenAI] = None) -> None:
        self._client = client or AsyncOpenAI(api_key=api_key)
        self._model = model
        self._manager = None
        self._conn = None

    async def open(self) -> "OpenAIRealtimeChannel":
        if self._conn is None:
            self._manager = self._client.beta.realtime.connect(model=self._model)
            self._conn = await self._manager.enter()
            logger.info("Realtime connection opened (model=%s)", self._model)
        return self

    async def send(self, event: Dict[str, Any]) -> None:
        if self._conn is None:
            raise RuntimeError("realtime channel is not open")
        if event.get("type") in WEBRTC_ONLY_EVENTS:
            logger.debug("Skipping %s on websocket transport", event.get("type"))
            return
        await self._conn.send(event)

    async def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        if self._conn is None:
            raise RuntimeError("realtime channel is not open")
        async for ev in self._conn:
            yield ev.to_dict()

    async def close(self) -> None:
        if self._manager is not None:
            try:
                await self._manager.__aexit__(None, None, None)
            finally:
                self._manager = None
                self._conn = None
                logger.info("Realtime connection closed")
