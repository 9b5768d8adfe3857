# common/pipeline.py
from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from common.config_loader import Settings
from common.envelope import ToolResult, UIHint, transfer_to
from common.metadata_store import MetadataStore
from common.models import AgentName, FlowContext
from common.transcript import Transcript
from common.transfer import TransferCoordinator, TransferOutcome
from common.ui_state import UIStateMachine, should_hide_from_transcript
from common.utils import generate_safe_id, is_real_user_question
from constants.triggers import TRANSCRIBING_PLACEHOLDER
from tools.registry import ToolContext
from utils.logger import EventLogger

logger = logging.getLogger("property-concierge")

CONNECTION_LOST_NOTICE = "Connection lost. Please reconnect to continue."


class EventPipeline:
    """
    Single consumer of everything that happens in a session.

    - realtime events from the channel and local frames (tool results, user
      text, timers) share one asyncio.Queue and are handled strictly in order
    - a failing handler is logged and the loop continues
    - tool calls run in background tasks and come back as `local.tool_result`
    - every call_id executes at most once and its result is applied at most once
    """

    def __init__(
        self,
        *,
        channel,
        agents,
        store: MetadataStore,
        services: Any = None,
        settings: Optional[Settings] = None,
        transcript: Optional[Transcript] = None,
        ui: Optional[UIStateMachine] = None,
        history=None,
        event_logger: Optional[EventLogger] = None,
    ) -> None:
        self.channel = channel
        self.agents = agents
        self.store = store
        self.services = services
        self.settings = settings or Settings()
        self.transcript = transcript or Transcript()
        self.ui = ui or UIStateMachine(
            verification_success_revert_s=self.settings.verification_success_revert_s,
            booking_confirmation_revert_s=self.settings.booking_confirmation_revert_s,
        )
        self.transfers = TransferCoordinator(agents, store, default_language=self.settings.default_language)
        self.history = history
        self.events = event_logger or EventLogger(logger, store.metadata.session_id or "-")

        self._queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()
        self._consumer_task: Optional[asyncio.Task] = None
        self._reader_task: Optional[asyncio.Task] = None
        # tool runs and settle delays (awaited by wait_idle)
        self._pending: Set[asyncio.Task] = set()
        # UI reverts and submit timeouts (never awaited)
        self._timers: Set[asyncio.Task] = set()

        self._seen_calls: Set[str] = set()
        self._applied_calls: Set[str] = set()
        self._local_calls: Set[str] = set()

        self.connected = False
        self.response_active = False
        self._closed_notice = False
        self._section_agent: AgentName = agents.active_name

        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[None]]] = {
            "session.created": self._on_session,
            "session.updated": self._on_session,
            "conversation.item.created": self._on_item_created,
            "conversation.item.input_audio_transcription.completed": self._on_transcription,
            "response.created": self._on_response_created,
            "response.done": self._on_response_finished,
            "response.cancelled": self._on_response_finished,
            "response.audio_transcript.delta": self._on_delta,
            "response.text.delta": self._on_delta,
            "response.audio_transcript.done": self._on_delta_done,
            "response.text.done": self._on_delta_done,
            "response.output_item.done": self._on_output_item_done,
            "response.function_call_arguments.done": self._on_arguments_done,
            "error": self._on_error,
            # local frames
            "local.send": self._on_local_send,
            "local.tool_result": self._on_tool_result,
            "local.user_text": self._on_user_text,
            "local.replay_pending": self._on_replay_pending,
            "local.ui_revert": self._on_ui_revert,
            "local.submit_timeout": self._on_submit_timeout,
            "local.transport_closed": self._on_transport_closed,
        }

    # -----------------------------
    # lifecycle
    # -----------------------------
    def start(self) -> None:
        if self._consumer_task is not None:
            return
        self.connected = True
        self._closed_notice = False
        self._consumer_task = asyncio.create_task(self._consume(), name="pipeline-consumer")
        self._reader_task = asyncio.create_task(self._read(), name="pipeline-reader")

    async def stop(self) -> None:
        self.connected = False
        for task in (self._reader_task, *self._timers, *self._pending):
            if task is not None and not task.done():
                task.cancel()
        for task in (self._reader_task, *self._timers, *self._pending):
            if task is not None:
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await task
        self._timers.clear()
        self._pending.clear()
        self._reader_task = None
        if self._consumer_task is not None:
            self._consumer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._consumer_task
            self._consumer_task = None

    def submit(self, event: Dict[str, Any]) -> None:
        self._queue.put_nowait(event)

    def schedule(self, delay: float, event: Dict[str, Any], *, idle: bool = False) -> asyncio.Task:
        """Enqueue `event` after `delay` seconds. idle=True makes wait_idle() wait for it."""

        async def _later():
            await asyncio.sleep(max(0.0, delay))
            self._queue.put_nowait(event)

        task = asyncio.create_task(_later())
        bucket = self._pending if idle else self._timers
        bucket.add(task)
        task.add_done_callback(bucket.discard)
        return task

    async def wait_idle(self) -> None:
        """Return once the queue is drained and no tool run or settle delay is outstanding."""
        while True:
            await self._queue.join()
            pending = [t for t in self._pending if not t.done()]
            if not pending and self._queue.empty():
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def _read(self) -> None:
        error: Optional[str] = None
        try:
            async for event in self.channel:
                self._queue.put_nowait(event)
        except asyncio.CancelledError:
            raise
        except Exception as e:  # noqa: BLE001
            logger.exception("Realtime channel failed")
            error = str(e)
        self._queue.put_nowait({"type": "local.transport_closed", "error": error})

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._dispatch(event)
            except Exception:
                logger.exception("Handling %s failed; continuing", event.get("type"))
            finally:
                self._queue.task_done()

    async def _dispatch(self, event: Dict[str, Any]) -> None:
        etype = event.get("type", "")
        if etype.startswith("local."):
            logger.debug("LOCAL | %s", etype)
        else:
            self.events.inbound(event)
        handler = self._handlers.get(etype)
        if handler is None:
            return
        await handler(event)

    # -----------------------------
    # outbound
    # -----------------------------
    async def _send(self, event: Dict[str, Any]) -> None:
        if not self.connected:
            logger.debug("Dropping %s: not connected", event.get("type"))
            return
        self.events.outbound(event)
        try:
            await self.channel.send(event)
        except Exception as e:  # noqa: BLE001
            logger.error("Send of %s failed: %s", event.get("type"), e)
            self.connected = False
            self._queue.put_nowait({"type": "local.transport_closed", "error": str(e)})

    async def _cancel_response(self) -> None:
        if self.response_active:
            await self._send({"type": "response.cancel"})
            self.response_active = False
        await self._send({"type": "output_audio_buffer.clear"})

    async def _send_output(self, call_id: str, result: ToolResult) -> None:
        await self._send({
            "type": "conversation.item.create",
            "item": {"type": "function_call_output", "call_id": call_id, "output": result.to_json()},
        })

    async def _send_user_text(self, text: str, *, hidden: bool = False) -> None:
        item_id = generate_safe_id()
        self.transcript.add(item_id, "user", text, hidden=hidden, done=True)
        await self._send({
            "type": "conversation.item.create",
            "item": {
                "id": item_id,
                "type": "message",
                "role": "user",
                "content": [{"type": "input_text", "text": text}],
            },
        })
        self._notify_history()

    # -----------------------------
    # transcript helpers
    # -----------------------------
    def _mark_section(self) -> None:
        """Visible marker before the first assistant message of a newly active agent."""
        active = self.agents.active_name
        if active == self._section_agent:
            return
        self._section_agent = active
        self.transcript.add_system(f"--- {self.agents.active.label} ---")

    def _assistant_item(self, item_id: Optional[str], text: str = "", *, done: bool = False):
        if self.transcript.get(item_id) is None:
            self._mark_section()
        return self.transcript.add(item_id, "assistant", text, agent_name=self.agents.active_name.value, done=done)

    def _notify_history(self) -> None:
        if self.history is not None:
            self.history.notify()

    # -----------------------------
    # realtime handlers
    # -----------------------------
    async def _on_session(self, event: Dict[str, Any]) -> None:
        if event.get("type") == "session.created":
            logger.info("Realtime session created (agent=%s)", self.agents.active_name.value)

    async def _on_item_created(self, event: Dict[str, Any]) -> None:
        item = event.get("item") or {}
        itype = item.get("type")
        item_id = item.get("id")
        if itype == "function_call_output":
            if item.get("call_id") in self._local_calls:
                logger.debug("Echo of locally rendered %s suppressed", item.get("call_id"))
            return
        if itype != "message":
            return
        role = item.get("role")
        text = _content_text(item.get("content") or [])
        if role == "user":
            if self.transcript.get(item_id) is not None:
                return
            self.transcript.add(item_id, "user", text or TRANSCRIBING_PLACEHOLDER)
        elif role == "assistant":
            self._assistant_item(item_id, text)

    async def _on_transcription(self, event: Dict[str, Any]) -> None:
        item_id = event.get("item_id")
        text = (event.get("transcript") or "").strip()
        if self.transcript.get(item_id) is None:
            self.transcript.add(item_id, "user", text)
        else:
            self.transcript.set_text(item_id, text)
        item = self.transcript.complete(item_id, text)
        if not text:
            if item is not None:
                self.transcript.hide(item.item_id)
            return
        self._notify_history()
        await self._maybe_question_auth(text)

    async def _on_response_created(self, event: Dict[str, Any]) -> None:
        self.response_active = True

    async def _on_response_finished(self, event: Dict[str, Any]) -> None:
        self.response_active = False

    async def _on_delta(self, event: Dict[str, Any]) -> None:
        item_id = event.get("item_id")
        if self.transcript.get(item_id) is None:
            self._mark_section()
        self.transcript.append_delta(item_id, event.get("delta") or "", agent_name=self.agents.active_name.value)

    async def _on_delta_done(self, event: Dict[str, Any]) -> None:
        item_id = event.get("item_id")
        text = event.get("transcript") if "transcript" in event else event.get("text")
        if self.transcript.get(item_id) is None:
            self._assistant_item(item_id, text or "")
        self.transcript.complete(item_id, text)
        self._notify_history()

    async def _on_output_item_done(self, event: Dict[str, Any]) -> None:
        item = event.get("item") or {}
        if item.get("type") != "function_call":
            return
        self._schedule_tool(item.get("call_id"), item.get("name"), item.get("arguments"))

    async def _on_arguments_done(self, event: Dict[str, Any]) -> None:
        self._schedule_tool(event.get("call_id"), event.get("name"), event.get("arguments"))

    async def _on_error(self, event: Dict[str, Any]) -> None:
        err = event.get("error") or {}
        logger.warning("Realtime error: %s (%s)", err.get("message"), err.get("code") or err.get("type"))

    # -----------------------------
    # tools
    # -----------------------------
    def _schedule_tool(self, call_id: Optional[str], name: Optional[str], arguments: Any) -> None:
        if not call_id or not name:
            logger.warning("Function call without call_id/name ignored")
            return
        if call_id in self._seen_calls:
            logger.debug("Duplicate function call %s ignored", call_id)
            return
        self._seen_calls.add(call_id)
        agent = self.agents.active
        self.events.tool_call(agent.name.value, name, call_id, arguments)
        task = asyncio.create_task(self._run_tool(agent, call_id, name, arguments), name=f"tool-{name}")
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run_tool(self, agent, call_id: str, name: str, arguments: Any) -> None:
        ctx = ToolContext(store=self.store, services=self.services, agent_name=agent.name, settings=self.settings)
        before = agent.instructions(self.store.metadata)
        result = await agent.invoke(name, arguments, ctx)
        spec = agent.registry.spec(name)
        self._queue.put_nowait({
            "type": "local.tool_result",
            "call_id": call_id,
            "name": name,
            "agent": agent.name.value,
            "result": result,
            "renders_locally": bool(spec and spec.renders_locally),
            "affects_display": bool(spec and spec.affects_display),
            "instructions": before,
        })

    async def _on_tool_result(self, event: Dict[str, Any]) -> None:
        call_id = event["call_id"]
        if call_id in self._applied_calls:
            logger.debug("Result for %s already applied", call_id)
            return
        self._applied_calls.add(call_id)

        name = event.get("name", "")
        result: ToolResult = event["result"]
        self.events.tool_result(event.get("agent", "?"), name, call_id, result.to_output())
        self.ui.finish_submit_for_tool(name)

        if result.is_transfer:
            await self._apply_transfer(call_id, result, AgentName.parse(event.get("agent")))
            return

        if self.ui.apply_result(result, affects_display=event.get("affects_display", True)):
            self._schedule_revert()
        if event.get("renders_locally") and result.message:
            self._assistant_item(generate_safe_id(), result.message, done=True)
            self._local_calls.add(call_id)
            self._notify_history()
        await self._send_output(call_id, result)
        if event.get("agent") == self.agents.active_name.value:
            await self._refresh_instructions(event.get("instructions"))
        await self._send({"type": "response.create"})

    async def _refresh_instructions(self, before: Optional[str]) -> None:
        """Re-send the active agent's instructions when the metadata behind them changed."""
        agent = self.agents.active
        md = self.store.metadata
        if before is None or agent.instructions(md) == before:
            return
        await self._send({"type": "session.update", "session": agent.session_update(md)})

    async def _apply_transfer(self, call_id: str, result: ToolResult, source: Optional[AgentName]) -> None:
        outcome = self.transfers.transfer(result, source=source)
        self.events.transfer(
            (source or self.agents.active_name).value,
            str(result.destination_agent),
            result.silent_transfer,
            outcome.accepted,
        )
        if not outcome.accepted:
            await self._send_output(call_id, outcome.refusal)
            await self._send({"type": "response.create"})
            return

        await self._send_output(call_id, result)
        if outcome.message:
            self._assistant_item(generate_safe_id(), outcome.message, done=True)
            self._local_calls.add(call_id)
        await self._switch_agent(outcome, result)

    async def _switch_agent(self, outcome: TransferOutcome, result: Optional[ToolResult] = None) -> None:
        await self._cancel_response()
        self.ui.on_agent_switch(outcome.destination)
        # an explicit hint on the transferring result wins over the agent's form
        if result is not None and result.hint is not None:
            self.ui.apply_result(result)
        self._schedule_revert()

        agent = self.agents.active
        await self._send({"type": "session.update", "session": agent.session_update(self.store.metadata)})

        if outcome.pending_question:
            self.schedule(self.settings.settle_delay_s, {"type": "local.replay_pending"}, idle=True)
        elif outcome.entry_trigger:
            await self._send_user_text(outcome.entry_trigger, hidden=True)
            await self._send({"type": "response.create"})
        else:
            await self._send({"type": "response.create"})
        self._notify_history()

    # -----------------------------
    # question counting
    # -----------------------------
    async def _maybe_question_auth(self, text: str) -> bool:
        """Count a real Discovery question; at the threshold hand over to Verification."""
        md = self.store.metadata
        if self.agents.active_name != AgentName.discovery or md.is_verified:
            return False
        if should_hide_from_transcript(text) or not is_real_user_question(text, question_count=md.user_question_count):
            return False
        before = self.agents.active.instructions(md)
        count = md.user_question_count + 1
        self.store.update({"user_question_count": count}, source="question-counter")
        threshold = self.settings.auth_question_threshold
        if count < threshold or md.flow_context == FlowContext.from_question_auth:
            await self._refresh_instructions(before)
            return False

        logger.info("Question threshold reached (%s); asking for verification", count)
        request = transfer_to(
            AgentName.verification,
            silent=True,
            hint=UIHint.VERIFICATION_FORM,
            flow_context=FlowContext.from_question_auth.value,
            pending_question=text,
            came_from=AgentName.discovery.value,
        )
        outcome = self.transfers.transfer(request, source=AgentName.discovery)
        self.events.transfer(AgentName.discovery.value, AgentName.verification.value, True, outcome.accepted,
                             "question threshold")
        if not outcome.accepted:
            return False
        await self._switch_agent(outcome, request)
        return True

    # -----------------------------
    # local frames
    # -----------------------------
    async def _on_local_send(self, event: Dict[str, Any]) -> None:
        await self._send(event["event"])

    async def _on_user_text(self, event: Dict[str, Any]) -> None:
        text = (event.get("text") or "").strip()
        if not text:
            return
        action = event.get("action")
        if action:
            token = event.get("token")
            if token is None:
                token = self.ui.begin_submit(action)
            if token is None:
                logger.info("Submit of %s already in flight; ignoring", action)
                return
            self.schedule(self.settings.submit_timeout_s, {"type": "local.submit_timeout", "action": action, "token": token})
        if event.get("notice"):
            self.transcript.add_system(event["notice"])

        hidden = bool(event.get("hidden"))
        await self._cancel_response()
        await self._send_user_text(text, hidden=hidden)
        if not hidden and await self._maybe_question_auth(text):
            return
        await self._send({"type": "response.create"})

    async def _on_replay_pending(self, event: Dict[str, Any]) -> None:
        md = self.store.metadata
        question = md.pending_question
        if not question or self.agents.active_name != AgentName.discovery:
            return
        self.store.update({"pending_question": None}, source="pending-replay")
        logger.info("Replaying pending question after verification")
        await self._cancel_response()
        await self._send_user_text(question, hidden=True)
        await self._send({"type": "response.create"})

    async def _on_ui_revert(self, event: Dict[str, Any]) -> None:
        self.ui.revert(event.get("generation", -1))

    async def _on_submit_timeout(self, event: Dict[str, Any]) -> None:
        self.ui.expire_submit(event.get("action", ""), event.get("token", -1))

    async def _on_transport_closed(self, event: Dict[str, Any]) -> None:
        self.connected = False
        self.response_active = False
        if self._closed_notice:
            return
        self._closed_notice = True
        if event.get("error"):
            logger.warning("Transport closed: %s", event["error"])
        self.transcript.add_system(CONNECTION_LOST_NOTICE)

    def _schedule_revert(self) -> None:
        delay = self.ui.revert_delay()
        if delay is not None:
            self.schedule(delay, {"type": "local.ui_revert", "generation": self.ui.generation})


def _content_text(parts) -> str:
    out = []
    for part in parts:
        if not isinstance(part, dict):
            continue
        ptype = part.get("type")
        if ptype in ("input_text", "text"):
            out.append(part.get("text") or "")
        elif ptype in ("input_audio", "audio"):
            out.append(part.get("transcript") or "")
    return "".join(out)
