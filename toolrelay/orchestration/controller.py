# toolrelay/orchestration/controller.py
from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from toolrelay.core.errors import describe_upstream_error
from toolrelay.core.metrics import ROUNDS, STREAMS, TRUNCATED_CALLS
from toolrelay.orchestration.call_guard import CallGuard, GuardDecision
from toolrelay.orchestration.context_router import RoutingStatus
from toolrelay.orchestration.stream_handlers import DeltaAccumulator
from toolrelay.orchestration.tool_runtime import ProgressCallback, ToolDispatcher
from toolrelay.orchestration.types import AssistantTurn, ChatMessage, EngineLimits, ToolInvocation
from toolrelay.providers.base import Provider
from toolrelay.wire.events import (
    ContentEvent,
    DoneEvent,
    ErrorEvent,
    StatusEvent,
    ToolCallEvent,
    ToolProgressEvent,
    ToolResultEvent,
    WireEvent,
)

log = logging.getLogger("app.engine")

LIMIT_NOTICE = (
    "\n\nI reached the maximum number of tool rounds for this request, so I'm stopping here. "
    "Ask me to continue if you need more."
)
ABORT_NOTICE = "Request was aborted, please try again later."

_END = object()


class IterationState:
    """Everything one request mutates: round counter, history and the call ledgers."""

    def __init__(self, messages: Sequence[ChatMessage], limits: EngineLimits) -> None:
        self.round = 0
        self.history: List[ChatMessage] = list(messages)
        self.guard = CallGuard(limits.duplicate_call_limit, limits.tool_call_caps)

    def append(self, message: ChatMessage) -> None:
        self.history.append(message)


class IterationController:
    """Drive the ask model -> run tools -> feed results back loop for one request.

    ``run`` yields wire events; the last one is always a single DoneEvent,
    whichever way the loop ended (answer, round limit, error or cancellation).
    """

    def __init__(
        self,
        provider: Provider,
        dispatcher: ToolDispatcher,
        *,
        model: str,
        limits: Optional[EngineLimits] = None,
        temperature: Optional[float] = None,
        forced_tool: Optional[str] = None,
        status: Optional[RoutingStatus] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        self.provider = provider
        self.dispatcher = dispatcher
        self.model = model
        self.limits = limits or EngineLimits()
        self.temperature = temperature
        self.forced_tool = forced_tool
        self.status = status
        self.cancel_event = cancel_event or asyncio.Event()
        self.state: Optional[IterationState] = None
        self.outcome: Optional[str] = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._content: List[str] = []

    @property
    def output_text(self) -> str:
        return "".join(self._content)

    async def run(self, messages: Sequence[ChatMessage]) -> AsyncIterator[WireEvent]:
        if self.state is not None:
            raise RuntimeError("an IterationController serves exactly one request")
        self.state = IterationState(messages, self.limits)
        producer = asyncio.create_task(self._produce())
        cancel_wait = asyncio.create_task(self.cancel_event.wait())
        try:
            while True:
                getter = asyncio.ensure_future(self._queue.get())
                done, _ = await asyncio.wait({getter, cancel_wait}, return_when=asyncio.FIRST_COMPLETED)
                if cancel_wait in done:
                    if getter.done():
                        item = getter.result()
                        if item is not _END:
                            yield item
                    else:
                        getter.cancel()
                    await self._abort(producer)
                    yield self._content_event(ABORT_NOTICE)
                    break
                item = getter.result()
                if item is _END:
                    break
                yield item
        finally:
            producer.cancel()
            cancel_wait.cancel()
        log.info({"event": "engine.finished", "outcome": self.outcome, "rounds": self.state.round})
        STREAMS.labels(outcome=self.outcome or "completed").inc()
        yield DoneEvent()

    async def _abort(self, producer: asyncio.Task) -> None:
        log.info({"event": "engine.cancelled", "round": self.state.round if self.state else 0})
        self.outcome = "cancelled"
        producer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await producer

    async def _produce(self) -> None:
        try:
            if self.status is not None and not self.status.is_trivial():
                self._emit(StatusEvent(**self.status.model_dump()))
            self.outcome = await self._loop()
        except asyncio.CancelledError:
            raise
        except Exception as e:  # noqa: BLE001
            log.warning("Round %s failed: %s", self.state.round, e, exc_info=True)
            self.outcome = "error"
            self._emit(ErrorEvent(message=describe_upstream_error(e)))
        finally:
            self._queue.put_nowait(_END)

    async def _loop(self) -> str:
        state = self.state
        while True:
            if state.round >= self.limits.max_rounds:
                log.warning({"event": "engine.max_rounds", "rounds": state.round})
                self._emit(self._content_event(LIMIT_NOTICE))
                return "max_rounds"
            state.round += 1
            ROUNDS.inc()
            turn = await self._stream_round()
            log.info(
                {
                    "event": "engine.round",
                    "round": state.round,
                    "finish_reason": turn.finish_reason,
                    "tool_calls": len(turn.invocations),
                }
            )
            if turn.finish_reason == "length":
                log.warning({"event": "engine.output_truncated", "round": state.round})
            if not turn.invocations:
                state.append(ChatMessage(role="assistant", content=turn.text))
                return "completed"
            calls = turn.invocations
            cap = self.limits.max_tools_per_round
            if len(calls) > cap:
                dropped = [c.name for c in calls[cap:]]
                log.warning({"event": "engine.tool_calls_truncated", "kept": cap, "dropped": dropped})
                TRUNCATED_CALLS.inc(len(dropped))
                calls = calls[:cap]
            state.append(ChatMessage(role="assistant", content=turn.text or None, tool_calls=calls))
            for message in await self._execute(calls):
                state.append(message)

    async def _stream_round(self) -> AssistantTurn:
        acc = DeltaAccumulator()
        catalog = self.dispatcher.registry.catalog()
        tool_choice: Optional[Dict[str, Any]] = None
        if self.forced_tool and self.state.round == 1 and self.forced_tool in self.dispatcher.registry:
            tool_choice = {"type": "function", "function": {"name": self.forced_tool}}
        async for fragment in self.provider.stream_chat(
            model=self.model,
            messages=[m.to_provider() for m in self.state.history],
            tools=catalog or None,
            tool_choice=tool_choice,
            temperature=self.temperature,
        ):
            text = acc.feed(fragment)
            if text:
                self._emit(self._content_event(text))
        return acc.finish()

    async def _execute(self, calls: List[ToolInvocation]) -> List[ChatMessage]:
        decisions: List[GuardDecision] = [self.state.guard.check(c.name, c.arguments) for c in calls]
        for call, decision in zip(calls, decisions):
            if decision.permitted:
                self._emit(ToolCallEvent(tool_name=call.name, tool_call_id=call.id, args=call.arguments))
        tasks: Dict[int, asyncio.Task] = {
            i: asyncio.create_task(self.dispatcher.dispatch(call.name, call.arguments, self._progress_for(call.name)))
            for i, (call, decision) in enumerate(zip(calls, decisions))
            if decision.permitted
        }
        messages: List[ChatMessage] = []
        try:
            for i, (call, decision) in enumerate(zip(calls, decisions)):
                if decision.permitted:
                    result = await tasks[i]
                    text = result.as_text()
                    self._emit(ToolResultEvent(tool_name=call.name, tool_call_id=call.id, result=text))
                else:
                    text = decision.message or "Tool call refused."
                messages.append(ChatMessage(role="tool", tool_call_id=call.id, name=call.name, content=text))
        finally:
            for task in tasks.values():
                if not task.done():
                    task.cancel()
        return messages

    def _progress_for(self, tool_name: str) -> ProgressCallback:
        def on_progress(status: str, message: str, details: Optional[Dict[str, Any]] = None) -> None:
            self._emit(
                ToolProgressEvent(
                    tool_name=tool_name,
                    status=status,
                    message=message,
                    details=dict(details) if details else None,
                )
            )

        return on_progress

    def _content_event(self, text: str) -> ContentEvent:
        self._content.append(text)
        return ContentEvent(content=text)

    def _emit(self, event: WireEvent) -> None:
        self._queue.put_nowait(event)
