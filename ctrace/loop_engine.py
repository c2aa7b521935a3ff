"""Step conversion engine: flat trace events to ordered, loop-summarized steps.

Function boundaries and loop markers are always emitted as top-level steps.
Everything else observed while a loop is open is buffered in the innermost
open loop and emitted as one ``loop_body_summary`` step right before that
loop's ``loop_end``. Because loops are closed innermost-first, an inner
loop's summary and end always precede any step of an enclosing loop's
summary.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

from .constants import (
    FRAME_ID_TEMPLATE,
    NOISE_FUNCTION_PREFIXES,
    STEP_INPUT_REQUEST,
    STEP_LOOP_BODY_SUMMARY,
    STEP_LOOP_BREAK,
    STEP_LOOP_CONTINUE,
    STEP_OUTPUT,
    STEP_PROGRAM_END,
    STEP_PROGRAM_START,
    STEP_VAR_ASSIGN,
    STEP_VAR_DECLARE,
)
from .errors import MalformedTraceError
from .platform_adapter import PlatformAdapter
from .source_scan import InputRequest
from .trace_types import ConversionResult, EventKind, InternalEvent, Step, TraceEvent

logger = logging.getLogger(__name__)

_RENAMED_KINDS: dict[EventKind, str] = {
    EventKind.ASSIGN: STEP_VAR_ASSIGN,
    EventKind.VAR: STEP_VAR_ASSIGN,
    EventKind.DECLARE: STEP_VAR_DECLARE,
}

_CONTROL_FLOW_STEPS: dict[str, str] = {
    "break": STEP_LOOP_BREAK,
    "continue": STEP_LOOP_CONTINUE,
}


def step_type_for(event: TraceEvent) -> str:
    if event.kind is EventKind.CONTROL_FLOW:
        control = (event.model_extra or {}).get("controlType", "")
        return _CONTROL_FLOW_STEPS.get(control, event.kind.value)
    return _RENAMED_KINDS.get(event.kind, event.kind.value)


def is_noise_function(name: str) -> bool:
    return name.startswith(NOISE_FUNCTION_PREFIXES)


def _basename(path: str) -> str:
    return path.replace("\\", "/").rsplit("/", 1)[-1]


def is_same_source(event_file: str, source_file: str) -> bool:
    """Runtimes record either the full or the bare file name; compare basenames."""
    if not event_file or not source_file:
        return True
    return _basename(event_file) == _basename(source_file)


@dataclass
class CallFrame:
    function: str
    frame_id: str
    call_depth: int
    parent_frame_id: str = ""


@dataclass
class LoopContext:
    """Per-loop state while the loop is open.

    ``depth`` is the context's position in the loop stack; the enclosing
    loop is looked up through the stack, never stored here.
    """

    loop_id: int
    loop_type: str = ""
    depth: int = 0
    iteration_counter: int = 0
    body_buffer: list[InternalEvent] = field(default_factory=list)
    start_line: int = 0
    file: str = ""
    function: str = ""
    frame_id: str = ""

    def buffer(self, event_type: str, event: TraceEvent, function: str) -> InternalEvent:
        internal = InternalEvent(
            internal_step_index=len(self.body_buffer),
            event_type=event_type,
            line=event.line,
            file=event.file,
            function=function,
            loop_id=self.loop_id,
            iteration=self.iteration_counter,
            payload=event.payload(),
        )
        self.body_buffer.append(internal)
        return internal


class LoopStack:
    """LIFO stack of open loops, addressed by index."""

    def __init__(self) -> None:
        self._contexts: list[LoopContext] = []

    def __len__(self) -> int:
        return len(self._contexts)

    def __bool__(self) -> bool:
        return bool(self._contexts)

    def push(self, **kwargs: Any) -> LoopContext:
        context = LoopContext(depth=len(self._contexts), **kwargs)
        self._contexts.append(context)
        return context

    def pop(self) -> LoopContext:
        return self._contexts.pop()

    def top(self) -> LoopContext | None:
        return self._contexts[-1] if self._contexts else None

    def parent_of(self, context: LoopContext) -> LoopContext | None:
        return self._contexts[context.depth - 1] if context.depth > 0 else None

    def loop_ids(self) -> list[int]:
        return [context.loop_id for context in self._contexts]


class MonotonicClock:
    """Timestamps from the adapter, forced strictly increasing."""

    def __init__(self, adapter: PlatformAdapter):
        self._adapter = adapter
        self._last: int | None = None

    def next(self, counter: int) -> int:
        ts = self._adapter.timestamp(counter)
        if self._last is not None and ts <= self._last:
            ts = self._last + 1
        self._last = ts
        return ts


@dataclass
class ConversionContext:
    """Inputs to one conversion besides the event stream."""

    source_file: str = ""
    stdout: str = ""
    input_requests: Mapping[int, InputRequest] = field(default_factory=dict)
    tracked_functions: list[str] = field(default_factory=list)
    bookends: bool = True
    strict: bool = False
    adapter: PlatformAdapter | None = None


class StepConversionEngine:
    """Single-use converter; all state lives for one ``convert`` call."""

    def __init__(self, context: ConversionContext | None = None):
        self._context = context or ConversionContext()
        self._adapter = self._context.adapter or PlatformAdapter()
        self._clock = MonotonicClock(self._adapter)
        self._steps: list[Step] = []
        self._warnings: list[Exception] = []
        self._loops = LoopStack()
        self._frames: list[CallFrame] = []
        self._frame_counts: Counter[str] = Counter()
        self._pending_inputs = dict(self._context.input_requests)
        self._handlers: dict[EventKind, Callable[[TraceEvent], None]] = {
            EventKind.FUNC_ENTER: self._on_func_enter,
            EventKind.FUNC_EXIT: self._on_func_exit,
            EventKind.LOOP_START: self._on_loop_start,
            EventKind.LOOP_BODY_START: self._on_loop_body_start,
            EventKind.LOOP_ITERATION_END: self._on_loop_marker,
            EventKind.LOOP_CONDITION: self._on_loop_marker,
            EventKind.LOOP_END: self._on_loop_end,
            EventKind.ARRAY_CREATE: self._emit_event,
        }

    # ── entry point ──────────────────────────────────────────────

    def convert(self, events: Iterable[TraceEvent]) -> ConversionResult:
        if self._context.bookends:
            self._emit(STEP_PROGRAM_START, file=self._context.source_file)

        count = 0
        for event in events:
            count += 1
            self._dispatch(event)

        self._finish()
        logger.info(
            "Converted %d events into %d steps (%d warnings)",
            count,
            len(self._steps),
            len(self._warnings),
        )
        return ConversionResult(
            steps=self._steps,
            warnings=self._warnings,
            tracked_functions=list(self._context.tracked_functions),
        )

    def _dispatch(self, event: TraceEvent) -> None:
        if event.is_function_boundary and is_noise_function(event.func):
            logger.debug("Dropping runtime function event %s", event.func)
            return
        self._maybe_request_input(event)
        handler = self._handlers.get(event.kind, self._on_body_event)
        handler(event)

    # ── emission ─────────────────────────────────────────────────

    @property
    def _current_frame(self) -> CallFrame | None:
        return self._frames[-1] if self._frames else None

    def _emit(
        self,
        event_type: str,
        *,
        line: int = 0,
        file: str = "",
        function: str = "",
        loop_id: int | None = None,
        iteration: int | None = None,
        payload: dict[str, Any] | None = None,
        events: tuple[InternalEvent, ...] = (),
        frame: CallFrame | None = None,
    ) -> Step:
        frame = frame or self._current_frame
        step_index = len(self._steps)
        step = Step(
            step_index=step_index,
            event_type=event_type,
            timestamp=self._clock.next(step_index + 1),
            line=line,
            file=file,
            function=function or (frame.function if frame else ""),
            frame_id=frame.frame_id if frame else "",
            call_depth=frame.call_depth if frame else 0,
            loop_id=loop_id,
            iteration=iteration,
            payload=payload or {},
            events=events,
        )
        self._steps.append(step)
        return step

    def _emit_event(
        self,
        event: TraceEvent,
        *,
        iteration: int | None = None,
        frame: CallFrame | None = None,
        extra: dict[str, Any] | None = None,
    ) -> Step:
        payload = event.payload()
        payload.update(extra or {})
        return self._emit(
            step_type_for(event),
            line=event.line,
            file=event.file or self._context.source_file,
            function=event.func,
            loop_id=event.loop_id,
            iteration=iteration if iteration is not None else event.iteration,
            payload=payload,
            frame=frame,
        )

    def _malformed(self, event: TraceEvent, reason: str) -> None:
        error = MalformedTraceError(
            event.loop_id, f"{event.kind.value} for loop {event.loop_id}: {reason}"
        )
        if self._context.strict:
            raise error
        logger.warning("Malformed trace: %s", error)
        self._warnings.append(error)
        self._emit_event(event)

    # ── function boundaries ──────────────────────────────────────

    def _on_func_enter(self, event: TraceEvent) -> None:
        parent = self._current_frame
        self._frame_counts[event.func] += 1
        frame = CallFrame(
            function=event.func,
            frame_id=FRAME_ID_TEMPLATE.format(
                function=event.func, count=self._frame_counts[event.func]
            ),
            call_depth=len(self._frames),
            parent_frame_id=parent.frame_id if parent else "",
        )
        self._frames.append(frame)
        self._emit_event(event, frame=frame, extra={"parentFrameId": frame.parent_frame_id})

    def _on_func_exit(self, event: TraceEvent) -> None:
        matching = [f for f in self._frames if f.function == event.func]
        if not matching:
            logger.debug("func_exit for %s without a matching frame", event.func)
            self._emit_event(event)
            return
        target = matching[-1]
        while self._frames and self._frames[-1] is not target:
            self._close_frame(self._frames[-1], synthetic=True)
        self._unwind_frame_loops(target)
        self._emit_event(event, frame=target)
        self._frames.pop()

    def _close_frame(self, frame: CallFrame, synthetic: bool) -> None:
        self._unwind_frame_loops(frame)
        self._emit(
            EventKind.FUNC_EXIT.value,
            function=frame.function,
            file=self._context.source_file,
            payload={"synthetic": synthetic},
            frame=frame,
        )
        self._frames.pop()

    def _unwind_frame_loops(self, frame: CallFrame) -> None:
        top = self._loops.top()
        while top is not None and top.frame_id == frame.frame_id:
            logger.debug("Closing loop %d left open by %s", top.loop_id, frame.function)
            self._close_loop(top, reason="function_exit")
            top = self._loops.top()

    # ── loops ────────────────────────────────────────────────────

    def _on_loop_start(self, event: TraceEvent) -> None:
        parent = self._loops.top()
        frame = self._current_frame
        self._emit_event(
            event,
            extra={"parentLoopId": parent.loop_id if parent else None},
        )
        self._loops.push(
            loop_id=event.loop_id,
            loop_type=event.loop_type,
            start_line=event.line,
            file=event.file or self._context.source_file,
            function=event.func or (frame.function if frame else ""),
            frame_id=frame.frame_id if frame else "",
        )

    def _matching_top(self, event: TraceEvent) -> LoopContext | None:
        top = self._loops.top()
        if top is not None and top.loop_id == event.loop_id:
            return top
        return None

    def _on_loop_body_start(self, event: TraceEvent) -> None:
        top = self._matching_top(event)
        if top is None:
            self._malformed(event, f"innermost open loop is {self._loops.loop_ids()[-1:]}")
            return
        top.iteration_counter += 1
        self._emit_event(event, iteration=top.iteration_counter)

    def _on_loop_marker(self, event: TraceEvent) -> None:
        top = self._matching_top(event)
        if top is None:
            self._malformed(event, f"innermost open loop is {self._loops.loop_ids()[-1:]}")
            return
        self._emit_event(event, iteration=top.iteration_counter)

    def _on_loop_end(self, event: TraceEvent) -> None:
        top = self._matching_top(event)
        if top is None:
            self._malformed(event, f"innermost open loop is {self._loops.loop_ids()[-1:]}")
            return
        self._close_loop(top, end_event=event)

    def _close_loop(
        self,
        context: LoopContext,
        end_event: TraceEvent | None = None,
        reason: str = "",
    ) -> None:
        """Flush the summary, pop the context, then emit its loop_end."""
        if context.body_buffer:
            parent = self._loops.parent_of(context)
            self._emit(
                STEP_LOOP_BODY_SUMMARY,
                line=context.start_line,
                file=context.file,
                function=context.function,
                loop_id=context.loop_id,
                iteration=context.iteration_counter,
                payload={
                    "parentLoopId": parent.loop_id if parent else None,
                    "iterations": context.iteration_counter,
                    "loopType": context.loop_type,
                    "eventCount": len(context.body_buffer),
                },
                events=tuple(context.body_buffer),
            )
        self._loops.pop()

        payload = {"iterations": context.iteration_counter}
        if end_event is not None:
            self._emit_event(end_event, iteration=context.iteration_counter, extra=payload)
            return
        payload.update({"synthetic": True, "reason": reason})
        self._emit(
            EventKind.LOOP_END.value,
            line=context.start_line,
            file=context.file,
            function=context.function,
            loop_id=context.loop_id,
            iteration=context.iteration_counter,
            payload=payload,
        )

    # ── body events ──────────────────────────────────────────────

    def _on_body_event(self, event: TraceEvent) -> None:
        top = self._loops.top()
        if top is None:
            self._emit_event(event)
            return
        frame = self._current_frame
        top.buffer(step_type_for(event), event, event.func or (frame.function if frame else ""))

    def _maybe_request_input(self, event: TraceEvent) -> None:
        if not event.line or not is_same_source(event.file, self._context.source_file):
            return
        request = self._pending_inputs.pop(event.line, None)
        if request is None:
            return
        self._emit(
            STEP_INPUT_REQUEST,
            line=request.line,
            file=event.file or self._context.source_file,
            payload=request.payload(),
        )

    # ── end of stream ────────────────────────────────────────────

    def _finish(self) -> None:
        while self._loops:
            context = self._loops.top()
            error = MalformedTraceError(
                context.loop_id, f"loop {context.loop_id} still open at end of trace"
            )
            if self._context.strict:
                raise error
            logger.warning("Malformed trace: %s", error)
            self._warnings.append(error)
            self._close_loop(context, reason="end_of_trace")

        for line in self._adapter.normalize_output_lines(self._context.stdout):
            self._emit(STEP_OUTPUT, file=self._context.source_file, payload={"text": line})

        while self._frames:
            self._close_frame(self._frames[-1], synthetic=True)

        if self._context.bookends:
            self._emit(STEP_PROGRAM_END, file=self._context.source_file, frame=None)


def convert_to_steps(
    events: Iterable[TraceEvent], context: ConversionContext | None = None
) -> ConversionResult:
    """Convert an event stream into steps using a fresh engine."""
    return StepConversionEngine(context).convert(events)
