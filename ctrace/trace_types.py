"""Trace data types: raw runtime events in, semantic steps out."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class EventKind(str, Enum):
    """Event kinds written by the instrumentation runtime."""

    FUNC_ENTER = "func_enter"
    FUNC_EXIT = "func_exit"
    LOOP_START = "loop_start"
    LOOP_BODY_START = "loop_body_start"
    LOOP_ITERATION_END = "loop_iteration_end"
    LOOP_CONDITION = "loop_condition"
    LOOP_END = "loop_end"
    ASSIGN = "assign"
    DECLARE = "declare"
    VAR = "var"
    ARRAY_CREATE = "array_create"
    ARRAY_INDEX_ASSIGN = "array_index_assign"
    POINTER_ALIAS = "pointer_alias"
    POINTER_DEREF_WRITE = "pointer_deref_write"
    HEAP_ALLOC = "heap_alloc"
    HEAP_FREE = "heap_free"
    HEAP_WRITE = "heap_write"
    CONDITION_EVAL = "condition_eval"
    BRANCH_TAKEN = "branch_taken"
    CONTROL_FLOW = "control_flow"
    BLOCK_ENTER = "block_enter"
    BLOCK_EXIT = "block_exit"
    RETURN = "return"
    OUTPUT_FLUSH = "output_flush"


LOOP_KINDS: frozenset[EventKind] = frozenset(
    {
        EventKind.LOOP_START,
        EventKind.LOOP_BODY_START,
        EventKind.LOOP_ITERATION_END,
        EventKind.LOOP_CONDITION,
        EventKind.LOOP_END,
    }
)

FUNCTION_KINDS: frozenset[EventKind] = frozenset(
    {EventKind.FUNC_ENTER, EventKind.FUNC_EXIT}
)


class TraceEvent(BaseModel):
    """One record of the trace artifact.

    Fields every record may carry are modelled; anything kind-specific that
    is not (``varType``, ``dimensions``, ``result`` ...) is kept as a pydantic
    extra and surfaced through :meth:`payload`.
    """

    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    kind: EventKind = Field(alias="type")
    id: int = 0
    file: str = ""
    line: int = 0
    func: str = ""
    caller: str = ""
    addr: str = ""
    depth: int = 0
    ts: int = 0
    loop_id: int | None = Field(default=None, alias="loopId")
    loop_type: str = Field(default="", alias="loopType")
    iteration: int | None = None
    name: str = ""
    value: Any = None

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    @model_validator(mode="after")
    def _require_loop_id(self) -> TraceEvent:
        if self.kind in LOOP_KINDS and self.loop_id is None:
            raise ValueError(f"{self.kind.value} event without loopId")
        return self

    @property
    def is_loop_marker(self) -> bool:
        return self.kind in LOOP_KINDS

    @property
    def is_function_boundary(self) -> bool:
        return self.kind in FUNCTION_KINDS

    def payload(self) -> dict[str, Any]:
        """Kind-specific data, in wire (camelCase) key form."""
        data: dict[str, Any] = {}
        if self.name:
            data["name"] = self.name
        if self.value is not None:
            data["value"] = self.value
        if self.loop_type:
            data["loopType"] = self.loop_type
        if self.caller:
            data["caller"] = self.caller
        data.update(self.model_extra or {})
        return data


@dataclass(frozen=True)
class InternalEvent:
    """An event buffered inside a loop body.

    Carries only a buffer-local index; it never receives a global step index.
    """

    internal_step_index: int
    event_type: str
    line: int = 0
    file: str = ""
    function: str = ""
    loop_id: int | None = None
    iteration: int | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.payload)
        out.pop("stepIndex", None)
        out.update(
            {
                "internalStepIndex": self.internal_step_index,
                "eventType": self.event_type,
                "line": self.line,
                "file": self.file,
                "function": self.function,
            }
        )
        if self.loop_id is not None:
            out["loopId"] = self.loop_id
        if self.iteration is not None:
            out["iteration"] = self.iteration
        return out


@dataclass(frozen=True)
class Step:
    """A single emitted step, ordered by ``step_index`` and ``timestamp``."""

    step_index: int
    event_type: str
    timestamp: int
    line: int = 0
    file: str = ""
    function: str = ""
    frame_id: str = ""
    call_depth: int = 0
    loop_id: int | None = None
    iteration: int | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    events: tuple[InternalEvent, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.payload)
        out.update(
            {
                "stepIndex": self.step_index,
                "eventType": self.event_type,
                "timestamp": self.timestamp,
                "line": self.line,
                "file": self.file,
                "function": self.function,
                "frameId": self.frame_id,
                "callDepth": self.call_depth,
            }
        )
        if self.loop_id is not None:
            out["loopId"] = self.loop_id
        if self.iteration is not None:
            out["iteration"] = self.iteration
        if self.events:
            out["events"] = [event.to_dict() for event in self.events]
        return out


@dataclass(frozen=True)
class ParsedTrace:
    """All records decoded from one trace artifact."""

    events: list[TraceEvent] = field(default_factory=list)
    tracked_functions: list[str] = field(default_factory=list)
    complete: bool = False
    skipped_records: int = 0
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ConversionResult:
    """Steps produced from a trace plus the anomalies absorbed on the way."""

    steps: list[Step] = field(default_factory=list)
    warnings: list[Exception] = field(default_factory=list)
    tracked_functions: list[str] = field(default_factory=list)

    def to_dicts(self) -> list[dict[str, Any]]:
        return [step.to_dict() for step in self.steps]
