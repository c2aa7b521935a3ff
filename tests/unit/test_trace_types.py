"""Tests for ctrace.trace_types and ctrace.run_types: wire forms and config."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from ctrace.errors import CompileError, ToolchainMissingError
from ctrace.run_types import ExecutionLimits, ExecutionResult, TraceConfig
from ctrace.trace_types import EventKind, InternalEvent, Step, TraceEvent


class TestTraceEvent:
    def test_wire_aliases(self):
        event = TraceEvent.model_validate(
            {"type": "loop_start", "loopId": 2, "loopType": "do_while", "line": 9}
        )
        assert event.kind is EventKind.LOOP_START
        assert event.loop_id == 2
        assert event.loop_type == "do_while"
        assert event.is_loop_marker

    def test_null_fields_fall_back_to_defaults(self):
        event = TraceEvent.model_validate({"type": "func_enter", "file": None, "line": None})
        assert event.file == ""
        assert event.line == 0

    def test_events_are_immutable(self):
        event = TraceEvent.model_validate({"type": "assign", "name": "x"})
        with pytest.raises(ValidationError):
            event.name = "y"

    def test_loop_marker_requires_loop_id(self):
        with pytest.raises(ValidationError, match="without loopId"):
            TraceEvent.model_validate({"type": "loop_body_start"})


class TestStepWireForm:
    def test_camel_case_keys_and_optional_loop_fields(self):
        step = Step(step_index=4, event_type="var_assign", timestamp=5000, line=3,
                    frame_id="main-1", payload={"name": "x", "value": 1})
        rendered = step.to_dict()

        assert rendered["stepIndex"] == 4
        assert rendered["frameId"] == "main-1"
        assert rendered["name"] == "x"
        assert "loopId" not in rendered
        assert "events" not in rendered

    def test_payload_cannot_override_index(self):
        step = Step(step_index=1, event_type="x", timestamp=1, payload={"stepIndex": 99})
        assert step.to_dict()["stepIndex"] == 1

    def test_internal_event_has_no_step_index(self):
        event = InternalEvent(internal_step_index=0, event_type="var_assign", loop_id=3)
        rendered = event.to_dict()
        assert rendered["internalStepIndex"] == 0
        assert "stepIndex" not in rendered

    def test_payload_step_index_dropped_from_internal_event(self):
        event = InternalEvent(
            internal_step_index=2, event_type="var_assign", loop_id=3,
            payload={"name": "x", "stepIndex": 7},
        )
        rendered = event.to_dict()
        assert "stepIndex" not in rendered
        assert rendered["internalStepIndex"] == 2
        assert rendered["name"] == "x"


class TestRunTypes:
    def test_config_from_env(self):
        config = TraceConfig.from_env(
            {"TRACE_DETERMINISTIC": "true", "CTRACE_TIME_MS": "750",
             "CTRACE_TOOLCHAIN_ROOT": "/opt/tc"}
        )
        assert config.deterministic
        assert config.limits.time_ms == 750
        assert config.limits.max_output_bytes == 1024 * 1024
        assert config.toolchain_root == "/opt/tc"

    def test_default_limits(self):
        limits = ExecutionLimits()
        assert limits.time_ms == 2000
        assert not limits.has_hard_limits

    def test_signal_result_surface(self):
        result = ExecutionResult(signal=9, timed_out=True)
        assert result.to_dict()["exitCode"] is None
        assert result.to_dict()["signal"] == 9
        assert not result.succeeded


class TestErrors:
    def test_compile_error_message_uses_first_diagnostic_line(self):
        error = CompileError("a.cpp:1:1: error: x\nmore\n")
        assert str(error) == "Compilation failed: a.cpp:1:1: error: x"
        assert error.diagnostics.startswith("a.cpp")

    def test_toolchain_missing_names_component(self):
        assert "libunwind.a" in str(ToolchainMissingError("/tc/lib/libunwind.a"))
