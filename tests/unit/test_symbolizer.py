"""Tests for ctrace.symbolizer: addr2line output parsing and caching."""

from __future__ import annotations

import subprocess

from ctrace.symbolizer import Addr2LineSymbolizer, SourceLocation, parse_addr2line_output
from ctrace.trace_types import TraceEvent


class FakeRunner:
    """Stands in for the addr2line subprocess."""

    def __init__(self, output: str = "", error: Exception | None = None):
        self.output = output
        self.error = error
        self.calls: list[list[str]] = []

    def __call__(self, command):
        self.calls.append(command)
        if self.error:
            raise self.error
        return self.output


def _symbolizer(runner) -> Addr2LineSymbolizer:
    symbolizer = Addr2LineSymbolizer(runner=runner)
    symbolizer._binary = "/usr/bin/addr2line"
    return symbolizer


class TestParseOutput:
    def test_function_file_line(self):
        location = parse_addr2line_output("fact(int)\n/src/p.cpp:12\n")
        assert location == SourceLocation(function="fact(int)", file="/src/p.cpp", line=12)

    def test_discriminator_stripped(self):
        location = parse_addr2line_output("main\n/src/p.cpp:7 (discriminator 2)\n")
        assert location.line == 7

    def test_unknown_location(self):
        assert parse_addr2line_output("??\n??:0\n") is None

    def test_short_output(self):
        assert parse_addr2line_output("main\n") is None


class TestResolve:
    def test_result_is_cached_per_address(self):
        runner = FakeRunner("main\n/src/p.cpp:3\n")
        symbolizer = _symbolizer(runner)

        first = symbolizer.resolve("/tmp/program", "0x401000")
        second = symbolizer.resolve("/tmp/program", "0x401000")

        assert first == second
        assert len(runner.calls) == 1
        assert runner.calls[0] == [
            "/usr/bin/addr2line", "-e", "/tmp/program", "-f", "-C", "0x401000",
        ]

    def test_failure_resolves_to_none(self):
        runner = FakeRunner(error=subprocess.CalledProcessError(1, ["addr2line"]))
        assert _symbolizer(runner).resolve("/tmp/program", "0x1") is None

    def test_no_binary_available(self):
        runner = FakeRunner("main\n/src/p.cpp:3\n")
        symbolizer = Addr2LineSymbolizer(binaries=("no-such-addr2line-binary",), runner=runner)
        assert symbolizer.resolve("/tmp/program", "0x1") is None
        assert runner.calls == []


class TestAnnotate:
    def test_only_events_without_location_are_filled(self):
        runner = FakeRunner("fact(int)\n/src/p.cpp:12\n")
        events = [
            TraceEvent.model_validate({"type": "func_enter", "addr": "0x10", "func": ""}),
            TraceEvent.model_validate({"type": "assign", "file": "/src/p.cpp", "line": 4, "addr": "0x20"}),
            TraceEvent.model_validate({"type": "func_enter", "func": "main"}),
        ]

        annotated = _symbolizer(runner).annotate(events, "/tmp/program")

        assert annotated[0].file == "/src/p.cpp"
        assert annotated[0].line == 12
        assert annotated[0].func == "fact(int)"
        assert annotated[1] == events[1]
        assert annotated[2] == events[2]
        assert len(runner.calls) == 1
