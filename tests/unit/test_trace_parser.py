"""Tests for ctrace.trace_parser: artifact layout, partial runs, bad records."""

from __future__ import annotations

import json

import pytest

from ctrace.errors import UnreadableTraceArtifactError
from ctrace.trace_parser import TraceParser, parse_trace_file
from ctrace.trace_types import EventKind

HEADER = '{"version":"1.0","functions":[],"events":['


def _write_artifact(path, records, trailer=True, tracked=("main",)):
    lines = [HEADER, ",\n".join("  " + json.dumps(r) for r in records)]
    text = "\n".join(lines)
    if trailer:
        text += (
            "\n],"
            + json.dumps({"tracked_functions": list(tracked), "total_events": len(records)})[1:]
        )
    path.write_text(text)
    return path


SAMPLE = [
    {"id": 0, "type": "func_enter", "addr": "0x401000", "func": "main", "depth": 0, "ts": 10},
    {"id": 1, "type": "loop_start", "loopId": 3, "loopType": "for", "file": "p.cpp", "line": 4},
    {"id": 2, "type": "loop_body_start", "loopId": 3, "iteration": 1},
    {"id": 3, "type": "assign", "name": "x", "value": 5, "file": "p.cpp", "line": 5},
    {"id": 4, "type": "loop_end", "loopId": 3},
    {"id": 5, "type": "func_exit", "addr": "0x401000", "func": "main", "depth": 0, "ts": 99},
]


class TestCompleteArtifact:
    def test_events_in_order(self, tmp_path):
        parsed = parse_trace_file(_write_artifact(tmp_path / "t.json", SAMPLE))

        assert [e.kind for e in parsed.events] == [
            EventKind.FUNC_ENTER,
            EventKind.LOOP_START,
            EventKind.LOOP_BODY_START,
            EventKind.ASSIGN,
            EventKind.LOOP_END,
            EventKind.FUNC_EXIT,
        ]
        assert parsed.complete
        assert parsed.tracked_functions == ["main"]
        assert parsed.skipped_records == 0

    def test_fields_decoded(self, tmp_path):
        parsed = parse_trace_file(_write_artifact(tmp_path / "t.json", SAMPLE))
        loop_start, assign = parsed.events[1], parsed.events[3]

        assert loop_start.loop_id == 3
        assert loop_start.loop_type == "for"
        assert loop_start.line == 4
        assert assign.name == "x"
        assert assign.value == 5

    def test_extra_fields_kept_in_payload(self, tmp_path):
        record = {"type": "declare", "name": "arr", "varType": "int[3]", "address": "0x10", "line": 2}
        parsed = parse_trace_file(_write_artifact(tmp_path / "t.json", [record]))
        payload = parsed.events[0].payload()

        assert payload["varType"] == "int[3]"
        assert payload["address"] == "0x10"
        assert payload["name"] == "arr"

    def test_reparse_is_identical(self, tmp_path):
        path = _write_artifact(tmp_path / "t.json", SAMPLE)
        assert parse_trace_file(path).events == parse_trace_file(path).events


class TestPartialArtifact:
    def test_missing_trailer_tolerated(self, tmp_path):
        parsed = parse_trace_file(_write_artifact(tmp_path / "t.json", SAMPLE, trailer=False))
        assert len(parsed.events) == len(SAMPLE)
        assert not parsed.complete
        assert parsed.tracked_functions == []

    def test_incomplete_final_record_discarded(self, tmp_path):
        path = _write_artifact(tmp_path / "t.json", SAMPLE[:3], trailer=False)
        with open(path, "a") as f:
            f.write(',\n  {"id":3,"type":"assi')
        parsed = parse_trace_file(path)

        assert len(parsed.events) == 3
        assert parsed.skipped_records == 0
        assert any("incomplete final record" in w for w in parsed.warnings)

    def test_empty_file_yields_no_events(self, tmp_path):
        path = tmp_path / "t.json"
        path.write_text("")
        parsed = parse_trace_file(path)
        assert parsed.events == []
        assert not parsed.complete


class TestBadRecords:
    def test_unknown_kind_skipped_with_warning(self, tmp_path):
        records = [SAMPLE[0], {"type": "teleport", "line": 1}, SAMPLE[5]]
        parsed = parse_trace_file(_write_artifact(tmp_path / "t.json", records))

        assert len(parsed.events) == 2
        assert parsed.skipped_records == 1
        assert "teleport" in parsed.warnings[0]

    def test_loop_marker_without_loop_id_skipped(self, tmp_path):
        records = [{"type": "loop_end"}, SAMPLE[3]]
        parsed = parse_trace_file(_write_artifact(tmp_path / "t.json", records))
        assert [e.kind for e in parsed.events] == [EventKind.ASSIGN]
        assert parsed.skipped_records == 1

    def test_malformed_line_in_middle_skipped(self, tmp_path):
        path = tmp_path / "t.json"
        path.write_text(
            HEADER + "\n"
            + "  " + json.dumps(SAMPLE[0]) + ",\n"
            + "  {not json},\n"
            + "  " + json.dumps(SAMPLE[5]) + "\n"
            + '],"tracked_functions":[],"total_events":3}'
        )
        parsed = parse_trace_file(path)
        assert len(parsed.events) == 2
        assert parsed.skipped_records == 1

    def test_non_string_kind_skipped(self, tmp_path):
        records = [SAMPLE[3], {"type": ["assign"], "line": 2}, SAMPLE[5]]
        path = tmp_path / "t.jsonl"
        path.write_text("\n".join(json.dumps(r) for r in records) + "\n")
        parsed = parse_trace_file(path)

        assert len(parsed.events) == 2
        assert parsed.skipped_records == 1
        assert "unknown event kind" in parsed.warnings[0]


class TestAlternativeLayouts:
    def test_json_lines(self, tmp_path):
        path = tmp_path / "t.jsonl"
        path.write_text("\n".join(json.dumps(r) for r in SAMPLE) + "\n")
        assert len(parse_trace_file(path).events) == len(SAMPLE)

    def test_single_line_document(self, tmp_path):
        path = tmp_path / "t.json"
        path.write_text(
            json.dumps({"version": "1.0", "events": SAMPLE, "tracked_functions": ["main", "f"]})
        )
        parsed = parse_trace_file(path)
        assert len(parsed.events) == len(SAMPLE)
        assert parsed.tracked_functions == ["main", "f"]


class TestUnreadable:
    def test_missing_file(self, tmp_path):
        with pytest.raises(UnreadableTraceArtifactError, match="missing.json"):
            parse_trace_file(tmp_path / "missing.json")

    def test_iter_events_is_lazy_generator(self, tmp_path):
        parser = TraceParser()
        events = parser.iter_events(_write_artifact(tmp_path / "t.json", SAMPLE))
        first = next(events)
        assert first.kind is EventKind.FUNC_ENTER
        assert len(list(events)) == len(SAMPLE) - 1
