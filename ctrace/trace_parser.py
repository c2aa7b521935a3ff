"""Incremental reader for the trace artifact written by the instrumented program.

Layout::

    {"version":"1.0","functions":[],"events":[
      {"id":0,"type":"func_enter","func":"main",...},
      {"id":1,"type":"loop_start","loopId":3,...}
    ],"tracked_functions":["main"],"total_events":2}

A run that was killed leaves no trailer and possibly a half-written last
record; both are tolerated. Plain JSON Lines (one record per line) and a
whole document on a single line are accepted too.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Iterator

from pydantic import ValidationError

from .constants import TRACE_HEADER_PREFIX, TRACE_TRAILER_PREFIX
from .errors import UnreadableTraceArtifactError
from .trace_types import EventKind, ParsedTrace, TraceEvent

logger = logging.getLogger(__name__)

_KNOWN_KINDS = frozenset(kind.value for kind in EventKind)


class TraceParser:
    """Turns a trace artifact into TraceEvents, one line at a time.

    Bookkeeping about the last parse (skipped records, trailer metadata) is
    available on the instance once iteration finishes.
    """

    def __init__(self) -> None:
        self._reset()

    def _reset(self) -> None:
        self.tracked_functions: list[str] = []
        self.complete = False
        self.skipped_records = 0
        self.warnings: list[str] = []
        self.total_events_declared: int | None = None

    def _skip(self, line_number: int, reason: str) -> None:
        self.skipped_records += 1
        message = f"line {line_number}: {reason}"
        self.warnings.append(message)
        logger.warning("Skipping trace record at %s", message)

    def iter_events(self, path: str | os.PathLike) -> Iterator[TraceEvent]:
        """Yield events in artifact order.

        Raises:
            UnreadableTraceArtifactError: the file is missing or unreadable.
        """
        self._reset()
        try:
            handle = open(path, "r", encoding="utf-8", errors="replace")
        except OSError as exc:
            raise UnreadableTraceArtifactError(os.fspath(path), str(exc)) from exc

        with handle:
            pending: tuple[int, str] | None = None
            for line_number, raw in enumerate(handle, start=1):
                line = raw.strip()
                if not line:
                    continue
                if pending is not None:
                    yield from self._parse_line(*pending, is_last=False)
                pending = (line_number, line)
            if pending is not None:
                yield from self._parse_line(*pending, is_last=True)

        if not self.complete:
            logger.info("Trace artifact %s has no trailer (partial run)", path)

    def _parse_line(
        self, line_number: int, line: str, is_last: bool
    ) -> Iterator[TraceEvent]:
        if line.startswith(TRACE_HEADER_PREFIX) and line.endswith("["):
            return
        if line.startswith(TRACE_TRAILER_PREFIX):
            self._parse_trailer(line_number, line)
            return

        text = line.rstrip(",")
        try:
            record = json.loads(text)
        except json.JSONDecodeError as exc:
            if is_last:
                self.warnings.append(
                    f"line {line_number}: discarded incomplete final record"
                )
                logger.info("Discarding incomplete final trace record")
                return
            self._skip(line_number, f"malformed JSON ({exc.msg})")
            return

        if isinstance(record, dict) and isinstance(record.get("events"), list):
            # Whole document on one line.
            self._read_trailer_fields(record)
            for nested in record["events"]:
                event = self._decode(line_number, nested)
                if event is not None:
                    yield event
            return

        event = self._decode(line_number, record)
        if event is not None:
            yield event

    def _decode(self, line_number: int, record: Any) -> TraceEvent | None:
        if not isinstance(record, dict):
            self._skip(line_number, "record is not an object")
            return None
        kind = record.get("type")
        if not isinstance(kind, str) or kind not in _KNOWN_KINDS:
            self._skip(line_number, f"unknown event kind {kind!r}")
            return None
        try:
            return TraceEvent.model_validate(record)
        except ValidationError as exc:
            self._skip(line_number, f"invalid {kind} record ({exc.error_count()} errors)")
            return None

    def _parse_trailer(self, line_number: int, line: str) -> None:
        body = "{" + line[1:].lstrip().lstrip(",")
        try:
            trailer = json.loads(body)
        except json.JSONDecodeError:
            self.warnings.append(f"line {line_number}: unreadable trailer")
            logger.warning("Unreadable trace trailer at line %d", line_number)
            return
        self._read_trailer_fields(trailer)

    def _read_trailer_fields(self, trailer: dict) -> None:
        self.complete = True
        functions = trailer.get("tracked_functions") or []
        self.tracked_functions = [str(f) for f in functions]
        total = trailer.get("total_events")
        self.total_events_declared = total if isinstance(total, int) else None


def parse_trace_file(path: str | os.PathLike) -> ParsedTrace:
    """Read a whole trace artifact. An empty file yields zero events."""
    parser = TraceParser()
    events = list(parser.iter_events(path))
    logger.info(
        "Parsed %d events from %s (%d skipped)",
        len(events),
        path,
        parser.skipped_records,
    )
    return ParsedTrace(
        events=events,
        tracked_functions=parser.tracked_functions,
        complete=parser.complete,
        skipped_records=parser.skipped_records,
        warnings=list(parser.warnings),
    )
