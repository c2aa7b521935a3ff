"""Resolve function-boundary addresses to source locations with addr2line."""

from __future__ import annotations

import logging
import shutil
import subprocess
from dataclasses import dataclass
from typing import Callable, Sequence

from .constants import ADDR2LINE_BINARIES
from .trace_types import TraceEvent

logger = logging.getLogger(__name__)

_ADDR2LINE_TIMEOUT_S = 5.0


@dataclass(frozen=True)
class SourceLocation:
    function: str
    file: str
    line: int


def _run_addr2line(command: list[str]) -> str:
    completed = subprocess.run(
        command, capture_output=True, text=True, timeout=_ADDR2LINE_TIMEOUT_S
    )
    if completed.returncode != 0:
        raise subprocess.CalledProcessError(
            completed.returncode, command, completed.stdout, completed.stderr
        )
    return completed.stdout


def parse_addr2line_output(output: str) -> SourceLocation | None:
    """Parse ``-f`` output: function name line, then ``file:line``."""
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    if len(lines) < 2:
        return None
    function, location = lines[0], lines[1]
    location = location.split(" (discriminator")[0]
    file, _, line_text = location.rpartition(":")
    if not file or file == "??" or not line_text.isdigit() or line_text == "0":
        return None
    return SourceLocation(
        function="" if function == "??" else function, file=file, line=int(line_text)
    )


class Addr2LineSymbolizer:
    """Caches one addr2line lookup per (executable, address)."""

    def __init__(
        self,
        binaries: Sequence[str] = ADDR2LINE_BINARIES,
        runner: Callable[[list[str]], str] = _run_addr2line,
    ):
        self._binaries = tuple(binaries)
        self._runner = runner
        self._binary: str | None = None
        self._cache: dict[tuple[str, str], SourceLocation | None] = {}

    @property
    def binary(self) -> str | None:
        if self._binary is None:
            self._binary = next(
                (found for found in map(shutil.which, self._binaries) if found), ""
            )
            if not self._binary:
                logger.info("No addr2line binary found; skipping symbolization")
        return self._binary or None

    def resolve(self, executable_path: str, addr: str) -> SourceLocation | None:
        key = (executable_path, addr)
        if key in self._cache:
            return self._cache[key]
        binary = self.binary
        location = None
        if binary:
            command = [binary, "-e", executable_path, "-f", "-C", addr]
            try:
                location = parse_addr2line_output(self._runner(command))
            except (OSError, subprocess.SubprocessError) as exc:
                logger.debug("addr2line failed for %s: %s", addr, exc)
        self._cache[key] = location
        return location

    def annotate(
        self, events: Sequence[TraceEvent], executable_path: str
    ) -> list[TraceEvent]:
        """Fill in file/line for events that carry only an address."""
        annotated: list[TraceEvent] = []
        resolved = 0
        for event in events:
            if event.addr and not event.file:
                location = self.resolve(executable_path, event.addr)
                if location is not None:
                    event = event.model_copy(
                        update={
                            "file": location.file,
                            "line": location.line,
                            "func": event.func or location.function,
                        }
                    )
                    resolved += 1
            annotated.append(event)
        logger.info("Symbolized %d of %d events", resolved, len(events))
        return annotated
