"""Run pipeline data types (pure data, no business logic)."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping

from .constants import (
    DEFAULT_COMPILE_TIMEOUT_S,
    DEFAULT_MAX_OUTPUT_BYTES,
    DEFAULT_TIME_MS,
    ENV_MAX_OUTPUT_BYTES,
    ENV_TIME_MS,
    ENV_TOOLCHAIN_ROOT,
)
from .platform_adapter import deterministic_from_env


@dataclass(frozen=True)
class ExecutionLimits:
    """Resource limits applied to one traced program run."""

    time_ms: int = DEFAULT_TIME_MS
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    memory_bytes: int | None = None
    cpu_seconds: int | None = None

    @property
    def has_hard_limits(self) -> bool:
        return self.memory_bytes is not None or self.cpu_seconds is not None


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of running an instrumented executable."""

    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    signal: int | None = None
    timed_out: bool = False
    truncated: bool = False
    duration_s: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.timed_out and not self.truncated

    def to_dict(self) -> dict:
        return {
            "stdout": self.stdout,
            "stderr": self.stderr,
            "exitCode": self.exit_code,
            "signal": self.signal,
            "timedOut": self.timed_out,
            "truncated": self.truncated,
        }


@dataclass(frozen=True)
class TraceConfig:
    """Groups trace pipeline configuration."""

    limits: ExecutionLimits = field(default_factory=ExecutionLimits)
    deterministic: bool = False
    toolchain_root: str = ""
    symbolize: bool = True
    scan_inputs: bool = True
    bookends: bool = True
    compile_timeout_s: float = DEFAULT_COMPILE_TIMEOUT_S
    runtime_objects: tuple[str, ...] = ()

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> TraceConfig:
        env = env if env is not None else os.environ
        limits = ExecutionLimits(
            time_ms=int(env.get(ENV_TIME_MS, DEFAULT_TIME_MS)),
            max_output_bytes=int(env.get(ENV_MAX_OUTPUT_BYTES, DEFAULT_MAX_OUTPUT_BYTES)),
        )
        return cls(
            limits=limits,
            deterministic=deterministic_from_env(env),
            toolchain_root=env.get(ENV_TOOLCHAIN_ROOT, ""),
        )


@dataclass
class PipelineStats:
    """Timing and size statistics for each pipeline stage."""

    source_bytes: int = 0
    source_lines: int = 0
    language: str = ""
    compiler: str = ""

    # Stage timings (seconds)
    compile_time: float = 0.0
    execution_time: float = 0.0
    parse_time: float = 0.0
    symbolize_time: float = 0.0
    convert_time: float = 0.0
    total_time: float = 0.0

    # Output sizes
    event_count: int = 0
    skipped_records: int = 0
    step_count: int = 0
    summary_count: int = 0
    stdout_bytes: int = 0
    warning_count: int = 0

    def report(self) -> str:
        lines = [
            "═══ Trace Pipeline Statistics ═══",
            f"  Source: {self.source_lines} lines, {self.source_bytes} bytes ({self.language}, {self.compiler})",
            "",
            f"  {'Stage':<20} {'Time':>10}  {'Output':>30}",
            f"  {'─' * 20} {'─' * 10}  {'─' * 30}",
        ]

        stages = [
            ("Compile", self.compile_time, ""),
            ("Execute", self.execution_time, f"{self.stdout_bytes} stdout bytes"),
            (
                "Parse trace",
                self.parse_time,
                f"{self.event_count} events, {self.skipped_records} skipped",
            ),
            ("Symbolize", self.symbolize_time, ""),
            (
                "Convert to steps",
                self.convert_time,
                f"{self.step_count} steps, {self.summary_count} summaries",
            ),
        ]
        for name, t, output in stages:
            time_str = f"{t * 1000:>8.1f}ms"
            lines.append(f"  {name:<20} {time_str:>10}  {output:>30}")

        lines.append(f"  {'─' * 20} {'─' * 10}  {'─' * 30}")
        lines.append(f"  {'Total':<20} {self.total_time * 1000:>8.1f}ms")
        lines.append("")
        lines.append(f"  Warnings: {self.warning_count}")
        return "\n".join(lines)
