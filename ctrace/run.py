"""End-to-end trace pipeline: compile → execute → parse → symbolize → convert."""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from typing import Any, Iterable

from .compiler import CompilationOrchestrator
from .constants import STEP_LOOP_BODY_SUMMARY
from .errors import ExecutionTimeoutError, OutputTruncatedError
from .executor import SandboxedExecutor
from .loop_engine import ConversionContext, convert_to_steps
from .platform_adapter import PlatformAdapter
from .run_types import ExecutionResult, PipelineStats, TraceConfig
from .session import SessionArtifacts
from .source_scan import InputScanner
from .symbolizer import Addr2LineSymbolizer
from .toolchain import Language, ToolchainValidator, get_toolchain_validator
from .trace_parser import parse_trace_file
from .trace_types import ConversionResult, Step

logger = logging.getLogger(__name__)


@dataclass
class TraceRun:
    """Everything produced by one compile-and-trace request."""

    steps: list[Step] = field(default_factory=list)
    execution: ExecutionResult = field(default_factory=ExecutionResult)
    warnings: list[Exception] = field(default_factory=list)
    trace_warnings: list[str] = field(default_factory=list)
    compile_diagnostics: str = ""
    tracked_functions: list[str] = field(default_factory=list)
    trace_complete: bool = False
    stats: PipelineStats = field(default_factory=PipelineStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "steps": [step.to_dict() for step in self.steps],
            **self.execution.to_dict(),
            "warnings": [
                {"type": type(w).__name__, "message": str(w)} for w in self.warnings
            ],
            "traceWarnings": list(self.trace_warnings),
            "compileDiagnostics": self.compile_diagnostics,
            "trackedFunctions": list(self.tracked_functions),
            "traceComplete": self.trace_complete,
        }


def _execution_warnings(result: ExecutionResult, config: TraceConfig) -> list[Exception]:
    warnings: list[Exception] = []
    if result.timed_out:
        warnings.append(ExecutionTimeoutError(config.limits.time_ms))
    if result.truncated:
        warnings.append(OutputTruncatedError(config.limits.max_output_bytes))
    return warnings


def trace_source(
    source: str,
    language: str | Language = Language.CPP,
    *,
    user_flags: Iterable[str] = (),
    config: TraceConfig | None = None,
    validator: ToolchainValidator | None = None,
    symbolizer: Addr2LineSymbolizer | None = None,
    input_scanner: InputScanner | None = None,
    workdir: str | None = None,
    stdin_text: str = "",
) -> TraceRun:
    """Compile *source* with instrumentation, run it and convert its trace.

    Args:
        source: C or C++ program text.
        language: ``"c"`` or ``"cpp"`` (aliases accepted).
        user_flags: Extra compiler flags; contradicting ones are dropped.
        config: Limits and feature toggles. Defaults to ``TraceConfig.from_env()``.
        validator: Toolchain validator for DI/testing.
        symbolizer: addr2line wrapper for DI/testing.
        input_scanner: stdin statement finder for DI/testing.
        workdir: Caller-owned session directory. A temporary one is used
            (and removed) when omitted.
        stdin_text: Data fed to the program's standard input.

    Raises:
        ToolchainMissingError: no usable compiler.
        CompileError: the source does not compile.
        UnreadableTraceArtifactError: the program left no trace artifact.
    """
    config = config or TraceConfig.from_env()
    language = language if isinstance(language, Language) else Language.from_name(language)
    adapter = PlatformAdapter(deterministic=config.deterministic)
    validator = validator or get_toolchain_validator(
        config.toolchain_root, adapter.os_family
    )

    pipeline_start = time.perf_counter()
    stats = PipelineStats(
        source_bytes=len(source.encode("utf-8")),
        source_lines=source.count("\n")
        + (1 if source and not source.endswith("\n") else 0),
        language=language.value,
    )

    directory_cm = (
        contextlib.nullcontext(workdir)
        if workdir
        else tempfile.TemporaryDirectory(prefix="ctrace-")
    )
    with directory_cm as directory:
        artifacts = SessionArtifacts.create(directory, language, os_family=adapter.os_family)

        # 1. Compile
        t0 = time.perf_counter()
        orchestrator = CompilationOrchestrator(
            validator,
            adapter=adapter,
            runtime_objects=config.runtime_objects,
            timeout_s=config.compile_timeout_s,
        )
        compiled = orchestrator.compile(source, language, artifacts, user_flags)
        stats.compile_time = time.perf_counter() - t0
        toolchain = compiled.toolchain
        stats.compiler = os.path.basename(toolchain.compiler) if toolchain else ""

        # 2. Execute
        t0 = time.perf_counter()
        executor = SandboxedExecutor(
            adapter=adapter,
            library_paths=toolchain.library_paths if toolchain else (),
        )
        execution = executor.execute(
            compiled.executable_path,
            artifacts.trace_path,
            artifacts.debug_log_path,
            limits=config.limits,
            stdin_text=stdin_text,
        )
        stats.execution_time = time.perf_counter() - t0
        stats.stdout_bytes = len(execution.stdout.encode("utf-8"))
        warnings = _execution_warnings(execution, config)

        # 3. Parse
        t0 = time.perf_counter()
        parsed = parse_trace_file(artifacts.trace_path)
        stats.parse_time = time.perf_counter() - t0
        stats.event_count = len(parsed.events)
        stats.skipped_records = parsed.skipped_records

        # 4. Symbolize
        events = parsed.events
        if config.symbolize:
            t0 = time.perf_counter()
            events = (symbolizer or Addr2LineSymbolizer()).annotate(
                events, compiled.executable_path
            )
            stats.symbolize_time = time.perf_counter() - t0

        input_requests = {}
        if config.scan_inputs:
            input_requests = (input_scanner or InputScanner()).scan(source, language)

        # 5. Convert
        t0 = time.perf_counter()
        conversion = convert_to_steps(
            events,
            ConversionContext(
                source_file=adapter.normalize_path(artifacts.source_path),
                stdout=execution.stdout,
                input_requests=input_requests,
                tracked_functions=parsed.tracked_functions,
                bookends=config.bookends,
                adapter=adapter,
            ),
        )
        stats.convert_time = time.perf_counter() - t0

    warnings.extend(conversion.warnings)
    stats.step_count = len(conversion.steps)
    stats.summary_count = sum(
        1 for step in conversion.steps if step.event_type == STEP_LOOP_BODY_SUMMARY
    )
    stats.warning_count = len(warnings) + len(parsed.warnings)
    stats.total_time = time.perf_counter() - pipeline_start
    logger.info(
        "Traced %d steps in %.1fms", stats.step_count, stats.total_time * 1000
    )

    return TraceRun(
        steps=conversion.steps,
        execution=execution,
        warnings=warnings,
        trace_warnings=parsed.warnings,
        compile_diagnostics=compiled.diagnostics,
        tracked_functions=conversion.tracked_functions,
        trace_complete=parsed.complete,
        stats=stats,
    )


def convert_trace_file(
    path: str,
    *,
    stdout: str = "",
    source_file: str = "",
    deterministic: bool | None = None,
    bookends: bool = True,
    strict: bool = False,
) -> ConversionResult:
    """Convert an existing trace artifact without compiling or running anything.

    With *deterministic* left as None the TRACE_DETERMINISTIC variable decides.
    """
    parsed = parse_trace_file(path)
    return convert_to_steps(
        parsed.events,
        ConversionContext(
            source_file=source_file,
            stdout=stdout,
            tracked_functions=parsed.tracked_functions,
            bookends=bookends,
            strict=strict,
            adapter=PlatformAdapter(deterministic=deterministic),
        ),
    )
