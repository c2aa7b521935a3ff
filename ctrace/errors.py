"""Error taxonomy for the trace pipeline.

Toolchain, compile and artifact failures abort a request and are raised.
Timeouts, truncation and malformed loop markers are recorded alongside the
result instead, so the partial trace can still be shown.
"""

from __future__ import annotations


class TracePipelineError(Exception):
    """Base class for every failure raised by the pipeline."""


class ToolchainMissingError(TracePipelineError):
    """A required compiler binary or runtime library is absent."""

    def __init__(self, missing: str, detail: str = ""):
        self.missing = missing
        message = f"Toolchain component missing: {missing}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class CompileError(TracePipelineError):
    """The compiler exited non-zero; ``diagnostics`` holds its stderr."""

    def __init__(self, diagnostics: str, command: list[str] | None = None):
        self.diagnostics = diagnostics
        self.command = command or []
        lines = diagnostics.strip().splitlines()
        super().__init__(
            f"Compilation failed: {lines[0]}" if lines else "Compilation failed"
        )


class ExecutionTimeoutError(TracePipelineError):
    """The traced program exceeded its wall-clock budget and was killed."""

    def __init__(self, time_ms: int):
        self.time_ms = time_ms
        super().__init__(f"Execution exceeded {time_ms} ms and was killed")


class OutputTruncatedError(TracePipelineError):
    """A program output stream exceeded its byte cap and was cut."""

    def __init__(self, max_output_bytes: int):
        self.max_output_bytes = max_output_bytes
        super().__init__(
            f"Program output exceeded {max_output_bytes} bytes and was truncated"
        )


class MalformedTraceError(TracePipelineError):
    """A loop marker does not match the innermost open loop."""

    def __init__(self, loop_id: int | None, message: str):
        self.loop_id = loop_id
        super().__init__(message)


class UnreadableTraceArtifactError(TracePipelineError):
    """The trace artifact is missing or cannot be read."""

    def __init__(self, path: str, reason: str = ""):
        self.path = path
        message = f"Trace artifact unreadable: {path}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
