"""Instrumented C/C++ execution tracer package."""

from .run import trace_source, convert_trace_file, TraceRun  # noqa: F401
from .loop_engine import convert_to_steps, ConversionContext  # noqa: F401
from .trace_parser import parse_trace_file  # noqa: F401
from .run_types import ExecutionLimits, TraceConfig  # noqa: F401
from .errors import (  # noqa: F401
    TracePipelineError,
    ToolchainMissingError,
    CompileError,
    ExecutionTimeoutError,
    OutputTruncatedError,
    MalformedTraceError,
    UnreadableTraceArtifactError,
)
