"""Named constants: eliminates magic strings across the trace pipeline."""

from __future__ import annotations

ENV_TRACE_OUTPUT = "TRACE_OUTPUT"
ENV_TRACE_DETERMINISTIC = "TRACE_DETERMINISTIC"
ENV_TOOLCHAIN_ROOT = "CTRACE_TOOLCHAIN_ROOT"
ENV_TIME_MS = "CTRACE_TIME_MS"
ENV_MAX_OUTPUT_BYTES = "CTRACE_MAX_OUTPUT_BYTES"

TRUTHY_ENV_VALUES: frozenset[str] = frozenset({"1", "true", "yes", "on"})

DEFAULT_TIME_MS = 2000
DEFAULT_MAX_OUTPUT_BYTES = 1024 * 1024
DEFAULT_COMPILE_TIMEOUT_S = 30.0

REQUIRED_COMPILE_FLAGS: tuple[str, ...] = (
    "-g",
    "-O0",
    "-fno-omit-frame-pointer",
    "-finstrument-functions",
)

# User flags that would undo one of the required flags.
CONTRADICTING_FLAG_PATTERN = r"^-O([0-9]+|s|z|g|fast)?$"
CONTRADICTING_FLAGS: frozenset[str] = frozenset(
    {"-fomit-frame-pointer", "-fno-instrument-functions", "-g0"}
)

CPP_STANDARD_FLAG = "-std=c++17"

DETERMINISTIC_TICK_US = 1000

TRACE_HEADER_PREFIX = '{"version"'
TRACE_TRAILER_PREFIX = "]"

NOISE_FUNCTION_PREFIXES: tuple[str, ...] = ("std::", "__gnu_cxx::")

FRAME_ID_TEMPLATE = "{function}-{count}"

DEBUG_LOG_NAME = "trace_debug.json"
TRACE_ARTIFACT_NAME = "trace.json"

ADDR2LINE_BINARIES: tuple[str, ...] = ("llvm-addr2line", "addr2line")
HOST_C_COMPILERS: tuple[str, ...] = ("clang", "gcc", "cc")
HOST_CPP_COMPILERS: tuple[str, ...] = ("clang++", "g++", "c++")

# Step types synthesized by the conversion engine (pass-through steps keep
# their event kind as the step type).
STEP_PROGRAM_START = "program_start"
STEP_PROGRAM_END = "program_end"
STEP_LOOP_BODY_SUMMARY = "loop_body_summary"
STEP_OUTPUT = "output"
STEP_INPUT_REQUEST = "input_request"
STEP_VAR_ASSIGN = "var_assign"
STEP_VAR_DECLARE = "var_declare"
STEP_LOOP_BREAK = "loop_break"
STEP_LOOP_CONTINUE = "loop_continue"
