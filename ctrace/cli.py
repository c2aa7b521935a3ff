"""Command line entry point: trace a C/C++ file or convert an existing trace."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace

from .errors import CompileError, ToolchainMissingError, UnreadableTraceArtifactError
from .run import convert_trace_file, trace_source
from .run_types import ExecutionLimits, TraceConfig
from .toolchain import Language

_EXTENSION_LANGUAGES = {".c": "c", ".cc": "cpp", ".cpp": "cpp", ".cxx": "cpp"}


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ctrace", description="Instrumented C/C++ execution tracer"
    )
    parser.add_argument("file", nargs="?", help="C or C++ source file to trace")
    parser.add_argument(
        "--language", "-l", default=None, help="c or cpp (default: from extension)"
    )
    parser.add_argument(
        "--flag", "-f", action="append", default=[], dest="flags",
        help="Extra compiler flag, written --flag=-Wall (repeatable)",
    )
    parser.add_argument(
        "compiler_flags", nargs="*", default=[],
        help="Further compiler flags after --, e.g. prog.c -- -Wall -DN=3",
    )
    parser.add_argument("--time-ms", type=int, default=None,
                        help="Wall-clock limit in milliseconds")
    parser.add_argument("--max-output-bytes", type=int, default=None,
                        help="Per-stream output cap in bytes")
    parser.add_argument("--memory-bytes", type=int, default=None,
                        help="Address-space limit (Linux only)")
    parser.add_argument("--cpu-seconds", type=int, default=None,
                        help="CPU time limit (Linux only)")
    parser.add_argument("--deterministic", action="store_true",
                        help="Counter-derived timestamps")
    parser.add_argument("--toolchain-root", default=None,
                        help="Bundled toolchain root (default: host PATH)")
    parser.add_argument("--stdin", default=None,
                        help="File whose contents are fed to the program's stdin")
    parser.add_argument("--trace-file", default=None,
                        help="Convert an existing trace artifact instead of compiling")
    parser.add_argument("--output", "-o", default=None,
                        help="Write the JSON result here instead of stdout")
    parser.add_argument("--stats", action="store_true",
                        help="Print pipeline statistics to stderr")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Debug logging")
    return parser


def _config_from_args(args: argparse.Namespace) -> TraceConfig:
    config = TraceConfig.from_env()
    limits = config.limits
    limits = ExecutionLimits(
        time_ms=args.time_ms if args.time_ms is not None else limits.time_ms,
        max_output_bytes=(
            args.max_output_bytes
            if args.max_output_bytes is not None
            else limits.max_output_bytes
        ),
        memory_bytes=args.memory_bytes,
        cpu_seconds=args.cpu_seconds,
    )
    return replace(
        config,
        limits=limits,
        deterministic=args.deterministic or config.deterministic,
        toolchain_root=(
            args.toolchain_root if args.toolchain_root is not None else config.toolchain_root
        ),
    )


def _language_for(args: argparse.Namespace) -> Language:
    if args.language:
        return Language.from_name(args.language)
    for extension, name in _EXTENSION_LANGUAGES.items():
        if args.file.endswith(extension):
            return Language.from_name(name)
    return Language.CPP


def _write_output(payload: dict, path: str | None) -> None:
    text = json.dumps(payload, indent=2, default=str)
    if path:
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
    else:
        print(text)


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(name)s: %(message)s",
    )

    if args.trace_file:
        try:
            result = convert_trace_file(
                args.trace_file, deterministic=args.deterministic or None
            )
        except UnreadableTraceArtifactError as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 2
        _write_output(
            {
                "steps": result.to_dicts(),
                "warnings": [str(w) for w in result.warnings],
                "trackedFunctions": result.tracked_functions,
            },
            args.output,
        )
        return 0

    if not args.file:
        parser.error("a source file or --trace-file is required")

    with open(args.file, encoding="utf-8") as f:
        source = f.read()
    stdin_text = ""
    if args.stdin:
        with open(args.stdin, encoding="utf-8") as f:
            stdin_text = f.read()

    try:
        run = trace_source(
            source,
            _language_for(args),
            user_flags=args.flags + args.compiler_flags,
            config=_config_from_args(args),
            stdin_text=stdin_text,
        )
    except CompileError as exc:
        print(exc.diagnostics or str(exc), file=sys.stderr)
        return 1
    except (ToolchainMissingError, UnreadableTraceArtifactError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    _write_output(run.to_dict(), args.output)
    if args.stats:
        print(run.stats.report(), file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
