#!/usr/bin/env python3
"""Demo: loop summarization on a nested-loop trace.

Without arguments, converts a built-in trace of the program below (no
compiler needed). With ``--runtime``, compiles and runs the program for real,
linking the given instrumentation runtime object.

Usage:
    python scripts/run_trace_demo.py
    python scripts/run_trace_demo.py --runtime build/tracer.o --stats
    python scripts/run_trace_demo.py --verbose
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import tempfile
from dataclasses import replace

from ctrace import TraceConfig, convert_trace_file, trace_source

SAMPLE_SOURCE = """\
#include <cstdio>
int main() {
    int grid = 0;
    for (int row = 0; row < 3; row++) {
        int col = 0;
        while (col < 2) {
            grid += row * col;
            col++;
        }
    }
    std::printf("grid = %d\\n", grid);
    return 0;
}
"""

SAMPLE_STDOUT = "grid = 3\n"


def _sample_events() -> list[dict]:
    events: list[dict] = [
        {"type": "func_enter", "func": "main", "addr": "0x401136"},
        {"type": "declare", "name": "grid", "varType": "int", "line": 3},
        {"type": "loop_start", "loopId": 1, "loopType": "for", "line": 4},
    ]
    grid = 0
    for row in range(3):
        events.append({"type": "loop_body_start", "loopId": 1, "line": 4})
        events.append({"type": "assign", "name": "col", "value": 0, "line": 5})
        events.append({"type": "loop_start", "loopId": 2, "loopType": "while", "line": 6})
        for col in range(2):
            grid += row * col
            events.append({"type": "loop_body_start", "loopId": 2, "line": 6})
            events.append({"type": "assign", "name": "grid", "value": grid, "line": 7})
            events.append({"type": "assign", "name": "col", "value": col + 1, "line": 8})
            events.append({"type": "loop_iteration_end", "loopId": 2})
        events.append({"type": "loop_end", "loopId": 2})
        events.append({"type": "loop_iteration_end", "loopId": 1})
    events.append({"type": "loop_end", "loopId": 1})
    events.append({"type": "func_exit", "func": "main", "addr": "0x401136"})
    return events


def _print_header(title: str):
    width = 60
    print(f"\n{'=' * width}")
    print(f"  {title}")
    print(f"{'=' * width}\n")


def _print_steps(steps):
    for step in steps:
        loop = f" loop={step.loop_id}" if step.loop_id is not None else ""
        iteration = f" it={step.iteration}" if step.iteration is not None else ""
        print(
            f"  [{step.step_index:3d}] {step.event_type:<20} line {step.line:<3}"
            f" {step.frame_id:<8}{loop}{iteration}"
        )
        for event in step.events:
            print(
                f"          · {event.event_type:<14} line {event.line:<3}"
                f" it={event.iteration} {event.payload}"
            )


def _convert_sample():
    with tempfile.TemporaryDirectory(prefix="ctrace-demo-") as directory:
        path = os.path.join(directory, "trace.json")
        with open(path, "w", encoding="utf-8") as f:
            f.write("\n".join(json.dumps(e) for e in _sample_events()))
        return convert_trace_file(
            path, stdout=SAMPLE_STDOUT, source_file="demo.cpp", deterministic=True
        )


def main():
    parser = argparse.ArgumentParser(description="Loop summarization demo")
    parser.add_argument(
        "--runtime",
        default=None,
        help="Instrumentation runtime object; compiles and runs the sample for real",
    )
    parser.add_argument("--stats", action="store_true", help="Print pipeline statistics")
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable pipeline logging"
    )
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(name)s: %(message)s")

    _print_header("Source")
    for i, line in enumerate(SAMPLE_SOURCE.splitlines(), 1):
        print(f"  {i:3d} | {line}")

    if args.runtime:
        config = replace(
            TraceConfig.from_env(),
            deterministic=True,
            runtime_objects=(os.path.abspath(args.runtime),),
        )
        run = trace_source(SAMPLE_SOURCE, "cpp", config=config)
        steps, warnings = run.steps, run.warnings
        _print_header("Steps (compiled run)")
    else:
        result = _convert_sample()
        steps, warnings = result.steps, result.warnings
        run = None
        _print_header("Steps (built-in trace)")

    _print_steps(steps)

    _print_header("Summary")
    summaries = [s for s in steps if s.event_type == "loop_body_summary"]
    print(f"  Steps              : {len(steps)}")
    print(f"  Loop summaries     : {len(summaries)}")
    print(f"  Buffered events    : {sum(len(s.events) for s in summaries)}")
    print(f"  Warnings           : {len(warnings)}")
    for warning in warnings:
        print(f"    - {warning}")

    if args.stats and run is not None:
        print()
        print(run.stats.report())


if __name__ == "__main__":
    main()
