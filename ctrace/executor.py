"""Sandboxed execution of instrumented programs under time and output limits."""

from __future__ import annotations

import json
import logging
import os
import signal
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from typing import IO, Callable, Mapping, Sequence

from .constants import ENV_TRACE_OUTPUT
from .platform_adapter import OSFamily, PlatformAdapter
from .run_types import ExecutionLimits, ExecutionResult

logger = logging.getLogger(__name__)

_READ_CHUNK = 64 * 1024
_PIPE_GRACE_S = 1.0
_POSIX = os.name == "posix"

TERMINATED_BY_TIMEOUT = "timeout"
TERMINATED_BY_OUTPUT_CAP = "output_cap"


class ByteCappedSink:
    """Accumulates bytes up to *limit*; everything past it is dropped."""

    def __init__(self, limit: int):
        self.limit = limit
        self._chunks: list[bytes] = []
        self._size = 0
        self.overflowed = False

    def write(self, chunk: bytes) -> bool:
        """Store *chunk*; return True if the cap has been exceeded."""
        room = self.limit - self._size
        if len(chunk) > room:
            self.overflowed = True
            chunk = chunk[: max(room, 0)]
        if chunk:
            self._chunks.append(chunk)
            self._size += len(chunk)
        return self.overflowed

    def getvalue(self) -> bytes:
        return b"".join(self._chunks)

    def text(self) -> str:
        return self.getvalue().decode("utf-8", errors="replace")


class _Terminator:
    """Kills a process at most once; the first reason recorded wins.

    With *group* set the whole process group is killed, so background
    children that inherited the output pipes die with the program.
    """

    def __init__(self, process: subprocess.Popen, group: bool = False):
        self._process = process
        self._group = group
        self._lock = threading.Lock()
        self.reason: str | None = None

    def terminate(self, reason: str) -> None:
        with self._lock:
            if self.reason is not None:
                return
            if self._process.poll() is None:
                self.reason = reason
                logger.warning("Killing pid %d: %s", self._process.pid, reason)
            elif not self._group:
                return
            self._kill()

    def _kill(self) -> None:
        if not self._group:
            self._process.kill()
            return
        try:
            os.killpg(self._process.pid, signal.SIGKILL)
        except ProcessLookupError:
            logger.debug("Process group %d already gone", self._process.pid)


def _drain(stream: IO[bytes], sink: ByteCappedSink, terminator: _Terminator) -> None:
    for chunk in iter(lambda: stream.read1(_READ_CHUNK), b""):
        if sink.write(chunk):
            terminator.terminate(TERMINATED_BY_OUTPUT_CAP)
    stream.close()


def _feed(stream: IO[bytes], data: bytes) -> None:
    try:
        stream.write(data)
        stream.close()
    except BrokenPipeError:
        logger.debug("Program exited before reading all of stdin")


class ProcessRunner(ABC):
    """Runs a command under ExecutionLimits.

    Subclasses only decide what happens inside the child before exec; the
    wall-clock timer and output caps are shared.
    """

    @abstractmethod
    def _preexec(self, limits: ExecutionLimits) -> Callable[[], None] | None: ...

    def run(
        self,
        command: Sequence[str],
        env: Mapping[str, str],
        cwd: str,
        limits: ExecutionLimits,
        stdin_text: str = "",
    ) -> ExecutionResult:
        started = time.perf_counter()
        process = subprocess.Popen(
            list(command),
            stdin=subprocess.PIPE if stdin_text else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=dict(env),
            cwd=cwd,
            preexec_fn=self._preexec(limits),
            start_new_session=_POSIX,
        )
        terminator = _Terminator(process, group=_POSIX)
        stdout_sink = ByteCappedSink(limits.max_output_bytes)
        stderr_sink = ByteCappedSink(limits.max_output_bytes)

        threads = [
            threading.Thread(
                target=_drain, args=(process.stdout, stdout_sink, terminator), daemon=True
            ),
            threading.Thread(
                target=_drain, args=(process.stderr, stderr_sink, terminator), daemon=True
            ),
        ]
        if stdin_text:
            threads.append(
                threading.Thread(
                    target=_feed,
                    args=(process.stdin, stdin_text.encode("utf-8")),
                    daemon=True,
                )
            )
        timer = threading.Timer(
            limits.time_ms / 1000, terminator.terminate, args=(TERMINATED_BY_TIMEOUT,)
        )
        timer.daemon = True

        timer.start()
        for thread in threads:
            thread.start()
        try:
            returncode = process.wait()
            timer.cancel()
            if not self._join(threads):
                logger.warning(
                    "Output pipes still open after pid %d exited; killing its group",
                    process.pid,
                )
                terminator.terminate("orphaned output pipes")
                self._join(threads)
        finally:
            timer.cancel()
            terminator.terminate("cleanup")

        exit_code, signum = (
            (None, -returncode) if returncode < 0 else (returncode, None)
        )
        return ExecutionResult(
            stdout=stdout_sink.text(),
            stderr=stderr_sink.text(),
            exit_code=exit_code,
            signal=signum,
            timed_out=terminator.reason == TERMINATED_BY_TIMEOUT,
            truncated=stdout_sink.overflowed or stderr_sink.overflowed,
            duration_s=time.perf_counter() - started,
        )

    @staticmethod
    def _join(threads: Sequence[threading.Thread]) -> bool:
        """Wait briefly for the pipe threads; False if any is still blocked."""
        deadline = time.monotonic() + _PIPE_GRACE_S
        for thread in threads:
            thread.join(max(deadline - time.monotonic(), 0))
        return not any(thread.is_alive() for thread in threads)


class SoftLimitRunner(ProcessRunner):
    """Wall-clock timer and output caps only."""

    def _preexec(self, limits: ExecutionLimits) -> Callable[[], None] | None:
        return None


class HardLimitRunner(ProcessRunner):
    """Adds kernel-enforced address-space and CPU limits via setrlimit."""

    def _preexec(self, limits: ExecutionLimits) -> Callable[[], None] | None:
        if not limits.has_hard_limits:
            return None

        def apply_rlimits() -> None:
            import resource

            if limits.memory_bytes is not None:
                resource.setrlimit(
                    resource.RLIMIT_AS, (limits.memory_bytes, limits.memory_bytes)
                )
            if limits.cpu_seconds is not None:
                resource.setrlimit(
                    resource.RLIMIT_CPU, (limits.cpu_seconds, limits.cpu_seconds)
                )

        return apply_rlimits


_RUNNERS: dict[OSFamily, type[ProcessRunner]] = {
    OSFamily.LINUX: HardLimitRunner,
    OSFamily.MACOS: SoftLimitRunner,
    OSFamily.WINDOWS: SoftLimitRunner,
}


def select_runner(os_family: OSFamily) -> ProcessRunner:
    return _RUNNERS[os_family]()


class SandboxedExecutor:
    """Runs an instrumented executable and collects its output.

    The runner is chosen once, from the adapter's OS family, unless one is
    injected.
    """

    def __init__(
        self,
        adapter: PlatformAdapter | None = None,
        runner: ProcessRunner | None = None,
        library_paths: Sequence[str] = (),
        base_env: Mapping[str, str] | None = None,
    ):
        self._adapter = adapter or PlatformAdapter()
        self._runner = runner or select_runner(self._adapter.os_family)
        self._library_paths = list(library_paths)
        self._base_env = base_env

    @property
    def runner(self) -> ProcessRunner:
        return self._runner

    def execute(
        self,
        executable_path: str,
        trace_output_path: str,
        debug_log_path: str = "",
        limits: ExecutionLimits = ExecutionLimits(),
        stdin_text: str = "",
    ) -> ExecutionResult:
        base_env = self._base_env if self._base_env is not None else os.environ
        env = self._adapter.build_execution_environment(base_env, self._library_paths)
        env[ENV_TRACE_OUTPUT] = trace_output_path
        cwd = os.path.dirname(os.path.abspath(executable_path))

        if os.path.exists(trace_output_path):
            os.remove(trace_output_path)

        logger.info("Executing %s (limits: %s)", executable_path, limits)
        result = self._runner.run([executable_path], env, cwd, limits, stdin_text)
        logger.info(
            "Program finished: exit=%s signal=%s timed_out=%s truncated=%s in %.3fs",
            result.exit_code,
            result.signal,
            result.timed_out,
            result.truncated,
            result.duration_s,
        )

        if debug_log_path and not result.succeeded:
            write_debug_log(debug_log_path, executable_path, cwd, env, limits, result)
        return result


def write_debug_log(
    path: str,
    executable_path: str,
    cwd: str,
    env: Mapping[str, str],
    limits: ExecutionLimits,
    result: ExecutionResult,
) -> None:
    record = {
        "command": [executable_path],
        "cwd": cwd,
        "limits": {
            "timeMs": limits.time_ms,
            "maxOutputBytes": limits.max_output_bytes,
            "memoryBytes": limits.memory_bytes,
            "cpuSeconds": limits.cpu_seconds,
        },
        "outcome": result.to_dict(),
        "durationS": round(result.duration_s, 6),
        "envKeys": sorted(env),
        "traceOutput": env.get(ENV_TRACE_OUTPUT, ""),
    }
    with open(path, "w", encoding="utf-8") as f:
        json.dump(record, f, indent=2)
    logger.info("Wrote execution diagnostics to %s", path)
