"""Platform adapter: flags, paths, environment and timestamps per OS family."""

from __future__ import annotations

import logging
import os
import re
import sys
import time
from enum import Enum
from typing import Callable, Iterable, Mapping

from .constants import (
    CONTRADICTING_FLAG_PATTERN,
    CONTRADICTING_FLAGS,
    DETERMINISTIC_TICK_US,
    ENV_TRACE_DETERMINISTIC,
    REQUIRED_COMPILE_FLAGS,
    TRUTHY_ENV_VALUES,
)

logger = logging.getLogger(__name__)

_CONTRADICTING_FLAG_RE = re.compile(CONTRADICTING_FLAG_PATTERN)


class OSFamily(str, Enum):
    """Operating system families the pipeline distinguishes."""

    LINUX = "linux"
    MACOS = "macos"
    WINDOWS = "windows"

    @classmethod
    def detect(cls, platform: str | None = None) -> OSFamily:
        platform = platform if platform is not None else sys.platform
        if platform.startswith("win") or platform == "cygwin":
            return cls.WINDOWS
        if platform == "darwin":
            return cls.MACOS
        return cls.LINUX


_LIBRARY_PATH_VARIABLES: dict[OSFamily, str] = {
    OSFamily.LINUX: "LD_LIBRARY_PATH",
    OSFamily.MACOS: "DYLD_LIBRARY_PATH",
    OSFamily.WINDOWS: "PATH",
}

_PATH_DELIMITERS: dict[OSFamily, str] = {
    OSFamily.LINUX: ":",
    OSFamily.MACOS: ":",
    OSFamily.WINDOWS: ";",
}


def deterministic_from_env(env: Mapping[str, str] | None = None) -> bool:
    env = env if env is not None else os.environ
    return env.get(ENV_TRACE_DETERMINISTIC, "").strip().lower() in TRUTHY_ENV_VALUES


def is_contradicting_flag(flag: str) -> bool:
    """Return True if *flag* would undo optimisation/instrumentation settings."""
    return flag in CONTRADICTING_FLAGS or bool(_CONTRADICTING_FLAG_RE.match(flag))


class PlatformAdapter:
    """Normalizes everything that differs between operating systems.

    Args:
        os_family: Target OS family. Detected from ``sys.platform`` if omitted.
        deterministic: Use counter-derived timestamps. Read from
            ``TRACE_DETERMINISTIC`` if omitted.
        clock: Nanosecond wall clock, injectable for tests.
    """

    def __init__(
        self,
        os_family: OSFamily | None = None,
        deterministic: bool | None = None,
        clock: Callable[[], int] = time.time_ns,
    ):
        self.os_family = os_family or OSFamily.detect()
        self.deterministic = (
            deterministic if deterministic is not None else deterministic_from_env()
        )
        self._clock = clock

    @property
    def library_path_variable(self) -> str:
        return _LIBRARY_PATH_VARIABLES[self.os_family]

    @property
    def path_delimiter(self) -> str:
        return _PATH_DELIMITERS[self.os_family]

    def normalize_flags(self, user_flags: Iterable[str]) -> list[str]:
        """Prepend the required flags and drop user flags that contradict them.

        Order of the surviving user flags is preserved and nothing is
        deduplicated, so positional pairs like ``-isystem <dir>`` stay intact.
        """
        kept: list[str] = []
        for flag in user_flags:
            if is_contradicting_flag(flag):
                logger.debug("Dropping contradicting compiler flag %s", flag)
                continue
            kept.append(flag)
        return [*REQUIRED_COMPILE_FLAGS, *kept]

    def normalize_path(self, path: str | os.PathLike) -> str:
        raw = os.fspath(path)
        if not raw:
            return ""
        return os.path.abspath(raw).replace("\\", "/")

    def build_execution_environment(
        self,
        base_env: Mapping[str, str],
        library_paths: Iterable[str] = (),
    ) -> dict[str, str]:
        env = dict(base_env)
        prefix = [p for p in library_paths if p]
        if prefix:
            variable = self.library_path_variable
            existing = env.get(variable, "")
            parts = prefix + ([existing] if existing else [])
            env[variable] = self.path_delimiter.join(parts)
        env["LC_ALL"] = "C"
        env["TZ"] = "UTC"
        return env

    def timestamp(self, counter: int) -> int:
        """Microsecond timestamp for the *counter*-th emitted step."""
        if self.deterministic:
            return counter * DETERMINISTIC_TICK_US
        return self._clock() // 1000

    @staticmethod
    def normalize_output_lines(text: str) -> list[str]:
        return [line for line in text.splitlines() if line.strip()]
