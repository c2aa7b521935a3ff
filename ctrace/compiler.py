"""Compilation orchestrator: source text in, instrumented executable out."""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass, field
from typing import Iterable, Sequence

from .constants import DEFAULT_COMPILE_TIMEOUT_S
from .errors import CompileError, ToolchainMissingError
from .platform_adapter import PlatformAdapter
from .session import SessionArtifacts
from .toolchain import Language, Toolchain, ToolchainValidator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompileResult:
    """A successful compilation. ``diagnostics`` holds any warnings."""

    executable_path: str
    diagnostics: str = ""
    command: list[str] = field(default_factory=list)
    toolchain: Toolchain | None = None


class CompilationOrchestrator:
    """Compiles user source with instrumentation flags.

    Args:
        validator: Resolves the compiler for a language.
        adapter: Platform adapter used for flag normalization.
        runtime_objects: Extra objects/sources linked in, typically the
            instrumentation runtime that writes the trace artifact.
        timeout_s: Wall-clock budget for the compiler process.
    """

    def __init__(
        self,
        validator: ToolchainValidator,
        adapter: PlatformAdapter | None = None,
        runtime_objects: Sequence[str] = (),
        timeout_s: float = DEFAULT_COMPILE_TIMEOUT_S,
    ):
        self._validator = validator
        self._adapter = adapter or PlatformAdapter()
        self._runtime_objects = list(runtime_objects)
        self._timeout_s = timeout_s

    def build_command(
        self,
        toolchain: Toolchain,
        artifacts: SessionArtifacts,
        user_flags: Iterable[str] = (),
    ) -> list[str]:
        return [
            toolchain.compiler,
            *self._adapter.normalize_flags(user_flags),
            *toolchain.language.standard_flags,
            *toolchain.include_flags,
            artifacts.source_path,
            *self._runtime_objects,
            "-o",
            artifacts.executable_path,
            *toolchain.link_flags,
        ]

    def compile(
        self,
        source_text: str,
        language: Language,
        artifacts: SessionArtifacts,
        user_flags: Iterable[str] = (),
    ) -> CompileResult:
        toolchain = self._validator.validate(language)

        with open(artifacts.source_path, "w", encoding="utf-8") as f:
            f.write(source_text)

        command = self.build_command(toolchain, artifacts, user_flags)
        logger.info("Compiling: %s", " ".join(command))

        try:
            completed = subprocess.run(
                command,
                capture_output=True,
                text=True,
                cwd=artifacts.directory,
                timeout=self._timeout_s,
            )
        except FileNotFoundError as exc:
            raise ToolchainMissingError(toolchain.compiler, str(exc)) from exc
        except subprocess.TimeoutExpired as exc:
            _remove_partial(artifacts.executable_path)
            raise CompileError(
                f"compiler timed out after {self._timeout_s:.0f}s", command
            ) from exc

        diagnostics = (completed.stderr or "") + (completed.stdout or "")
        if completed.returncode != 0:
            _remove_partial(artifacts.executable_path)
            logger.warning("Compilation failed with exit code %d", completed.returncode)
            raise CompileError(diagnostics, command)

        if diagnostics.strip():
            logger.info("Compiler reported diagnostics:\n%s", diagnostics.rstrip())
        return CompileResult(
            executable_path=artifacts.executable_path,
            diagnostics=diagnostics,
            command=command,
            toolchain=toolchain,
        )


def _remove_partial(path: str) -> None:
    if os.path.exists(path):
        os.remove(path)
