"""Toolchain discovery and validation.

A bundled toolchain is laid out as::

    <root>/<platform>/bin/clang, clang++
    <root>/<platform>/lib/libc++.a, libc++abi.a, libunwind.a
    <root>/<platform>/include/
    <root>/headers/c++/v1/

When no bundled root is configured the host ``PATH`` is searched instead.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum

from .constants import CPP_STANDARD_FLAG, HOST_C_COMPILERS, HOST_CPP_COMPILERS
from .errors import ToolchainMissingError
from .platform_adapter import OSFamily

logger = logging.getLogger(__name__)

_VERSION_PROBE_TIMEOUT_S = 10.0

BUNDLED_LIBRARIES: tuple[str, ...] = ("libc++.a", "libc++abi.a", "libunwind.a")


class Language(str, Enum):
    """Source languages the compiler accepts."""

    C = "c"
    CPP = "cpp"

    @classmethod
    def from_name(cls, name: str) -> Language:
        normalized = name.strip().lower()
        aliases = {"c": cls.C, "cpp": cls.CPP, "c++": cls.CPP, "cxx": cls.CPP, "cc": cls.CPP}
        if normalized not in aliases:
            raise ValueError(f"Unsupported language: {name!r}. Use 'c' or 'cpp'.")
        return aliases[normalized]

    @property
    def extension(self) -> str:
        return ".c" if self is Language.C else ".cpp"

    @property
    def bundled_compiler(self) -> str:
        return "clang" if self is Language.C else "clang++"

    @property
    def host_compilers(self) -> tuple[str, ...]:
        return HOST_C_COMPILERS if self is Language.C else HOST_CPP_COMPILERS

    @property
    def standard_flags(self) -> list[str]:
        return [] if self is Language.C else [CPP_STANDARD_FLAG]


@dataclass(frozen=True)
class Toolchain:
    """A validated compiler plus the flags needed to build against it."""

    compiler: str
    language: Language
    version: str = ""
    include_flags: list[str] = field(default_factory=list)
    link_flags: list[str] = field(default_factory=list)
    library_paths: list[str] = field(default_factory=list)


class ToolchainLayout:
    """Paths inside a bundled toolchain root for one OS family."""

    def __init__(self, root: str, os_family: OSFamily):
        self.root = os.path.abspath(root)
        self.os_family = os_family

    @property
    def platform_dir(self) -> str:
        return os.path.join(self.root, self.os_family.value)

    @property
    def bin_dir(self) -> str:
        return os.path.join(self.platform_dir, "bin")

    @property
    def lib_dir(self) -> str:
        return os.path.join(self.platform_dir, "lib")

    @property
    def headers_dir(self) -> str:
        return os.path.join(self.root, "headers")

    def compiler_path(self, language: Language) -> str:
        name = language.bundled_compiler
        if self.os_family is OSFamily.WINDOWS:
            name += ".exe"
        return os.path.join(self.bin_dir, name)

    def include_flags(self) -> list[str]:
        return [
            "-isystem",
            os.path.join(self.headers_dir, "c++", "v1"),
            "-isystem",
            self.headers_dir,
            "-isystem",
            os.path.join(self.platform_dir, "include"),
        ]

    def link_flags(self) -> list[str]:
        return ["-L", self.lib_dir, f"-Wl,-rpath,{self.lib_dir}"]

    def deterministic_flags(self) -> list[str]:
        return [
            f"-ffile-prefix-map={self.root}=.",
            f"-fmacro-prefix-map={self.root}=.",
            "-fno-ident",
        ]


def probe_version(compiler: str) -> str:
    """Run ``<compiler> --version`` and return its first output line."""
    try:
        completed = subprocess.run(
            [compiler, "--version"],
            capture_output=True,
            text=True,
            timeout=_VERSION_PROBE_TIMEOUT_S,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise ToolchainMissingError(compiler, f"version probe failed: {exc}") from exc
    if completed.returncode != 0:
        raise ToolchainMissingError(
            compiler, f"version probe exited with {completed.returncode}"
        )
    output = (completed.stdout or completed.stderr).strip()
    return output.splitlines()[0] if output else ""


class ToolchainValidator(ABC):
    """Resolves a usable compiler for a language or raises ToolchainMissingError."""

    @abstractmethod
    def validate(self, language: Language) -> Toolchain: ...


class BundledToolchainValidator(ToolchainValidator):
    """Validates a toolchain shipped at a fixed root directory."""

    def __init__(self, layout: ToolchainLayout):
        self._layout = layout

    def validate(self, language: Language) -> Toolchain:
        layout = self._layout
        for directory in (layout.bin_dir, layout.lib_dir, layout.headers_dir):
            if not os.path.isdir(directory):
                raise ToolchainMissingError(directory, "directory not found")

        compiler = layout.compiler_path(language)
        if not os.path.isfile(compiler):
            raise ToolchainMissingError(compiler)

        if language is Language.CPP:
            for library in BUNDLED_LIBRARIES:
                path = os.path.join(layout.lib_dir, library)
                if not os.path.isfile(path):
                    raise ToolchainMissingError(path)

        version = probe_version(compiler)
        logger.info("Bundled toolchain OK: %s (%s)", compiler, version)
        return Toolchain(
            compiler=compiler,
            language=language,
            version=version,
            include_flags=layout.include_flags() + layout.deterministic_flags(),
            link_flags=layout.link_flags(),
            library_paths=[layout.lib_dir],
        )


class HostToolchainValidator(ToolchainValidator):
    """Picks the first compiler for the language found on ``PATH``."""

    def __init__(self, search_path: str | None = None):
        self._search_path = search_path

    def validate(self, language: Language) -> Toolchain:
        for name in language.host_compilers:
            compiler = shutil.which(name, path=self._search_path)
            if compiler:
                version = probe_version(compiler)
                logger.info("Host toolchain OK: %s (%s)", compiler, version)
                return Toolchain(compiler=compiler, language=language, version=version)
        raise ToolchainMissingError(
            " / ".join(language.host_compilers), "no compiler found on PATH"
        )


def get_toolchain_validator(
    root: str = "", os_family: OSFamily | None = None
) -> ToolchainValidator:
    """Factory: bundled validator when *root* is given, otherwise the host one."""
    if root:
        return BundledToolchainValidator(
            ToolchainLayout(root, os_family or OSFamily.detect())
        )
    return HostToolchainValidator()
