"""Tests for ctrace.session: per-request artifact paths."""

from __future__ import annotations

import os

from ctrace.platform_adapter import OSFamily
from ctrace.session import SessionArtifacts
from ctrace.toolchain import Language


class TestSessionArtifacts:
    def test_paths_inside_directory(self, tmp_path):
        artifacts = SessionArtifacts.create(
            str(tmp_path / "s"), Language.C, session_id="abc", os_family=OSFamily.LINUX
        )
        assert artifacts.session_id == "abc"
        assert os.path.isdir(artifacts.directory)
        assert artifacts.source_path.endswith("program.c")
        assert artifacts.executable_path.endswith("program")
        assert os.path.basename(artifacts.trace_path) == "trace.json"
        assert os.path.basename(artifacts.debug_log_path) == "trace_debug.json"

    def test_windows_executable_suffix(self, tmp_path):
        artifacts = SessionArtifacts.create(
            str(tmp_path), Language.CPP, os_family=OSFamily.WINDOWS
        )
        assert artifacts.executable_path.endswith("program.exe")
        assert artifacts.source_path.endswith("program.cpp")

    def test_generated_session_ids_are_unique(self, tmp_path):
        first = SessionArtifacts.create(str(tmp_path), Language.CPP)
        second = SessionArtifacts.create(str(tmp_path), Language.CPP)
        assert first.session_id != second.session_id
