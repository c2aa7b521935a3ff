"""Tests for ctrace.platform_adapter: flags, paths, environment, timestamps."""

from __future__ import annotations

import os

import pytest

from ctrace.platform_adapter import OSFamily, PlatformAdapter, deterministic_from_env

REQUIRED = ["-g", "-O0", "-fno-omit-frame-pointer", "-finstrument-functions"]


class TestNormalizeFlags:
    def test_required_flags_come_first(self):
        adapter = PlatformAdapter(os_family=OSFamily.LINUX, deterministic=True)
        flags = adapter.normalize_flags(["-Wall", "-DDEBUG"])
        assert flags == REQUIRED + ["-Wall", "-DDEBUG"]

    @pytest.mark.parametrize(
        "flag",
        ["-O", "-O1", "-O2", "-O3", "-Os", "-Oz", "-Og", "-Ofast",
         "-fomit-frame-pointer", "-fno-instrument-functions", "-g0"],
    )
    def test_contradicting_flags_dropped(self, flag):
        adapter = PlatformAdapter(os_family=OSFamily.LINUX, deterministic=True)
        assert adapter.normalize_flags([flag, "-Wextra"]) == REQUIRED + ["-Wextra"]

    def test_positional_pairs_kept_intact_and_not_deduplicated(self):
        adapter = PlatformAdapter(os_family=OSFamily.LINUX, deterministic=True)
        user = ["-isystem", "/opt/a", "-isystem", "/opt/b", "-g"]
        assert adapter.normalize_flags(user) == REQUIRED + user

    def test_empty_user_flags(self):
        adapter = PlatformAdapter(os_family=OSFamily.MACOS, deterministic=True)
        assert adapter.normalize_flags([]) == REQUIRED


class TestNormalizePath:
    def test_absolute_forward_slashes(self, tmp_path):
        adapter = PlatformAdapter(os_family=OSFamily.LINUX, deterministic=True)
        result = adapter.normalize_path(tmp_path / "a.cpp")
        assert os.path.isabs(result)
        assert "\\" not in result
        assert result.endswith("/a.cpp")

    def test_empty_path_stays_empty(self):
        adapter = PlatformAdapter(os_family=OSFamily.LINUX, deterministic=True)
        assert adapter.normalize_path("") == ""


class TestExecutionEnvironment:
    @pytest.mark.parametrize(
        "family, variable, delimiter",
        [
            (OSFamily.LINUX, "LD_LIBRARY_PATH", ":"),
            (OSFamily.MACOS, "DYLD_LIBRARY_PATH", ":"),
            (OSFamily.WINDOWS, "PATH", ";"),
        ],
    )
    def test_library_paths_prepended(self, family, variable, delimiter):
        adapter = PlatformAdapter(os_family=family, deterministic=True)
        env = adapter.build_execution_environment({variable: "existing"}, ["/tc/lib"])
        assert env[variable] == delimiter.join(["/tc/lib", "existing"])

    def test_locale_and_timezone_pinned(self):
        adapter = PlatformAdapter(os_family=OSFamily.LINUX, deterministic=True)
        env = adapter.build_execution_environment({"LC_ALL": "de_DE", "HOME": "/h"})
        assert env["LC_ALL"] == "C"
        assert env["TZ"] == "UTC"
        assert env["HOME"] == "/h"

    def test_base_env_not_mutated(self):
        adapter = PlatformAdapter(os_family=OSFamily.LINUX, deterministic=True)
        base = {"PATH": "/bin"}
        adapter.build_execution_environment(base, ["/x"])
        assert base == {"PATH": "/bin"}

    def test_no_library_paths_leaves_variable_unset(self):
        adapter = PlatformAdapter(os_family=OSFamily.LINUX, deterministic=True)
        env = adapter.build_execution_environment({}, [])
        assert "LD_LIBRARY_PATH" not in env


class TestTimestamp:
    def test_deterministic_is_counter_times_1000(self):
        adapter = PlatformAdapter(os_family=OSFamily.LINUX, deterministic=True)
        assert [adapter.timestamp(i) for i in (1, 2, 5)] == [1000, 2000, 5000]

    def test_wall_clock_uses_injected_clock_in_microseconds(self):
        adapter = PlatformAdapter(
            os_family=OSFamily.LINUX, deterministic=False, clock=lambda: 7_000_000
        )
        assert adapter.timestamp(3) == 7000

    @pytest.mark.parametrize(
        "value, expected",
        [("true", True), ("1", True), ("YES", True), ("false", False), ("", False)],
    )
    def test_deterministic_from_env(self, value, expected):
        assert deterministic_from_env({"TRACE_DETERMINISTIC": value}) is expected


class TestOSFamily:
    @pytest.mark.parametrize(
        "platform, family",
        [("linux", OSFamily.LINUX), ("darwin", OSFamily.MACOS),
         ("win32", OSFamily.WINDOWS), ("cygwin", OSFamily.WINDOWS)],
    )
    def test_detect(self, platform, family):
        assert OSFamily.detect(platform) is family


class TestOutputLines:
    def test_empty_lines_dropped(self):
        assert PlatformAdapter.normalize_output_lines("a\n\n  \nb\n") == ["a", "b"]
