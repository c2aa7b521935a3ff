"""Per-request artifact paths inside a caller-owned session directory."""

from __future__ import annotations

import os
import uuid
from dataclasses import dataclass

from .constants import DEBUG_LOG_NAME, TRACE_ARTIFACT_NAME
from .platform_adapter import OSFamily
from .toolchain import Language


@dataclass(frozen=True)
class SessionArtifacts:
    """File locations for one compile-and-run request.

    The directory itself is created and cleaned up by the caller; the
    pipeline only reads and writes the files below it.
    """

    session_id: str
    directory: str
    source_path: str
    executable_path: str
    trace_path: str
    debug_log_path: str

    @classmethod
    def create(
        cls,
        directory: str,
        language: Language,
        session_id: str | None = None,
        os_family: OSFamily | None = None,
    ) -> SessionArtifacts:
        session_id = session_id or uuid.uuid4().hex
        directory = os.path.abspath(directory)
        os.makedirs(directory, exist_ok=True)
        os_family = os_family or OSFamily.detect()
        exe_name = "program.exe" if os_family is OSFamily.WINDOWS else "program"
        return cls(
            session_id=session_id,
            directory=directory,
            source_path=os.path.join(directory, "program" + language.extension),
            executable_path=os.path.join(directory, exe_name),
            trace_path=os.path.join(directory, TRACE_ARTIFACT_NAME),
            debug_log_path=os.path.join(directory, DEBUG_LOG_NAME),
        )
