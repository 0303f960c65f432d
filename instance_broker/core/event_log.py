"""
OS Event-Log Collection
=======================

Copies recent structured entries from the operating system's event log next
to a fault's other artifacts. Two channels are collected: entries from the
managed runtime (unhandled exceptions, runtime failures) and entries from the
OS crash reporter.

Collection is best effort: a missing tool, a timeout or empty output just
means no file is written.
"""

from __future__ import annotations

import logging
import subprocess
import sys
from pathlib import Path
from typing import Dict, List, Optional, Union

logger = logging.getLogger(__name__)

RUNTIME_CHANNEL = "runtime"
CRASH_CHANNEL = "crash"

# Event-log providers per channel on Windows.
_WINDOWS_PROVIDERS: Dict[str, List[str]] = {
    RUNTIME_CHANNEL: [".NET Runtime", "Application Error"],
    CRASH_CHANNEL: ["Windows Error Reporting"],
}

# journald priority filters per channel on Linux.
_JOURNAL_FILTERS: Dict[str, List[str]] = {
    RUNTIME_CHANNEL: ["-p", "err"],
    CRASH_CHANNEL: ["-t", "systemd-coredump"],
}

# Unified-log predicates per channel on macOS.
_MACOS_PREDICATES: Dict[str, str] = {
    RUNTIME_CHANNEL: "messageType == error",
    CRASH_CHANNEL: 'process == "ReportCrash"',
}


class EventLogCollector:
    """Writes recent OS event-log entries for one channel to a file."""

    def __init__(self, max_entries: int = 25, timeout: float = 15.0, platform: Optional[str] = None):
        self._max_entries = max_entries
        self._timeout = timeout
        self._platform = platform or sys.platform

    def command_for(self, channel: str) -> Optional[List[str]]:
        if self._platform == "win32":
            providers = _WINDOWS_PROVIDERS.get(channel)
            if not providers:
                return None
            selector = " or ".join(f"@Name='{name}'" for name in providers)
            return [
                "wevtutil", "qe", "Application",
                f"/q:*[System[Provider[{selector}]]]",
                f"/c:{self._max_entries}", "/rd:true", "/f:RenderedXml",
            ]
        if self._platform.startswith("linux"):
            extra = _JOURNAL_FILTERS.get(channel)
            if extra is None:
                return None
            return [
                "journalctl", "--no-pager", "-o", "json",
                "-n", str(self._max_entries), *extra,
            ]
        if self._platform == "darwin":
            predicate = _MACOS_PREDICATES.get(channel)
            if predicate is None:
                return None
            return ["log", "show", "--last", "10m", "--style", "json", "--predicate", predicate]
        return None

    def try_write_entries(self, channel: str, path: Union[str, Path]) -> bool:
        cmd = self.command_for(channel)
        if cmd is None:
            return False
        try:
            completed = subprocess.run(
                cmd,
                capture_output=True,
                timeout=self._timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug(f"[EventLog] Could not read {channel} entries: {e}")
            return False

        if completed.returncode != 0 or not completed.stdout.strip():
            return False

        try:
            Path(path).write_bytes(completed.stdout)
        except OSError as e:
            logger.debug(f"[EventLog] Could not write {path}: {e}")
            return False
        return True

    def try_write_runtime_entries(self, path: Union[str, Path]) -> bool:
        return self.try_write_entries(RUNTIME_CHANNEL, path)

    def try_write_crash_entries(self, path: Union[str, Path]) -> bool:
        return self.try_write_entries(CRASH_CHANNEL, path)
