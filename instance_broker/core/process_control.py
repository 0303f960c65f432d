"""
Process Control
===============

psutil-backed process operations used by the launcher and instance handles:
starting processes, running blocking helper commands, liveness checks,
graceful-then-forced termination, and best-effort kill-by-name for stray
helper processes.
"""

from __future__ import annotations

import logging
import subprocess
from typing import List, Optional, Sequence

import psutil

logger = logging.getLogger(__name__)


def _normalize_name(name: str) -> str:
    name = name.lower()
    if name.endswith(".exe"):
        name = name[:-4]
    return name


class ProcessControl:
    """Starts, inspects and stops processes."""

    def __init__(self, terminate_timeout: float = 10.0):
        self._terminate_timeout = terminate_timeout

    def start(self, executable: str, args: Sequence[str] = ()) -> psutil.Popen:
        cmd = [executable, *args]
        logger.debug(f"[ProcessControl] Starting: {subprocess.list2cmdline(cmd)}")
        return psutil.Popen(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )

    def run(self, executable: str, args: Sequence[str] = ()) -> int:
        """Start a process and block until it exits; returns its exit code."""
        process = self.start(executable, args)
        return process.wait()

    def is_running(self, process: Optional[psutil.Process]) -> bool:
        if process is None:
            return False
        try:
            poll = getattr(process, "poll", None)
            if poll is not None and poll() is not None:
                return False
            return process.is_running() and process.status() != psutil.STATUS_ZOMBIE
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return False

    def terminate(self, process: Optional[psutil.Process]) -> None:
        """Terminate a process and its children: SIGTERM first, then SIGKILL."""
        if process is None:
            return
        try:
            targets: List[psutil.Process] = process.children(recursive=True)
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            targets = []
        targets.append(process)

        for proc in targets:
            try:
                proc.terminate()
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue

        _, alive = psutil.wait_procs(targets, timeout=self._terminate_timeout)
        for proc in alive:
            try:
                logger.warning(f"[ProcessControl] PID {proc.pid} ignored terminate, killing")
                proc.kill()
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
        if alive:
            psutil.wait_procs(alive, timeout=self._terminate_timeout)

    def kill_by_name(self, name: str) -> int:
        """Kill every process with this name; absent processes are not an error."""
        wanted = _normalize_name(name)
        killed = 0
        for proc in psutil.process_iter(["name"]):
            try:
                proc_name = proc.info.get("name") or ""
                if _normalize_name(proc_name) != wanted:
                    continue
                proc.kill()
                killed += 1
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
        if killed:
            logger.info(f"[ProcessControl] Killed {killed} leftover '{name}' process(es)")
        return killed
