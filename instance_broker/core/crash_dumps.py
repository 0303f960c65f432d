"""Attaches a crash-dump collector (procdump) to a freshly launched process."""

from __future__ import annotations

import logging
import os
from typing import Optional

import psutil

from ..config import CrashDumpSettings
from .process_control import ProcessControl

logger = logging.getLogger(__name__)


def attach_crash_dump_collector(
    settings: CrashDumpSettings,
    pid: int,
    process_control: ProcessControl,
) -> Optional[psutil.Popen]:
    """
    Start procdump against ``pid`` so unhandled exceptions leave a full dump.

    Best effort: a collector that cannot be started is logged and skipped.
    """
    dump_directory = settings.dump_directory.rstrip("\\/")
    try:
        os.makedirs(dump_directory, exist_ok=True)
        collector = process_control.start(
            settings.procdump_path,
            ["-accepteula", "-e", "-ma", str(pid), dump_directory],
        )
    except OSError as e:
        logger.warning(f"[CrashDumps] Could not attach {settings.procdump_path} to PID {pid}: {e}")
        return None

    logger.info(f"[CrashDumps] Collecting crash dumps for PID {pid} into {dump_directory}")
    return collector
