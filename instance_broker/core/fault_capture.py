"""
Fault Capture
=============

Snapshots forensic evidence the moment a fault is raised, before any
``except`` block gets to handle (and possibly hide) it.

For every qualifying fault a set of artifacts named
``{HH.MM.SS}-{test name}-{fault type}`` is written to the artifact directory:

    {base}.log          exception text and the stack it was raised from
    {base}.runtime.log  recent runtime entries from the OS event log
    {base}.crash.log    recent crash-reporter entries from the OS event log
    {base}.png          screenshot of the desktop

INTERCEPTION:
    On Python 3.12+ the capture subscribes to ``sys.monitoring`` RAISE events,
    which fire for every raised exception before it is caught. Older
    interpreters fall back to ``sys.excepthook``/``threading.excepthook`` plus
    the broker reporting acquisition failures explicitly; that mode only sees
    faults that escape to a hook or to the broker, and says so in the log.

    Faults raised and handled entirely inside the standard library or an
    installed third-party package are internal control flow of that library
    and are skipped unless ``capture_library_faults`` is set; one that escapes
    into other code is captured there. Faults raised in this package are
    always captured, including the ones it handles itself.

    RAISE fires again in every frame an exception unwinds through, so each
    thread remembers the id of the fault it captured last and forgets it once
    an EXCEPTION_HANDLED event reports that fault as caught.

Every capture step is isolated: a failing step is logged at debug level and
the remaining steps still run. Nothing raised while capturing ever replaces
the original fault, and faults raised on a thread that is already capturing
are dropped.
"""

from __future__ import annotations

import logging
import os
import re
import sys
import sysconfig
import threading
import traceback
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Tuple, Union

from ..config import BrokerConfig
from ..testname import current_test_name
from .event_log import EventLogCollector
from .screenshots import take_screenshot

logger = logging.getLogger(__name__)

UNKNOWN_TEST_NAME = "Unknown"

LOG_SUFFIX = ".log"
RUNTIME_EVENTS_SUFFIX = ".runtime.log"
CRASH_EVENTS_SUFFIX = ".crash.log"
SCREENSHOT_SUFFIX = ".png"

ARTIFACT_SUFFIXES = (LOG_SUFFIX, RUNTIME_EVENTS_SUFFIX, CRASH_EVENTS_SUFFIX, SCREENSHOT_SUFFIX)
LONGEST_SUFFIX = max(ARTIFACT_SUFFIXES, key=len)

# Raised by normal control flow, never evidence of a problem.
IGNORED_FAULT_TYPES: Tuple[type, ...] = (StopIteration, StopAsyncIteration, GeneratorExit)

_TOOL_NAME = "instance_broker.fault_capture"
_INVALID_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|\s]+')
_PACKAGE_DIR = os.path.normcase(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


# =============================================================================
# ARTIFACT NAMING
# =============================================================================

def sanitize_test_name(name: Optional[str]) -> str:
    if not name:
        return UNKNOWN_TEST_NAME
    cleaned = _INVALID_FILENAME_CHARS.sub("_", name).strip("._")
    return cleaned or UNKNOWN_TEST_NAME


def _base_name(when: datetime, test_name: str, fault_type: str) -> str:
    return f"{when:%H.%M.%S}-{test_name}-{fault_type}"


def artifact_base_name(
    log_dir: Union[str, Path],
    test_name: str,
    fault_type: str,
    when: datetime,
    max_path: int,
) -> str:
    """
    Build the shared base name of a capture's artifacts.

    When the longest artifact path would exceed ``max_path``, the test-name
    component is shortened by the overflow and the name rebuilt. If dropping
    the test name entirely is still not enough, the over-long name is
    returned and a warning logged.
    """
    base = _base_name(when, test_name, fault_type)
    length = len(str(log_dir)) + 1 + len(base) + len(LONGEST_SUFFIX) + 1
    if length > max_path:
        overflow = length - max_path
        if overflow > len(test_name):
            logger.warning(
                f"[FaultCapture] Artifact paths in {log_dir} exceed {max_path} characters "
                f"even without a test name (by {overflow - len(test_name)})"
            )
        test_name = test_name[:max(0, len(test_name) - overflow)]
        base = _base_name(when, test_name, fault_type)
    return base


def format_fault(exc: BaseException) -> str:
    """Exception text followed by the call stack it was raised from."""
    header = "".join(traceback.format_exception_only(type(exc), exc)).rstrip()
    tb = exc.__traceback__
    if tb is None:
        return header + os.linesep
    while tb.tb_next is not None:
        tb = tb.tb_next
    stack = "".join(traceback.format_stack(tb.tb_frame))
    return f"{header}{os.linesep}{stack}"


@dataclass
class CaptureArtifacts:
    """Files written for one captured fault (``None`` where a step produced nothing)."""
    base_name: str
    directory: Path
    log: Optional[Path] = None
    runtime_events: Optional[Path] = None
    crash_events: Optional[Path] = None
    screenshot: Optional[Path] = None


# =============================================================================
# FAULT FILTERING
# =============================================================================

def _library_prefixes() -> Tuple[str, ...]:
    paths = sysconfig.get_paths()
    prefixes = set()
    for key in ("stdlib", "platstdlib", "purelib", "platlib"):
        path = paths.get(key)
        if path:
            prefixes.add(os.path.normcase(os.path.abspath(path)) + os.sep)
    return tuple(sorted(prefixes))


_LIBRARY_PREFIXES = _library_prefixes()


def is_library_code(filename: str) -> bool:
    """
    True for the standard library, installed third-party packages and frozen
    modules. Faults raised there are captured once they propagate into any
    other code, this package included (even when it is installed into
    site-packages).
    """
    if not filename or filename.startswith("<"):
        return True
    normalized = os.path.normcase(os.path.abspath(filename))
    if normalized.startswith(_PACKAGE_DIR + os.sep):
        return False
    return normalized.startswith(_LIBRARY_PREFIXES)


# =============================================================================
# FAULT CAPTURE
# =============================================================================

def _claim_tool_id() -> Optional[int]:
    monitoring = getattr(sys, "monitoring", None)
    if monitoring is None:
        return None
    # Prefer ids not reserved for debuggers and coverage tools.
    for tool_id in (4, 3, 2, 0, 5):
        if monitoring.get_tool(tool_id) is not None:
            continue
        try:
            monitoring.use_tool_id(tool_id, _TOOL_NAME)
        except ValueError:
            continue
        return tool_id
    return None


class FaultCapture:
    """Process-wide fault hook writing capture artifacts; attach/detach bound its lifetime."""

    def __init__(
        self,
        config: Optional[BrokerConfig] = None,
        *,
        screenshot_writer: Callable[[Path], bool] = take_screenshot,
        event_log: Optional[EventLogCollector] = None,
        test_name: Callable[[], Optional[str]] = current_test_name,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._config = config or BrokerConfig()
        self._screenshot_writer = screenshot_writer
        self._event_log = event_log or EventLogCollector(max_entries=self._config.event_log_entries)
        self._test_name = test_name
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._guard = threading.local()
        self._tool_id: Optional[int] = None
        self._previous_excepthook = None
        self._previous_thread_excepthook = None
        self._attached = False

    @property
    def attached(self) -> bool:
        return self._attached

    @property
    def first_chance(self) -> bool:
        """True when faults are observed before any handler runs."""
        return self._tool_id is not None

    # -------------------------------------------------------------------------
    # Subscription
    # -------------------------------------------------------------------------

    def attach(self) -> None:
        if self._attached:
            return
        if not self._config.capture_faults:
            logger.debug("[FaultCapture] Fault capture disabled by configuration")
            return

        tool_id = _claim_tool_id()
        if tool_id is not None:
            monitoring = sys.monitoring
            events = monitoring.events
            monitoring.register_callback(tool_id, events.RAISE, self._on_raise)
            monitoring.register_callback(tool_id, events.EXCEPTION_HANDLED, self._on_handled)
            monitoring.set_events(tool_id, events.RAISE | events.EXCEPTION_HANDLED)
            self._tool_id = tool_id
            logger.debug(f"[FaultCapture] First-chance capture attached (tool id {tool_id})")
        else:
            self._previous_excepthook = sys.excepthook
            self._previous_thread_excepthook = threading.excepthook
            sys.excepthook = self._excepthook
            threading.excepthook = self._thread_excepthook
            logger.warning(
                "[FaultCapture] First-chance fault notifications unavailable; "
                "capturing only unhandled faults and broker-reported failures (reduced fidelity)"
            )
        self._attached = True

    def detach(self) -> None:
        if not self._attached:
            return

        if self._tool_id is not None:
            monitoring = sys.monitoring
            monitoring.set_events(self._tool_id, monitoring.events.NO_EVENTS)
            monitoring.register_callback(self._tool_id, monitoring.events.RAISE, None)
            monitoring.register_callback(self._tool_id, monitoring.events.EXCEPTION_HANDLED, None)
            monitoring.free_tool_id(self._tool_id)
            self._tool_id = None
        else:
            if sys.excepthook == self._excepthook:
                sys.excepthook = self._previous_excepthook
            if threading.excepthook == self._thread_excepthook:
                threading.excepthook = self._previous_thread_excepthook
            self._previous_excepthook = None
            self._previous_thread_excepthook = None

        self._attached = False
        logger.debug("[FaultCapture] Detached")

    # -------------------------------------------------------------------------
    # Hooks
    # -------------------------------------------------------------------------

    def _qualifies(self, filename: str, exc: BaseException) -> bool:
        if isinstance(exc, IGNORED_FAULT_TYPES):
            return False
        if self._config.capture_library_faults:
            return True
        return not is_library_code(filename)

    def _on_raise(self, code, instruction_offset, exception) -> None:
        try:
            if not self._qualifies(code.co_filename, exception):
                return
        except Exception:
            return
        if getattr(self._guard, "active", False):
            return
        # Same fault still unwinding. Only the id is kept so the exception and
        # its traceback's frames are not held alive after it is handled.
        if getattr(self._guard, "last_fault_id", None) == id(exception):
            return
        self._guard.last_fault_id = id(exception)
        self.handle_fault(exception)

    def _on_handled(self, code, instruction_offset, exception) -> None:
        if getattr(self._guard, "last_fault_id", None) == id(exception):
            self._guard.last_fault_id = None

    def _excepthook(self, exc_type, exc_value, exc_tb) -> None:
        if exc_value is not None:
            self.handle_fault(exc_value)
        if self._previous_excepthook is not None:
            self._previous_excepthook(exc_type, exc_value, exc_tb)

    def _thread_excepthook(self, args) -> None:
        if args.exc_value is not None:
            self.handle_fault(args.exc_value)
        if self._previous_thread_excepthook is not None:
            self._previous_thread_excepthook(args)

    def report_boundary_fault(self, exc: BaseException) -> None:
        """Called by the broker on acquisition failure; only needed without first-chance hooks."""
        if self._attached and not self.first_chance:
            self.handle_fault(exc)

    # -------------------------------------------------------------------------
    # Capture
    # -------------------------------------------------------------------------

    def handle_fault(self, exc: BaseException) -> Optional[CaptureArtifacts]:
        """Capture ``exc`` unless this thread is already capturing."""
        if getattr(self._guard, "active", False):
            return None

        self._guard.active = True
        try:
            return self._capture(exc)
        except Exception as e:
            logger.debug(f"[FaultCapture] Capture of {type(exc).__name__} failed: {e}")
            return None
        finally:
            self._guard.active = False

    def _capture(self, exc: BaseException) -> Optional[CaptureArtifacts]:
        log_dir = Path(self._config.artifact_dir)
        try:
            test_name = self._test_name()
        except Exception:
            test_name = None
        base = artifact_base_name(
            log_dir,
            sanitize_test_name(test_name),
            type(exc).__name__,
            self._clock(),
            self._config.max_artifact_path,
        )
        log_dir.mkdir(parents=True, exist_ok=True)
        artifacts = CaptureArtifacts(base_name=base, directory=log_dir)

        log_path = log_dir / f"{base}{LOG_SUFFIX}"
        try:
            log_path.write_text(format_fault(exc), encoding="utf-8")
            artifacts.log = log_path
        except Exception as e:
            logger.debug(f"[FaultCapture] Writing {log_path} failed: {e}")

        runtime_path = log_dir / f"{base}{RUNTIME_EVENTS_SUFFIX}"
        try:
            if self._event_log.try_write_runtime_entries(runtime_path):
                artifacts.runtime_events = runtime_path
        except Exception as e:
            logger.debug(f"[FaultCapture] Runtime event-log capture failed: {e}")

        crash_path = log_dir / f"{base}{CRASH_EVENTS_SUFFIX}"
        try:
            if self._event_log.try_write_crash_entries(crash_path):
                artifacts.crash_events = crash_path
        except Exception as e:
            logger.debug(f"[FaultCapture] Crash event-log capture failed: {e}")

        screenshot_path = log_dir / f"{base}{SCREENSHOT_SUFFIX}"
        try:
            if self._screenshot_writer(screenshot_path):
                artifacts.screenshot = screenshot_path
        except Exception as e:
            logger.debug(f"[FaultCapture] Screenshot capture failed: {e}")

        logger.info(
            f"[FaultCapture] Captured {type(exc).__name__} as {base}",
            extra={"event_type": "CAPTURE"},
        )
        return artifacts
