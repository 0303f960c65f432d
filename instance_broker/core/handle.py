"""
Instance Handles
================

:class:`InstanceHandle` binds one running application process to its control
endpoint, the installation's full capability set and its installation path.
:class:`InstanceContext` hands a handle to exactly one caller and reports
back to the broker, on release, whether the handle may be reused.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, AbstractSet, Optional, Sequence

import psutil

from .capabilities import CapabilitySet, capability_set
from .endpoints import ControlEndpoint
from .errors import ContextReleasedError
from .process_control import ProcessControl

if TYPE_CHECKING:
    from .broker import InstanceBroker

logger = logging.getLogger(__name__)


class InstanceHandle:
    """Live binding between the broker and one application process."""

    def __init__(
        self,
        process: psutil.Process,
        endpoint: ControlEndpoint,
        capabilities: AbstractSet[str],
        installation_path: str,
        process_control: ProcessControl,
        dependent_processes: Sequence[str] = (),
    ):
        self.process = process
        self.endpoint = endpoint
        self.capabilities: CapabilitySet = capability_set(capabilities)
        self.installation_path = installation_path
        self._process_control = process_control
        self._dependent_processes = tuple(dependent_processes)
        self._closed = False

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def closed(self) -> bool:
        return self._closed

    def is_running(self) -> bool:
        return self._process_control.is_running(self.process)

    def close(self, exit_host_process: bool = True) -> None:
        """
        Release this handle.

        The endpoint hooks are always detached. With ``exit_host_process`` the
        application is also shut down, along with its dependent helpers;
        without it the process keeps running so a new handle can adopt it.
        """
        if self._closed:
            return
        self._closed = True

        try:
            self.endpoint.detach()
        except Exception as e:
            logger.debug(f"[InstanceHandle] Detaching endpoint of PID {self.pid} failed: {e}")

        if not exit_host_process:
            logger.debug(f"[InstanceHandle] Released hooks on PID {self.pid}, process left running")
            return

        try:
            self.endpoint.shutdown()
        except Exception as e:
            logger.debug(f"[InstanceHandle] Endpoint shutdown of PID {self.pid} failed: {e}")

        try:
            self._process_control.terminate(self.process)
        except Exception as e:
            logger.warning(f"[InstanceHandle] Terminating PID {self.pid} failed: {e}")

        for name in self._dependent_processes:
            try:
                self._process_control.kill_by_name(name)
            except Exception as e:
                logger.debug(f"[InstanceHandle] Could not kill dependent '{name}': {e}")

        logger.info(
            f"[InstanceHandle] Closed instance PID {self.pid} ({self.installation_path})",
            extra={"event_type": "CLOSE"},
        )

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return (
            f"InstanceHandle(pid={self.pid}, capabilities={sorted(self.capabilities)}, "
            f"installation_path={self.installation_path!r}, {state})"
        )


class InstanceContext:
    """
    Single-use access to the current handle.

    Use as a context manager: a clean exit keeps the instance for the next
    acquisition, an exception discards it.
    """

    def __init__(self, handle: InstanceHandle, broker: "InstanceBroker"):
        self._handle: Optional[InstanceHandle] = handle
        self._broker = broker

    @property
    def handle(self) -> InstanceHandle:
        if self._handle is None:
            raise ContextReleasedError("This instance context has already been released")
        return self._handle

    @property
    def released(self) -> bool:
        return self._handle is None

    def release(self, reusable: bool = True) -> None:
        if self._handle is None:
            return
        self._handle = None
        self._broker._notify_released(reusable)

    def __enter__(self) -> "InstanceContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release(reusable=exc_type is None)
