"""
Instance Broker
===============

Hands out application instances to tests, reusing the running instance
between tests whenever that is safe.

For each acquisition the broker decides between two paths:

    REUSE   a current handle exists, its process is still running and its
            capability set covers the request. The process is kept; a fresh
            control endpoint is resolved for it and the old handle is closed
            without exiting the process. The endpoint is always re-resolved
            because the previous test's binding may no longer be valid.

    LAUNCH  anything else. The current handle (if any) is fully closed, the
            locator picks an installation and the launcher starts it.

If either path fails, the current handle is closed and cleared before the
error propagates, so the next acquisition never reuses anything touched by
the failed attempt.

The broker is not thread-safe: callers must acquire, use and release
instances one at a time.

Usage:
    with InstanceBroker() as broker:
        with broker.acquire({"Microsoft.VisualStudio.Component.Roslyn.Compiler"}) as ctx:
            drive(ctx.handle.endpoint)
"""

from __future__ import annotations

import logging
from typing import AbstractSet, Optional

from ..config import BrokerConfig
from . import capabilities as caps
from .discovery import VsWhereDiscovery
from .endpoints import EndpointLocator, ListeningPortEndpointLocator
from .errors import UnsupportedVersionError
from .fault_capture import FaultCapture
from .handle import InstanceContext, InstanceHandle
from .launcher import ProcessLauncher
from .locator import InstanceLocator
from .polling import EndpointPoller, Poller
from .process_control import ProcessControl

logger = logging.getLogger(__name__)


class InstanceBroker:
    """Owns at most one current instance handle and decides reuse vs. relaunch."""

    def __init__(
        self,
        config: Optional[BrokerConfig] = None,
        *,
        locator: Optional[InstanceLocator] = None,
        launcher: Optional[ProcessLauncher] = None,
        endpoint_locator: Optional[EndpointLocator] = None,
        poller: Optional[Poller] = None,
        process_control: Optional[ProcessControl] = None,
        diagnostics: Optional[FaultCapture] = None,
    ):
        self._config = config or BrokerConfig.from_env()

        if self._config.product_major_version < self._config.minimum_major_version:
            raise UnsupportedVersionError(
                f"Only product version {self._config.minimum_major_version}.0 and later "
                f"is supported (configured: {self._config.product_version})."
            )

        self._process_control = process_control or ProcessControl(
            terminate_timeout=self._config.terminate_timeout_sec
        )
        self._endpoint_locator = endpoint_locator or ListeningPortEndpointLocator(
            host=self._config.endpoint_host
        )
        self._poller = poller or EndpointPoller(
            timeout=self._config.endpoint_timeout_sec,
            interval=self._config.endpoint_poll_interval_sec,
        )
        self._locator = locator or InstanceLocator(
            VsWhereDiscovery(self._config.discovery_executable), self._config
        )
        self._launcher = launcher or ProcessLauncher(
            self._config, self._process_control, self._endpoint_locator, self._poller
        )

        self._current: Optional[InstanceHandle] = None
        self._disposed = False

        self._diagnostics = diagnostics or FaultCapture(self._config)
        self._diagnostics.attach()

    @property
    def current(self) -> Optional[InstanceHandle]:
        return self._current

    @property
    def diagnostics(self) -> FaultCapture:
        return self._diagnostics

    # =========================================================================
    # ACQUISITION
    # =========================================================================

    def acquire(self, required: Optional[AbstractSet[str]] = None) -> InstanceContext:
        """Return a context around an instance supporting ``required``."""
        if self._disposed:
            raise RuntimeError("InstanceBroker has been disposed")

        required = caps.capability_set(required)
        try:
            if self._can_reuse(required):
                self._reuse_current()
            else:
                self._start_new(required)
            return InstanceContext(self._current, self)
        except BaseException as e:
            logger.error(
                f"[InstanceBroker] Acquisition of {sorted(required)} failed: {e}",
                extra={"event_type": "FAILURE"},
            )
            self._diagnostics.report_boundary_fault(e)
            # Make sure the next test doesn't try to reuse the same instance.
            self._notify_released(reusable=False)
            raise

    def _can_reuse(self, required: AbstractSet[str]) -> bool:
        current = self._current
        return (
            current is not None
            and current.is_running()
            and caps.satisfies(current.capabilities, required)
        )

    def _reuse_current(self) -> None:
        previous = self._current
        process = previous.process

        # Resolve the new endpoint before detaching the old handle's hooks.
        endpoint = self._poller(lambda: self._endpoint_locator(process))

        previous.close(exit_host_process=False)
        self._current = None
        self._current = InstanceHandle(
            process=process,
            endpoint=endpoint,
            capabilities=previous.capabilities,
            installation_path=previous.installation_path,
            process_control=self._process_control,
            dependent_processes=self._config.dependent_processes,
        )
        logger.info(
            f"[InstanceBroker] Reusing running instance (PID: {process.pid})",
            extra={"event_type": "REUSE"},
        )

    def _start_new(self, required: AbstractSet[str]) -> None:
        self._close_current()

        instance = self._locator.locate(required)
        result = self._launcher.launch(instance)

        self._current = InstanceHandle(
            process=result.process,
            endpoint=result.endpoint,
            capabilities=instance.capabilities,
            installation_path=instance.installation_path,
            process_control=self._process_control,
            dependent_processes=self._config.dependent_processes,
        )

    # =========================================================================
    # RELEASE / DISPOSAL
    # =========================================================================

    def _close_current(self) -> None:
        current, self._current = self._current, None
        if current is not None:
            current.close(exit_host_process=True)

    def _notify_released(self, reusable: bool) -> None:
        if not reusable:
            self._close_current()

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        try:
            self._close_current()
        finally:
            self._diagnostics.detach()

    def __enter__(self) -> "InstanceBroker":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()
