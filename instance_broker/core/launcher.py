"""
Process Launcher
================

Starts a new application process for a located installation and waits until
its control endpoint is reachable.

The first launch in a host process also provisions the installation: a fixed,
ordered sequence of blocking helper invocations that clear caches, refresh the
configuration, reset settings and switch off UI that would interfere with
automated tests (roaming settings, background-download toasts, fault-report
dialogs). The steps are idempotent, so a sequence interrupted by a failure is
simply run again by the next launch.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Callable, List, Optional

import psutil

from ..config import BrokerConfig, CrashDumpSettings
from .crash_dumps import attach_crash_dump_collector
from .discovery import InstanceDescriptor
from .endpoints import ControlEndpoint, EndpointLocator
from .errors import LaunchError, ProvisioningError
from .polling import Poller
from .process_control import ProcessControl

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProvisioningStep:
    """One blocking helper invocation of the first-launch sequence."""
    name: str
    executable: str
    args: List[str]


@dataclass
class LaunchResult:
    """A started process together with its reachable control endpoint."""
    process: psutil.Process
    endpoint: ControlEndpoint


class ProcessLauncher:
    """Launches application processes, provisioning the installation once."""

    # Shared by every launcher and broker in this host process.
    _first_launch: bool = True

    def __init__(
        self,
        config: BrokerConfig,
        process_control: ProcessControl,
        endpoint_locator: EndpointLocator,
        poller: Poller,
        crash_dump_settings: Optional[Callable[[], Optional[CrashDumpSettings]]] = None,
    ):
        self._config = config
        self._process_control = process_control
        self._endpoint_locator = endpoint_locator
        self._poller = poller
        self._crash_dump_settings = crash_dump_settings or CrashDumpSettings.from_environment

    @classmethod
    def first_launch_pending(cls) -> bool:
        return cls._first_launch

    # =========================================================================
    # PROVISIONING
    # =========================================================================

    def _settings_args(self, installation_path: str, *setting: str) -> List[str]:
        args = ["set", installation_path]
        if self._config.root_suffix:
            args.append(self._config.root_suffix)
        args.append("HKCU")
        args.extend(setting)
        return args

    def provisioning_steps(self, instance: InstanceDescriptor) -> List[ProvisioningStep]:
        app = os.path.join(instance.installation_path, self._config.app_executable)
        settings_tool = os.path.join(instance.installation_path, self._config.settings_tool)
        launch_args = self._config.launch_args
        path = instance.installation_path

        steps: List[ProvisioningStep] = []
        if instance.major_version == 16:
            steps.append(ProvisioningStep(
                "disable start window",
                settings_tool,
                self._settings_args(path, "General", "OnEnvironmentStartup", "dword", "10"),
            ))

        completion_mode = 1 if self._config.use_async_completion else -1
        steps.extend([
            ProvisioningStep("clear cache", app, ["/clearcache", *launch_args]),
            ProvisioningStep("update configuration", app, ["/updateconfiguration", *launch_args]),
            ProvisioningStep(
                "reset settings",
                app,
                ["/resetsettings", "General.vssettings", "/command", "File.Exit", *launch_args],
            ),
            ProvisioningStep(
                "disable roaming settings",
                settings_tool,
                self._settings_args(
                    path, r"ApplicationPrivateSettings\Microsoft\VisualStudio",
                    "RoamingEnabled", "string", "1*System.Boolean*False",
                ),
            ),
            ProvisioningStep(
                "disable background download",
                settings_tool,
                self._settings_args(path, r"FeatureFlags\Setup\BackgroundDownload", "Value", "dword", "0"),
            ),
            ProvisioningStep(
                "set completion mode",
                settings_tool,
                self._settings_args(
                    path, r"ApplicationPrivateSettings\WindowManagement\Options",
                    "UseAsyncCompletion", "string", f"1*System.Int32*{completion_mode}",
                ),
            ),
            ProvisioningStep(
                "disable fault-report dialogs",
                settings_tool,
                self._settings_args(path, "Text Editor", "Report Exceptions", "dword", "0"),
            ),
        ])
        return steps

    def _provision(self, instance: InstanceDescriptor) -> None:
        steps = self.provisioning_steps(instance)
        logger.info(
            f"[ProcessLauncher] First launch: provisioning {instance.installation_path} "
            f"({len(steps)} steps)",
            extra={"event_type": "PROVISION"},
        )
        for step in steps:
            try:
                exit_code = self._process_control.run(step.executable, step.args)
            except OSError as e:
                raise ProvisioningError(f"Provisioning step '{step.name}' failed to start: {e}") from e
            if exit_code != 0:
                logger.warning(
                    f"[ProcessLauncher] Provisioning step '{step.name}' exited with code {exit_code}"
                )
        ProcessLauncher._first_launch = False

    # =========================================================================
    # LAUNCH
    # =========================================================================

    def launch(self, instance: InstanceDescriptor) -> LaunchResult:
        """Start the application for ``instance`` and wait for its endpoint."""
        if ProcessLauncher._first_launch:
            self._provision(instance)

        for name in self._config.conflicting_processes:
            try:
                self._process_control.kill_by_name(name)
            except Exception as e:
                logger.debug(f"[ProcessLauncher] Could not kill '{name}': {e}")

        executable = os.path.join(instance.installation_path, self._config.app_executable)
        try:
            process = self._process_control.start(executable, self._config.launch_args)
        except OSError as e:
            raise LaunchError(f"Failed to start {executable}: {e}") from e

        logger.info(
            f"[ProcessLauncher] Launched a new instance of the application. (PID: {process.pid})",
            extra={"event_type": "LAUNCH"},
        )

        try:
            endpoint = self._poller(lambda: self._endpoint_locator(process))
        except BaseException:
            logger.error(
                f"[ProcessLauncher] No control endpoint for PID {process.pid}; terminating it",
                extra={"event_type": "FAILURE"},
            )
            try:
                self._process_control.terminate(process)
            except Exception as cleanup_error:
                logger.debug(f"[ProcessLauncher] Terminating PID {process.pid} failed: {cleanup_error}")
            raise

        settings = self._crash_dump_settings()
        if settings is not None:
            attach_crash_dump_collector(settings, process.pid, self._process_control)

        return LaunchResult(process=process, endpoint=endpoint)
