"""
Instance Broker
===============

Shares one running instance of a heavyweight external application across a
sequence of tests, relaunching it only when a test needs capabilities the
running instance lacks or when the instance is no longer usable, and
capturing forensic artifacts the moment any fault is raised.
"""
from __future__ import annotations

from .config import BrokerConfig, CrashDumpSettings, installation_path_override
from .core.broker import InstanceBroker
from .core.discovery import InstanceDescriptor, InstanceState, VsWhereDiscovery
from .core.errors import (
    BrokerError,
    ContextReleasedError,
    EndpointTimeoutError,
    LaunchError,
    NoMatchingInstanceError,
    ProcessExitedError,
    ProvisioningError,
    UnsupportedVersionError,
)
from .core.fault_capture import FaultCapture
from .core.handle import InstanceContext, InstanceHandle
from .logging_config import configure_logging
from .testname import capture_test_name, current_test_name

__version__ = "1.0.0"

__all__ = [
    "BrokerConfig",
    "BrokerError",
    "ContextReleasedError",
    "CrashDumpSettings",
    "EndpointTimeoutError",
    "FaultCapture",
    "InstanceBroker",
    "InstanceContext",
    "InstanceDescriptor",
    "InstanceHandle",
    "InstanceState",
    "LaunchError",
    "NoMatchingInstanceError",
    "ProcessExitedError",
    "ProvisioningError",
    "UnsupportedVersionError",
    "VsWhereDiscovery",
    "capture_test_name",
    "configure_logging",
    "current_test_name",
    "installation_path_override",
]
