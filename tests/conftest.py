"""
Pytest configuration and shared fixtures for the instance broker tests.

This file contains:
- Broker configuration isolated from the real environment
- In-memory collaborators (process control, endpoints, discovery)
- Marker registration
"""

import sys
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from broker_fakes import (  # noqa: E402
    FakeDiscovery,
    FakeEndpointLocator,
    FakeProcessControl,
    SpyLocator,
    immediate_poller,
)
from instance_broker.config import BrokerConfig  # noqa: E402
from instance_broker.core.broker import InstanceBroker  # noqa: E402
from instance_broker.core.fault_capture import FaultCapture  # noqa: E402
from instance_broker.core.launcher import ProcessLauncher  # noqa: E402

BROKER_ENV_VARS = (
    "BROKER_APP_DIR",
    "BROKER_INSTALL_DIR",
    "BROKER_PROCDUMP_PATH",
    "BROKER_DUMP_DIR",
    "BROKER_ROOT_SUFFIX",
    "BROKER_PRODUCT_VERSION",
)


@pytest.fixture(autouse=True)
def clean_broker_env(monkeypatch):
    """Keep the developer's own BROKER_* settings out of every test."""
    for name in BROKER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def pending_first_launch(monkeypatch):
    """Every test starts as if no instance had been launched in this process."""
    monkeypatch.setattr(ProcessLauncher, "_first_launch", True)


@pytest.fixture
def broker_config(tmp_path):
    return BrokerConfig(
        product_version="17.0",
        root_suffix="",
        capture_faults=False,
        artifact_dir=tmp_path / "artifacts",
        conflicting_processes=["DbgCLR", "VsJITDebugger", "dexplore"],
        dependent_processes=["VBCSCompiler"],
        endpoint_timeout_sec=1.0,
        endpoint_poll_interval_sec=0.0,
    )


@pytest.fixture
def process_control():
    return FakeProcessControl()


@pytest.fixture
def endpoint_locator():
    return FakeEndpointLocator()


@pytest.fixture
def make_broker(broker_config, process_control, endpoint_locator):
    """Factory building brokers over fake collaborators; disposes them afterwards."""
    brokers = []

    def _make(descriptors, diagnostics=None, config=None):
        config = config or broker_config
        locator = SpyLocator(FakeDiscovery(descriptors), config)
        launcher = ProcessLauncher(
            config,
            process_control,
            endpoint_locator,
            immediate_poller,
            crash_dump_settings=lambda: None,
        )
        broker = InstanceBroker(
            config,
            locator=locator,
            launcher=launcher,
            endpoint_locator=endpoint_locator,
            poller=immediate_poller,
            process_control=process_control,
            diagnostics=diagnostics or FaultCapture(config),
        )
        brokers.append(broker)
        return broker

    yield _make

    for broker in brokers:
        broker.dispose()


def pytest_configure(config):
    """Configure pytest with custom settings."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "first_chance: mark test as requiring sys.monitoring fault notifications"
    )


def pytest_report_header(config):
    """Add custom header to pytest report."""
    return [
        "Instance Broker Test Suite",
        f"Project Root: {project_root}",
    ]
