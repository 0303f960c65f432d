"""
pytest plugin for the instance broker.

- Installs the broker's colored console logging for the session.
- Publishes each test's name while it runs, so fault-capture artifacts are
  named after the test that produced them.

Registered through the ``pytest11`` entry point.
"""

import logging
import os

import pytest

from .logging_config import configure_logging
from .testname import capture_test_name


def pytest_addoption(parser):
    group = parser.getgroup("instance_broker")
    group.addoption(
        "--broker-log-level",
        action="store",
        default=os.getenv("BROKER_LOG_LEVEL", "INFO"),
        help="Level of the broker's console log (default: INFO, env BROKER_LOG_LEVEL).",
    )


def pytest_configure(config):
    name = str(config.getoption("broker_log_level")).upper()
    configure_logging(getattr(logging, name, logging.INFO))


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_protocol(item, nextitem):
    with capture_test_name(item.name):
        yield
