import logging
import threading
from types import SimpleNamespace

from instance_broker import pytest_plugin
from instance_broker.logging_config import PACKAGE_LOGGER, BrokerLogFormatter, configure_logging
from instance_broker.testname import capture_test_name, current_test_name, set_current_test_name


def test_configure_logging_is_idempotent():
    logger = logging.getLogger(PACKAGE_LOGGER)
    before = list(logger.handlers)
    try:
        configure_logging(logging.DEBUG)
        configure_logging(logging.INFO)

        added = [h for h in logger.handlers if h not in before]
        assert len(added) == 1
        assert added[0].level == logging.INFO
        assert isinstance(added[0].formatter, BrokerLogFormatter)
    finally:
        logger.handlers = before
        logger.setLevel(logging.NOTSET)


def test_formatter_uses_event_icon():
    record = logging.LogRecord(
        "instance_broker.core.broker", logging.INFO, __file__, 1,
        "[InstanceBroker] Reusing running instance", None, None,
    )
    record.event_type = "REUSE"

    text = BrokerLogFormatter().format(record)

    assert "♻️" in text
    assert "Reusing running instance" in text


def test_formatter_without_event_type():
    record = logging.LogRecord("x", logging.WARNING, __file__, 1, "plain %s", ("message",), None)

    text = BrokerLogFormatter().format(record)

    assert "plain message" in text
    assert "WARNING" in text


class TestCurrentTestName:
    def test_capture_restores_previous_name(self):
        set_current_test_name("outer")
        try:
            with capture_test_name("inner"):
                assert current_test_name() == "inner"
            assert current_test_name() == "outer"
        finally:
            set_current_test_name(None)

    def test_name_visible_from_other_threads(self):
        seen = []
        with capture_test_name("shared"):
            worker = threading.Thread(target=lambda: seen.append(current_test_name()))
            worker.start()
            worker.join()

        assert seen == ["shared"]

    def test_plugin_publishes_item_name(self):
        set_current_test_name(None)
        item = SimpleNamespace(name="test_scenario[17.0]")

        protocol = pytest_plugin.pytest_runtest_protocol(item, None)
        next(protocol)
        assert current_test_name() == "test_scenario[17.0]"
        protocol.close()

        assert current_test_name() is None


def test_plugin_installs_console_logging():
    logger = logging.getLogger(PACKAGE_LOGGER)
    before = list(logger.handlers)
    previous_level = logger.level
    for handler in before:
        logger.removeHandler(handler)
    try:
        config = SimpleNamespace(getoption=lambda name: "debug")

        pytest_plugin.pytest_configure(config)

        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, BrokerLogFormatter)
    finally:
        logger.handlers = before
        logger.setLevel(previous_level)


def test_configure_logging_exported_from_package():
    import instance_broker

    assert instance_broker.configure_logging is configure_logging
