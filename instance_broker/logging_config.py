"""
Broker Console Logging
======================

Colorized console logging for broker events, so the launch/reuse decisions
made between tests are easy to follow in a long test-run log.

Loggers throughout the package are plain ``logging.getLogger(__name__)``
loggers; records may carry an ``event_type`` attribute (passed through
``extra``) that selects the icon and color used here.
"""

import logging
import sys
from datetime import datetime

import colorama
from colorama import Fore, Style

colorama.init(autoreset=True)

PACKAGE_LOGGER = "instance_broker"

_HANDLER_MARKER = "_instance_broker_console"


class BrokerLogFormatter(logging.Formatter):
    """Formatter with colors and icons for broker lifecycle events"""

    ICONS = {
        'LAUNCH': '🚀',
        'REUSE': '♻️',
        'CLOSE': '📤',
        'PROVISION': '🛠️',
        'LOCATE': '🔎',
        'ENDPOINT': '🔌',
        'CAPTURE': '📸',
        'FAILURE': '❌',
    }

    COLORS = {
        'LAUNCH': Fore.GREEN,
        'REUSE': Fore.CYAN,
        'CLOSE': Fore.BLUE,
        'PROVISION': Fore.YELLOW,
        'LOCATE': Fore.WHITE,
        'ENDPOINT': Fore.MAGENTA,
        'CAPTURE': Fore.YELLOW + Style.BRIGHT,
        'FAILURE': Fore.RED + Style.BRIGHT,
    }

    LEVEL_COLORS = {
        logging.WARNING: Fore.YELLOW,
        logging.ERROR: Fore.RED,
        logging.CRITICAL: Fore.RED + Style.BRIGHT,
    }

    def format(self, record):
        event_type = getattr(record, 'event_type', None)
        icon = self.ICONS.get(event_type, '📌')
        color = self.COLORS.get(event_type) or self.LEVEL_COLORS.get(record.levelno, Fore.WHITE)

        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S.%f')[:-3]

        parts = [
            f"{Fore.BLUE}{timestamp}{Style.RESET_ALL}",
            f"{record.levelname:<8}",
            f"{icon} {color}{record.getMessage()}{Style.RESET_ALL}",
        ]

        text = " ".join(parts)
        if record.exc_info:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    """Attach the colored console handler to the package logger (once)."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)

    for handler in logger.handlers:
        if getattr(handler, _HANDLER_MARKER, False):
            handler.setLevel(level)
            return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(BrokerLogFormatter())
    console_handler.setLevel(level)
    setattr(console_handler, _HANDLER_MARKER, True)
    logger.addHandler(console_handler)
    return logger
