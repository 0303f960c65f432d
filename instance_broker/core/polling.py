"""
Bounded polling for values that appear asynchronously, such as a control
endpoint that only becomes reachable some time after its process starts.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, TypeVar

from .errors import EndpointTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Poller = Callable[[Callable[[], Optional[T]]], T]


class EndpointPoller:
    """
    Calls a probe until it returns something other than ``None``.

    A ``None`` result is transient and retried after ``interval`` seconds;
    exceptions raised by the probe propagate immediately. Gives up with
    :class:`EndpointTimeoutError` once ``timeout`` seconds have elapsed.
    """

    def __init__(
        self,
        timeout: float = 300.0,
        interval: float = 0.25,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.timeout = timeout
        self.interval = interval
        self._clock = clock
        self._sleep = sleep

    def __call__(self, probe: Callable[[], Optional[T]]) -> T:
        deadline = self._clock() + self.timeout
        attempt = 0
        while True:
            attempt += 1
            value = probe()
            if value is not None:
                if attempt > 1:
                    logger.debug(f"[EndpointPoller] Probe succeeded after {attempt} attempts")
                return value

            remaining = deadline - self._clock()
            if remaining <= 0:
                raise EndpointTimeoutError(
                    f"Gave up after {attempt} attempts over {self.timeout:.1f}s"
                )
            self._sleep(min(self.interval, remaining))
