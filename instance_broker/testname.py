"""Tracks the name of the test currently running, for naming capture artifacts."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator, Optional

_lock = threading.Lock()
_current_name: Optional[str] = None


def current_test_name() -> Optional[str]:
    return _current_name


def set_current_test_name(name: Optional[str]) -> None:
    global _current_name
    with _lock:
        _current_name = name


@contextmanager
def capture_test_name(name: str) -> Iterator[str]:
    """Publish ``name`` as the running test for the duration of the block."""
    previous = current_test_name()
    set_current_test_name(name)
    try:
        yield name
    finally:
        set_current_test_name(previous)
