"""Full-desktop screenshots for fault-capture artifacts."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Union

import mss
from PIL import Image

logger = logging.getLogger(__name__)


def take_screenshot(path: Union[str, Path]) -> bool:
    """Save a PNG of every monitor to ``path``; returns False if nothing was written."""
    try:
        with mss.mss() as sct:
            monitor = sct.monitors[0]
            shot = sct.grab(monitor)
            img = Image.frombytes("RGB", shot.size, shot.bgra, "raw", "BGRX")
        img.save(str(path), format="PNG")
        return True
    except Exception as e:
        logger.debug(f"[Screenshots] Capture to {path} failed: {e}")
        return False
