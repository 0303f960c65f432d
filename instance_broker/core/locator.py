"""
Instance Locator
================

Picks the installation that will serve an acquisition.

Identity filtering comes first: an explicit installation path from the
environment matches that path only; otherwise the installation's version must
start with the configured product version. Surviving candidates must then
cover the requested capabilities and be at least locally present and
registered. The first qualifying candidate in enumeration order wins; when
none qualifies, the error lists every rejected candidate and why.
"""

from __future__ import annotations

import logging
from typing import AbstractSet, Callable, List, Mapping, Optional

from ..config import BrokerConfig, installation_path_override, normalize_path
from . import capabilities as caps
from .discovery import MINIMUM_REQUIRED_STATE, DiscoverySource, InstanceDescriptor
from .errors import NoMatchingInstanceError, Rejection

logger = logging.getLogger(__name__)


def _same_path(left: str, right: str) -> bool:
    return normalize_path(left).casefold() == normalize_path(right).casefold()


class InstanceLocator:
    """Selects an installation from a discovery source."""

    def __init__(
        self,
        discover: DiscoverySource,
        config: Optional[BrokerConfig] = None,
        environ: Optional[Callable[[], Mapping[str, str]]] = None,
    ):
        self._discover = discover
        self._config = config or BrokerConfig()
        # Read lazily so overrides set after construction are honored.
        self._environ = environ

    def _path_override(self) -> Optional[str]:
        environ = self._environ() if self._environ is not None else None
        return installation_path_override(environ)

    def locate(self, required: AbstractSet[str]) -> InstanceDescriptor:
        """Return the first discovered installation able to serve ``required``."""
        required = caps.capability_set(required)
        override = self._path_override()
        if override:
            logger.debug(
                f"[InstanceLocator] Installation path override present, matching only {override}"
            )

        rejections: List[Rejection] = []
        discovered = 0
        identity_matches = 0

        for instance in self._discover():
            discovered += 1

            if override:
                if not _same_path(instance.installation_path, override):
                    continue
            elif not instance.version.startswith(self._config.product_version):
                continue
            identity_matches += 1

            missing = caps.missing(instance.capabilities, required)
            if missing:
                rejections.append(Rejection(
                    installation_path=instance.installation_path,
                    display_name=instance.display_name,
                    reason=f"was found but was missing these packages: {', '.join(missing)}",
                    missing_capabilities=frozenset(missing),
                ))
                continue

            if not instance.has_state(MINIMUM_REQUIRED_STATE):
                rejections.append(Rejection(
                    installation_path=instance.installation_path,
                    display_name=instance.display_name,
                    reason=(
                        "matched the specified requirements but had an invalid state. "
                        f"(State: {instance.flags!r})"
                    ),
                ))
                continue

            logger.info(
                f"[InstanceLocator] Selected {instance.display_name or 'installation'} "
                f"{instance.version} at {instance.installation_path}",
                extra={"event_type": "LOCATE"},
            )
            return instance

        summary = ""
        if discovered == 0:
            summary = "No installations of the application were discovered."
        elif identity_matches == 0:
            if override:
                summary = (
                    f"{discovered} installation(s) were discovered but none is installed at {override}."
                )
            else:
                summary = (
                    f"{discovered} installation(s) were discovered but none has a version "
                    f"starting with {self._config.product_version}."
                )

        error = NoMatchingInstanceError(rejections, summary)
        logger.error(
            f"[InstanceLocator] No installation can serve {sorted(required)}:\n{error}",
            extra={"event_type": "FAILURE"},
        )
        raise error
