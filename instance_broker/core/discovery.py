"""
Installation Discovery
======================

Enumerates installed copies of the external application. A discovery source
is any callable returning a finite, single-pass iterable of
:class:`InstanceDescriptor`; the locator consumes it once per acquisition.

The default source, :class:`VsWhereDiscovery`, runs the installer's query
tool and parses its JSON output.
"""

from __future__ import annotations

import json
import logging
import subprocess
from enum import IntFlag
from typing import Any, Callable, FrozenSet, Iterable, Iterator, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import BrokerError

logger = logging.getLogger(__name__)


class InstanceState(IntFlag):
    """Installation state flags reported by the installer."""
    NONE = 0
    LOCAL = 1
    REGISTERED = 2
    NO_REBOOT_REQUIRED = 4
    NO_ERRORS = 8
    COMPLETE = 0xFFFFFFFF


MINIMUM_REQUIRED_STATE = InstanceState.LOCAL | InstanceState.REGISTERED


class InstanceDescriptor(BaseModel):
    """One discovered installation."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    installation_path: str = Field(alias="installationPath")
    version: str = Field(alias="installationVersion")
    display_name: str = Field(default="", alias="displayName")
    capabilities: FrozenSet[str] = Field(default_factory=frozenset, alias="packages")
    state: int = Field(default=int(InstanceState.COMPLETE))

    @field_validator("capabilities", mode="before")
    @classmethod
    def _package_ids(cls, value: Any) -> Any:
        # The installer reports packages as objects; tests and callers pass ids.
        if value is None:
            return frozenset()
        if isinstance(value, (list, tuple, set, frozenset)):
            return frozenset(
                item["id"] if isinstance(item, dict) else item for item in value
            )
        return value

    @model_validator(mode="before")
    @classmethod
    def _derive_state(cls, data: Any) -> Any:
        if isinstance(data, dict) and "state" not in data and "isComplete" in data:
            data = dict(data)
            if data.get("isComplete"):
                data["state"] = int(InstanceState.COMPLETE)
            else:
                data["state"] = int(InstanceState.LOCAL | InstanceState.REGISTERED)
        return data

    @property
    def flags(self) -> InstanceState:
        return InstanceState(self.state & int(InstanceState.COMPLETE))

    @property
    def major_version(self) -> int:
        return int(self.version.split(".")[0])

    def has_state(self, required: InstanceState) -> bool:
        return (self.state & int(required)) == int(required)


DiscoverySource = Callable[[], Iterable[InstanceDescriptor]]


class DiscoveryError(BrokerError):
    """The installer query tool failed or produced unreadable output."""


class VsWhereDiscovery:
    """
    Discovery source backed by the installer's ``vswhere`` query tool.

    Each call starts a new query and yields descriptors lazily; the returned
    generator can only be iterated once.
    """

    QUERY_ARGS = [
        "-all", "-prerelease", "-products", "*",
        "-include", "packages", "-format", "json", "-utf8",
    ]

    def __init__(self, executable: str, timeout: float = 60.0, extra_args: Optional[List[str]] = None):
        self._executable = executable
        self._timeout = timeout
        self._extra_args = list(extra_args or [])

    def __call__(self) -> Iterator[InstanceDescriptor]:
        return self._enumerate()

    def _enumerate(self) -> Iterator[InstanceDescriptor]:
        cmd = [self._executable, *self.QUERY_ARGS, *self._extra_args]
        logger.debug(f"[Discovery] Querying installations: {' '.join(cmd)}")
        try:
            completed = subprocess.run(
                cmd,
                capture_output=True,
                timeout=self._timeout,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise DiscoveryError(f"Failed to run {self._executable}: {e}") from e

        if completed.returncode != 0:
            stderr = completed.stderr.decode("utf-8", errors="replace").strip()
            raise DiscoveryError(
                f"{self._executable} exited with code {completed.returncode}: {stderr}"
            )

        try:
            records = json.loads(completed.stdout.decode("utf-8") or "[]")
        except ValueError as e:
            raise DiscoveryError(f"Unreadable output from {self._executable}: {e}") from e

        for record in records:
            yield InstanceDescriptor.model_validate(record)
