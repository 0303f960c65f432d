"""Exception hierarchy for the instance broker."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, List


class BrokerError(Exception):
    """Base class for every error raised by the broker."""


class UnsupportedVersionError(BrokerError):
    """The configured product version is older than the broker supports."""


@dataclass(frozen=True)
class Rejection:
    """Why one discovered installation could not serve a request."""
    installation_path: str
    display_name: str
    reason: str
    missing_capabilities: FrozenSet[str] = field(default_factory=frozenset)

    def describe(self) -> str:
        name = self.display_name or "installation"
        return f"An instance of {name} at {self.installation_path} {self.reason}"


class NoMatchingInstanceError(BrokerError):
    """No discovered installation satisfied the request."""

    def __init__(self, rejections: List[Rejection], summary: str = ""):
        self.rejections = list(rejections)
        self.summary = summary
        lines = [r.describe() for r in self.rejections]
        if summary:
            lines.append(summary)
        super().__init__("\n".join(lines) or "No matching installation was found.")


class ProvisioningError(BrokerError):
    """A first-launch provisioning step could not be run."""


class LaunchError(BrokerError):
    """The application process could not be started or reached."""


class EndpointTimeoutError(LaunchError):
    """The control endpoint did not become reachable within the allowed time."""


class ProcessExitedError(LaunchError):
    """The process exited while the broker was waiting for its control endpoint."""


class ContextReleasedError(BrokerError):
    """An instance context was used after it had been released."""
