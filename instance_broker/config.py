"""
Broker Configuration
====================

Environment-driven configuration for the instance broker. Every field can be
overridden through a ``BROKER_*`` environment variable (or a ``.env`` file
loaded through :meth:`BrokerConfig.from_env`), so test machines can point the
broker at a different installation without code changes.

Usage:
    from instance_broker.config import BrokerConfig

    config = BrokerConfig.from_env()
    print(config.launch_args)
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Mapping, Optional

from dotenv import load_dotenv

TRUE_VALUES = {"1", "true", "yes", "on", "y"}

# Environment variables consulted when resolving an explicit installation.
APP_DIR_ENV = "BROKER_APP_DIR"
INSTALL_DIR_ENV = "BROKER_INSTALL_DIR"

# Environment variables enabling the crash-dump collector.
PROCDUMP_PATH_ENV = "BROKER_PROCDUMP_PATH"
DUMP_DIR_ENV = "BROKER_DUMP_DIR"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in TRUE_VALUES


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _default_discovery_executable() -> str:
    program_files = os.getenv("ProgramFiles(x86)", r"C:\Program Files (x86)")
    return str(Path(program_files) / "Microsoft Visual Studio" / "Installer" / "vswhere.exe")


def normalize_path(path: str) -> str:
    """Absolute path with trailing separators stripped (case preserved)."""
    full = os.path.abspath(path)
    stripped = full.rstrip("\\/")
    # Keep filesystem roots like "/" intact.
    return stripped or full


# =============================================================================
# BROKER CONFIGURATION
# =============================================================================

@dataclass
class BrokerConfig:
    """
    Configuration for instance discovery, launching and fault capture.

    All values can be overridden via environment variables.
    """
    # Target installation. product_version is a prefix of the installation
    # version: "17." matches every 17.x release, "17.8" only 17.8.
    product_version: str = field(
        default_factory=lambda: os.getenv("BROKER_PRODUCT_VERSION", "17.")
    )
    root_suffix: str = field(
        default_factory=lambda: os.getenv("BROKER_ROOT_SUFFIX", "").strip()
    )
    minimum_major_version: int = field(
        default_factory=lambda: int(os.getenv("BROKER_MIN_MAJOR_VERSION", "16"))
    )

    # Executables, relative to the installation path
    app_executable: str = field(
        default_factory=lambda: os.getenv("BROKER_APP_EXECUTABLE", "Common7/IDE/devenv.exe")
    )
    settings_tool: str = field(
        default_factory=lambda: os.getenv("BROKER_SETTINGS_TOOL", "Common7/IDE/VsRegEdit.exe")
    )
    discovery_executable: str = field(
        default_factory=lambda: os.getenv("BROKER_DISCOVERY_EXECUTABLE", _default_discovery_executable())
    )

    # Helper processes
    conflicting_processes: List[str] = field(
        default_factory=lambda: _env_list(
            "BROKER_CONFLICTING_PROCESSES", "DbgCLR,VsJITDebugger,dexplore"
        )
    )
    dependent_processes: List[str] = field(
        default_factory=lambda: _env_list("BROKER_DEPENDENT_PROCESSES", "VBCSCompiler")
    )

    # First-launch provisioning
    use_async_completion: bool = field(
        default_factory=lambda: _env_bool("BROKER_ASYNC_COMPLETION", "true")
    )

    # Control endpoint
    endpoint_timeout_sec: float = field(
        default_factory=lambda: float(os.getenv("BROKER_ENDPOINT_TIMEOUT_SEC", "300"))
    )
    endpoint_poll_interval_sec: float = field(
        default_factory=lambda: float(os.getenv("BROKER_ENDPOINT_POLL_SEC", "0.25"))
    )
    endpoint_host: str = field(
        default_factory=lambda: os.getenv("BROKER_ENDPOINT_HOST", "127.0.0.1")
    )
    terminate_timeout_sec: float = field(
        default_factory=lambda: float(os.getenv("BROKER_TERMINATE_TIMEOUT_SEC", "10"))
    )

    # Fault capture
    capture_faults: bool = field(
        default_factory=lambda: _env_bool("BROKER_CAPTURE_FAULTS", "true")
    )
    # Also capture faults raised and handled inside the stdlib or third-party packages.
    capture_library_faults: bool = field(
        default_factory=lambda: _env_bool("BROKER_CAPTURE_LIBRARY_FAULTS", "false")
    )
    artifact_dir: Path = field(
        default_factory=lambda: Path(
            os.getenv("BROKER_ARTIFACT_DIR", str(Path.cwd() / "test-results" / "Screenshots"))
        )
    )
    max_artifact_path: int = field(
        default_factory=lambda: int(os.getenv("BROKER_MAX_ARTIFACT_PATH", "260"))
    )
    event_log_entries: int = field(
        default_factory=lambda: int(os.getenv("BROKER_EVENT_LOG_ENTRIES", "25"))
    )

    def __post_init__(self) -> None:
        self.artifact_dir = Path(self.artifact_dir)

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "BrokerConfig":
        """Load ``.env`` (without overriding the real environment) and build a config."""
        load_dotenv(dotenv_path, override=False)
        return cls()

    @property
    def product_major_version(self) -> int:
        return int(self.product_version.split(".")[0])

    @property
    def launch_args(self) -> List[str]:
        """Arguments for every application start: optional profile suffix, then logging."""
        if self.root_suffix:
            return ["/rootsuffix", self.root_suffix, "/log"]
        return ["/log"]


# =============================================================================
# ENVIRONMENT OVERRIDES
# =============================================================================

def installation_path_override(environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """
    Return the explicitly requested installation path, if any.

    ``BROKER_APP_DIR`` points at the application directory inside an
    installation (two levels below its root) and wins over
    ``BROKER_INSTALL_DIR``, which names the root directly.
    """
    environ = os.environ if environ is None else environ

    app_dir = environ.get(APP_DIR_ENV)
    if app_dir:
        return normalize_path(os.path.join(app_dir, os.pardir, os.pardir))

    install_dir = environ.get(INSTALL_DIR_ENV)
    if install_dir:
        return normalize_path(install_dir)

    return None


@dataclass(frozen=True)
class CrashDumpSettings:
    """Where to find the crash-dump collector and where it should write dumps."""
    procdump_path: str
    dump_directory: str

    @classmethod
    def from_environment(cls, environ: Optional[Mapping[str, str]] = None) -> Optional["CrashDumpSettings"]:
        environ = os.environ if environ is None else environ
        procdump_path = environ.get(PROCDUMP_PATH_ENV, "").strip()
        dump_directory = environ.get(DUMP_DIR_ENV, "").strip()
        if not procdump_path or not dump_directory:
            return None
        return cls(procdump_path=procdump_path, dump_directory=dump_directory)
