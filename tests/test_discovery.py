import json
import subprocess

import pytest

from instance_broker.core import discovery
from instance_broker.core.discovery import (
    DiscoveryError,
    InstanceDescriptor,
    InstanceState,
    VsWhereDiscovery,
)

VSWHERE_OUTPUT = [
    {
        "instanceId": "1a2b3c4d",
        "installationPath": "C:\\Program Files\\Microsoft Visual Studio\\2022\\Enterprise",
        "installationVersion": "17.0.31903.59",
        "displayName": "Visual Studio Enterprise 2022",
        "isComplete": True,
        "packages": [
            {"id": "Microsoft.VisualStudio.Component.Roslyn.Compiler", "version": "17.0.31804.368"},
            {"id": "Microsoft.VisualStudio.Workload.NetWeb", "version": "17.0.31804.368"},
        ],
    },
    {
        "installationPath": "C:\\Program Files\\Microsoft Visual Studio\\2022\\Preview",
        "installationVersion": "17.1.31911.260",
        "isComplete": False,
    },
]


@pytest.fixture
def fake_vswhere(monkeypatch):
    calls = []

    def _run(cmd, **kwargs):
        calls.append(cmd)
        return subprocess.CompletedProcess(
            cmd, 0, stdout=json.dumps(VSWHERE_OUTPUT).encode("utf-8"), stderr=b""
        )

    monkeypatch.setattr(discovery.subprocess, "run", _run)
    return calls


def test_parses_installer_output(fake_vswhere):
    instances = list(VsWhereDiscovery("vswhere.exe")())

    assert len(instances) == 2
    enterprise, preview = instances
    assert enterprise.display_name == "Visual Studio Enterprise 2022"
    assert enterprise.capabilities == frozenset({
        "Microsoft.VisualStudio.Component.Roslyn.Compiler",
        "Microsoft.VisualStudio.Workload.NetWeb",
    })
    assert enterprise.flags == InstanceState.COMPLETE
    assert enterprise.major_version == 17
    assert preview.capabilities == frozenset()
    assert preview.flags == InstanceState.LOCAL | InstanceState.REGISTERED
    assert fake_vswhere[0][0] == "vswhere.exe"
    assert "-prerelease" in fake_vswhere[0]


def test_query_runs_lazily_once_per_call(fake_vswhere):
    source = VsWhereDiscovery("vswhere.exe", extra_args=["-latest"])

    results = source()
    assert fake_vswhere == []

    list(results)
    list(source())
    assert len(fake_vswhere) == 2
    assert fake_vswhere[0][-1] == "-latest"


def test_nonzero_exit_raises(monkeypatch):
    monkeypatch.setattr(
        discovery.subprocess,
        "run",
        lambda cmd, **kwargs: subprocess.CompletedProcess(cmd, 87, stdout=b"", stderr=b"bad arg"),
    )

    with pytest.raises(DiscoveryError, match="exited with code 87"):
        list(VsWhereDiscovery("vswhere.exe")())


def test_missing_tool_raises(tmp_path):
    with pytest.raises(DiscoveryError):
        list(VsWhereDiscovery(str(tmp_path / "vswhere.exe"))())


def test_descriptor_accepts_field_names():
    instance = InstanceDescriptor(
        installation_path="/opt/vs",
        version="16.11.5",
        capabilities=["A", "B"],
        state=int(InstanceState.LOCAL),
    )

    assert instance.capabilities == frozenset({"A", "B"})
    assert instance.has_state(InstanceState.LOCAL)
    assert not instance.has_state(InstanceState.LOCAL | InstanceState.REGISTERED)
