import sys

import psutil

from broker_fakes import FakeProcessControl
from instance_broker.config import CrashDumpSettings
from instance_broker.core import process_control as process_control_module
from instance_broker.core.crash_dumps import attach_crash_dump_collector
from instance_broker.core.process_control import ProcessControl

SLEEPER = [sys.executable, "-c", "import time; time.sleep(60)"]


class _NamedProcess:
    def __init__(self, name, error=None):
        self.info = {"name": name}
        self.killed = False
        self._error = error

    def kill(self):
        if self._error is not None:
            raise self._error
        self.killed = True


def test_start_is_running_and_terminate():
    control = ProcessControl(terminate_timeout=5)

    process = control.start(SLEEPER[0], SLEEPER[1:])
    try:
        assert control.is_running(process)
    finally:
        control.terminate(process)

    assert not control.is_running(process)


def test_run_returns_exit_code():
    control = ProcessControl()

    assert control.run(sys.executable, ["-c", "raise SystemExit(3)"]) == 3


def test_is_running_handles_missing_process():
    assert not ProcessControl().is_running(None)


def test_kill_by_name_matches_case_insensitively(monkeypatch):
    processes = [
        _NamedProcess("VBCSCompiler.exe"),
        _NamedProcess("vbcscompiler"),
        _NamedProcess("devenv.exe"),
        _NamedProcess("VBCSCompiler.exe", error=psutil.NoSuchProcess(1)),
    ]
    monkeypatch.setattr(process_control_module.psutil, "process_iter", lambda attrs=None: iter(processes))

    killed = ProcessControl().kill_by_name("VBCSCompiler")

    assert killed == 2
    assert [p.killed for p in processes] == [True, True, False, False]


def test_kill_by_name_with_nothing_to_kill(monkeypatch):
    monkeypatch.setattr(process_control_module.psutil, "process_iter", lambda attrs=None: iter([]))

    assert ProcessControl().kill_by_name("dexplore") == 0


class TestCrashDumps:
    def test_collector_started_against_pid(self, tmp_path):
        control = FakeProcessControl()
        dump_dir = tmp_path / "dumps"
        settings = CrashDumpSettings("procdump.exe", str(dump_dir) + "/")

        collector = attach_crash_dump_collector(settings, 4242, control)

        assert collector is control.started[0]
        assert dump_dir.is_dir()
        assert control.events == [
            ("start", "procdump.exe", ["-accepteula", "-e", "-ma", "4242", str(dump_dir)])
        ]

    def test_collector_that_cannot_start_is_skipped(self, tmp_path):
        control = FakeProcessControl()
        control.start_error = FileNotFoundError("procdump.exe")
        settings = CrashDumpSettings("procdump.exe", str(tmp_path / "dumps"))

        assert attach_crash_dump_collector(settings, 4242, control) is None
