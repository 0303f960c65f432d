import subprocess

import pytest

from instance_broker.core import event_log, screenshots
from instance_broker.core.event_log import CRASH_CHANNEL, RUNTIME_CHANNEL, EventLogCollector


class TestCommands:
    def test_windows_queries_application_log(self):
        cmd = EventLogCollector(max_entries=10, platform="win32").command_for(RUNTIME_CHANNEL)

        assert cmd[:3] == ["wevtutil", "qe", "Application"]
        assert "/c:10" in cmd
        assert "@Name='.NET Runtime'" in cmd[3]

    def test_linux_uses_journal(self):
        collector = EventLogCollector(max_entries=5, platform="linux")

        assert collector.command_for(RUNTIME_CHANNEL)[-2:] == ["-p", "err"]
        assert collector.command_for(CRASH_CHANNEL)[-2:] == ["-t", "systemd-coredump"]
        assert "5" in collector.command_for(CRASH_CHANNEL)

    def test_macos_uses_unified_log(self):
        cmd = EventLogCollector(platform="darwin").command_for(CRASH_CHANNEL)

        assert cmd[:2] == ["log", "show"]
        assert cmd[-1] == 'process == "ReportCrash"'

    def test_unknown_platform_or_channel(self):
        assert EventLogCollector(platform="sunos5").command_for(RUNTIME_CHANNEL) is None
        assert EventLogCollector(platform="linux").command_for("security") is None
        assert EventLogCollector(platform="sunos5").try_write_runtime_entries("unused.log") is False


class TestWriteEntries:
    @pytest.fixture
    def collector(self):
        return EventLogCollector(platform="linux")

    def _patch_run(self, monkeypatch, returncode=0, stdout=b""):
        monkeypatch.setattr(
            event_log.subprocess,
            "run",
            lambda cmd, **kwargs: subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr=b""),
        )

    def test_writes_output(self, collector, monkeypatch, tmp_path):
        self._patch_run(monkeypatch, stdout=b'{"MESSAGE": "segfault"}\n')
        path = tmp_path / "x.crash.log"

        assert collector.try_write_crash_entries(path) is True
        assert path.read_bytes() == b'{"MESSAGE": "segfault"}\n'

    def test_empty_output_writes_nothing(self, collector, monkeypatch, tmp_path):
        self._patch_run(monkeypatch, stdout=b"  \n")
        path = tmp_path / "x.runtime.log"

        assert collector.try_write_runtime_entries(path) is False
        assert not path.exists()

    def test_failed_query_writes_nothing(self, collector, monkeypatch, tmp_path):
        self._patch_run(monkeypatch, returncode=1, stdout=b"partial")

        assert collector.try_write_runtime_entries(tmp_path / "x.runtime.log") is False

    def test_timeout_is_not_an_error(self, collector, monkeypatch, tmp_path):
        def _timeout(cmd, **kwargs):
            raise subprocess.TimeoutExpired(cmd, 15)

        monkeypatch.setattr(event_log.subprocess, "run", _timeout)

        assert collector.try_write_runtime_entries(tmp_path / "x.runtime.log") is False


def test_screenshot_failure_returns_false(monkeypatch, tmp_path):
    def _no_display():
        raise RuntimeError("no display available")

    monkeypatch.setattr(screenshots.mss, "mss", _no_display)
    path = tmp_path / "shot.png"

    assert screenshots.take_screenshot(path) is False
    assert not path.exists()
