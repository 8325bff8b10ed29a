"""Tests for settings, shell, logging and utility helpers."""

import json
import os
import sys

import pytest

from core.services.interfaces import RootStatus, ShellResult
from infrastructure.audit_log import write_transfer_log
from infrastructure.logging import find_latest_log_file, init_logging
from infrastructure.root_shell import CommandShell, check_root, quote
from infrastructure.settings import JsonSettings
from infrastructure.utils import directory_digests, file_sha1, format_capture_time


class _StubShell:
    def __init__(self, result=None, error=None) -> None:
        self.result = result
        self.error = error

    def execute(self, command):
        if self.error:
            raise self.error
        return self.result


class TestJsonSettings:
    """Tests for dotted-key settings."""

    def test_dotted_access(self, tmp_path):
        path = tmp_path / "settings.json"
        path.write_text(
            json.dumps({"shell": {"timeout_seconds": "9", "command_prefix": ["sh", "-c"]}}),
            encoding="utf-8",
        )
        settings = JsonSettings(path)
        assert settings.get("shell.timeout_seconds") == "9"
        assert settings.get_int("shell.timeout_seconds", 1) == 9
        assert settings.get_list("shell.command_prefix", []) == ["sh", "-c"]
        assert settings.get("shell.missing", "d") == "d"
        assert settings.get_float("shell.command_prefix", 1.5) == 1.5

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            JsonSettings(tmp_path / "nope.json")

    def test_get_path_expands_home(self):
        settings = JsonSettings.from_dict({"a": {"dir": "~/x"}})
        assert settings.get_path("a.dir", "/d") == os.path.expanduser("~/x")
        assert settings.get_path("a.none", "/d") == "/d"


class TestCommandShell:
    """Tests for the subprocess-backed channel."""

    def test_success_and_output(self, local_shell):
        result = local_shell.execute("echo one; echo two")
        assert result.success
        assert result.stdout == ["one", "two"]

    def test_failure(self, local_shell):
        result = local_shell.execute("echo bad >&2; exit 3")
        assert not result.success
        assert result.error_text == "bad"

    def test_timeout(self):
        shell = CommandShell(prefix=["sh", "-c"], timeout=0.2)
        result = shell.execute("sleep 5")
        assert result.timed_out
        assert not result.success

    def test_missing_binary_raises(self):
        shell = CommandShell(prefix=["/nonexistent/su-binary", "-c"])
        with pytest.raises(OSError):
            shell.execute("id")

    def test_quote(self):
        assert quote("/plain/path") == "/plain/path"
        assert quote("/with space") == "'/with space'"


class TestCheckRoot:
    """Tests for root detection."""

    def test_available(self):
        shell = _StubShell(ShellResult(True, ["uid=0(root) gid=0(root)"]))
        assert check_root(shell) == RootStatus.AVAILABLE

    def test_not_root(self):
        shell = _StubShell(ShellResult(True, ["uid=10123(u0_a123)"]))
        assert check_root(shell) == RootStatus.UNAVAILABLE

    def test_denied(self):
        shell = _StubShell(ShellResult(False, [], ["Permission denied"]))
        assert check_root(shell) == RootStatus.DENIED

    def test_no_su(self):
        assert check_root(_StubShell(error=FileNotFoundError("su"))) == RootStatus.UNAVAILABLE


class TestUtils:
    """Tests for digests and time formatting."""

    def test_format_capture_time(self):
        assert format_capture_time(0) == ""
        assert format_capture_time(None) == ""
        assert len(format_capture_time(1700000000000)) == 19

    def test_digests(self, tmp_path):
        (tmp_path / "a").write_bytes(b"abc")
        (tmp_path / "sub").mkdir()
        assert file_sha1(tmp_path / "a") == "a9993e364706816aba3e25717850c26c9cd0d89d"
        assert directory_digests(tmp_path) == {"a": "a9993e364706816aba3e25717850c26c9cd0d89d"}
        assert file_sha1(tmp_path / "missing") is None
        assert directory_digests(tmp_path / "missing") == {}


class TestLogging:
    """Tests for log initialisation."""

    def test_init_and_find(self, tmp_path):
        from loguru import logger

        init_logging(str(tmp_path), level="DEBUG")
        logger.info("hello")
        logger.complete()
        latest = find_latest_log_file(str(tmp_path))
        assert latest is not None
        assert latest.name.startswith("app_")
        logger.remove()
        logger.add(sys.stderr)

    def test_find_in_missing_dir(self, tmp_path):
        assert find_latest_log_file(str(tmp_path / "none")) is None


class TestAuditLog:
    """Tests for the audit CSV writer."""

    def test_unwritable_dir_returns_none(self, tmp_path):
        from core.models import WriteRequest
        from core.services.interfaces import TransferPhase, TransferResult

        blocker = tmp_path / "file"
        blocker.write_text("x")
        request = WriteRequest(target_file="mmkv", params={"k": 1})
        result = TransferResult(success=True, phase=TransferPhase.SUCCESS, target_file="mmkv")
        assert write_transfer_log(request, result, str(blocker / "sub")) is None
