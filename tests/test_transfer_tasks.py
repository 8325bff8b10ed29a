"""Tests for the Qt background runner."""

import pytest

pytest.importorskip("PySide6")

from PySide6.QtCore import QThreadPool  # noqa: E402

from app.transfer_tasks import TransferSignals, TransferTaskRunner, _TransferTask  # noqa: E402
from core.services.interfaces import TransferPhase, TransferResult  # noqa: E402
from infrastructure.transfer_controller import TransferBusyError  # noqa: E402


class _FakeController:
    def __init__(self, busy: bool = False) -> None:
        self.is_busy = busy
        self.listeners = []

    def add_listener(self, listener):
        self.listeners.append(listener)


class _FakeVM:
    def __init__(self, controller) -> None:
        self.controller = controller

    def write(self):
        return TransferResult(success=True, phase=TransferPhase.SUCCESS, target_file="mmkv")

    def restore(self):
        raise TransferBusyError("a transfer is already in progress")


class TestTransferTask:
    """Tests for the QRunnable body, run synchronously."""

    def test_result_is_emitted(self):
        signals = TransferSignals()
        done, failed = [], []
        signals.writeFinished.connect(done.append)
        signals.taskFailed.connect(failed.append)
        vm = _FakeVM(_FakeController())
        _TransferTask(job=vm.write, done=signals.writeFinished, failed=signals.taskFailed).run()
        assert len(done) == 1
        assert done[0].success
        assert failed == []

    def test_busy_is_reported(self):
        signals = TransferSignals()
        failed = []
        signals.taskFailed.connect(failed.append)
        vm = _FakeVM(_FakeController())
        _TransferTask(job=vm.restore, done=signals.restoreFinished, failed=signals.taskFailed).run()
        assert failed == ["a transfer is already in progress"]


    def test_unexpected_error_is_reported(self):
        signals = TransferSignals()
        done, failed = [], []
        signals.writeFinished.connect(done.append)
        signals.taskFailed.connect(failed.append)

        def crash():
            raise RuntimeError("disk on fire")

        _TransferTask(job=crash, done=signals.writeFinished, failed=signals.taskFailed).run()
        assert done == []
        assert failed == ["unexpected error: disk on fire"]


class TestTransferTaskRunner:
    """Tests for request gating and phase forwarding."""

    def test_phase_forwarded(self):
        controller = _FakeController()
        runner = TransferTaskRunner(vm=_FakeVM(controller), pool=QThreadPool())
        phases = []
        runner.signals.phaseChanged.connect(phases.append)
        controller.listeners[0](TransferPhase.PATCHING)
        assert phases == ["patching"]

    def test_busy_controller_rejects_request(self):
        runner = TransferTaskRunner(vm=_FakeVM(_FakeController(busy=True)), pool=QThreadPool())
        assert not runner.request_write()
        assert not runner.request_restore()
