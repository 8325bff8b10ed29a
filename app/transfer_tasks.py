from __future__ import annotations

from collections.abc import Callable
from typing import Any

from PySide6.QtCore import QObject, QRunnable, QThreadPool, Signal
from loguru import logger

from core.services.interfaces import TransferPhase
from infrastructure.transfer_controller import TransferBusyError


class TransferSignals(QObject):
    """Signals forwarded from background transfer work.

    `phaseChanged` carries `TransferPhase.value`; the finished signals carry
    a `TransferResult` or `RestoreResult`; `taskFailed` carries a message
    when an attempt could not start.
    """

    phaseChanged = Signal(str)
    writeFinished = Signal(object)
    restoreFinished = Signal(object)
    taskFailed = Signal(str)


class _TransferTask(QRunnable):
    """QRunnable running one blocking controller call."""

    def __init__(self, *, job: Callable[[], Any], done: Any, failed: Any) -> None:
        super().__init__()
        self._job = job
        self._done = done
        self._failed = failed

    def run(self) -> None:  # type: ignore[override]
        try:
            result = self._job()
        except (TransferBusyError, ValueError) as ex:
            logger.warning("Transfer task not started: {}", ex)
            self._failed.emit(str(ex))
            return
        except Exception as ex:  # pylint: disable=broad-exception-caught
            # Every run ends in exactly one signal.
            logger.exception("Transfer task crashed: {}", ex)
            self._failed.emit(f"unexpected error: {ex}")
            return
        self._done.emit(result)


class TransferTaskRunner:
    """Dispatches write and restore attempts to a thread pool.

    At most one attempt runs at a time; requests made while the controller
    is busy are rejected and return False.
    """

    def __init__(
        self, *, vm: Any, signals: TransferSignals | None = None, pool: QThreadPool | None = None
    ) -> None:
        self._vm = vm
        self.signals = signals or TransferSignals()
        self._pool = pool or QThreadPool.globalInstance()
        vm.controller.add_listener(self._forward_phase)

    def _forward_phase(self, phase: TransferPhase) -> None:
        self.signals.phaseChanged.emit(phase.value)

    def _start(self, job: Callable[[], Any], done: Any) -> bool:
        if self._vm.controller.is_busy:
            logger.warning("Transfer request rejected: controller busy")
            return False
        task = _TransferTask(job=job, done=done, failed=self.signals.taskFailed)
        self._pool.start(task)
        return True

    def request_write(self) -> bool:
        """Queue a write of the view-model's current preset and slot."""
        return self._start(self._vm.write, self.signals.writeFinished)

    def request_restore(self) -> bool:
        """Queue a rollback from the last backup."""
        return self._start(self._vm.restore, self.signals.restoreFinished)

    def wait(self, msecs: int = -1) -> bool:
        """Block until queued tasks finish (mainly for the command line)."""
        return self._pool.waitForDone(msecs)
