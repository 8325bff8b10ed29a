"""Privileged copy/patch/restore of the camera's key-value store.

One write attempt runs these phases in order:

1. STOPPING_TARGET  force-stop the camera; failure aborts with nothing touched.
2. BACKING          copy the whole store directory to the backup location;
                    failure is logged and the attempt continues.
3. COPYING_IN       copy the target file (and its ``.crc`` sidecar, if any)
                    into the scratch directory and make it writable.
4. PATCHING         open the scratch copy, encode every key, close it so the
                    mapping reaches the file.
5. COPYING_BACK     copy the patched file back, then restore ownership,
                    permission bits and the security label.

Any failing step ends the attempt in ERROR with the phase and step named.
Nothing is retried; the caller decides whether to call `restore_from_backup`.
The controller is not reentrant: concurrent requests raise
`TransferBusyError`.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
import threading
import time

from loguru import logger

from core.models import WriteRequest
from core.services.interfaces import (
    IKeyValueStore,
    IPrivilegedShell,
    KeyValueStoreOpener,
    RestoreResult,
    ShellResult,
    TransferPhase,
    TransferResult,
)
from infrastructure.logging import get_data_directory
from infrastructure.mmkv_store import MmkvFormatError, open_mmkv_store
from infrastructure.root_shell import quote
from infrastructure.utils import file_sha1

PhaseListener = Callable[[TransferPhase], None]

CAMERA_PACKAGE = "com.oplus.camera"
CAMERA_STORE_DIR = f"/data/data/{CAMERA_PACKAGE}/files/mmkv"
SIDECAR_SUFFIX = ".crc"


class TransferBusyError(RuntimeError):
    """Raised when an attempt is requested while another one is running."""


class TransferStepError(Exception):
    """A privileged step failed; carries the phase and step that failed."""

    def __init__(self, phase: TransferPhase, step: str, message: str) -> None:
        super().__init__(message)
        self.phase = phase
        self.step = step


@dataclass(frozen=True)
class TransferConfig:
    """Paths and command templates used by the controller.

    Command templates receive ``{package}`` and ``{path}`` already quoted.
    """

    camera_package: str = CAMERA_PACKAGE
    store_dir: str = CAMERA_STORE_DIR
    backup_dir: str = str(Path(get_data_directory()) / "mmkv_backup")
    scratch_dir: str = str(Path(get_data_directory()) / "mmkv_temp")
    stop_command: str = "am force-stop {package}"
    kill_command: str = "killall {package}"
    relabel_command: str = "restorecon -R {path}"
    stop_settle_seconds: float = 0.5
    restore_settle_seconds: float = 0.5
    store_file_mode: str = "660"
    store_dir_mode: str = "770"
    scratch_file_mode: str = "666"

    @classmethod
    def from_settings(cls, settings) -> TransferConfig:
        """Build a config from `JsonSettings`, falling back to defaults."""
        base = cls()
        return cls(
            camera_package=settings.get("device.camera_package", base.camera_package),
            store_dir=settings.get_path("device.store_dir", base.store_dir),
            backup_dir=settings.get_path("transfer.backup_dir", base.backup_dir),
            scratch_dir=settings.get_path("transfer.scratch_dir", base.scratch_dir),
            stop_command=settings.get("transfer.stop_command", base.stop_command),
            kill_command=settings.get("transfer.kill_command", base.kill_command),
            relabel_command=settings.get("transfer.relabel_command", base.relabel_command),
            stop_settle_seconds=settings.get_float(
                "transfer.stop_settle_seconds", base.stop_settle_seconds
            ),
            restore_settle_seconds=settings.get_float(
                "transfer.restore_settle_seconds", base.restore_settle_seconds
            ),
        )


class TransferController:
    """Runs write attempts and rollbacks over a privileged shell."""

    def __init__(
        self,
        shell: IPrivilegedShell,
        config: TransferConfig | None = None,
        open_store: KeyValueStoreOpener = open_mmkv_store,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._shell = shell
        self._cfg = config or TransferConfig()
        self._open_store = open_store
        self._sleep = sleep
        self._busy = threading.Lock()
        self._phase = TransferPhase.IDLE
        self._listeners: list[PhaseListener] = []

    @property
    def config(self) -> TransferConfig:
        return self._cfg

    @property
    def phase(self) -> TransferPhase:
        return self._phase

    @property
    def is_busy(self) -> bool:
        return self._busy.locked()

    def add_listener(self, listener: PhaseListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: PhaseListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def reset(self) -> None:
        """Return to IDLE after SUCCESS or ERROR."""
        with self._guard():
            self._set_phase(TransferPhase.IDLE)

    # Public operations
    def write(self, request: WriteRequest) -> TransferResult:
        """Apply `request` to the camera's store. Blocks until done."""
        with self._guard():
            return self._write(request)

    def restore_from_backup(self) -> RestoreResult:
        """Copy the backed-up directory back over the store.

        The camera is stopped first and left stopped for the caller to relaunch.
        """
        with self._guard():
            return self._restore()

    def read_values(
        self, target_file: str, keys: list[str] | None = None, default: int = 0
    ) -> dict[str, int]:
        """Read current values from a scratch copy of `target_file`.

        Returns all keys when `keys` is None and an empty mapping on failure.
        """
        with self._guard():
            try:
                self._copy_in(target_file)
                store = self._open_store(self._cfg.scratch_dir, target_file)
            except (TransferStepError, OSError, MmkvFormatError) as ex:
                logger.error("Reading {} failed: {}", target_file, ex)
                return {}
            try:
                wanted = store.keys() if keys is None else keys
                return {key: store.decode_int(key, default) for key in wanted}
            finally:
                store.close()

    def stop_target(self) -> bool:
        return self._exec(self._format(self._cfg.stop_command)).success

    def kill_target(self) -> bool:
        """Kill the camera so it reloads the store on its next launch."""
        return self._exec(self._format(self._cfg.kill_command)).success

    def has_backup(self) -> bool:
        backup = quote(self._cfg.backup_dir)
        return self._exec(f'[ -d {backup} ] && [ -n "$(ls -A {backup})" ]').success

    def cleanup_scratch(self) -> bool:
        return self._exec(f"rm -rf {quote(self._cfg.scratch_dir)}").success

    # Internals
    def _guard(self) -> _BusyGuard:
        return _BusyGuard(self._busy)

    def _set_phase(self, phase: TransferPhase) -> None:
        self._phase = phase
        logger.info("Transfer phase -> {}", phase.value)
        for listener in list(self._listeners):
            try:
                listener(phase)
            except Exception as ex:  # pylint: disable=broad-exception-caught
                logger.error("Phase listener failed: {}", ex)

    def _format(self, template: str, path: str = "") -> str:
        return template.format(package=quote(self._cfg.camera_package), path=quote(path))

    def _exec(self, command: str) -> ShellResult:
        try:
            return self._shell.execute(command)
        except OSError as ex:
            logger.error("Shell unavailable for [{}]: {}", command, ex)
            return ShellResult(success=False, stderr=[str(ex)])

    def _require(self, phase: TransferPhase, step: str, command: str) -> ShellResult:
        result = self._exec(command)
        if not result.success:
            cause = result.error_text or "non-zero exit"
            if result.timed_out:
                cause = f"{cause} (command may still be running)"
            raise TransferStepError(phase, step, f"{step} failed: {cause}")
        return result

    def _store_path(self, name: str = "") -> str:
        return f"{self._cfg.store_dir}/{name}" if name else self._cfg.store_dir

    def _scratch_path(self, name: str = "") -> str:
        return f"{self._cfg.scratch_dir}/{name}" if name else self._cfg.scratch_dir

    def _write(self, request: WriteRequest) -> TransferResult:
        target = request.target_file
        backup_ok = False
        logger.info(
            "Transfer start: {} keys -> {} (filter index {})",
            len(request.params),
            target,
            request.filter_index,
        )
        try:
            self._set_phase(TransferPhase.STOPPING_TARGET)
            self._require(
                TransferPhase.STOPPING_TARGET, "stop camera", self._format(self._cfg.stop_command)
            )
            if self._cfg.stop_settle_seconds > 0:
                self._sleep(self._cfg.stop_settle_seconds)

            self._set_phase(TransferPhase.BACKING)
            backup_ok = self._backup()

            self._set_phase(TransferPhase.COPYING_IN)
            self._copy_in(target)

            self._set_phase(TransferPhase.PATCHING)
            written = self._patch(request)

            self._set_phase(TransferPhase.COPYING_BACK)
            self._copy_back(target)
        except TransferStepError as ex:
            logger.error("Transfer failed in {} at '{}': {}", ex.phase.value, ex.step, ex)
            self._set_phase(TransferPhase.ERROR)
            return TransferResult(
                success=False,
                phase=TransferPhase.ERROR,
                target_file=target,
                failed_phase=ex.phase,
                failed_step=ex.step,
                message=str(ex),
                backup_ok=backup_ok,
                rollback_advised=ex.phase == TransferPhase.COPYING_BACK,
            )

        if not self.cleanup_scratch():
            logger.warning("Scratch directory not removed: {}", self._cfg.scratch_dir)
        self._set_phase(TransferPhase.SUCCESS)
        logger.info("Transfer complete: {} keys written to {}", len(written), target)
        return TransferResult(
            success=True,
            phase=TransferPhase.SUCCESS,
            target_file=target,
            backup_ok=backup_ok,
            written_keys=written,
        )

    def _backup(self) -> bool:
        backup = self._cfg.backup_dir
        for command in (
            f"mkdir -p {quote(backup)}",
            f"cp -a {quote(self._store_path())}/* {quote(backup)}/",
        ):
            result = self._exec(command)
            if not result.success:
                logger.error("Backup failed (continuing): {}", result.error_text or command)
                return False
        logger.info("Store directory backed up to {}", backup)
        return True

    def _copy_in(self, target: str) -> None:
        phase = TransferPhase.COPYING_IN
        scratch = self._scratch_path()
        src = self._store_path(target)
        self._require(phase, "clear scratch", f"rm -rf {quote(scratch)}")
        self._require(phase, "create scratch", f"mkdir -p {quote(scratch)}")
        self._require(phase, "copy store", f"cp -a {quote(src)} {quote(scratch)}/")
        self._require(
            phase,
            "copy sidecar",
            f"cp -a {quote(src + SIDECAR_SUFFIX)} {quote(scratch)}/ 2>/dev/null; true",
        )
        mode = self._cfg.scratch_file_mode
        self._require(phase, "chmod scratch", f"chmod {mode} {quote(self._scratch_path(target))}")
        self._require(
            phase,
            "chmod scratch sidecar",
            f"chmod {mode} {quote(self._scratch_path(target + SIDECAR_SUFFIX))} 2>/dev/null; true",
        )
        logger.debug("Copied {} into {}", src, scratch)

    def _patch(self, request: WriteRequest) -> list[str]:
        phase = TransferPhase.PATCHING
        try:
            store: IKeyValueStore = self._open_store(self._cfg.scratch_dir, request.target_file)
        except (OSError, MmkvFormatError) as ex:
            raise TransferStepError(phase, "open store", f"open store failed: {ex}") from ex

        written: list[str] = []
        try:
            for key, value in request.params.items():
                store.encode(key, value)
                written.append(key)
                logger.debug("encode {} = {}", key, value)
        except (OSError, ValueError) as ex:
            raise TransferStepError(phase, "encode", f"encode failed: {ex}") from ex
        finally:
            # Closing unmaps the file; copying before this would lose writes.
            try:
                store.close()
            except OSError as ex:
                raise TransferStepError(phase, "close store", f"close store failed: {ex}") from ex

        logger.debug(
            "Patched {} (sha1 {})",
            request.target_file,
            file_sha1(self._scratch_path(request.target_file)),
        )
        return written

    def _owner(self, phase: TransferPhase) -> str:
        result = self._require(phase, "read owner", f"stat -c '%u:%g' {quote(self._store_path())}")
        owner = result.stdout[0].strip() if result.stdout else ""
        if not owner:
            raise TransferStepError(phase, "read owner", "read owner failed: empty output")
        return owner

    def _copy_back(self, target: str) -> None:
        phase = TransferPhase.COPYING_BACK
        owner = self._owner(phase)
        dst = quote(self._store_path(target))
        dst_crc = quote(self._store_path(target + SIDECAR_SUFFIX))
        src_crc = quote(self._scratch_path(target + SIDECAR_SUFFIX))
        store_dir = quote(self._store_path())
        file_mode = self._cfg.store_file_mode

        steps = [
            ("copy back", f"cp -a {quote(self._scratch_path(target))} {store_dir}/"),
            ("copy back sidecar", f"if [ -f {src_crc} ]; then cp -a {src_crc} {store_dir}/; fi"),
            ("chown", f"chown {owner} {dst}"),
            ("chown sidecar", f"if [ -f {dst_crc} ]; then chown {owner} {dst_crc}; fi"),
            ("chmod", f"chmod {file_mode} {dst}"),
            ("chmod sidecar", f"if [ -f {dst_crc} ]; then chmod {file_mode} {dst_crc}; fi"),
            ("chmod directory", f"chmod {self._cfg.store_dir_mode} {store_dir}"),
            ("relabel", self._format(self._cfg.relabel_command, self._store_path())),
        ]
        for step, command in steps:
            self._require(phase, step, command)
        logger.debug("Copied {} back with owner {}", target, owner)

    def _restore(self) -> RestoreResult:
        if not self.has_backup():
            logger.warning("Restore requested but no backup in {}", self._cfg.backup_dir)
            return RestoreResult(success=False, message="no backup found", failed_step="backup")

        logger.info("Restoring store from {}", self._cfg.backup_dir)
        self._exec(self._format(self._cfg.stop_command))
        if self._cfg.restore_settle_seconds > 0:
            self._sleep(self._cfg.restore_settle_seconds)

        store_dir = quote(self._store_path())
        try:
            owner = self._owner(TransferPhase.COPYING_BACK)
            steps = [
                ("copy backup", f"cp -a {quote(self._cfg.backup_dir)}/* {store_dir}/"),
                ("chown", f"chown -R {owner} {store_dir}/*"),
                ("chmod", f"chmod {self._cfg.store_file_mode} {store_dir}/*"),
                ("chmod directory", f"chmod {self._cfg.store_dir_mode} {store_dir}"),
                ("relabel", self._format(self._cfg.relabel_command, self._store_path())),
            ]
            for step, command in steps:
                self._require(TransferPhase.COPYING_BACK, step, command)
        except TransferStepError as ex:
            logger.error("Restore failed at '{}': {}", ex.step, ex)
            return RestoreResult(success=False, message=str(ex), failed_step=ex.step)

        self._set_phase(TransferPhase.IDLE)
        logger.info("Store restored from backup; camera left stopped")
        return RestoreResult(success=True)


class _BusyGuard:
    """Non-blocking acquisition of the controller's single-attempt lock."""

    def __init__(self, lock: threading.Lock) -> None:
        self._lock = lock

    def __enter__(self) -> None:
        if not self._lock.acquire(blocking=False):
            raise TransferBusyError("a transfer is already in progress")

    def __exit__(self, *exc_info: object) -> None:
        self._lock.release()
