from __future__ import annotations

import argparse
from pathlib import Path
import sys

from PySide6.QtCore import QCoreApplication, QObject, Slot
from loguru import logger

from app.transfer_tasks import TransferTaskRunner
from app.viewmodels.injection_vm import InjectionVM
from core.services.interfaces import RestoreResult, RootStatus, TransferResult
from infrastructure.capture_repository import CaptureRepository
from infrastructure.logging import get_data_directory, get_log_directory, init_logging
from infrastructure.preset_repository import JsonPresetRepository, PresetFormatError
from infrastructure.root_shell import CommandShell, check_root
from infrastructure.settings import JsonSettings
from infrastructure.transfer_controller import CAMERA_PACKAGE, TransferConfig, TransferController
from infrastructure.utils import format_capture_time

BASE_DIR = Path(__file__).parent
DEFAULT_CAPTURE_FILE = f"/data/data/{CAMERA_PACKAGE}/files/omaster_filter_map.json"


class _CliReporter(QObject):
    """Prints worker progress and ends the event loop with an exit code."""

    def __init__(self, app: QCoreApplication) -> None:
        super().__init__()
        self._app = app

    @Slot(str)
    def on_phase(self, phase: str) -> None:
        print(f"  ... {phase}")

    @Slot(object)
    def on_write_finished(self, result: TransferResult) -> None:
        if result.success:
            print(f"Wrote {len(result.written_keys)} keys to {result.target_file}.")
            print("Relaunch the camera to pick up the new values.")
            self._app.exit(0)
            return
        failed = result.failed_phase.value if result.failed_phase else "unknown"
        print(f"Write failed during {failed}: {result.message}", file=sys.stderr)
        if result.rollback_advised:
            print("The store may be partially written; run with --restore.", file=sys.stderr)
        else:
            print("The store was not modified; retry or run with --restore.", file=sys.stderr)
        self._app.exit(1)

    @Slot(object)
    def on_restore_finished(self, result: RestoreResult) -> None:
        if result.success:
            print("Store restored from backup. The camera is stopped.")
            self._app.exit(0)
        else:
            print(f"Restore failed: {result.message}", file=sys.stderr)
            self._app.exit(1)

    @Slot(str)
    def on_failed(self, message: str) -> None:
        print(f"Not started: {message}", file=sys.stderr)
        self._app.exit(1)


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Write a photo preset into the camera's filter parameter store."
    )
    parser.add_argument("preset", nargs="?", help="preset JSON file")
    parser.add_argument("--name", help="preset name or id inside the file")
    parser.add_argument("--index", type=int, help="filter slot index (skips name matching)")
    parser.add_argument("--mode", help="camera mode to match filters in")
    parser.add_argument("--capture", help="read the filter capture from a local JSON file")
    parser.add_argument("--dry-run", action="store_true", help="show the writes and stop")
    parser.add_argument("--restore", action="store_true", help="restore the store from backup")
    parser.add_argument("--kill", action="store_true", help="kill the camera process and exit")
    parser.add_argument("--settings", default=str(BASE_DIR / "settings.json"))
    return parser.parse_args(argv)


def _load_capture(vm: InjectionVM, args: argparse.Namespace) -> bool:
    if args.capture:
        try:
            text = Path(args.capture).read_text(encoding="utf-8")
        except OSError as ex:
            logger.error("Cannot read capture {}: {}", args.capture, ex)
            return False
        ok = vm.captures.load_text(text)
    else:
        ok = vm.captures.load()
    if ok and args.mode:
        vm.captures.switch_mode(args.mode)
    return ok


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    settings = JsonSettings(args.settings)
    init_logging(
        settings.get_path("logging.dir", get_log_directory()),
        level=str(settings.get("logging.level", "INFO")),
        console=True,
    )

    shell = CommandShell(
        prefix=settings.get_list("shell.command_prefix", ["su", "-c"]),
        timeout=settings.get_float("shell.timeout_seconds", 15.0),
    )
    controller = TransferController(shell, TransferConfig.from_settings(settings))
    captures = CaptureRepository(
        shell, settings.get_path("device.capture_file", DEFAULT_CAPTURE_FILE)
    )
    audit_dir = settings.get_path(
        "transfer.audit_dir", str(Path(get_data_directory()) / "transfer_logs")
    )
    vm = InjectionVM(captures, controller, audit_dir=audit_dir)

    needs_root = args.restore or args.kill or not (args.dry_run and args.capture)
    if needs_root:
        status = check_root(shell)
        if status != RootStatus.AVAILABLE:
            print(f"Root access is {status.value}; cannot continue.", file=sys.stderr)
            return 2

    if args.kill:
        return 0 if controller.kill_target() else 1

    app = QCoreApplication(sys.argv[:1])
    runner = TransferTaskRunner(vm=vm)
    reporter = _CliReporter(app)
    runner.signals.phaseChanged.connect(reporter.on_phase)
    runner.signals.writeFinished.connect(reporter.on_write_finished)
    runner.signals.restoreFinished.connect(reporter.on_restore_finished)
    runner.signals.taskFailed.connect(reporter.on_failed)

    if args.restore:
        if not runner.request_restore():
            return 1
        return app.exec()

    if not args.preset:
        print("A preset file is required (or use --restore / --kill).", file=sys.stderr)
        return 1
    try:
        preset = JsonPresetRepository().load_one(args.preset, args.name)
    except (OSError, PresetFormatError) as ex:
        print(f"Cannot load preset: {ex}", file=sys.stderr)
        return 1

    if not _load_capture(vm, args) and args.index is None:
        print("No filter capture available; open the camera once or pass --index.", file=sys.stderr)
        return 1
    if vm.captures.capture_time:
        print(f"Filter capture from {format_capture_time(vm.captures.capture_time)}")

    vm.set_preset(preset)
    if args.index is not None:
        vm.select_filter(args.index)
    if vm.selected_index is None:
        print("No captured filter matches this preset; pass --index.", file=sys.stderr)
        return 1

    print(f"Preset: {preset.name}")
    for label, value in vm.preview():
        print(f"  {label}: {value}")
    if args.dry_run:
        request = vm.build_request()
        print(f"Target store: {request.target_file}")
        for key, value in request.params.items():
            print(f"  {key} = {value}")
        return 0

    if not runner.request_write():
        return 1
    return app.exec()


if __name__ == "__main__":
    raise SystemExit(main())
