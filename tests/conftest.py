from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import pytest

from core.services.interfaces import ShellResult
from infrastructure.mmkv_store import PAGE_SIZE, MmkvStore
from infrastructure.root_shell import CommandShell
from infrastructure.transfer_controller import TransferConfig
from infrastructure.utils import directory_digests

PREFS_STORE = "com.oplus.camera_preferences_0"
SHARED_STORE = "mmkv"


class FaultyShell:
    """Delegates to a real shell but fails any command containing `needle`.

    With `timed_out` set, the failure looks like a command that hit the
    shell timeout instead of exiting non-zero.
    """

    def __init__(self, inner, needle: str | None = None, timed_out: bool = False) -> None:
        self.inner = inner
        self.needle = needle
        self.timed_out = timed_out
        self.commands: list[str] = []

    def execute(self, command: str) -> ShellResult:
        self.commands.append(command)
        if self.needle and self.needle in command:
            return ShellResult(success=False, stderr=["injected failure"], timed_out=self.timed_out)
        return self.inner.execute(command)


@dataclass
class FakeDevice:
    root: Path
    store_dir: Path
    backup_dir: Path
    scratch_dir: Path
    config: TransferConfig

    def digests(self) -> dict[str, str]:
        return directory_digests(self.store_dir)


def _seed_store(store_dir: Path, name: str, values: dict[str, int], with_sidecar: bool) -> None:
    (store_dir / name).write_bytes(bytes(PAGE_SIZE))
    if with_sidecar:
        (store_dir / f"{name}.crc").write_bytes(bytes(PAGE_SIZE))
    store = MmkvStore(store_dir, name)
    for key, value in values.items():
        store.encode(key, value)
    store.close()


@pytest.fixture
def local_shell() -> CommandShell:
    return CommandShell(prefix=["sh", "-c"], timeout=30)


@pytest.fixture
def device(tmp_path: Path) -> FakeDevice:
    """A camera store directory plus backup/scratch locations under tmp_path."""
    store_dir = tmp_path / "camera" / "files" / "mmkv"
    store_dir.mkdir(parents=True)
    _seed_store(
        store_dir,
        PREFS_STORE,
        {"key_master_mode_effect_filter": 0, "key_master_mode_effect_saturation": 5},
        with_sidecar=True,
    )
    _seed_store(
        store_dir,
        SHARED_STORE,
        {"key_master_mode_effect_filter_2": 2, "camera_other_setting": 7},
        with_sidecar=False,
    )
    config = TransferConfig(
        store_dir=str(store_dir),
        backup_dir=str(tmp_path / "backup"),
        scratch_dir=str(tmp_path / "scratch"),
        stop_command="echo stop-camera {package}",
        kill_command="echo kill-camera {package}",
        relabel_command="echo relabel {path}",
        stop_settle_seconds=0,
        restore_settle_seconds=0,
    )
    return FakeDevice(
        root=tmp_path,
        store_dir=store_dir,
        backup_dir=tmp_path / "backup",
        scratch_dir=tmp_path / "scratch",
        config=config,
    )
