"""Core service interfaces and shared data structures.

This module defines the result dataclasses and protocols shared by the
transfer pipeline and its callers. Implementations live in the
infrastructure layer; tests provide their own doubles.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol


@dataclass
class ShellResult:
    """Outcome of one privileged command.

    Attributes:
        success: True when the command exited with status 0.
        stdout: Output lines, trailing newlines stripped.
        stderr: Error lines, trailing newlines stripped.
        timed_out: True when the command was abandoned after the timeout.
    """

    success: bool
    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)
    timed_out: bool = False

    @property
    def error_text(self) -> str:
        return "; ".join(line for line in self.stderr if line.strip())


class RootStatus(Enum):
    UNKNOWN = "unknown"
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    DENIED = "denied"


class TransferPhase(Enum):
    """Phases of a single write attempt."""

    IDLE = "idle"
    STOPPING_TARGET = "stopping_target"
    BACKING = "backing"
    COPYING_IN = "copying_in"
    PATCHING = "patching"
    COPYING_BACK = "copying_back"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_active(self) -> bool:
        return self not in (TransferPhase.IDLE, TransferPhase.SUCCESS, TransferPhase.ERROR)


@dataclass
class TransferResult:
    """Outcome of a write attempt.

    Attributes:
        success: True when every phase completed.
        phase: Final phase (SUCCESS or ERROR).
        target_file: Store file the attempt targeted.
        failed_phase: Phase that failed, if any.
        failed_step: Short name of the failing command within the phase.
        message: Human-readable cause of the failure.
        backup_ok: Whether the best-effort backup succeeded.
        rollback_advised: True when the foreign store may already be modified.
        written_keys: Keys encoded into the store (empty on failure before patching).
    """

    success: bool
    phase: TransferPhase
    target_file: str
    failed_phase: TransferPhase | None = None
    failed_step: str = ""
    message: str = ""
    backup_ok: bool = False
    rollback_advised: bool = False
    written_keys: list[str] = field(default_factory=list)


@dataclass
class RestoreResult:
    success: bool
    message: str = ""
    failed_step: str = ""


class IPrivilegedShell(Protocol):
    """Elevated command channel."""

    def execute(self, command: str) -> ShellResult:
        """Run `command` with elevated rights and wait for it to finish."""
        ...


class IKeyValueStore(Protocol):
    """A single opened key-value store file."""

    def encode(self, key: str, value: int) -> None:
        ...

    def decode_int(self, key: str, default: int = 0) -> int:
        ...

    def keys(self) -> list[str]:
        ...

    def close(self) -> None:
        """Flush memory-mapped state to the backing file and release it."""
        ...


class KeyValueStoreOpener(Protocol):
    def __call__(self, root_dir: str, store_id: str) -> IKeyValueStore:
        ...
