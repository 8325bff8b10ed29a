"""Privileged command channel backed by `subprocess`.

Commands are passed as a single string to a configurable prefix, `su -c` by
default. The same class runs the pipeline locally with `sh -c`.
"""

from __future__ import annotations

import shlex
import subprocess

from loguru import logger

from core.services.interfaces import IPrivilegedShell, RootStatus, ShellResult

DEFAULT_PREFIX: tuple[str, ...] = ("su", "-c")


def quote(path: str) -> str:
    """Quote `path` for inclusion in a shell command."""
    return shlex.quote(str(path))


class CommandShell:
    """Run commands through `prefix + [command]` and collect their output."""

    def __init__(
        self, prefix: list[str] | tuple[str, ...] | None = None, timeout: float | None = 15.0
    ) -> None:
        self._prefix = list(prefix) if prefix else list(DEFAULT_PREFIX)
        self._timeout = timeout

    @property
    def prefix(self) -> list[str]:
        return list(self._prefix)

    def execute(self, command: str) -> ShellResult:
        """Run `command`; never raises for process-level failures."""
        argv = [*self._prefix, command]
        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self._timeout,
                check=False,
            )
        except subprocess.TimeoutExpired:
            logger.error("Command timed out after {}s: {}", self._timeout, command)
            return ShellResult(
                success=False, stderr=[f"timed out after {self._timeout}s"], timed_out=True
            )
        except OSError as ex:
            # Missing su binary or not executable.
            logger.error("Cannot start {}: {}", self._prefix[0], ex)
            raise

        result = ShellResult(
            success=proc.returncode == 0,
            stdout=proc.stdout.splitlines(),
            stderr=proc.stderr.splitlines(),
        )
        logger.debug("exec [{}] rc={} | {}", proc.returncode, command, result.error_text)
        return result


def check_root(shell: IPrivilegedShell) -> RootStatus:
    """Probe the channel with `id` and classify the answer."""
    try:
        result = shell.execute("id")
    except OSError as ex:
        logger.info("Root channel unavailable: {}", ex)
        return RootStatus.UNAVAILABLE

    if not result.success:
        logger.info("Root request refused: {}", result.error_text or "non-zero exit")
        return RootStatus.DENIED
    if any("uid=0" in line for line in result.stdout):
        return RootStatus.AVAILABLE
    logger.info("Channel runs without root: {}", " ".join(result.stdout))
    return RootStatus.UNAVAILABLE
