"""Small helpers for timestamps and file digests.

Everything here is best-effort and will not raise on bad input; callers
should expect an empty string or `None` when data is not available.
"""

from __future__ import annotations

from datetime import datetime
import hashlib
from pathlib import Path

from loguru import logger

DISPLAY_DT_FMT = "%Y-%m-%d %H:%M:%S"


def capture_datetime(epoch_ms: int | None) -> datetime | None:
    """Convert a capture timestamp in epoch milliseconds; None when unset."""
    if not epoch_ms:
        return None
    try:
        return datetime.fromtimestamp(int(epoch_ms) / 1000.0)
    except (OverflowError, OSError, ValueError, TypeError):
        return None


def format_capture_time(epoch_ms: int | None) -> str:
    """Format a capture timestamp for display; empty string when unset."""
    dt = capture_datetime(epoch_ms)
    return dt.strftime(DISPLAY_DT_FMT) if dt else ""


def file_sha1(path: str | Path) -> str | None:
    """Hex SHA-1 of a file's bytes, or None when it cannot be read."""
    digest = hashlib.sha1()
    try:
        with Path(path).open("rb") as f:
            for chunk in iter(lambda: f.read(65536), b""):
                digest.update(chunk)
    except OSError as ex:
        logger.debug("sha1 failed for {}: {}", path, ex)
        return None
    return digest.hexdigest()


def directory_digests(directory: str | Path) -> dict[str, str]:
    """Map each regular file name in `directory` to its SHA-1."""
    result: dict[str, str] = {}
    try:
        entries = sorted(Path(directory).iterdir())
    except OSError as ex:
        logger.debug("listing failed for {}: {}", directory, ex)
        return result
    for entry in entries:
        if entry.is_file():
            sha = file_sha1(entry)
            if sha is not None:
                result[entry.name] = sha
    return result
