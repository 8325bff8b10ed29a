"""CSV audit log for transfer attempts.

One file per attempt, named ``transfer_<timestamp>.csv``, listing every key
that was requested and whether the attempt succeeded.
"""

from __future__ import annotations

import csv
from datetime import datetime
from pathlib import Path

from loguru import logger

from core.models import WriteRequest
from core.services.interfaces import TransferResult

AUDIT_HEADERS = ["TargetFile", "Key", "Value", "Success", "Phase", "Reason"]


def write_transfer_log(
    request: WriteRequest, result: TransferResult, log_dir: str
) -> str | None:
    """Write the audit CSV for one attempt; return its path or None on failure."""
    try:
        base = Path(log_dir)
        base.mkdir(parents=True, exist_ok=True)
        ts = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        log_path = base / f"transfer_{ts}.csv"
        phase = (result.failed_phase or result.phase).value
        with log_path.open("w", encoding="utf-8", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(AUDIT_HEADERS)
            written = set(result.written_keys)
            for key, value in request.params.items():
                ok = result.success and key in written
                writer.writerow(
                    [request.target_file, key, value, 1 if ok else 0, phase, result.message]
                )
        logger.info(
            "Transfer log written: {} ({} keys, success={})",
            log_path,
            len(request.params),
            result.success,
        )
        return str(log_path)
    except (OSError, ValueError) as ex:
        logger.error("Write transfer log failed: {}", ex)
        return None
