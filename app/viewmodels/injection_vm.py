"""ViewModel for resolving a preset to a filter slot and writing it."""

from __future__ import annotations

from loguru import logger

from core.models import Preset, WriteRequest
from core.services.interfaces import RestoreResult, TransferResult
from core.services.value_mapper import (
    extract_filter_string,
    map_preset,
    parse_filter_string,
    preview_params,
)
from infrastructure.audit_log import write_transfer_log
from infrastructure.capture_repository import CaptureRepository
from infrastructure.transfer_controller import TransferController


class InjectionVM:
    """Injection workflow state.

    Mediates between the capture repository, the value mapper and the
    transfer controller. Calls block; run `write`/`restore` off the
    interactive thread (see `app.transfer_tasks`).
    """

    def __init__(
        self,
        captures: CaptureRepository,
        controller: TransferController,
        audit_dir: str | None = None,
    ) -> None:
        """Create an InjectionVM.

        Args:
            captures: Repository holding the captured filter list.
            controller: Transfer controller performing the privileged writes.
            audit_dir: Directory for per-attempt CSV logs; None disables them.
        """
        self._captures = captures
        self._controller = controller
        self._audit_dir = audit_dir
        self.preset: Preset | None = None
        self.selected_index: int | None = None
        self.last_result: TransferResult | None = None
        self.last_audit_path: str | None = None

    @property
    def captures(self) -> CaptureRepository:
        return self._captures

    @property
    def controller(self) -> TransferController:
        return self._controller

    @property
    def is_ready(self) -> bool:
        """True once a capture is available and a filter slot is chosen."""
        return (
            self._captures.is_available()
            and self.preset is not None
            and self.selected_index is not None
        )

    def load_capture(self) -> bool:
        """Reload the capture and re-resolve the current preset's filter."""
        ok = self._captures.load()
        if ok and self.preset is not None:
            self.auto_select()
        return ok

    def set_preset(self, preset: Preset) -> int | None:
        """Set the preset and try to pick its filter slot automatically."""
        self.preset = preset
        self.selected_index = None
        return self.auto_select()

    def auto_select(self) -> int | None:
        if self.preset is None:
            return None
        filter_text = extract_filter_string(self.preset)
        if not filter_text:
            logger.info("Preset {} names no filter; choose a slot manually", self.preset.name)
            return None
        index = self._captures.find_index(filter_text)
        if index is None:
            logger.info("No captured filter matches {!r}", filter_text)
            return None
        self.selected_index = index
        logger.info("Preset {} -> filter index {}", self.preset.name, index)
        return index

    def select_filter(self, index: int) -> None:
        if index < 0:
            raise ValueError(f"filter index must be non-negative: {index}")
        if self._captures.get_filter_by_index(index) is None:
            logger.warning(
                "Index {} is not in the captured {} list", index, self._captures.active_mode
            )
        self.selected_index = index

    def switch_mode(self, mode: str) -> None:
        self._captures.switch_mode(mode)
        if self.preset is not None:
            self.auto_select()

    def build_request(self) -> WriteRequest:
        if self.preset is None:
            raise ValueError("no preset selected")
        if self.selected_index is None:
            raise ValueError("no filter slot selected")
        return map_preset(self.preset, self.selected_index)

    def preview(self) -> list[tuple[str, str]]:
        if self.preset is None or self.selected_index is None:
            return []
        entry = self._captures.get_filter_by_index(self.selected_index)
        if entry is not None:
            name = entry.name
        else:
            raw = extract_filter_string(self.preset)
            name = parse_filter_string(raw).name if raw else ""
        return preview_params(self.preset, self.selected_index, name)

    def write(self) -> TransferResult:
        """Run one write attempt and record its audit log."""
        request = self.build_request()
        result = self._controller.write(request)
        self.last_result = result
        if self._audit_dir:
            self.last_audit_path = write_transfer_log(request, result, self._audit_dir)
        return result

    def restore(self) -> RestoreResult:
        result = self._controller.restore_from_backup()
        if result.success:
            self.last_result = None
        return result
