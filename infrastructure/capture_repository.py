"""Loading of the camera filter capture file.

The capture hook writes a JSON document into the camera's private storage:

    {"captureTime": 1700000000000, "cameraPackage": "com.oplus.camera",
     "modes": {"master-back": [{"index": 0, "name": "原图", "lutFile": "none",
                                "isMaster": 0, "resourceId": 2131821255}, ...]}}

`CaptureRepository` parses it into a `CaptureSnapshot`, selects an active
mode, and hands out immutable state. A failed load never raises; it resets
to the empty, unavailable state. Every load and mode switch replaces the
state object wholesale and then notifies listeners.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
import json
import math
import threading
from typing import Any

from loguru import logger

from core.models import DEFAULT_MODE, CaptureSnapshot, FilterEntry
from core.services.filter_resolver import resolve_filter_index
from core.services.interfaces import IPrivilegedShell
from infrastructure.root_shell import quote
from infrastructure.utils import format_capture_time

CaptureListener = Callable[["CaptureState"], None]


@dataclass(frozen=True)
class CaptureState:
    """Immutable view handed to readers; replaced, never mutated."""

    snapshot: CaptureSnapshot = field(default_factory=CaptureSnapshot)
    active_mode: str = ""
    entries: tuple[FilterEntry, ...] = ()
    loaded: bool = False

    @property
    def is_available(self) -> bool:
        return self.loaded and bool(self.entries)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    # json decodes 1e400 to inf
    return isinstance(value, int) or math.isfinite(value)


def _require_int(obj: dict[str, Any], key: str) -> int:
    value = obj[key]
    if not _is_number(value):
        raise ValueError(f"field {key!r} is not a number: {value!r}")
    return int(value)


def _optional_int(obj: dict[str, Any], key: str) -> int:
    value = obj.get(key, 0)
    if not _is_number(value):
        return 0
    return int(value)


def _require_str(obj: dict[str, Any], key: str) -> str:
    value = obj[key]
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} is not a string: {value!r}")
    return value


def parse_capture(text: str) -> CaptureSnapshot:
    """Parse capture JSON; raises ValueError/KeyError on malformed input."""
    root = json.loads(text)
    if not isinstance(root, dict):
        raise ValueError("capture root is not an object")
    modes_obj = root.get("modes")
    if not isinstance(modes_obj, dict):
        raise ValueError("capture has no 'modes' object")

    modes: dict[str, tuple[FilterEntry, ...]] = {}
    for mode, filters in modes_obj.items():
        if not isinstance(filters, list):
            raise ValueError(f"mode {mode!r} is not a list")
        entries: list[FilterEntry] = []
        for obj in filters:
            if not isinstance(obj, dict):
                raise ValueError(f"mode {mode!r} holds a non-object entry")
            index = _require_int(obj, "index")
            if index < 0:
                raise ValueError(f"mode {mode!r} holds a negative index: {index}")
            entries.append(
                FilterEntry(
                    index=index,
                    name=_require_str(obj, "name"),
                    lut_file=_require_str(obj, "lutFile"),
                    is_master=_optional_int(obj, "isMaster"),
                    resource_id=_optional_int(obj, "resourceId"),
                    mode=str(mode),
                )
            )
        modes[str(mode)] = tuple(entries)

    camera_package = root.get("cameraPackage", "")
    return CaptureSnapshot(
        capture_time=_optional_int(root, "captureTime"),
        camera_package=camera_package if isinstance(camera_package, str) else "",
        modes=modes,
    )


def default_mode(snapshot: CaptureSnapshot) -> str:
    """Prefer "master-back", else the first mode in document order."""
    if DEFAULT_MODE in snapshot.modes:
        return DEFAULT_MODE
    return next(iter(snapshot.modes), "")


class CaptureRepository:
    """Holds the most recent capture and the active mode's filter list."""

    def __init__(self, shell: IPrivilegedShell | None = None, capture_path: str = "") -> None:
        self._shell = shell
        self._capture_path = capture_path
        self._lock = threading.Lock()
        self._state = CaptureState()
        self._listeners: list[CaptureListener] = []

    # Snapshot accessors
    @property
    def state(self) -> CaptureState:
        return self._state

    @property
    def snapshot(self) -> CaptureSnapshot:
        return self._state.snapshot

    @property
    def entries(self) -> tuple[FilterEntry, ...]:
        """Filters of the active mode."""
        return self._state.entries

    @property
    def active_mode(self) -> str:
        return self._state.active_mode

    @property
    def modes(self) -> list[str]:
        return list(self._state.snapshot.modes)

    @property
    def capture_time(self) -> int:
        return self._state.snapshot.capture_time

    def is_available(self) -> bool:
        return self._state.is_available

    # Change notification
    def add_listener(self, listener: CaptureListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: CaptureListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _publish(self, state: CaptureState) -> None:
        with self._lock:
            self._state = state
        self._notify(state)

    def _notify(self, state: CaptureState) -> None:
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as ex:  # pylint: disable=broad-exception-caught
                logger.error("Capture listener failed: {}", ex)

    # Loading
    def load(self) -> bool:
        """Read the capture file through the privileged channel and parse it."""
        if self._shell is None or not self._capture_path:
            logger.error("Capture load requested without a shell or capture path")
            self.reset()
            return False
        try:
            result = self._shell.execute(f"cat {quote(self._capture_path)}")
        except OSError as ex:
            logger.error("Reading capture file failed: {}", ex)
            self.reset()
            return False
        if not result.success:
            logger.error("Reading capture file failed: {}", result.error_text)
            self.reset()
            return False
        return self.load_text("\n".join(result.stdout))

    def load_text(self, text: str) -> bool:
        """Parse `text` and publish it; reset to empty on any failure."""
        try:
            snapshot = parse_capture(text)
        except (ValueError, KeyError, TypeError, OverflowError) as ex:
            logger.error("Capture parse failed: {}", ex)
            self.reset()
            return False

        mode = default_mode(snapshot)
        state = CaptureState(
            snapshot=snapshot,
            active_mode=mode,
            entries=snapshot.modes.get(mode, ()),
            loaded=True,
        )
        self._publish(state)
        logger.info(
            "Capture loaded: {} modes, {} filters in {} (captured {})",
            len(snapshot.modes),
            len(state.entries),
            mode or "<none>",
            format_capture_time(snapshot.capture_time) or "unknown",
        )
        return True

    def reset(self) -> None:
        self._publish(CaptureState())

    # Queries
    def switch_mode(self, mode: str) -> None:
        """Make `mode` active; an unknown mode yields an empty filter list."""
        with self._lock:
            current = self._state
            state = CaptureState(
                snapshot=current.snapshot,
                active_mode=mode,
                entries=current.snapshot.modes.get(mode, ()),
                loaded=current.loaded,
            )
            self._state = state
        if not state.entries:
            logger.warning("Mode {} has no captured filters", mode)
        self._notify(state)

    def get_filter_by_index(self, index: int) -> FilterEntry | None:
        for entry in self._state.entries:
            if entry.index == index:
                return entry
        return None

    def find_index(self, filter_text: str) -> int | None:
        """Resolve `filter_text` against the active mode's filters."""
        return resolve_filter_index(self._state.entries, filter_text)
