"""Core domain models for captured filters, presets and write requests."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

DEFAULT_MODE = "master-back"


@dataclass(frozen=True)
class FilterEntry:
    """A single filter as captured from the camera process.

    Attributes:
        index: Position in its mode's list; also the key suffix and store router.
        name: Display name resolved by the capture hook.
        lut_file: LUT identifier (e.g. "800t.bin").
        is_master: Grouping flag (0 = plain entry, >0 = group header size).
        resource_id: Original resource identifier.
        mode: Camera mode the entry belongs to.
    """

    index: int
    name: str
    lut_file: str
    is_master: int = 0
    resource_id: int = 0
    mode: str = DEFAULT_MODE


@dataclass(frozen=True)
class CaptureSnapshot:
    """Filter lists grouped by camera mode, replaced wholesale on each load."""

    capture_time: int = 0
    camera_package: str = ""
    modes: dict[str, tuple[FilterEntry, ...]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.modes


@dataclass
class PresetItem:
    label: str
    value: str


@dataclass
class PresetSection:
    title: str = ""
    items: list[PresetItem] = field(default_factory=list)


@dataclass
class PresetFields:
    """Flat (v1) preset parameters; `None` means "not specified"."""

    filter: str | None = None
    saturation: int | None = None
    tone: int | None = None
    warm_cool: int | None = None
    cyan_magenta: int | None = None
    sharpness: int | None = None
    vignette: str | None = None
    soft_light: str | None = None

    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in self.__dataclass_fields__)


@dataclass
class Preset:
    """A preset carrying flat fields, labelled sections, or both."""

    name: str
    fields: PresetFields = field(default_factory=PresetFields)
    sections: list[PresetSection] = field(default_factory=list)
    preset_id: str = ""


class PresetSource(Enum):
    """Which schema shape supplied the effective parameter values."""

    FLAT = "flat"
    SECTIONS = "sections"
    NONE = "none"


@dataclass(frozen=True)
class EffectiveValues:
    """Parameter values resolved from a preset, before keys are built.

    `values` maps parameter names (e.g. "saturation", "filter_intensity") to
    integers; the filter-selection parameter itself is never included.
    """

    source: PresetSource
    values: dict[str, int]


@dataclass(frozen=True)
class FilterParseResult:
    name: str
    intensity: int | None = None


@dataclass(frozen=True)
class WriteRequest:
    """Target store plus the key/value pairs to encode into it."""

    target_file: str
    params: dict[str, int]
    filter_index: int = 0
