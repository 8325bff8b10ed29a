"""JSON persistence (read side) for presets.

Accepts both schema shapes in one document:

    {"id": "p1", "name": "Film", "filter": "复古 100%", "saturation": 10,
     "tone": -5, "warmCool": 3, "cyanMagenta": 0, "sharpness": 20,
     "vignette": "开", "softLight": "朦胧",
     "sections": [{"title": "Color", "items": [{"label": "饱和度", "value": "+10"}]}]}

A list of such objects is also accepted. Malformed individual fields are
logged and treated as unset.
"""

from __future__ import annotations

from collections.abc import Iterator
import json
from pathlib import Path
from typing import Any

from loguru import logger

from core.models import Preset, PresetFields, PresetItem, PresetSection
from core.services.value_mapper import parse_int

_INT_FIELDS = {
    "saturation": "saturation",
    "tone": "tone",
    "warmCool": "warm_cool",
    "cyanMagenta": "cyan_magenta",
    "sharpness": "sharpness",
}
_STR_FIELDS = {
    "filter": "filter",
    "vignette": "vignette",
    "softLight": "soft_light",
}


class PresetFormatError(ValueError):
    """Raised when a preset file is not JSON, or not an object or list of objects."""


def _coerce_int(name: str, value: Any) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool):
        logger.warning("Preset field {} is a boolean; ignored", name)
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    # int32 only, as for section values
    parsed = parse_int(str(value).strip().removeprefix("+"))
    if parsed is None:
        logger.warning("Preset field {} is not an integer: {!r}", name, value)
    return parsed


def _coerce_str(name: str, value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        return str(value)
    logger.warning("Preset field {} is not text: {!r}", name, value)
    return None


def _parse_sections(raw: Any) -> list[PresetSection]:
    if not isinstance(raw, list):
        return []
    sections: list[PresetSection] = []
    for sec in raw:
        if not isinstance(sec, dict):
            continue
        items: list[PresetItem] = []
        for item in sec.get("items") or []:
            if isinstance(item, dict) and "label" in item and "value" in item:
                items.append(PresetItem(label=str(item["label"]), value=str(item["value"])))
        sections.append(PresetSection(title=str(sec.get("title", "")), items=items))
    return sections


def preset_from_dict(data: dict[str, Any]) -> Preset:
    """Build a `Preset` from one decoded JSON object."""
    values: dict[str, Any] = {}
    for json_name, attr in _INT_FIELDS.items():
        values[attr] = _coerce_int(json_name, data.get(json_name))
    for json_name, attr in _STR_FIELDS.items():
        values[attr] = _coerce_str(json_name, data.get(json_name))
    return Preset(
        name=str(data.get("name", "")),
        fields=PresetFields(**values),
        sections=_parse_sections(data.get("sections")),
        preset_id=str(data.get("id", "")),
    )


class JsonPresetRepository:
    """Load presets from JSON files."""

    def load(self, json_path: str) -> Iterator[Preset]:
        """Yield every preset in the file at `json_path`."""
        path = Path(json_path)
        try:
            with path.open("r", encoding="utf-8") as f:
                data = json.load(f)
        except ValueError as ex:
            raise PresetFormatError(f"{path}: not valid UTF-8 JSON: {ex}") from ex

        if isinstance(data, dict):
            data = [data]
        if not isinstance(data, list):
            raise PresetFormatError(f"{path}: expected an object or a list of objects")

        for obj in data:
            if not isinstance(obj, dict):
                logger.error("Preset entry skipped (not an object): {!r}", obj)
                continue
            yield preset_from_dict(obj)

    def load_one(self, json_path: str, name: str | None = None) -> Preset:
        """Return the preset called `name`, or the first one when `name` is None."""
        for preset in self.load(json_path):
            if name is None or preset.name == name or preset.preset_id == name:
                return preset
        raise PresetFormatError(f"{json_path}: no preset named {name!r}")
