"""Preset to key-value mapping for the camera's effect store.

A preset is translated into a flat set of integer writes. Flat (v1) fields
take priority; labelled sections (v2) are consulted only when the flat
fields contribute nothing. Decoding never raises: every categorical value
has a default and unparseable plain integers are omitted.

Key scheme: ``key_master_mode_effect_<param>`` for filter index 0 and
``key_master_mode_effect_<param>_<index>`` for any index >= 1. Index 0 lives
in the camera's indexed preferences store; every other index lives in the
shared store.
"""

from __future__ import annotations

import re

from core.models import (
    EffectiveValues,
    FilterParseResult,
    Preset,
    PresetSection,
    PresetSource,
    WriteRequest,
)

KEY_PREFIX = "key_master_mode_effect_"

STORE_PREFERENCES_0 = "com.oplus.camera_preferences_0"
STORE_SHARED = "mmkv"

PARAM_FILTER = "filter"
PARAM_FILTER_INTENSITY = "filter_intensity"
PARAM_SATURATION = "saturation"
# The vendor calls the "tone" slider contrast.
PARAM_CONTRAST = "contrast"
PARAM_COLD_WARM = "cold_warm"
PARAM_CYAN_MAGENTA = "cyan_magenta"
PARAM_SHARPNESS = "sharpness"
PARAM_VIGNETTE = "vignette"
PARAM_SOFT_LIGHT = "soft_light"

PARAMETERS: tuple[str, ...] = (
    PARAM_FILTER,
    PARAM_FILTER_INTENSITY,
    PARAM_SATURATION,
    PARAM_CONTRAST,
    PARAM_COLD_WARM,
    PARAM_CYAN_MAGENTA,
    PARAM_SHARPNESS,
    PARAM_VIGNETTE,
    PARAM_SOFT_LIGHT,
)

VIGNETTE_ON = 0
# 101 lies outside the effect range; the camera treats it as "off".
VIGNETTE_OFF = 101
SOFT_LIGHT_DEFAULT = 0

# Resource reference, Chinese name, English name for each parameter.
LABEL_TO_PARAM: dict[str, str] = {
    "@string/param_filter": PARAM_FILTER,
    "@string/param_soft_light": PARAM_SOFT_LIGHT,
    "@string/param_tone_curve": PARAM_CONTRAST,
    "@string/param_saturation": PARAM_SATURATION,
    "@string/param_warm_cool": PARAM_COLD_WARM,
    "@string/param_cyan_magenta": PARAM_CYAN_MAGENTA,
    "@string/param_sharpness": PARAM_SHARPNESS,
    "@string/param_vignette": PARAM_VIGNETTE,
    "滤镜": PARAM_FILTER,
    "柔光": PARAM_SOFT_LIGHT,
    "影调": PARAM_CONTRAST,
    "饱和度": PARAM_SATURATION,
    "冷暖": PARAM_COLD_WARM,
    "青品": PARAM_CYAN_MAGENTA,
    "锐度": PARAM_SHARPNESS,
    "暗角": PARAM_VIGNETTE,
    "Filter": PARAM_FILTER,
    "Soft Light": PARAM_SOFT_LIGHT,
    "Tone Curve": PARAM_CONTRAST,
    "Saturation": PARAM_SATURATION,
    "Warm/Cool": PARAM_COLD_WARM,
    "Cyan/Magenta": PARAM_CYAN_MAGENTA,
    "Sharpness": PARAM_SHARPNESS,
    "Vignette": PARAM_VIGNETTE,
}

_VIGNETTE_TOKENS: dict[str, int] = {
    "开": VIGNETTE_ON,
    "开启": VIGNETTE_ON,
    "on": VIGNETTE_ON,
    "On": VIGNETTE_ON,
    "ON": VIGNETTE_ON,
    "关": VIGNETTE_OFF,
    "关闭": VIGNETTE_OFF,
    "off": VIGNETTE_OFF,
    "Off": VIGNETTE_OFF,
    "OFF": VIGNETTE_OFF,
}

_SOFT_LIGHT_TOKENS: dict[str, int] = {
    "无": 0,
    "none": 0,
    "None": 0,
    "朦胧": 1,
    "hazy": 1,
    "Hazy": 1,
    "柔美": 2,
    "gentle": 2,
    "Gentle": 2,
    "梦幻": 3,
    "dreamy": 3,
    "Dreamy": 3,
}

DISPLAY_LABELS: dict[str, str] = {
    PARAM_FILTER: "Filter",
    PARAM_FILTER_INTENSITY: "Filter intensity",
    PARAM_SATURATION: "Saturation",
    PARAM_CONTRAST: "Tone -> Contrast",
    PARAM_COLD_WARM: "Warm/Cool",
    PARAM_CYAN_MAGENTA: "Cyan/Magenta",
    PARAM_SHARPNESS: "Sharpness",
    PARAM_VIGNETTE: "Vignette",
    PARAM_SOFT_LIGHT: "Soft Light",
}

_FILTER_RE = re.compile(r"^(.+?)\s*(\d+)%?\Z", re.DOTALL)
_INT_RE = re.compile(r"^[+-]?\d+\Z")
_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1


def parse_int(text: str | None) -> int | None:
    """Parse a signed 32-bit integer; return None when `text` is not one."""
    if text is None:
        return None
    s = str(text).strip()
    if not _INT_RE.match(s):
        return None
    value = int(s)
    if value < _INT32_MIN or value > _INT32_MAX:
        return None
    return value


def _parse_signed(text: str) -> int | None:
    """Parse slider text such as "+16", "-13" or "0"."""
    s = text.strip()
    if s.startswith("+"):
        s = s[1:]
    return parse_int(s)


def build_key(param: str, filter_index: int) -> str:
    """Return the store key for `param` at `filter_index`."""
    if filter_index < 0:
        raise ValueError(f"filter index must be non-negative: {filter_index}")
    if filter_index == 0:
        return f"{KEY_PREFIX}{param}"
    return f"{KEY_PREFIX}{param}_{filter_index}"


def target_store_for(filter_index: int) -> str:
    """Return the store file holding parameters for `filter_index`."""
    if filter_index < 0:
        raise ValueError(f"filter index must be non-negative: {filter_index}")
    return STORE_PREFERENCES_0 if filter_index == 0 else STORE_SHARED


def parse_filter_string(filter_str: str) -> FilterParseResult:
    """Split "复古 100%", "复古100%" or "复古 100" into name and intensity.

    Without a trailing number the whole trimmed string is the name and the
    intensity stays unset, so the device value is preserved.
    """
    text = filter_str.strip()
    match = _FILTER_RE.match(text)
    if match is None:
        return FilterParseResult(name=text, intensity=None)
    return FilterParseResult(name=match.group(1).strip(), intensity=parse_int(match.group(2)))


def decode_vignette(value: str) -> int:
    token = value.strip()
    if token in _VIGNETTE_TOKENS:
        return _VIGNETTE_TOKENS[token]
    parsed = parse_int(token)
    return VIGNETTE_OFF if parsed is None else parsed


def decode_soft_light(value: str) -> int:
    token = value.strip()
    if token in _SOFT_LIGHT_TOKENS:
        return _SOFT_LIGHT_TOKENS[token]
    parsed = parse_int(token)
    return SOFT_LIGHT_DEFAULT if parsed is None else parsed


def _values_from_fields(preset: Preset) -> dict[str, int]:
    f = preset.fields
    values: dict[str, int] = {}
    if f.filter is not None:
        intensity = parse_filter_string(f.filter).intensity
        if intensity is not None:
            values[PARAM_FILTER_INTENSITY] = intensity
    for param, raw in (
        (PARAM_SATURATION, f.saturation),
        (PARAM_CONTRAST, f.tone),
        (PARAM_COLD_WARM, f.warm_cool),
        (PARAM_CYAN_MAGENTA, f.cyan_magenta),
        (PARAM_SHARPNESS, f.sharpness),
    ):
        if raw is not None and _INT32_MIN <= int(raw) <= _INT32_MAX:
            values[param] = int(raw)
    if f.vignette is not None:
        values[PARAM_VIGNETTE] = decode_vignette(f.vignette)
    if f.soft_light is not None:
        values[PARAM_SOFT_LIGHT] = decode_soft_light(f.soft_light)
    return values


def _values_from_sections(sections: list[PresetSection]) -> dict[str, int]:
    values: dict[str, int] = {}
    for section in sections:
        for item in section.items:
            param = LABEL_TO_PARAM.get(item.label)
            if param is None:
                continue
            raw = item.value.strip()
            if param == PARAM_FILTER:
                # The index is chosen by the caller; only the intensity is read here.
                intensity = parse_filter_string(raw).intensity
                if intensity is not None:
                    values[PARAM_FILTER_INTENSITY] = intensity
            elif param == PARAM_SOFT_LIGHT:
                values[PARAM_SOFT_LIGHT] = decode_soft_light(raw)
            elif param == PARAM_VIGNETTE:
                values[PARAM_VIGNETTE] = decode_vignette(raw)
            else:
                parsed = _parse_signed(raw)
                if parsed is not None:
                    values[param] = parsed
    return values


def resolve_effective_values(preset: Preset) -> EffectiveValues:
    """Pick the schema shape that supplies values and decode it.

    Flat fields win whenever they yield at least one value; otherwise the
    sections are read in order.
    """
    values = _values_from_fields(preset)
    if values:
        return EffectiveValues(source=PresetSource.FLAT, values=values)
    if preset.sections:
        values = _values_from_sections(preset.sections)
        if values:
            return EffectiveValues(source=PresetSource.SECTIONS, values=values)
    return EffectiveValues(source=PresetSource.NONE, values={})


def map_preset(preset: Preset, filter_index: int) -> WriteRequest:
    """Translate `preset` into the writes for the filter at `filter_index`."""
    params: dict[str, int] = {build_key(PARAM_FILTER, filter_index): filter_index}
    effective = resolve_effective_values(preset)
    for param, value in effective.values.items():
        params[build_key(param, filter_index)] = value
    return WriteRequest(
        target_file=target_store_for(filter_index), params=params, filter_index=filter_index
    )


def extract_filter_string(preset: Preset) -> str | None:
    """Return the preset's filter text from flat fields, else from sections."""
    if preset.fields.filter is not None:
        return preset.fields.filter
    for section in preset.sections:
        for item in section.items:
            if LABEL_TO_PARAM.get(item.label) == PARAM_FILTER:
                return item.value
    return None


def preview_params(
    preset: Preset, filter_index: int, filter_name: str | None = None
) -> list[tuple[str, str]]:
    """Describe what `map_preset` would write as (label, value) pairs."""
    if filter_name is None:
        raw = extract_filter_string(preset)
        filter_name = parse_filter_string(raw).name if raw else ""
    suffix = f" ({filter_name})" if filter_name else ""
    preview: list[tuple[str, str]] = [
        (DISPLAY_LABELS[PARAM_FILTER], f"index {filter_index}{suffix}")
    ]
    effective = resolve_effective_values(preset)
    for param in PARAMETERS:
        if param not in effective.values:
            continue
        value = effective.values[param]
        if param == PARAM_FILTER_INTENSITY:
            text = f"{value}%"
        elif param == PARAM_VIGNETTE and value == VIGNETTE_OFF:
            text = "off"
        else:
            text = f"{value:+d}" if param not in (PARAM_SOFT_LIGHT, PARAM_VIGNETTE) else str(value)
        preview.append((DISPLAY_LABELS[param], text))
    return preview
