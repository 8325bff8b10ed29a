"""Tests for preset to key-value mapping."""

import pytest

from core.models import Preset, PresetFields, PresetItem, PresetSection, PresetSource
from core.services.value_mapper import (
    LABEL_TO_PARAM,
    STORE_PREFERENCES_0,
    STORE_SHARED,
    VIGNETTE_OFF,
    build_key,
    decode_soft_light,
    decode_vignette,
    extract_filter_string,
    map_preset,
    parse_filter_string,
    parse_int,
    preview_params,
    resolve_effective_values,
    target_store_for,
)


def _sections(*pairs: tuple[str, str]) -> list[PresetSection]:
    return [PresetSection(title="all", items=[PresetItem(label, value) for label, value in pairs])]


class TestFilterString:
    """Tests for filter name/intensity parsing."""

    @pytest.mark.parametrize(
        "text,name,intensity",
        [
            ("复古 100%", "复古", 100),
            ("复古100%", "复古", 100),
            ("复古 80", "复古", 80),
            ("  清新 94%  ", "清新", 94),
            ("原图", "原图", None),
            ("Portra 400", "Portra", 400),
        ],
    )
    def test_parse(self, text, name, intensity):
        result = parse_filter_string(text)
        assert result.name == name
        assert result.intensity == intensity

    def test_bare_name_keeps_whole_text(self):
        assert parse_filter_string("  黑白  ").name == "黑白"


class TestKeysAndRouting:
    """Tests for key naming and store routing."""

    def test_index_zero_has_no_suffix(self):
        assert build_key("saturation", 0) == "key_master_mode_effect_saturation"

    def test_index_suffix(self):
        assert build_key("saturation", 9) == "key_master_mode_effect_saturation_9"

    def test_routing(self):
        assert target_store_for(0) == STORE_PREFERENCES_0
        assert target_store_for(1) == STORE_SHARED
        assert target_store_for(9) == STORE_SHARED

    def test_negative_index_rejected(self):
        with pytest.raises(ValueError):
            build_key("filter", -1)
        with pytest.raises(ValueError):
            target_store_for(-1)

    def test_keys_unique_across_params_and_indices(self):
        params = ["filter", "filter_intensity", "saturation", "contrast", "cold_warm"]
        keys = {build_key(p, i) for p in params for i in range(0, 25)}
        assert len(keys) == len(params) * 25


class TestCategoricalDecoding:
    """Tests for vignette and soft light tables."""

    @pytest.mark.parametrize(
        "value,expected",
        [("开", 0), ("关", 101), ("on", 0), ("OFF", 101), ("50", 50), ("garbage", 101)],
    )
    def test_vignette(self, value, expected):
        assert decode_vignette(value) == expected

    @pytest.mark.parametrize(
        "value,expected",
        [("朦胧", 1), ("梦幻", 3), ("Gentle", 2), ("无", 0), ("7", 7), ("???", 0)],
    )
    def test_soft_light(self, value, expected):
        assert decode_soft_light(value) == expected

    def test_parse_int_rejects_noise(self):
        assert parse_int("1_000") is None
        assert parse_int("12a") is None
        assert parse_int("99999999999") is None
        assert parse_int("-13") == -13


class TestMapPreset:
    """Tests for the full mapping."""

    def test_end_to_end_flat(self):
        preset = Preset(name="p", fields=PresetFields(filter="清新 80%", saturation=10))
        request = map_preset(preset, 2)
        assert request.target_file == STORE_SHARED
        assert request.params == {
            "key_master_mode_effect_filter_2": 2,
            "key_master_mode_effect_filter_intensity_2": 80,
            "key_master_mode_effect_saturation_2": 10,
        }

    def test_flat_fields_all_present(self):
        fields = PresetFields(
            filter="复古 100%",
            saturation=-5,
            tone=12,
            warm_cool=3,
            cyan_magenta=-2,
            sharpness=40,
            vignette="关",
            soft_light="朦胧",
        )
        request = map_preset(Preset(name="p", fields=fields), 0)
        assert request.target_file == STORE_PREFERENCES_0
        assert request.params == {
            "key_master_mode_effect_filter": 0,
            "key_master_mode_effect_filter_intensity": 100,
            "key_master_mode_effect_saturation": -5,
            "key_master_mode_effect_contrast": 12,
            "key_master_mode_effect_cold_warm": 3,
            "key_master_mode_effect_cyan_magenta": -2,
            "key_master_mode_effect_sharpness": 40,
            "key_master_mode_effect_vignette": VIGNETTE_OFF,
            "key_master_mode_effect_soft_light": 1,
        }

    def test_flat_wins_over_sections(self):
        preset = Preset(
            name="p",
            fields=PresetFields(saturation=10),
            sections=_sections(("饱和度", "+50"), ("锐度", "30")),
        )
        request = map_preset(preset, 3)
        assert request.params == {
            "key_master_mode_effect_filter_3": 3,
            "key_master_mode_effect_saturation_3": 10,
        }
        assert resolve_effective_values(preset).source == PresetSource.FLAT

    def test_sections_fallback(self):
        preset = Preset(
            name="p",
            sections=_sections(
                ("@string/param_filter", "清新 94%"),
                ("影调", "+16"),
                ("Warm/Cool", "-13"),
                ("暗角", "开"),
                ("Soft Light", "dreamy"),
                ("Unknown", "5"),
                ("锐度", "not a number"),
            ),
        )
        request = map_preset(preset, 1)
        assert request.params == {
            "key_master_mode_effect_filter_1": 1,
            "key_master_mode_effect_filter_intensity_1": 94,
            "key_master_mode_effect_contrast_1": 16,
            "key_master_mode_effect_cold_warm_1": -13,
            "key_master_mode_effect_vignette_1": 0,
            "key_master_mode_effect_soft_light_1": 3,
        }
        assert resolve_effective_values(preset).source == PresetSource.SECTIONS

    def test_flat_filter_without_intensity_falls_back(self):
        preset = Preset(
            name="p",
            fields=PresetFields(filter="原图"),
            sections=_sections(("Saturation", "+4")),
        )
        assert map_preset(preset, 5).params == {
            "key_master_mode_effect_filter_5": 5,
            "key_master_mode_effect_saturation_5": 4,
        }

    def test_section_filter_text_never_changes_index(self):
        preset = Preset(name="p", sections=_sections(("滤镜", "复古 7")))
        params = map_preset(preset, 4).params
        assert params["key_master_mode_effect_filter_4"] == 4

    def test_flat_values_outside_int32_dropped(self):
        fields = PresetFields(saturation=2**40, tone=-(2**31), sharpness=2**31)
        params = map_preset(Preset(name="p", fields=fields), 2).params
        assert params == {
            "key_master_mode_effect_filter_2": 2,
            "key_master_mode_effect_contrast_2": -(2**31),
        }

    def test_empty_preset_only_selects_filter(self):
        request = map_preset(Preset(name="empty"), 6)
        assert request.params == {"key_master_mode_effect_filter_6": 6}

    def test_sections_never_exceed_recognized_labels(self):
        preset = Preset(
            name="p", sections=_sections(("Saturation", "1"), ("Bogus", "2"), ("Sharpness", "3"))
        )
        assert len(map_preset(preset, 1).params) <= 1 + 2

    def test_label_table_spellings_agree(self):
        for ref, zh, en in [
            ("@string/param_tone_curve", "影调", "Tone Curve"),
            ("@string/param_warm_cool", "冷暖", "Warm/Cool"),
            ("@string/param_soft_light", "柔光", "Soft Light"),
        ]:
            assert LABEL_TO_PARAM[ref] == LABEL_TO_PARAM[zh] == LABEL_TO_PARAM[en]


class TestHelpers:
    """Tests for filter extraction and preview."""

    def test_extract_prefers_flat(self):
        preset = Preset(
            name="p", fields=PresetFields(filter="复古"), sections=_sections(("滤镜", "清新"))
        )
        assert extract_filter_string(preset) == "复古"

    def test_extract_from_sections(self):
        preset = Preset(name="p", sections=_sections(("饱和度", "1"), ("Filter", "清新 50%")))
        assert extract_filter_string(preset) == "清新 50%"

    def test_extract_none(self):
        assert extract_filter_string(Preset(name="p")) is None

    def test_preview(self):
        preset = Preset(name="p", fields=PresetFields(filter="清新 80%", saturation=10))
        preview = preview_params(preset, 2)
        assert preview[0] == ("Filter", "index 2 (清新)")
        assert ("Filter intensity", "80%") in preview
        assert ("Saturation", "+10") in preview
