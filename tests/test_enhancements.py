from enhancements import (
    CAPABILITY_KEYS,
    ENHANCEMENT_API_MAP,
    ENHANCEMENT_TOGGLES,
    OPT_IN,
    OPT_OUT,
    compile_enhancement_spec,
    default_matrix,
)


def _statuses(spec):
    return {k: v["enroll_status"] for k, v in spec["creative_features_spec"].items()}


class TestCompileEnhancementSpec:
    def test_every_capability_key_present(self):
        for creative_type in ("image", "video", "carousel"):
            spec = compile_enhancement_spec(default_matrix(), creative_type)
            assert set(spec["creative_features_spec"]) == set(CAPABILITY_KEYS)

    def test_empty_matrix_opts_out_everything(self):
        assert set(_statuses(compile_enhancement_spec({}, "image")).values()) == {OPT_OUT}
        assert set(_statuses(compile_enhancement_spec(None, "video")).values()) == {OPT_OUT}

    def test_one_toggle_enrolls_its_key(self):
        spec = compile_enhancement_spec({"image": {"translate_text": True}}, "image")
        statuses = _statuses(spec)
        assert statuses["text_overlay_translation"] == OPT_IN
        assert statuses["standard_enhancements_catalog"] == OPT_OUT

    def test_any_toggle_on_wins_over_off(self):
        matrix = {"image": {"advantage_plus_creative": False, "visual_touchups": True, "expand_image": False}}
        assert _statuses(compile_enhancement_spec(matrix, "image"))["standard_enhancements_catalog"] == OPT_IN

    def test_turning_toggle_on_never_turns_key_off(self):
        before = _statuses(compile_enhancement_spec({"carousel": {"profile_end_card": True}}, "carousel"))
        after = _statuses(compile_enhancement_spec(
            {"carousel": {"profile_end_card": True, "dynamic_description": True}}, "carousel"
        ))
        for key, status in before.items():
            if status == OPT_IN:
                assert after[key] == OPT_IN
        assert after["product_metadata_automation"] == OPT_IN

    def test_toggle_outside_type_is_ignored(self):
        # profile_end_card only exists for carousel
        spec = compile_enhancement_spec({"image": {"profile_end_card": True}}, "image")
        assert _statuses(spec)["profile_card"] == OPT_OUT

    def test_unknown_type_uses_image_toggles(self):
        matrix = {"collection": {"add_overlays": True, "profile_end_card": True}}
        statuses = _statuses(compile_enhancement_spec(matrix, "collection"))
        assert statuses["standard_enhancements_catalog"] == OPT_IN
        assert statuses["profile_card"] == OPT_OUT

    def test_video_subtitles_never_enrolled_by_toggles(self):
        matrix = {"video": {t: True for t in ENHANCEMENT_TOGGLES["video"]}}
        assert _statuses(compile_enhancement_spec(matrix, "video"))["ig_video_native_subtitle"] == OPT_OUT


class TestTables:
    def test_every_toggle_maps_to_capability_key(self):
        for toggles in ENHANCEMENT_TOGGLES.values():
            for toggle in toggles:
                assert ENHANCEMENT_API_MAP[toggle] in CAPABILITY_KEYS

    def test_default_matrix_has_all_types(self):
        assert default_matrix() == {"image": {}, "video": {}, "carousel": {}}
