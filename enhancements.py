"""Advantage+ creative enhancements -> AdCreative.degrees_of_freedom_spec.

Operators switch enhancements on per creative type (image / video / carousel).
Meta only understands five creative_features_spec keys, so every UI toggle maps
onto one of them; a key is enrolled when any toggle mapped to it is on.
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional, Tuple

OPT_IN = "OPT_IN"
OPT_OUT = "OPT_OUT"

# Every compiled spec carries exactly these keys.
CAPABILITY_KEYS: Tuple[str, ...] = (
    "standard_enhancements_catalog",
    "ig_video_native_subtitle",
    "product_metadata_automation",
    "profile_card",
    "text_overlay_translation",
)

ENHANCEMENT_TOGGLES: Dict[str, Tuple[str, ...]] = {
    "image": (
        "advantage_plus_creative",
        "relevant_comments",
        "visual_touchups",
        "text_improvements",
        "add_overlays",
        "brightness_contrast",
        "music_overlay",
        "image_animation",
        "generate_backgrounds",
        "expand_image",
        "enhance_cta",
        "translate_text",
        "adapt_to_placement",
        "add_catalog_items",
    ),
    "video": (
        "advantage_plus_creative",
        "relevant_comments",
        "visual_touchups",
        "text_improvements",
        "enhance_cta",
        "translate_text",
        "dynamic_media",
        "add_catalog_items",
        "add_site_links",
    ),
    "carousel": (
        "advantage_plus_creative",
        "relevant_comments",
        "visual_touchups",
        "text_improvements",
        "profile_end_card",
        "dynamic_description",
        "enhance_cta",
        "translate_text",
        "dynamic_media",
        "add_catalog_items",
        "add_site_links",
    ),
}

ENHANCEMENT_LABELS: Dict[str, str] = {
    "advantage_plus_creative": "Advantage+ creative",
    "relevant_comments": "Relevant comments",
    "visual_touchups": "Visual touch-ups",
    "text_improvements": "Text improvements",
    "add_overlays": "Add overlays",
    "brightness_contrast": "Adjust brightness & contrast",
    "music_overlay": "Music overlay",
    "image_animation": "Image animation",
    "generate_backgrounds": "Generate backgrounds",
    "expand_image": "Expand image",
    "enhance_cta": "Enhance CTA",
    "translate_text": "Translate text",
    "adapt_to_placement": "Adapt to placement",
    "add_catalog_items": "Add catalog items",
    "dynamic_media": "Dynamic media",
    "add_site_links": "Add site links",
    "profile_end_card": "Profile end card",
    "dynamic_description": "Dynamic description",
}

ENHANCEMENT_API_MAP: Dict[str, str] = {
    "advantage_plus_creative": "standard_enhancements_catalog",
    "relevant_comments": "standard_enhancements_catalog",
    "visual_touchups": "standard_enhancements_catalog",
    "text_improvements": "standard_enhancements_catalog",
    "add_overlays": "standard_enhancements_catalog",
    "brightness_contrast": "standard_enhancements_catalog",
    "music_overlay": "standard_enhancements_catalog",
    "image_animation": "standard_enhancements_catalog",
    "generate_backgrounds": "standard_enhancements_catalog",
    "expand_image": "standard_enhancements_catalog",
    "enhance_cta": "standard_enhancements_catalog",
    "adapt_to_placement": "standard_enhancements_catalog",
    "dynamic_media": "standard_enhancements_catalog",
    "add_site_links": "standard_enhancements_catalog",
    "translate_text": "text_overlay_translation",
    "add_catalog_items": "product_metadata_automation",
    "dynamic_description": "product_metadata_automation",
    "profile_end_card": "profile_card",
}

EnhancementMatrix = Mapping[str, Mapping[str, bool]]


def default_matrix() -> Dict[str, Dict[str, bool]]:
    return {creative_type: {} for creative_type in ENHANCEMENT_TOGGLES}


def compile_enhancement_spec(matrix: Optional[EnhancementMatrix], creative_type: str) -> dict:
    """Build degrees_of_freedom_spec for one creative type.

    Unknown creative types use the image toggle set; their toggle values are
    still read from matrix[creative_type].
    """
    toggles = ENHANCEMENT_TOGGLES.get(creative_type, ENHANCEMENT_TOGGLES["image"])
    settings = (matrix or {}).get(creative_type) or {}

    states: Dict[str, str] = {}
    for toggle in toggles:
        api_key = ENHANCEMENT_API_MAP.get(toggle)
        if not api_key:
            continue
        if settings.get(toggle):
            states[api_key] = OPT_IN
        else:
            states.setdefault(api_key, OPT_OUT)

    features = {key: {"enroll_status": states.get(key, OPT_OUT)} for key in CAPABILITY_KEYS}
    return {"creative_features_spec": features}
