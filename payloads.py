"""Request fields for the create calls (campaign, ad set, creatives, ad).

Pure functions: they take the draft plus ids/media references from earlier
steps and return the field dicts handed to MetaClient. Money values are
already in minor units (cents) and sent as strings.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from draft import (
    BID_AMOUNT_STRATEGIES,
    DEFAULT_CTA,
    NO_BUTTON,
    Draft,
    to_minor_units,
)
from dsa import requires_dsa

logger = logging.getLogger(__name__)

ATTRIBUTION_SPECS: Dict[str, List[Dict[str, Any]]] = {
    "7d_click_1d_view": [
        {"event_type": "CLICK_THROUGH", "window_days": 7},
        {"event_type": "VIEW_THROUGH", "window_days": 1},
    ],
    "1d_click": [{"event_type": "CLICK_THROUGH", "window_days": 1}],
    "7d_click": [{"event_type": "CLICK_THROUGH", "window_days": 7}],
    "1d_click_1d_view": [
        {"event_type": "CLICK_THROUGH", "window_days": 1},
        {"event_type": "VIEW_THROUGH", "window_days": 1},
    ],
}


def _cents(value: Any) -> Optional[str]:
    amount = to_minor_units(value)
    return None if amount is None else str(amount)


def build_campaign_fields(draft: Draft) -> Dict[str, Any]:
    c = draft.campaign
    is_cbo = c.budget_type == "CBO"
    fields: Dict[str, Any] = {
        "name": c.name,
        "objective": c.objective,
        "status": draft.ad_status,
        "special_ad_categories": "[]",
    }
    # CBO always carries the strategy; ABO only when budget sharing is on.
    if c.bid_strategy and (is_cbo or c.budget_sharing):
        fields["bid_strategy"] = c.bid_strategy
    if is_cbo:
        budget = _cents(draft.adset.daily_budget)
        if budget:
            fields["daily_budget"] = budget
    else:
        # Budget lives on the ad set, but Meta still wants the flag on the campaign.
        fields["is_adset_budget_sharing_enabled"] = "true" if c.budget_sharing else "false"
    return fields


def included_countries(draft: Draft) -> List[str]:
    """Countries the ad set delivers to; an empty selection means Italy."""
    return list(draft.adset.targeting.countries) or ["IT"]


def build_targeting(draft: Draft) -> Dict[str, Any]:
    t = draft.adset.targeting
    targeting: Dict[str, Any] = {
        "geo_locations": {"countries": included_countries(draft)},
        "age_min": int(t.age_min or 18),
        "age_max": int(t.age_max or 65),
    }
    excluded: Dict[str, Any] = {}
    if t.excluded_countries:
        excluded["countries"] = list(t.excluded_countries)
    if t.excluded_regions:
        excluded["regions"] = [{"key": r.key} for r in t.excluded_regions]
    if excluded:
        targeting["excluded_geo_locations"] = excluded
    if t.gender == "male":
        targeting["genders"] = [1]
    elif t.gender == "female":
        targeting["genders"] = [2]
    return targeting


def build_attribution_spec(setting: Optional[str]) -> Optional[List[Dict[str, Any]]]:
    """Named attribution window -> attribution_spec; unknown names give None."""
    spec = ATTRIBUTION_SPECS.get(setting or "")
    return [dict(item) for item in spec] if spec else None


def build_adset_fields(draft: Draft, campaign_id: str, *, now: Optional[datetime] = None) -> Dict[str, Any]:
    a = draft.adset
    c = draft.campaign
    is_cbo = c.budget_type == "CBO"
    start_time = a.start_time or (now or datetime.now(timezone.utc)).isoformat()

    fields: Dict[str, Any] = {
        "name": a.name,
        "campaign_id": campaign_id,
        "optimization_goal": a.optimization_goal or "LINK_CLICKS",
        "billing_event": a.billing_event or "IMPRESSIONS",
        "targeting": build_targeting(draft),
        "status": draft.ad_status,
        "is_dynamic_creative": "false",
        "start_time": start_time,
    }

    if not is_cbo:
        if c.bid_strategy:
            fields["bid_strategy"] = c.bid_strategy
        budget = _cents(a.daily_budget)
        if budget:
            fields["daily_budget"] = budget

    if a.pixel_id:
        promoted_object: Dict[str, Any] = {"pixel_id": a.pixel_id}
        if a.conversion_event:
            promoted_object["custom_event_type"] = a.conversion_event
        fields["promoted_object"] = promoted_object

    if c.bid_strategy in BID_AMOUNT_STRATEGIES:
        bid_amount = to_minor_units(c.bid_amount)
        if bid_amount and bid_amount > 0:
            fields["bid_amount"] = str(bid_amount)

    if a.pixel_id and a.attribution_setting:
        spec = build_attribution_spec(a.attribution_setting)
        if spec:
            fields["attribution_spec"] = spec
        else:
            logger.warning("Unknown attribution setting %r, attribution_spec not sent", a.attribution_setting)

    if requires_dsa(included_countries(draft)):
        fallback = draft.page_name or draft.page_id
        fields["dsa_beneficiary"] = a.dsa_beneficiary or fallback
        fields["dsa_payor"] = a.dsa_payor or fallback

    min_spend = to_minor_units(a.daily_min_spend)
    if min_spend and min_spend > 0:
        fields["daily_min_spend_target"] = str(min_spend)
    spend_cap = to_minor_units(a.daily_spend_cap)
    if spend_cap and spend_cap > 0:
        fields["daily_spend_cap"] = str(spend_cap)

    return fields


def _call_to_action(cta: Optional[str], link: str) -> Optional[Dict[str, Any]]:
    if not cta or cta == NO_BUTTON:
        return None
    return {"type": cta, "value": {"link": link}}


def _story_spec(draft: Draft, key: str, data: Dict[str, Any]) -> Dict[str, Any]:
    spec: Dict[str, Any] = {"page_id": draft.page_id, key: data}
    if draft.instagram_actor_id:
        spec["instagram_actor_id"] = draft.instagram_actor_id
    return spec


def build_image_creative_fields(
    draft: Draft,
    *,
    name: str,
    image_hash: str,
    copy,
    degrees_of_freedom_spec: Dict[str, Any],
) -> Dict[str, Any]:
    link_data: Dict[str, Any] = {
        "image_hash": image_hash,
        "link": copy.link_url,
        "message": copy.primary_text or "",
        "name": copy.headline or "",
        "description": copy.description or "",
    }
    cta = _call_to_action(copy.cta, copy.link_url)
    if cta:
        link_data["call_to_action"] = cta
    return {
        "name": name or "Ad Creative",
        "object_story_spec": _story_spec(draft, "link_data", link_data),
        "degrees_of_freedom_spec": degrees_of_freedom_spec,
    }


def build_video_creative_fields(
    draft: Draft,
    *,
    name: str,
    video_id: str,
    copy,
    degrees_of_freedom_spec: Dict[str, Any],
    image_hash: Optional[str] = None,
) -> Dict[str, Any]:
    # Unlike link_data, video_data always carries a button.
    video_data: Dict[str, Any] = {
        "video_id": video_id,
        "link_description": copy.description or "",
        "message": copy.primary_text or "",
        "title": copy.headline or "",
        "call_to_action": {"type": copy.cta or DEFAULT_CTA, "value": {"link": copy.link_url}},
    }
    if image_hash:
        video_data["image_hash"] = image_hash
    return {
        "name": name or "Video Ad Creative",
        "object_story_spec": _story_spec(draft, "video_data", video_data),
        "degrees_of_freedom_spec": degrees_of_freedom_spec,
    }


def build_carousel_creative_fields(
    draft: Draft,
    *,
    name: str,
    cards: List[Dict[str, Any]],
    message: str,
    link_url: str,
    degrees_of_freedom_spec: Dict[str, Any],
) -> Dict[str, Any]:
    """cards: [{"image_hash", "headline", "description", "link_url", "cta"}]"""
    attachments: List[Dict[str, Any]] = []
    for card in cards:
        card_link = card.get("link_url") or link_url
        attachment: Dict[str, Any] = {
            "image_hash": card["image_hash"],
            "link": card_link,
            "name": card.get("headline") or "",
            "description": card.get("description") or "",
        }
        cta = _call_to_action(card.get("cta"), card_link)
        if cta:
            attachment["call_to_action"] = cta
        attachments.append(attachment)

    link_data = {
        "message": message or "",
        "link": link_url,
        "child_attachments": attachments,
    }
    return {
        "name": name or "Carousel Creative",
        "object_story_spec": _story_spec(draft, "link_data", link_data),
        "degrees_of_freedom_spec": degrees_of_freedom_spec,
    }


def build_ad_fields(*, name: str, adset_id: str, creative_id: str, status: str) -> Dict[str, Any]:
    return {
        "name": name or "Ad",
        "adset_id": adset_id,
        # creative must be a JSON object containing creative_id
        "creative": {"creative_id": creative_id},
        "status": status or "PAUSED",
    }
