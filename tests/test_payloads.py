import logging
from datetime import datetime, timezone

import pytest

from copy_resolver import ResolvedCopy
from draft import Draft
from payloads import (
    build_ad_fields,
    build_adset_fields,
    build_campaign_fields,
    build_carousel_creative_fields,
    build_image_creative_fields,
    build_targeting,
    build_video_creative_fields,
)

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _draft(**overrides):
    base = {
        "campaign": {"name": "C", "budget_type": "ABO", "bid_strategy": "LOWEST_COST_WITHOUT_CAP"},
        "adset": {"name": "S", "daily_budget": "20"},
        "page_id": "111",
        "page_name": "Acme",
        "destination_url": "https://example.com",
    }
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = {**base[key], **value}
        else:
            base[key] = value
    return Draft.model_validate(base)


def _copy(**kwargs):
    base = dict(primary_text="Hi", headline="Head", description="Desc", link_url="https://a.com", cta="SHOP_NOW")
    base.update(kwargs)
    return ResolvedCopy(**base)


class TestBudgetPlacement:
    def test_abo_budget_on_adset_only(self):
        draft = _draft()
        campaign = build_campaign_fields(draft)
        adset = build_adset_fields(draft, "cmp_1", now=NOW)
        assert "daily_budget" not in campaign
        assert campaign["is_adset_budget_sharing_enabled"] == "false"
        assert "bid_strategy" not in campaign
        assert adset["daily_budget"] == "2000"
        assert adset["bid_strategy"] == "LOWEST_COST_WITHOUT_CAP"

    def test_cbo_budget_on_campaign_only(self):
        draft = _draft(campaign={"budget_type": "CBO"})
        campaign = build_campaign_fields(draft)
        adset = build_adset_fields(draft, "cmp_1", now=NOW)
        assert campaign["daily_budget"] == "2000"
        assert campaign["bid_strategy"] == "LOWEST_COST_WITHOUT_CAP"
        assert "is_adset_budget_sharing_enabled" not in campaign
        assert "daily_budget" not in adset
        assert "bid_strategy" not in adset

    def test_abo_budget_sharing(self):
        campaign = build_campaign_fields(_draft(campaign={"budget_sharing": True}))
        assert campaign["is_adset_budget_sharing_enabled"] == "true"
        assert campaign["bid_strategy"] == "LOWEST_COST_WITHOUT_CAP"

    def test_campaign_basics(self):
        campaign = build_campaign_fields(_draft(ad_status="ACTIVE"))
        assert campaign["name"] == "C"
        assert campaign["status"] == "ACTIVE"
        assert campaign["special_ad_categories"] == "[]"


class TestTargeting:
    def test_gender(self):
        assert "genders" not in build_targeting(_draft())
        assert build_targeting(_draft(adset={"targeting": {"gender": "male"}}))["genders"] == [1]
        assert build_targeting(_draft(adset={"targeting": {"gender": "female"}}))["genders"] == [2]

    def test_exclusions(self):
        draft = _draft(adset={"targeting": {
            "countries": ["IT", "DE"],
            "excluded_countries": ["FR"],
            "excluded_regions": [{"key": "3847", "name": "Lombardy", "country_code": "IT"}],
        }})
        targeting = build_targeting(draft)
        assert targeting["geo_locations"] == {"countries": ["IT", "DE"]}
        assert targeting["excluded_geo_locations"] == {"countries": ["FR"], "regions": [{"key": "3847"}]}

    def test_no_exclusions_key_when_empty(self):
        assert "excluded_geo_locations" not in build_targeting(_draft())


class TestAdSetFields:
    def test_start_time_defaults_to_now(self):
        assert build_adset_fields(_draft(), "c", now=NOW)["start_time"] == NOW.isoformat()

    def test_pixel_promoted_object_and_attribution(self):
        adset = build_adset_fields(_draft(adset={"pixel_id": "px1", "attribution_setting": "1d_click"}), "c", now=NOW)
        assert adset["promoted_object"] == {"pixel_id": "px1", "custom_event_type": "PURCHASE"}
        assert adset["attribution_spec"] == [{"event_type": "CLICK_THROUGH", "window_days": 1}]

    def test_attribution_needs_pixel(self):
        adset = build_adset_fields(_draft(), "c", now=NOW)
        assert "attribution_spec" not in adset
        assert "promoted_object" not in adset

    def test_unknown_attribution_omitted_with_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="payloads"):
            adset = build_adset_fields(_draft(adset={"pixel_id": "px1", "attribution_setting": "28d_click"}), "c", now=NOW)
        assert "attribution_spec" not in adset
        assert "28d_click" in caplog.text

    def test_dsa_defaults_to_page_name(self):
        adset = build_adset_fields(_draft(), "c", now=NOW)
        assert adset["dsa_beneficiary"] == "Acme"
        assert adset["dsa_payor"] == "Acme"

    def test_dsa_falls_back_to_page_id(self):
        adset = build_adset_fields(_draft(page_name=None), "c", now=NOW)
        assert adset["dsa_beneficiary"] == "111"

    def test_dsa_explicit_values(self):
        adset = build_adset_fields(_draft(adset={"dsa_beneficiary": "B", "dsa_payor": "P"}), "c", now=NOW)
        assert (adset["dsa_beneficiary"], adset["dsa_payor"]) == ("B", "P")

    def test_no_dsa_outside_eu(self):
        adset = build_adset_fields(_draft(adset={"targeting": {"countries": ["US"]}}), "c", now=NOW)
        assert "dsa_beneficiary" not in adset
        assert "dsa_payor" not in adset

    @pytest.mark.parametrize("countries", [[], None])
    def test_dsa_follows_default_country(self, countries):
        adset = build_adset_fields(_draft(adset={"targeting": {"countries": countries}}), "c", now=NOW)
        assert adset["targeting"]["geo_locations"] == {"countries": ["IT"]}
        assert adset["dsa_beneficiary"] == "Acme"
        assert adset["dsa_payor"] == "Acme"

    def test_spend_limits_only_when_positive(self):
        adset = build_adset_fields(_draft(adset={"daily_min_spend": "5", "daily_spend_cap": "0"}), "c", now=NOW)
        assert adset["daily_min_spend_target"] == "500"
        assert "daily_spend_cap" not in adset

    def test_bid_amount_for_cap_strategies(self):
        draft = _draft(campaign={"bid_strategy": "COST_CAP", "bid_amount": "1.50"})
        assert build_adset_fields(draft, "c", now=NOW)["bid_amount"] == "150"

    def test_no_bid_amount_for_lowest_cost(self):
        draft = _draft(campaign={"bid_amount": "1.50"})
        assert "bid_amount" not in build_adset_fields(draft, "c", now=NOW)


class TestCreativeFields:
    def test_image_creative(self):
        fields = build_image_creative_fields(
            _draft(instagram_actor_id="ig1"), name="a.png", image_hash="h1", copy=_copy(), degrees_of_freedom_spec={}
        )
        spec = fields["object_story_spec"]
        assert spec["page_id"] == "111"
        assert spec["instagram_actor_id"] == "ig1"
        assert spec["link_data"]["image_hash"] == "h1"
        assert spec["link_data"]["call_to_action"] == {"type": "SHOP_NOW", "value": {"link": "https://a.com"}}

    def test_no_button_omits_cta(self):
        fields = build_image_creative_fields(
            _draft(), name="a.png", image_hash="h1", copy=_copy(cta="NO_BUTTON"), degrees_of_freedom_spec={}
        )
        link_data = fields["object_story_spec"]["link_data"]
        assert "call_to_action" not in link_data
        assert "instagram_actor_id" not in fields["object_story_spec"]

    def test_video_creative_always_has_cta(self):
        fields = build_video_creative_fields(
            _draft(), name="v.mp4", video_id="v1", copy=_copy(cta=""), degrees_of_freedom_spec={}
        )
        video_data = fields["object_story_spec"]["video_data"]
        assert video_data["video_id"] == "v1"
        assert video_data["call_to_action"]["type"] == "LEARN_MORE"

    def test_carousel_cards(self):
        cards = [
            {"image_hash": "h1", "headline": "One", "description": "", "link_url": "https://a.com/1", "cta": "SHOP_NOW"},
            {"image_hash": "h2", "headline": "Two", "description": "", "link_url": "", "cta": "NO_BUTTON"},
        ]
        fields = build_carousel_creative_fields(
            _draft(), name="Carousel - C", cards=cards, message="Hi", link_url="https://a.com",
            degrees_of_freedom_spec={},
        )
        link_data = fields["object_story_spec"]["link_data"]
        first, second = link_data["child_attachments"]
        assert first["link"] == "https://a.com/1"
        assert first["call_to_action"]["type"] == "SHOP_NOW"
        assert second["link"] == "https://a.com"
        assert "call_to_action" not in second
        assert link_data["message"] == "Hi"

    def test_ad_fields(self):
        assert build_ad_fields(name="Ad - a.png", adset_id="as1", creative_id="cr1", status="PAUSED") == {
            "name": "Ad - a.png",
            "adset_id": "as1",
            "creative": {"creative_id": "cr1"},
            "status": "PAUSED",
        }
