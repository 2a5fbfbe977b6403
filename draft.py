"""Launch draft: everything the operator configures before hitting "launch".

The models mirror the upload form: campaign settings, ad set settings and
targeting, page identity, destination URL, global copy and the list of
creatives (uploaded files plus optional per-creative copy).

DraftSession owns a draft while it is being edited and hands the launcher a
read-only snapshot.
"""

from __future__ import annotations

import itertools
import mimetypes
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# -----------------------------
# Option constants
# -----------------------------

CAMPAIGN_OBJECTIVES = {
    "OUTCOME_TRAFFIC": "Traffic",
    "OUTCOME_SALES": "Sales",
    "OUTCOME_LEADS": "Leads",
    "OUTCOME_ENGAGEMENT": "Engagement",
    "OUTCOME_AWARENESS": "Awareness",
}

OPTIMIZATION_GOALS = {
    "LINK_CLICKS": "Link Clicks",
    "LANDING_PAGE_VIEWS": "Landing Page Views",
    "IMPRESSIONS": "Impressions",
    "REACH": "Reach",
    "OFFSITE_CONVERSIONS": "Conversions",
    "VALUE": "Value (ROAS)",
}

BID_STRATEGIES = {
    "LOWEST_COST_WITHOUT_CAP": "Lowest Cost (automatic)",
    "COST_CAP": "Cost Cap",
    "BID_CAP": "Bid Cap",
    "LOWEST_COST_WITH_MIN_ROAS": "Minimum ROAS",
}

# Strategies that send bid_amount (minimum ROAS reuses the same field).
BID_AMOUNT_STRATEGIES = {"BID_CAP", "COST_CAP", "LOWEST_COST_WITH_MIN_ROAS"}

ATTRIBUTION_SETTINGS = {
    "7d_click_1d_view": "Standard (7-day click, 1-day view)",
    "1d_click": "1-day click",
    "7d_click": "7-day click",
    "1d_click_1d_view": "1-day click, 1-day view",
}

NO_BUTTON = "NO_BUTTON"
DEFAULT_CTA = "LEARN_MORE"

CTA_OPTIONS = {
    "LEARN_MORE": "Learn More",
    "SHOP_NOW": "Shop Now",
    "SIGN_UP": "Sign Up",
    "CONTACT_US": "Contact Us",
    "DOWNLOAD": "Download",
    "GET_OFFER": "Get Offer",
    "SUBSCRIBE": "Subscribe",
    "APPLY_NOW": "Apply Now",
    "ORDER_NOW": "Order Now",
    "WHATSAPP_MESSAGE": "WhatsApp Message",
    NO_BUTTON: "No Button",
}

ACCEPTED_IMAGE_TYPES = ("image/jpeg", "image/png")
ACCEPTED_VIDEO_TYPES = ("video/mp4", "video/quicktime")


def to_minor_units(value: Any) -> Optional[int]:
    """'20' -> 2000, '4.995' -> 500. None/blank -> None.

    Raises ValueError for anything that is not a decimal number.
    """
    if value is None:
        return None
    raw = str(value).strip()
    if not raw:
        return None
    try:
        amount = Decimal(raw)
    except InvalidOperation as e:
        raise ValueError(f"Not a number: {raw!r}") from e
    if not amount.is_finite():
        raise ValueError(f"Not a number: {raw!r}")
    try:
        return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except InvalidOperation as e:
        # quantize overflows the default context precision for huge values
        raise ValueError(f"Amount out of range: {raw!r}") from e


# -----------------------------
# Draft models
# -----------------------------

class AssetFile(BaseModel):
    """Raw creative file as selected by the operator."""

    name: str
    content_type: str = ""
    data: bytes = b""

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def is_image(self) -> bool:
        return self.content_type in ACCEPTED_IMAGE_TYPES

    @classmethod
    def from_path(cls, path: str | Path) -> "AssetFile":
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(f"Creative file not found: {p}")
        content_type = mimetypes.guess_type(p.name)[0] or "application/octet-stream"
        return cls(name=p.name, content_type=content_type, data=p.read_bytes())


class Region(BaseModel):
    key: str
    name: str = ""
    country_code: str = ""


class Targeting(BaseModel):
    countries: List[str] = Field(default_factory=lambda: ["IT"])
    excluded_countries: List[str] = Field(default_factory=list)
    excluded_regions: List[Region] = Field(default_factory=list)
    age_min: int = 18
    age_max: int = 65
    gender: Literal["all", "male", "female"] = "all"

    @field_validator("countries", "excluded_countries", mode="before")
    @classmethod
    def _normalize_countries(cls, v):
        # Accept 'IT,DE' as well as ['it', 'de']
        if v is None:
            return []
        if isinstance(v, str):
            v = v.replace(" ", ",").split(",")
        return [str(c).strip().upper() for c in v if str(c).strip()]


class CampaignSettings(BaseModel):
    name: str = ""
    objective: str = "OUTCOME_TRAFFIC"
    budget_type: Literal["ABO", "CBO"] = "ABO"
    bid_strategy: Optional[str] = "LOWEST_COST_WITHOUT_CAP"
    bid_amount: Optional[str] = None
    # ABO only: ad sets may share up to 20% of their budget.
    budget_sharing: bool = False

    @field_validator("bid_amount", mode="before")
    @classmethod
    def _stringify(cls, v):
        if v is None:
            return None
        return str(v)


class AdSetSettings(BaseModel):
    name: str = ""
    daily_budget: Optional[str] = "20"
    optimization_goal: str = "LINK_CLICKS"
    billing_event: str = "IMPRESSIONS"
    targeting: Targeting = Field(default_factory=Targeting)
    start_time: Optional[str] = None

    pixel_id: Optional[str] = None
    conversion_event: Optional[str] = "PURCHASE"
    attribution_setting: Optional[str] = "7d_click_1d_view"

    daily_min_spend: Optional[str] = None
    daily_spend_cap: Optional[str] = None

    dsa_beneficiary: Optional[str] = None
    dsa_payor: Optional[str] = None

    @field_validator("daily_budget", "daily_min_spend", "daily_spend_cap", "pixel_id", mode="before")
    @classmethod
    def _stringify(cls, v):
        # Forms send numbers as numbers or strings
        if v is None:
            return None
        return str(v)


class GlobalCopy(BaseModel):
    primary_text: str = ""
    headline: str = ""
    description: str = ""
    cta: str = DEFAULT_CTA


class CreativeDraft(BaseModel):
    # Overrides arrive as form/JSON values and are assigned field by field.
    model_config = ConfigDict(validate_assignment=True)

    id: int
    file: AssetFile
    use_custom_copy: bool = False
    primary_text: str = ""
    headline: str = ""
    description: str = ""
    link_url: str = ""
    cta: str = DEFAULT_CTA


class Draft(BaseModel):
    mode: Literal["new", "existing"] = "new"
    creative_type: Literal["single", "carousel"] = "single"

    campaign: CampaignSettings = Field(default_factory=CampaignSettings)
    adset: AdSetSettings = Field(default_factory=AdSetSettings)

    # existing mode: ids picked from the account
    campaign_id: Optional[str] = None
    adset_id: Optional[str] = None
    campaign_name: Optional[str] = None

    page_id: Optional[str] = None
    page_name: Optional[str] = None
    instagram_actor_id: Optional[str] = None

    destination_url: str = ""
    global_copy: GlobalCopy = Field(default_factory=GlobalCopy)
    ad_status: Literal["PAUSED", "ACTIVE"] = "PAUSED"

    creatives: List[CreativeDraft] = Field(default_factory=list)

    @property
    def launch_name(self) -> Optional[str]:
        return self.campaign.name if self.mode == "new" else self.campaign_name


# -----------------------------
# Editing session
# -----------------------------

class DraftSession:
    """Owns a Draft while the operator edits it.

    Creative ids come from a counter scoped to this session.
    """

    def __init__(self, draft: Optional[Draft] = None, *, ids: Optional[Iterator[int]] = None):
        self.draft = draft or Draft()
        start = max((c.id for c in self.draft.creatives), default=0) + 1
        self._ids = ids or itertools.count(start)

    def add_files(self, files: Iterable[AssetFile]) -> List[CreativeDraft]:
        added = [CreativeDraft(id=next(self._ids), file=f) for f in files]
        self.draft.creatives.extend(added)
        return added

    def _find(self, creative_id: int) -> CreativeDraft:
        for c in self.draft.creatives:
            if c.id == creative_id:
                return c
        raise KeyError(f"No creative with id {creative_id}")

    def remove_creative(self, creative_id: int) -> None:
        self.draft.creatives = [c for c in self.draft.creatives if c.id != creative_id]

    def toggle_custom_copy(self, creative_id: int) -> CreativeDraft:
        c = self._find(creative_id)
        c.use_custom_copy = not c.use_custom_copy
        return c

    def update_creative(self, creative_id: int, **fields: Any) -> CreativeDraft:
        c = self._find(creative_id)
        for name, value in fields.items():
            if name in {"id", "file"} or name not in CreativeDraft.model_fields:
                raise ValueError(f"Creative field {name!r} cannot be edited")
            setattr(c, name, value)
        return c

    def clear_creatives(self) -> None:
        self.draft.creatives = []

    def snapshot(self) -> Draft:
        return self.draft.model_copy(deep=True)
