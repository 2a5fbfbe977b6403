"""
Meta Marketing API client used by the launcher.
===============================================

Thin REST binding over the Graph API (requests.Session). Every method maps to
one remote call the launcher or the HTTP layer needs:

- discovery: ad accounts, pages, instagram accounts, pixels, campaigns, ad sets,
  insights, creatives, region search
- creation: campaign, ad set, image/video upload, ad creative, ad

Request fields are built elsewhere (payloads.py); this module only encodes them
for Graph form posts and turns error payloads into a single readable message.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, TYPE_CHECKING

import requests
from dotenv import load_dotenv

if TYPE_CHECKING:
    from draft import AssetFile

logger = logging.getLogger(__name__)


# -----------------------------
# Exceptions
# -----------------------------

class MetaAPIError(RuntimeError):
    def __init__(self, message: str, *, http_status: int | None = None, error: dict | None = None):
        super().__init__(message)
        self.http_status = http_status
        self.error = error or {}


def extract_error_message(payload: Any) -> str:
    """Pick the most useful message out of a Graph error payload.

    Priority: error_user_msg, then message, then "Error <code>".
    """
    if not isinstance(payload, dict) or not isinstance(payload.get("error"), dict):
        return "Unknown error"
    e = payload["error"]
    if e.get("error_user_msg"):
        return str(e["error_user_msg"])
    if e.get("message"):
        return str(e["message"])
    return f"Error {e.get('code') or ''}".rstrip()


# -----------------------------
# Config
# -----------------------------

def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw not in {"0", "false", "no", "off"}


@dataclass(frozen=True)
class MetaConfig:
    access_token: str
    ad_account_id: str
    api_version: str = "v21.0"
    app_secret: str | None = None
    timeout_s: int = 30
    max_retries: int = 2
    video_wait_for_ready: bool = True

    @staticmethod
    def from_env() -> "MetaConfig":
        """Loads config from environment variables (optionally via .env)."""
        load_dotenv(override=False)

        token = os.getenv("META_ACCESS_TOKEN", "").strip()
        account_id = os.getenv("META_AD_ACCOUNT_ID", "").strip()
        api_version = os.getenv("META_API_VERSION", "v21.0").strip() or "v21.0"
        app_secret = os.getenv("META_APP_SECRET", "").strip() or None

        if not token:
            raise ValueError("Missing META_ACCESS_TOKEN in environment (.env).")
        if not account_id:
            raise ValueError("Missing META_AD_ACCOUNT_ID in environment (.env).")

        return MetaConfig(
            access_token=token,
            ad_account_id=normalize_ad_account_id(account_id),
            api_version=api_version,
            app_secret=app_secret,
            timeout_s=int(os.getenv("META_TIMEOUT_S", "30") or "30"),
            max_retries=int(os.getenv("META_MAX_RETRIES", "2") or "2"),
            video_wait_for_ready=_env_bool("VIDEO_WAIT_FOR_READY", True),
        )


def normalize_ad_account_id(ad_account_id: str) -> str:
    """
    Meta endpoints use act_<AD_ACCOUNT_ID>.
    Accept either 'act_123' or '123' from the user.
    """
    ad_account_id = ad_account_id.strip()
    if ad_account_id.startswith("act_"):
        return ad_account_id
    if ad_account_id.isdigit():
        return f"act_{ad_account_id}"
    return ad_account_id


def encode_form_fields(fields: Dict[str, Any]) -> Dict[str, str]:
    """Graph form encoding: nested objects as JSON strings, booleans as 'true'/'false'."""
    out: Dict[str, str] = {}
    for key, value in fields.items():
        if value is None:
            continue
        if isinstance(value, bool):
            out[key] = "true" if value else "false"
        elif isinstance(value, (dict, list)):
            out[key] = json.dumps(value)
        else:
            out[key] = str(value)
    return out


# -----------------------------
# Meta Client (REST via requests)
# -----------------------------

class MetaClient:
    def __init__(self, cfg: MetaConfig):
        self.cfg = cfg
        self.session = requests.Session()
        self.session.headers["Authorization"] = f"Bearer {cfg.access_token}"
        self.base_url = f"https://graph.facebook.com/{cfg.api_version}"
        self.video_base_url = f"https://graph-video.facebook.com/{cfg.api_version}"
        self.account = normalize_ad_account_id(cfg.ad_account_id)

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict] = None,
        data: Optional[dict] = None,
        files: Optional[dict] = None,
        use_video: bool = False,
    ) -> dict:
        base = self.video_base_url if use_video else self.base_url
        url = base + "/" + path.lstrip("/")
        params = dict(params or {})

        # Required when "App Secret Proof for Server API calls" is enabled on the app.
        if self.cfg.app_secret:
            params["appsecret_proof"] = hmac.new(
                self.cfg.app_secret.encode("utf-8"),
                self.cfg.access_token.encode("utf-8"),
                hashlib.sha256,
            ).hexdigest()

        max_retries = max(0, int(self.cfg.max_retries))
        idempotent = method.upper() == "GET"
        last_err: Optional[Exception] = None
        for attempt in range(max_retries + 1):
            try:
                resp = self.session.request(
                    method=method.upper(),
                    url=url,
                    params=params,
                    data=data,
                    files=files,
                    timeout=self.cfg.timeout_s,
                )
                # Meta often returns JSON even for errors.
                try:
                    payload = resp.json()
                except ValueError:
                    payload = {"raw": resp.text}

                if resp.status_code >= 400 or ("error" in payload):
                    error_obj = payload.get("error") if isinstance(payload.get("error"), dict) else {}
                    msg = extract_error_message(payload)
                    if msg == "Unknown error" and payload.get("raw"):
                        msg = str(payload["raw"])[:300]
                    raise MetaAPIError(msg, http_status=resp.status_code, error=error_obj)
                return payload
            except MetaAPIError as e:
                # Creates are not idempotent: POSTs only retry on rate limits.
                last_err = e
                retry_statuses = {500, 502, 503, 504, 429} if idempotent else {429}
                if attempt < max_retries and e.http_status in retry_statuses:
                    logger.warning("Meta API %s %s failed (%s), retrying", method, path, e.http_status)
                    time.sleep(1.5 * (attempt + 1))
                    continue
                raise
            except requests.RequestException as e:
                last_err = e
                # POSTs only retry when the connection was never established.
                if attempt < max_retries and (idempotent or isinstance(e, requests.ConnectTimeout)):
                    time.sleep(1.5 * (attempt + 1))
                    continue
                raise MetaAPIError(f"Network error calling Meta API: {e}") from e

        raise MetaAPIError(f"Meta API request failed after retries: {last_err}")

    def _get_all_pages(self, path: str, *, params: dict, max_pages: int = 8) -> List[dict]:
        """Collects up to `max_pages` pages for a Graph API edge."""
        out: List[dict] = []
        after: str | None = None
        for _ in range(max_pages):
            p = dict(params)
            if after:
                p["after"] = after
            payload = self._request("GET", path, params=p)
            data = payload.get("data") or []
            if isinstance(data, list):
                out.extend(data)
            cursors = ((payload.get("paging") or {}).get("cursors") or {})
            after = cursors.get("after")
            if not after:
                break
        return out

    # -----------------------------
    # Discovery
    # -----------------------------

    def test_connection(self) -> dict:
        return self._request("GET", f"/{self.account}", params={"fields": "name,account_status"})

    def get_ad_accounts(self) -> List[dict]:
        return self._get_all_pages(
            "/me/adaccounts",
            params={"fields": "name,account_status,id", "limit": "100"},
        )

    def get_pages(self) -> List[dict]:
        """Pages reachable by the token: personal, promotable by the ad account,
        and owned/client pages of every business the user belongs to."""
        results: List[dict] = []
        seen: set[str] = set()
        page_fields = {"fields": "name,id,picture{url}", "limit": "100"}

        def add_pages(source: str, path: str) -> None:
            try:
                rows = self._request("GET", path, params=page_fields).get("data") or []
            except MetaAPIError as e:
                logger.warning("Pages source %s failed: %s", source, e)
                return
            added = 0
            for row in rows:
                pid = str(row.get("id") or "")
                if pid and pid not in seen:
                    seen.add(pid)
                    results.append(row)
                    added += 1
            logger.debug("Pages source %s: found %d, added %d new", source, len(rows), added)

        add_pages("me/accounts", "/me/accounts")
        add_pages("promote_pages", f"/{self.account}/promote_pages")

        try:
            businesses = self._request(
                "GET", "/me/businesses", params={"fields": "id,name", "limit": "10"}
            ).get("data") or []
        except MetaAPIError as e:
            logger.warning("Pages source me/businesses failed: %s", e)
            businesses = []

        for biz in businesses:
            label = biz.get("name") or biz.get("id")
            add_pages(f"BM {label}/owned_pages", f"/{biz['id']}/owned_pages")
            add_pages(f"BM {label}/client_pages", f"/{biz['id']}/client_pages")

        logger.info("Found %d pages", len(results))
        return results

    def get_instagram_accounts(self, page_id: str) -> List[dict]:
        """Business account linked to the page first, then any other connected accounts."""
        results: List[dict] = []
        try:
            page = self._request(
                "GET",
                f"/{page_id}",
                params={"fields": "instagram_business_account{id,username,profile_picture_url}"},
            )
            if page.get("instagram_business_account"):
                results.append(page["instagram_business_account"])
        except MetaAPIError as e:
            logger.warning("instagram_business_account lookup failed for page %s: %s", page_id, e)

        try:
            connected = self._request(
                "GET", f"/{page_id}/instagram_accounts", params={"fields": "id,username,profile_pic"}
            ).get("data") or []
        except MetaAPIError as e:
            logger.warning("instagram_accounts lookup failed for page %s: %s", page_id, e)
            connected = []

        known = {r.get("id") for r in results}
        for ig in connected:
            if ig.get("id") not in known:
                results.append(ig)
        return results

    def get_pixels(self) -> List[dict]:
        return self._request("GET", f"/{self.account}/adspixels", params={"fields": "name,id"}).get("data") or []

    def get_campaigns(self) -> List[dict]:
        return self._get_all_pages(
            f"/{self.account}/campaigns",
            params={"fields": "name,status,objective", "limit": "100"},
        )

    def get_adsets(self, campaign_id: str) -> List[dict]:
        return self._get_all_pages(
            f"/{campaign_id}/adsets",
            params={"fields": "name,status,daily_budget,optimization_goal", "limit": "100"},
        )

    def get_insights(self, date_preset: str = "last_7d", level: str = "campaign") -> List[dict]:
        fields = ",".join([
            "campaign_name", "adset_name", "ad_name",
            "impressions", "clicks", "spend", "cpc", "cpm", "ctr",
            "actions", "reach", "frequency",
        ])
        return self._request(
            "GET",
            f"/{self.account}/insights",
            params={"fields": fields, "date_preset": date_preset or "last_7d", "level": level or "campaign", "limit": "500"},
        ).get("data") or []

    def get_ad_creatives(self) -> List[dict]:
        return self._request(
            "GET",
            f"/{self.account}/adcreatives",
            params={"fields": "name,thumbnail_url,status,object_story_spec", "limit": "50"},
        ).get("data") or []

    def search_regions(self, query: str) -> List[dict]:
        return self._request(
            "GET",
            "/search",
            params={"type": "adgeolocation", "q": query, "location_types": "region"},
        ).get("data") or []

    # -----------------------------
    # Create flow (campaign -> adset -> media -> creative -> ad)
    # -----------------------------

    def _create(self, edge: str, fields: Dict[str, Any]) -> str:
        logger.debug("POST %s fields=%s", edge, fields)
        payload = self._request("POST", f"/{self.account}/{edge}", data=encode_form_fields(fields))
        object_id = str(payload.get("id") or "").strip()
        if not object_id:
            raise MetaAPIError(f"Create {edge} did not return id. Response: {payload}")
        return object_id

    def create_campaign(self, fields: Dict[str, Any]) -> str:
        return self._create("campaigns", fields)

    def create_adset(self, fields: Dict[str, Any]) -> str:
        return self._create("adsets", fields)

    def create_image_creative(self, fields: Dict[str, Any]) -> str:
        return self._create("adcreatives", fields)

    def create_video_creative(self, fields: Dict[str, Any]) -> str:
        return self._create("adcreatives", fields)

    def create_carousel_creative(self, fields: Dict[str, Any]) -> str:
        return self._create("adcreatives", fields)

    def create_ad(self, fields: Dict[str, Any]) -> str:
        return self._create("ads", fields)

    def upload_image(self, asset: "AssetFile") -> dict:
        """Uploads an image and returns {"hash", "url"}.

        Meta expects the file under the multipart field name `filename`.
        """
        files = {"filename": (asset.name, asset.data, asset.content_type or "image/jpeg")}
        payload = self._request("POST", f"/{self.account}/adimages", files=files)

        images = payload.get("images") or {}
        if not images:
            raise MetaAPIError(f"Upload did not return images. Response: {payload}")

        first_key = next(iter(images.keys()))
        img_obj = images[first_key] or {}
        image_hash = img_obj.get("hash") or first_key
        return {"hash": image_hash, "url": img_obj.get("url")}

    def upload_video(self, asset: "AssetFile") -> str:
        """Upload a video (multipart 'source') and return the AdVideo id."""
        files = {"source": (asset.name, asset.data, asset.content_type or "video/mp4")}
        payload = self._request(
            "POST", f"/{self.account}/advideos", files=files, data={"title": asset.name}, use_video=True
        )
        video_id = str(payload.get("id") or "").strip()
        if not video_id:
            raise MetaAPIError(f"Video upload did not return id. Response: {payload}")

        if self.cfg.video_wait_for_ready:
            self.wait_for_video_ready(video_id)
        return video_id

    def wait_for_video_ready(self, video_id: str, *, timeout_s: int = 600, poll_s: int = 5) -> None:
        """Poll AdVideo status until it's ready (or timeout)."""
        deadline = time.time() + max(10, int(timeout_s))
        last_status = None

        while time.time() < deadline:
            obj = self._request("GET", f"/{video_id}", params={"fields": "status"})
            status = obj.get("status")

            # status is usually a dict: {"video_status":"processing"|"ready", ...}
            video_status = None
            if isinstance(status, dict):
                video_status = (status.get("video_status") or status.get("status") or "").strip().lower() or None
            elif isinstance(status, str):
                video_status = status.strip().lower() or None
            last_status = status

            if video_status in {"ready", "complete", "completed"}:
                return
            if video_status in {"error", "failed"}:
                raise MetaAPIError(f"Video encoding failed for {video_id}. status={status}")

            time.sleep(max(1, int(poll_s)))

        raise MetaAPIError(f"Timed out waiting for video {video_id} to become ready. last_status={last_status}")
