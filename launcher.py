"""
Meta Ads launcher
=================

Turns a launch Draft into live Meta objects:

    campaign -> ad set -> (per creative) upload -> ad creative -> ad

- "new" mode creates the campaign and ad set first; "existing" mode reuses the
  selected ids.
- "single" creates one creative + ad per uploaded file; "carousel" uploads every
  image and creates one carousel creative + one ad.
- Progress is written to a ProgressReporter before every network step.
- The first failing call stops the launch. Objects created before it stay in
  the ad account (no rollback); LaunchError lists them.

CLI examples:

    python launcher.py whoami
    python launcher.py pages
    python launcher.py launch --draft draft.json
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import textwrap
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from copy_resolver import append_tracking_params, resolve_copy
from draft import ATTRIBUTION_SETTINGS, AssetFile, Draft, DraftSession, to_minor_units
from enhancements import compile_enhancement_spec, default_matrix
from meta_client import MetaAPIError, MetaClient, MetaConfig
from payloads import (
    build_ad_fields,
    build_adset_fields,
    build_campaign_fields,
    build_carousel_creative_fields,
    build_image_creative_fields,
    build_video_creative_fields,
)

logger = logging.getLogger(__name__)


# -----------------------------
# Settings
# -----------------------------

class LaunchSettings(BaseModel):
    """Operator settings shared by every launch."""

    tracking_template: str = ""
    enhancements: Dict[str, Dict[str, bool]] = Field(default_factory=default_matrix)

    @staticmethod
    def from_env() -> "LaunchSettings":
        load_dotenv(override=False)
        enhancements = default_matrix()
        path = (os.getenv("ENHANCEMENTS_PATH") or "").strip()
        if path:
            enhancements.update(json.loads(Path(path).read_text(encoding="utf-8")))
        return LaunchSettings(
            tracking_template=(os.getenv("TRACKING_TEMPLATE") or "").strip(),
            enhancements=enhancements,
        )


# -----------------------------
# Errors
# -----------------------------

class LaunchValidationError(ValueError):
    """Draft is not launchable. Raised before any remote call."""


class LaunchError(RuntimeError):
    """A remote step failed; the rest of the launch was skipped."""

    def __init__(self, message: str, *, step: str, created: Optional[List[dict]] = None):
        super().__init__(message)
        self.message = message
        self.step = step
        self.created = list(created or [])


# -----------------------------
# Progress / results
# -----------------------------

class LaunchState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    CREATING_CAMPAIGN_ENTITIES = "creating_campaign_entities"
    UPLOADING_AND_CREATING_CREATIVES = "uploading_and_creating_creatives"
    CREATING_ADS = "creating_ads"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class LaunchProgress:
    step_label: str = ""
    completed: int = 0
    total: int = 0


@dataclass(frozen=True)
class LaunchResultEntry:
    file_name: str
    ad_id: str
    creative_id: str


@dataclass(frozen=True)
class LaunchResult:
    campaign_id: str
    adset_id: str
    entries: Tuple[LaunchResultEntry, ...] = ()

    def to_dict(self) -> dict:
        return {
            "campaign_id": self.campaign_id,
            "adset_id": self.adset_id,
            "results": [asdict(e) for e in self.entries],
        }


class ProgressReporter:
    """Last-write-wins launch status read by the UI / HTTP layer."""

    def __init__(self) -> None:
        self.state = LaunchState.IDLE
        self.progress = LaunchProgress()
        self.results: Tuple[LaunchResultEntry, ...] = ()
        self.error: Optional[str] = None
        self.warnings: List[str] = []
        self._subscribers: List[Callable[["ProgressReporter"], None]] = []

    def subscribe(self, callback: Callable[["ProgressReporter"], None]) -> None:
        self._subscribers.append(callback)

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            callback(self)

    def reset(self) -> None:
        self.state = LaunchState.IDLE
        self.progress = LaunchProgress()
        self.results = ()
        self.error = None
        self.warnings = []
        self._notify()

    def set_state(self, state: LaunchState) -> None:
        self.state = state
        self._notify()

    def update(self, step_label: str, completed: int, total: int) -> None:
        self.progress = LaunchProgress(step_label, completed, total)
        logger.info("%s (%d/%d)", step_label, completed, total)
        self._notify()

    def complete(self, results: Tuple[LaunchResultEntry, ...]) -> None:
        self.results = results
        self.state = LaunchState.COMPLETED
        self._notify()

    def fail(self, message: str) -> None:
        self.error = message
        self.state = LaunchState.FAILED
        self._notify()

    def snapshot(self) -> dict:
        return {
            "state": self.state.value,
            "step": self.progress.step_label,
            "completed": self.progress.completed,
            "total": self.progress.total,
            "results": [asdict(r) for r in self.results],
            "error": self.error,
            "warnings": list(self.warnings),
        }


# -----------------------------
# Validation
# -----------------------------

def validate_draft(draft: Draft) -> List[str]:
    """Raise LaunchValidationError for a draft that can't be launched.

    Returns non-fatal warnings.
    """
    if draft.mode == "new":
        if not draft.campaign.name.strip():
            raise LaunchValidationError("Enter a campaign name")
        if not draft.adset.name.strip():
            raise LaunchValidationError("Enter an ad set name")
    else:
        if not (draft.campaign_id or "").strip():
            raise LaunchValidationError("Select a campaign")
        if not (draft.adset_id or "").strip():
            raise LaunchValidationError("Select an ad set")
    if not draft.creatives:
        raise LaunchValidationError("Upload at least one creative")
    if not draft.destination_url.strip():
        raise LaunchValidationError("Enter a website URL")
    if not (draft.page_id or "").strip():
        raise LaunchValidationError("Select or enter a Facebook Page ID")
    if draft.creative_type == "carousel":
        if len(draft.creatives) < 2:
            raise LaunchValidationError("Carousel needs at least 2 images")
        videos = [c.file.name for c in draft.creatives if not c.file.is_image]
        if videos:
            raise LaunchValidationError(f"Carousel accepts images only: {', '.join(videos)}")

    money = {
        "daily budget": draft.adset.daily_budget,
        "bid amount": draft.campaign.bid_amount,
        "daily min spend": draft.adset.daily_min_spend,
        "daily spend cap": draft.adset.daily_spend_cap,
    }
    for label, value in money.items():
        try:
            to_minor_units(value)
        except ValueError:
            raise LaunchValidationError(f"Invalid {label}: {value!r}") from None

    warnings: List[str] = []
    setting = draft.adset.attribution_setting
    if draft.mode == "new" and draft.adset.pixel_id and setting and setting not in ATTRIBUTION_SETTINGS:
        warnings.append(f"Unknown attribution setting {setting!r}; no attribution_spec will be sent")
    return warnings


# -----------------------------
# Orchestrator
# -----------------------------

class LaunchOrchestrator:
    """Runs one launch at a time against a MetaClient-like object.

    `client` needs: create_campaign, create_adset, upload_image, upload_video,
    create_image_creative, create_video_creative, create_carousel_creative,
    create_ad. Callers must not start a second launch while one is running.
    """

    def __init__(
        self,
        client: Any,
        settings: Optional[LaunchSettings] = None,
        *,
        reporter: Optional[ProgressReporter] = None,
        history_sink: Optional[Callable[[dict], None]] = None,
        library_sink: Optional[Callable[[List[dict]], None]] = None,
    ):
        self.client = client
        self.settings = settings or LaunchSettings()
        self.reporter = reporter or ProgressReporter()
        self.history_sink = history_sink
        self.library_sink = library_sink
        self._step = ""
        self._created: List[dict] = []

    def launch(self, draft: Draft) -> LaunchResult:
        draft = draft.model_copy(deep=True)
        reporter = self.reporter
        reporter.reset()
        reporter.set_state(LaunchState.VALIDATING)
        try:
            warnings = validate_draft(draft)
        except Exception as e:
            reporter.fail(str(e))
            raise
        for w in warnings:
            logger.warning(w)
        reporter.warnings = warnings

        self._created = []
        try:
            result = self._run(draft)
        except MetaAPIError as e:
            logger.error("Launch failed at %s: %s", self._step, e)
            reporter.fail(str(e))
            raise LaunchError(str(e), step=self._step, created=self._created) from e
        except Exception as e:
            logger.exception("Launch crashed at %s", self._step)
            reporter.fail(str(e))
            raise

        reporter.update("All done!", reporter.progress.total, reporter.progress.total)
        reporter.complete(result.entries)
        self._record(draft, result)
        return result

    def _mark(self, step: str) -> None:
        self._step = step

    def _created_object(self, kind: str, object_id: str, **extra: Any) -> None:
        self._created.append({"type": kind, "id": object_id, **extra})

    def _run(self, draft: Draft) -> LaunchResult:
        total = len(draft.creatives)

        if draft.mode == "new":
            self.reporter.set_state(LaunchState.CREATING_CAMPAIGN_ENTITIES)
            campaign_id, adset_id = self._create_campaign_entities(draft, total)
        else:
            campaign_id, adset_id = str(draft.campaign_id), str(draft.adset_id)

        self.reporter.set_state(LaunchState.UPLOADING_AND_CREATING_CREATIVES)
        if draft.creative_type == "carousel":
            entries = self._launch_carousel(draft, adset_id, total)
        else:
            entries = self._launch_single(draft, adset_id, total)
        return LaunchResult(campaign_id=campaign_id, adset_id=adset_id, entries=tuple(entries))

    def _create_campaign_entities(self, draft: Draft, total: int) -> Tuple[str, str]:
        self._mark("create_campaign")
        self.reporter.update("Creating campaign...", 0, total)
        campaign_id = self.client.create_campaign(build_campaign_fields(draft))
        self._created_object("campaign", campaign_id)

        self._mark("create_adset")
        self.reporter.update("Creating ad set...", 0, total)
        adset_id = self.client.create_adset(build_adset_fields(draft, campaign_id))
        self._created_object("adset", adset_id)
        return campaign_id, adset_id

    def _launch_single(self, draft: Draft, adset_id: str, total: int) -> List[LaunchResultEntry]:
        entries: List[LaunchResultEntry] = []
        for i, creative in enumerate(draft.creatives):
            asset = creative.file
            copy = resolve_copy(creative, draft.global_copy, draft.destination_url, self.settings.tracking_template)

            self.reporter.set_state(LaunchState.UPLOADING_AND_CREATING_CREATIVES)
            self.reporter.update(f"[{i + 1}/{total}] Uploading {asset.name}...", i + 1, total)
            if asset.is_image:
                self._mark(f"upload_image:{asset.name}")
                upload = self.client.upload_image(asset)
                self._mark(f"create_image_creative:{asset.name}")
                fields = build_image_creative_fields(
                    draft,
                    name=asset.name,
                    image_hash=upload["hash"],
                    copy=copy,
                    degrees_of_freedom_spec=compile_enhancement_spec(self.settings.enhancements, "image"),
                )
                creative_id = self.client.create_image_creative(fields)
            else:
                self._mark(f"upload_video:{asset.name}")
                video_id = self.client.upload_video(asset)
                self._mark(f"create_video_creative:{asset.name}")
                fields = build_video_creative_fields(
                    draft,
                    name=asset.name,
                    video_id=video_id,
                    copy=copy,
                    degrees_of_freedom_spec=compile_enhancement_spec(self.settings.enhancements, "video"),
                )
                creative_id = self.client.create_video_creative(fields)
            self._created_object("creative", creative_id, file_name=asset.name)

            self.reporter.set_state(LaunchState.CREATING_ADS)
            self._mark(f"create_ad:{asset.name}")
            ad_id = self.client.create_ad(build_ad_fields(
                name=f"Ad - {asset.name}", adset_id=adset_id, creative_id=creative_id, status=draft.ad_status,
            ))
            self._created_object("ad", ad_id, file_name=asset.name)
            entries.append(LaunchResultEntry(file_name=asset.name, ad_id=ad_id, creative_id=creative_id))
        return entries

    def _launch_carousel(self, draft: Draft, adset_id: str, total: int) -> List[LaunchResultEntry]:
        tracking = self.settings.tracking_template
        self.reporter.update("Uploading carousel images...", 0, total)

        cards: List[Dict[str, Any]] = []
        for i, creative in enumerate(draft.creatives):
            asset = creative.file
            copy = resolve_copy(creative, draft.global_copy, draft.destination_url, tracking)
            self.reporter.update(f"[{i + 1}/{total}] Uploading {asset.name}...", i + 1, total)
            self._mark(f"upload_image:{asset.name}")
            upload = self.client.upload_image(asset)
            cards.append({
                "image_hash": upload["hash"],
                "headline": copy.headline,
                "description": copy.description,
                "link_url": copy.link_url,
                "cta": copy.cta,
            })

        self.reporter.update("Creating carousel creative...", total, total)
        self._mark("create_carousel_creative")
        creative_id = self.client.create_carousel_creative(build_carousel_creative_fields(
            draft,
            name=f"Carousel - {draft.campaign.name or 'Ad'}",
            cards=cards,
            message=draft.global_copy.primary_text,
            link_url=append_tracking_params(draft.destination_url, tracking),
            degrees_of_freedom_spec=compile_enhancement_spec(self.settings.enhancements, "carousel"),
        ))
        self._created_object("creative", creative_id, file_name="Carousel")

        self.reporter.set_state(LaunchState.CREATING_ADS)
        self._mark("create_ad:Carousel")
        ad_id = self.client.create_ad(build_ad_fields(
            name="Ad - Carousel", adset_id=adset_id, creative_id=creative_id, status=draft.ad_status,
        ))
        self._created_object("ad", ad_id, file_name="Carousel")
        return [LaunchResultEntry(file_name="Carousel", ad_id=ad_id, creative_id=creative_id)]

    def _record(self, draft: Draft, result: LaunchResult) -> None:
        now = datetime.now(timezone.utc).isoformat()
        history = build_history_record(draft, result, timestamp=now)
        library = build_library_records(draft, date=now)
        # The ads are live at this point; a failed history write must not turn
        # a successful launch into an error.
        if self.history_sink is not None:
            try:
                self.history_sink(history)
            except Exception:
                logger.exception("Failed to save launch history")
        if self.library_sink is not None:
            try:
                self.library_sink(library)
            except Exception:
                logger.exception("Failed to save creatives")


def build_history_record(draft: Draft, result: LaunchResult, *, timestamp: str) -> dict:
    return {
        "campaign_id": result.campaign_id,
        "adset_id": result.adset_id,
        "campaign_name": draft.launch_name,
        "ads_count": len(result.entries),
        "status": draft.ad_status,
        "results": [asdict(e) for e in result.entries],
        "timestamp": timestamp,
    }


def build_library_records(draft: Draft, *, date: str) -> List[dict]:
    return [
        {"name": c.file.name, "size": c.file.size, "type": c.file.content_type, "date": date}
        for c in draft.creatives
    ]


def load_draft(draft_path: str) -> Draft:
    """Read a draft JSON file. Creatives reference local files by "path"."""
    p = Path(draft_path)
    raw = json.loads(p.read_text(encoding="utf-8"))
    entries = raw.pop("creatives", []) or []

    session = DraftSession(Draft.model_validate(raw))
    for entry in entries:
        file_path = Path(entry.pop("path"))
        if not file_path.is_absolute():
            file_path = p.parent / file_path
        (creative,) = session.add_files([AssetFile.from_path(file_path)])
        if entry:
            session.update_creative(creative.id, **entry)
    return session.snapshot()


# -----------------------------
# CLI
# -----------------------------

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="launcher.py",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description=textwrap.dedent(
            """
            Meta Ads launcher

            Examples:
              # 1) Validate token + ad account
              python launcher.py whoami

              # 2) Find page / pixel ids
              python launcher.py pages
              python launcher.py pixels

              # 3) Launch a draft (creatives reference files by "path")
              python launcher.py launch --draft examples/new_campaign.json
            """
        ),
    )

    p.add_argument("--env", default=".env", help="Path to .env file (default: .env).")
    p.add_argument("--verbose", action="store_true", help="Log request fields.")

    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("whoami", help="Check token against META_AD_ACCOUNT_ID.")
    sub.add_parser("list-adaccounts", help="List ad accounts visible to the token.")
    sub.add_parser("pages", help="List Facebook pages usable for ads.")

    sp = sub.add_parser("instagram-accounts", help="Instagram accounts linked to a page.")
    sp.add_argument("--page-id", required=True)

    sub.add_parser("pixels", help="List pixels (datasets) of the ad account.")
    sub.add_parser("campaigns", help="List campaigns of the ad account.")

    sp = sub.add_parser("adsets", help="List ad sets of a campaign.")
    sp.add_argument("--campaign-id", required=True)

    sp = sub.add_parser("insights", help="Account insights.")
    sp.add_argument("--date-preset", default="last_7d")
    sp.add_argument("--level", default="campaign", choices=["campaign", "adset", "ad"])

    sp = sub.add_parser("search-regions", help="Search regions for excluded geo targeting.")
    sp.add_argument("--query", required=True)

    sp = sub.add_parser("launch", help="Run the full create flow from a draft JSON.")
    sp.add_argument("--draft", required=True)

    sp = sub.add_parser("history", help="Show recent launches.")
    sp.add_argument("--limit", type=int, default=20)

    return p


def main(argv: Optional[List[str]] = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    env_path = Path(args.env)
    if env_path.exists():
        load_dotenv(env_path, override=False)

    from history_store import build_history_store

    if args.cmd == "history":
        store = build_history_store()
        print(json.dumps(store.list_history(limit=args.limit), indent=2, ensure_ascii=False))
        return 0

    try:
        cfg = MetaConfig.from_env()
    except Exception as e:
        print(f"[CONFIG ERROR] {e}", file=sys.stderr)
        print("Tip: copy config.example.env -> .env and fill it in.", file=sys.stderr)
        return 2

    client = MetaClient(cfg)

    try:
        if args.cmd == "launch":
            store = build_history_store()
            orchestrator = LaunchOrchestrator(
                client,
                LaunchSettings.from_env(),
                history_sink=store.add_history,
                library_sink=store.add_creatives,
            )
            result = orchestrator.launch(load_draft(args.draft))
            print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
            return 0

        commands: Dict[str, Callable[[], Any]] = {
            "whoami": client.test_connection,
            "list-adaccounts": client.get_ad_accounts,
            "pages": client.get_pages,
            "instagram-accounts": lambda: client.get_instagram_accounts(args.page_id),
            "pixels": client.get_pixels,
            "campaigns": client.get_campaigns,
            "adsets": lambda: client.get_adsets(args.campaign_id),
            "insights": lambda: client.get_insights(args.date_preset, args.level),
            "search-regions": lambda: client.search_regions(args.query),
        }
        if args.cmd not in commands:
            print(f"Unknown command: {args.cmd}", file=sys.stderr)
            return 2
        print(json.dumps(commands[args.cmd](), indent=2, ensure_ascii=False))
        return 0

    except LaunchValidationError as e:
        print(f"\n[INVALID DRAFT] {e}", file=sys.stderr)
        return 1
    except LaunchError as e:
        print(f"\n[LAUNCH FAILED] {e} (step: {e.step})", file=sys.stderr)
        if e.created:
            print("Created before the failure (not rolled back):", file=sys.stderr)
            print(json.dumps(e.created, indent=2), file=sys.stderr)
        return 1
    except MetaAPIError as e:
        print("\n[MetaAPIError]", e, file=sys.stderr)
        if e.error:
            print(json.dumps(e.error, indent=2), file=sys.stderr)
        return 1
    except Exception as e:
        print("\n[ERROR]", e, file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
