"""api

FastAPI service behind the launcher UI.

Endpoints
---------
- GET  /health, /                -> basic checks
- GET  /accounts, /pages, /instagram-accounts, /pixels, /campaigns, /adsets,
       /insights, /regions       -> pickers (proxied Graph API reads)
- POST /launch                   -> multipart/form-data: draft JSON + creative files
- GET  /launch/progress          -> state/progress of the current (or last) launch
- GET  /history, /creatives      -> launch history and creative library

Optional API Key
----------------
If you set SERVICE_API_KEY in the environment, requests must include:
  X-API-Key: <SERVICE_API_KEY>

Environment variables
---------------------
Required:
- META_ACCESS_TOKEN
- META_AD_ACCOUNT_ID

Optional:
- META_API_VERSION (default: v21.0)
- META_APP_SECRET
- TRACKING_TEMPLATE (URL parameters appended to every destination link)
- ENHANCEMENTS_PATH (JSON enhancement matrix)
- HISTORY_DB_PATH (default: .launch_history.db; ignored if HISTORY_STORE_SOURCE=db)
- HISTORY_STORE_SOURCE ("db" to store history in Postgres, with DATABASE_URL)
"""

from __future__ import annotations

import io
import json
import mimetypes
import os
import threading
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, File, Form, Header, HTTPException, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from PIL import Image, UnidentifiedImageError
from starlette.concurrency import run_in_threadpool


from draft import ACCEPTED_IMAGE_TYPES, AssetFile, Draft, DraftSession
from history_store import build_history_store
from launcher import (
    LaunchError,
    LaunchOrchestrator,
    LaunchSettings,
    LaunchValidationError,
    ProgressReporter,
)
from meta_client import MetaAPIError, MetaClient, MetaConfig

app = FastAPI(title="Meta Ads Launcher API", version="1.0.0")

# One launch at a time per process; /launch/progress reads this reporter.
reporter = ProgressReporter()
_launch_lock = threading.Lock()


def _require_api_key(x_api_key: Optional[str]) -> None:
    expected = (os.getenv("SERVICE_API_KEY") or "").strip()
    if not expected:
        return
    if not x_api_key or x_api_key.strip() != expected:
        raise HTTPException(status_code=401, detail="Unauthorized")


def _build_client() -> MetaClient:
    try:
        cfg = MetaConfig.from_env()
    except ValueError as e:
        raise HTTPException(status_code=500, detail=f"Server misconfigured: {e}")
    return MetaClient(cfg)


def _get_settings() -> LaunchSettings:
    return LaunchSettings.from_env()


def _get_history_store():
    return build_history_store()


def _meta_error(e: MetaAPIError) -> HTTPException:
    return HTTPException(
        status_code=502,
        detail={"message": str(e), "http_status": e.http_status, "meta_error": e.error},
    )


def _check_image_bytes(name: str, raw: bytes) -> None:
    """Reject files that claim to be images but don't decode."""
    try:
        with Image.open(io.BytesIO(raw)) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise HTTPException(status_code=422, detail=f"{name} is not a valid image: {e}")


@app.get("/")
def root() -> JSONResponse:
    return JSONResponse({"ok": True, "docs": "/docs", "health": "/health"})


@app.get("/health")
def health() -> Dict[str, Any]:
    return {"ok": True}


# -----------------------------
# Pickers
# -----------------------------

@app.get("/accounts")
def accounts(x_api_key: Optional[str] = Header(default=None, alias="X-API-Key")) -> Dict[str, Any]:
    _require_api_key(x_api_key)
    client = _build_client()
    try:
        return {"ok": True, "connection": client.test_connection(), "accounts": client.get_ad_accounts()}
    except MetaAPIError as e:
        raise _meta_error(e)


@app.get("/pages")
def pages(x_api_key: Optional[str] = Header(default=None, alias="X-API-Key")) -> Dict[str, Any]:
    _require_api_key(x_api_key)
    return {"ok": True, "pages": _build_client().get_pages()}


@app.get("/instagram-accounts")
def instagram_accounts(
    page_id: str,
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
) -> Dict[str, Any]:
    _require_api_key(x_api_key)
    return {"ok": True, "accounts": _build_client().get_instagram_accounts(page_id)}


@app.get("/pixels")
def pixels(x_api_key: Optional[str] = Header(default=None, alias="X-API-Key")) -> Dict[str, Any]:
    _require_api_key(x_api_key)
    try:
        return {"ok": True, "pixels": _build_client().get_pixels()}
    except MetaAPIError as e:
        raise _meta_error(e)


@app.get("/campaigns")
def campaigns(x_api_key: Optional[str] = Header(default=None, alias="X-API-Key")) -> Dict[str, Any]:
    _require_api_key(x_api_key)
    try:
        return {"ok": True, "campaigns": _build_client().get_campaigns()}
    except MetaAPIError as e:
        raise _meta_error(e)


@app.get("/adsets")
def adsets(
    campaign_id: str,
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
) -> Dict[str, Any]:
    _require_api_key(x_api_key)
    try:
        return {"ok": True, "adsets": _build_client().get_adsets(campaign_id)}
    except MetaAPIError as e:
        raise _meta_error(e)


@app.get("/insights")
def insights(
    date_preset: str = "last_7d",
    level: str = "campaign",
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
) -> Dict[str, Any]:
    _require_api_key(x_api_key)
    try:
        return {"ok": True, "rows": _build_client().get_insights(date_preset, level)}
    except MetaAPIError as e:
        raise _meta_error(e)


@app.get("/regions")
def regions(q: str, x_api_key: Optional[str] = Header(default=None, alias="X-API-Key")) -> Dict[str, Any]:
    _require_api_key(x_api_key)
    try:
        return {"ok": True, "regions": _build_client().search_regions(q)}
    except MetaAPIError as e:
        raise _meta_error(e)


# -----------------------------
# Launch
# -----------------------------

@app.get("/launch/progress")
def launch_progress(x_api_key: Optional[str] = Header(default=None, alias="X-API-Key")) -> Dict[str, Any]:
    _require_api_key(x_api_key)
    return {"ok": True, "running": _launch_lock.locked(), **reporter.snapshot()}


@app.post("/launch")
async def launch(
    draft: str = Form(..., description="Draft JSON as a string"),
    files: Optional[List[UploadFile]] = File(None, description="Creative files, in creative order"),
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
) -> Dict[str, Any]:
    """
    Multipart form endpoint:
    - draft: text field containing the Draft JSON. Its optional "creatives" list
      holds per-creative copy overrides, matched to `files` by position.
    - files: creative files (jpg/png/mp4/mov).
    """
    _require_api_key(x_api_key)

    try:
        draft_dict = json.loads(draft)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=422, detail=f"Invalid JSON in form field 'draft': {e}")

    overrides = draft_dict.pop("creatives", None) or []
    files = files or []
    if len(overrides) > len(files):
        raise HTTPException(status_code=422, detail="More creative overrides than uploaded files")

    try:
        session = DraftSession(Draft.model_validate(draft_dict))
        assets: List[AssetFile] = []
        for upload in files:
            raw = await upload.read()
            name = upload.filename or "upload"
            content_type = upload.content_type or mimetypes.guess_type(name)[0] or ""
            if content_type in ACCEPTED_IMAGE_TYPES:
                _check_image_bytes(name, raw)
            assets.append(AssetFile(name=name, content_type=content_type, data=raw))

        for creative, override in zip(session.add_files(assets), overrides):
            session.update_creative(creative.id, **override)
        snapshot = session.snapshot()
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=jsonable_encoder(e.errors()))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    if not _launch_lock.acquire(blocking=False):
        raise HTTPException(status_code=409, detail="A launch is already running")
    try:
        store = _get_history_store()
        orchestrator = LaunchOrchestrator(
            _build_client(),
            _get_settings(),
            reporter=reporter,
            history_sink=store.add_history,
            library_sink=store.add_creatives,
        )
        result = await run_in_threadpool(orchestrator.launch, snapshot)
    except LaunchValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    except LaunchError as e:
        raise HTTPException(
            status_code=502,
            detail={"message": str(e), "step": e.step, "created": e.created},
        )
    finally:
        _launch_lock.release()

    return {"ok": True, **result.to_dict()}


# -----------------------------
# History
# -----------------------------

@app.get("/history")
def history(limit: int = 50, x_api_key: Optional[str] = Header(default=None, alias="X-API-Key")) -> Dict[str, Any]:
    _require_api_key(x_api_key)
    return {"ok": True, "history": _get_history_store().list_history(limit=int(limit))}


@app.get("/creatives")
def creatives(limit: int = 100, x_api_key: Optional[str] = Header(default=None, alias="X-API-Key")) -> Dict[str, Any]:
    _require_api_key(x_api_key)
    return {"ok": True, "creatives": _get_history_store().list_creatives(limit=int(limit))}
