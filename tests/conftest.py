from __future__ import annotations

import io
from typing import Any, Dict, List, Optional, Tuple

import pytest
from PIL import Image

from draft import AssetFile, Draft, DraftSession
from meta_client import MetaAPIError


def png_bytes(size: Tuple[int, int] = (4, 4), color: str = "red") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


class FakeClient:
    """Records every create/upload call in order and returns sequential ids.

    fail_on: (method name, nth call starting at 1) -> raises MetaAPIError.
    """

    def __init__(self, fail_on: Optional[Tuple[str, int]] = None, message: str = "Invalid parameter"):
        self.calls: List[Tuple[str, Any]] = []
        self.fail_on = fail_on
        self.message = message
        self._counts: Dict[str, int] = {}

    def _record(self, method: str, arg: Any) -> int:
        n = self._counts.get(method, 0) + 1
        self._counts[method] = n
        if self.fail_on == (method, n):
            raise MetaAPIError(self.message, http_status=400, error={"message": self.message})
        self.calls.append((method, arg))
        return n

    @property
    def methods(self) -> List[str]:
        return [m for m, _ in self.calls]

    def fields(self, method: str) -> List[Any]:
        return [arg for m, arg in self.calls if m == method]

    def create_campaign(self, fields):
        return f"cmp_{self._record('create_campaign', fields)}"

    def create_adset(self, fields):
        return f"as_{self._record('create_adset', fields)}"

    def upload_image(self, asset):
        n = self._record("upload_image", asset.name)
        return {"hash": f"hash_{n}", "url": f"https://img/{n}"}

    def upload_video(self, asset):
        return f"vid_{self._record('upload_video', asset.name)}"

    def create_image_creative(self, fields):
        return f"cr_{self._record('create_image_creative', fields)}"

    def create_video_creative(self, fields):
        return f"vcr_{self._record('create_video_creative', fields)}"

    def create_carousel_creative(self, fields):
        return f"ccr_{self._record('create_carousel_creative', fields)}"

    def create_ad(self, fields):
        return f"ad_{self._record('create_ad', fields)}"


@pytest.fixture
def fake_client() -> FakeClient:
    return FakeClient()


@pytest.fixture
def image_asset():
    def make(name: str = "a.png") -> AssetFile:
        return AssetFile(name=name, content_type="image/png", data=png_bytes())

    return make


@pytest.fixture
def video_asset():
    def make(name: str = "clip.mp4") -> AssetFile:
        return AssetFile(name=name, content_type="video/mp4", data=b"\x00\x00\x00\x18ftypmp42")

    return make


@pytest.fixture
def new_draft(image_asset):
    """New-mode single-image draft with two creatives, ready to launch."""

    def make(files: Optional[List[AssetFile]] = None, **overrides: Any) -> Draft:
        base: Dict[str, Any] = {
            "mode": "new",
            "campaign": {"name": "Spring Sale", "budget_type": "ABO"},
            "adset": {"name": "IT 18-65", "daily_budget": "20"},
            "page_id": "111",
            "page_name": "Acme",
            "destination_url": "https://example.com",
            "global_copy": {"primary_text": "Hello", "headline": "Buy", "description": "Now", "cta": "SHOP_NOW"},
        }
        base.update(overrides)
        session = DraftSession(Draft.model_validate(base))
        session.add_files(files if files is not None else [image_asset("a.png"), image_asset("b.png")])
        return session.snapshot()

    return make
