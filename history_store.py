"""Launch history + creative library (SQLite).

Receives the records the launcher emits after a successful launch:
  - launch_history: one row per launch (ids, name, status, per-ad results)
  - creatives: one row per uploaded file

Use HistoryStorePG (history_store_pg.py) on hosted deployments.
"""

from __future__ import annotations

import json
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List


class HistoryStore:
    def __init__(self, db_path: str | Path = ".launch_history.db"):
        self.db_path = Path(db_path)
        self._init_db()

    def _init_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS launch_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    campaign_id TEXT,
                    ad_set_id TEXT,
                    campaign_name TEXT,
                    ads_count INTEGER NOT NULL DEFAULT 0,
                    status TEXT,
                    results_json TEXT NOT NULL,
                    launched_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS creatives (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    size INTEGER NOT NULL DEFAULT 0,
                    type TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.commit()

    def add_history(self, entry: Dict[str, Any]) -> None:
        launched_at = entry.get("timestamp") or datetime.now(timezone.utc).isoformat()
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO launch_history
                (campaign_id, ad_set_id, campaign_name, ads_count, status, results_json, launched_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.get("campaign_id"),
                    entry.get("adset_id"),
                    entry.get("campaign_name"),
                    int(entry.get("ads_count") or 0),
                    entry.get("status"),
                    json.dumps(entry.get("results") or [], ensure_ascii=False),
                    launched_at,
                ),
            )
            conn.commit()

    def list_history(self, *, limit: int = 50) -> List[Dict[str, Any]]:
        with sqlite3.connect(self.db_path) as conn:
            cur = conn.execute(
                """
                SELECT campaign_id, ad_set_id, campaign_name, ads_count, status, results_json, launched_at
                FROM launch_history
                ORDER BY id DESC
                LIMIT ?
                """,
                (int(limit),),
            )
            rows = cur.fetchall()
        return [
            {
                "campaign_id": r[0],
                "adset_id": r[1],
                "campaign_name": r[2],
                "ads_count": r[3],
                "status": r[4],
                "results": json.loads(r[5]),
                "timestamp": r[6],
            }
            for r in rows
        ]

    def add_creatives(self, creatives: List[Dict[str, Any]]) -> None:
        now = datetime.now(timezone.utc).isoformat()
        rows = [
            (c.get("name") or "untitled", int(c.get("size") or 0), c.get("type") or "", c.get("date") or now)
            for c in creatives
        ]
        if not rows:
            return
        with sqlite3.connect(self.db_path) as conn:
            conn.executemany(
                "INSERT INTO creatives (name, size, type, created_at) VALUES (?, ?, ?, ?)",
                rows,
            )
            conn.commit()

    def list_creatives(self, *, limit: int = 100) -> List[Dict[str, Any]]:
        with sqlite3.connect(self.db_path) as conn:
            cur = conn.execute(
                "SELECT name, size, type, created_at FROM creatives ORDER BY id DESC LIMIT ?",
                (int(limit),),
            )
            rows = cur.fetchall()
        return [{"name": r[0], "size": r[1], "type": r[2], "date": r[3]} for r in rows]


def build_history_store(db_path: str | None = None):
    """Factory: SQLite (default) or Postgres.

    Enable the Postgres store by setting:
      HISTORY_STORE_SOURCE=db
      DATABASE_URL=...
    """
    source = (os.getenv("HISTORY_STORE_SOURCE") or "").strip().lower()
    database_url = (os.getenv("DATABASE_URL") or "").strip()
    if source == "db" and database_url:
        from history_store_pg import HistoryStorePG

        return HistoryStorePG(database_url)

    path = db_path or (os.getenv("HISTORY_DB_PATH") or ".launch_history.db").strip() or ".launch_history.db"
    return HistoryStore(path)
