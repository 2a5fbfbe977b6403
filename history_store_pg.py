"""history_store_pg.py

Postgres-backed launch history + creative library.

Enable by setting:
  HISTORY_STORE_SOURCE=db
  DATABASE_URL=...

Tables (created automatically):
  - launch_history(id, campaign_id, ad_set_id, campaign_name, ads_count, status, results JSONB, launched_at)
  - creatives(id, name, size, type, created_at)
"""

from __future__ import annotations

import json
from typing import Any, Dict, List

import psycopg


class HistoryStorePG:
    def __init__(self, database_url: str, *, prefix: str = ""):
        self.database_url = database_url
        self.prefix = prefix.strip()
        self._init_db()

    def _conn(self):
        return psycopg.connect(self.database_url)

    def _t(self, name: str) -> str:
        return f"{self.prefix}{name}" if self.prefix else name

    def _init_db(self) -> None:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {self._t('launch_history')} (
                      id BIGSERIAL PRIMARY KEY,
                      campaign_id TEXT,
                      ad_set_id TEXT,
                      campaign_name TEXT,
                      ads_count INTEGER NOT NULL DEFAULT 0,
                      status TEXT,
                      results JSONB NOT NULL DEFAULT '[]'::jsonb,
                      launched_at TIMESTAMPTZ NOT NULL DEFAULT now()
                    )
                    """
                )
                cur.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {self._t('creatives')} (
                      id BIGSERIAL PRIMARY KEY,
                      name TEXT NOT NULL,
                      size BIGINT NOT NULL DEFAULT 0,
                      type TEXT NOT NULL DEFAULT '',
                      created_at TIMESTAMPTZ NOT NULL DEFAULT now()
                    )
                    """
                )
            conn.commit()

    def add_history(self, entry: Dict[str, Any]) -> None:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    INSERT INTO {self._t('launch_history')}
                    (campaign_id, ad_set_id, campaign_name, ads_count, status, results, launched_at)
                    VALUES (%s, %s, %s, %s, %s, %s::jsonb, COALESCE(%s::timestamptz, now()))
                    """,
                    (
                        entry.get("campaign_id"),
                        entry.get("adset_id"),
                        entry.get("campaign_name"),
                        int(entry.get("ads_count") or 0),
                        entry.get("status"),
                        json.dumps(entry.get("results") or [], ensure_ascii=False),
                        entry.get("timestamp"),
                    ),
                )
            conn.commit()

    def list_history(self, *, limit: int = 50) -> List[Dict[str, Any]]:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"""
                    SELECT campaign_id, ad_set_id, campaign_name, ads_count, status, results, launched_at
                    FROM {self._t('launch_history')}
                    ORDER BY launched_at DESC, id DESC
                    LIMIT %s
                    """,
                    (int(limit),),
                )
                rows = cur.fetchall() or []
        return [
            {
                "campaign_id": r[0],
                "adset_id": r[1],
                "campaign_name": r[2],
                "ads_count": r[3],
                "status": r[4],
                "results": r[5] if isinstance(r[5], list) else json.loads(r[5] or "[]"),
                "timestamp": r[6].isoformat() if r[6] else None,
            }
            for r in rows
        ]

    def add_creatives(self, creatives: List[Dict[str, Any]]) -> None:
        rows = [
            (c.get("name") or "untitled", int(c.get("size") or 0), c.get("type") or "", c.get("date"))
            for c in creatives
        ]
        if not rows:
            return
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.executemany(
                    f"""
                    INSERT INTO {self._t('creatives')} (name, size, type, created_at)
                    VALUES (%s, %s, %s, COALESCE(%s::timestamptz, now()))
                    """,
                    rows,
                )
            conn.commit()

    def list_creatives(self, *, limit: int = 100) -> List[Dict[str, Any]]:
        with self._conn() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    f"SELECT name, size, type, created_at FROM {self._t('creatives')} ORDER BY id DESC LIMIT %s",
                    (int(limit),),
                )
                rows = cur.fetchall() or []
        return [
            {"name": r[0], "size": r[1], "type": r[2], "date": r[3].isoformat() if r[3] else None}
            for r in rows
        ]
