"""Storage for marketing content.

Routes only see the `ContentRepository` interface; production wires one
`SqlContentRepository` per kind onto `app.state.content_repos`.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from design_platform.db import connect
from design_platform.util.time import utcnow_iso

from .models import KINDS


class ContentRepository(ABC):
    kind: str = ""

    @abstractmethod
    def list(self) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    def get(self, item_id: int) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def create(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    def update(self, item_id: int, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def delete(self, item_id: int) -> bool:
        ...


def _item(row: Any) -> Dict[str, Any]:
    d = dict(row)
    try:
        payload = json.loads(d.get("payload_json") or "{}")
    except json.JSONDecodeError:
        payload = {}
    return {
        **payload,
        "id": int(d["item_id"]),
        "created_at": d["created_at"],
        "updated_at": d["updated_at"],
    }


class SqlContentRepository(ContentRepository):
    """content_items rows of one kind, payload stored as JSON text."""

    def __init__(self, db_dsn: str, kind: str):
        if kind not in KINDS:
            raise ValueError(f"unknown content kind: {kind}")
        self.db_dsn = db_dsn
        self.kind = kind

    def list(self) -> List[Dict[str, Any]]:
        with connect(self.db_dsn) as conn:
            rows = conn.execute(
                "SELECT * FROM content_items WHERE kind=? ORDER BY created_at DESC, item_id DESC",
                (self.kind,),
            ).fetchall()
        return [_item(r) for r in rows]

    def get(self, item_id: int) -> Optional[Dict[str, Any]]:
        with connect(self.db_dsn) as conn:
            row = conn.execute(
                "SELECT * FROM content_items WHERE kind=? AND item_id=?",
                (self.kind, int(item_id)),
            ).fetchone()
        return _item(row) if row is not None else None

    def create(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        now = utcnow_iso()
        with connect(self.db_dsn) as conn:
            row = conn.execute(
                """
                INSERT INTO content_items (kind, payload_json, created_at, updated_at)
                VALUES (?,?,?,?)
                RETURNING *
                """,
                (self.kind, json.dumps(payload), now, now),
            ).fetchone()
        return _item(row)

    def update(self, item_id: int, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with connect(self.db_dsn) as conn:
            row = conn.execute(
                """
                UPDATE content_items SET payload_json=?, updated_at=?
                WHERE kind=? AND item_id=?
                RETURNING *
                """,
                (json.dumps(payload), utcnow_iso(), self.kind, int(item_id)),
            ).fetchone()
        return _item(row) if row is not None else None

    def delete(self, item_id: int) -> bool:
        with connect(self.db_dsn) as conn:
            cur = conn.execute(
                "DELETE FROM content_items WHERE kind=? AND item_id=?",
                (self.kind, int(item_id)),
            )
            return int(cur.rowcount or 0) > 0


def sql_repositories(db_dsn: str) -> Dict[str, ContentRepository]:
    return {k: SqlContentRepository(db_dsn, k) for k in KINDS}
