from __future__ import annotations

import logging
import sqlite3
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Protocol
from uuid import uuid4

from supabase_client import SupabaseClient

PHOTOS_TABLE = "diary_photos"

# concurrent inserts can share a display_order
LIST_ORDER = "display_order.asc,uploaded_at.asc,id.asc"

_PHOTO_COLUMNS: tuple[str, ...] = (
    "id",
    "diary_id",
    "storage_path",
    "file_name",
    "file_size",
    "mime_type",
    "caption",
    "display_order",
    "uploaded_by",
    "uploaded_at",
)

_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS {PHOTOS_TABLE} (
    id TEXT PRIMARY KEY,
    diary_id TEXT NOT NULL,
    storage_path TEXT NOT NULL UNIQUE,
    file_name TEXT NOT NULL,
    file_size INTEGER NOT NULL DEFAULT 0,
    mime_type TEXT,
    caption TEXT,
    display_order INTEGER NOT NULL DEFAULT 0,
    uploaded_by TEXT,
    uploaded_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_{PHOTOS_TABLE}_diary_order
    ON {PHOTOS_TABLE} (diary_id, display_order);
"""


class PhotoRecords(Protocol):
    async def list_for_diary(self, diary_id: str) -> list[dict[str, Any]]: ...

    async def get(self, photo_id: str) -> dict[str, Any] | None: ...

    async def next_display_order(self, diary_id: str) -> int: ...

    async def insert(self, row: Mapping[str, Any]) -> dict[str, Any]: ...

    async def update(self, photo_id: str, values: Mapping[str, Any]) -> dict[str, Any] | None: ...

    async def set_display_order(self, diary_id: str, photo_id: str, order: int) -> None: ...

    async def delete(self, photo_id: str) -> bool: ...


def ensure_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(_SCHEMA)
    conn.commit()


def _row_to_dict(row: sqlite3.Row | None) -> dict[str, Any] | None:
    if row is None:
        return None
    return {key: row[key] for key in row.keys()}


class SqlitePhotoRecords:
    """Photo rows kept in a local SQLite database."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self.conn = connection
        self.conn.row_factory = sqlite3.Row
        ensure_schema(self.conn)

    @classmethod
    def open(cls, path: Path | str) -> "SqlitePhotoRecords":
        db_path = Path(path)
        if str(path) != ":memory:":
            db_path.parent.mkdir(parents=True, exist_ok=True)
        return cls(sqlite3.connect(str(db_path)))

    def close(self) -> None:
        self.conn.close()

    async def list_for_diary(self, diary_id: str) -> list[dict[str, Any]]:
        rows = self.conn.execute(
            f"""
            SELECT * FROM {PHOTOS_TABLE}
            WHERE diary_id=?
            ORDER BY display_order ASC, uploaded_at ASC, id ASC
            """,
            (diary_id,),
        ).fetchall()
        return [_row_to_dict(row) for row in rows]  # type: ignore[misc]

    async def get(self, photo_id: str) -> dict[str, Any] | None:
        row = self.conn.execute(
            f"SELECT * FROM {PHOTOS_TABLE} WHERE id=?",
            (photo_id,),
        ).fetchone()
        return _row_to_dict(row)

    async def next_display_order(self, diary_id: str) -> int:
        row = self.conn.execute(
            f"SELECT MAX(display_order) FROM {PHOTOS_TABLE} WHERE diary_id=?",
            (diary_id,),
        ).fetchone()
        if row is None or row[0] is None:
            return 0
        return int(row[0]) + 1

    async def insert(self, row: Mapping[str, Any]) -> dict[str, Any]:
        values = {key: row.get(key) for key in _PHOTO_COLUMNS}
        values["id"] = values["id"] or str(uuid4())
        values["uploaded_at"] = values["uploaded_at"] or datetime.now(UTC).isoformat()
        values["display_order"] = values["display_order"] or 0
        placeholders = ", ".join("?" for _ in _PHOTO_COLUMNS)
        self.conn.execute(
            f"INSERT INTO {PHOTOS_TABLE} ({', '.join(_PHOTO_COLUMNS)}) VALUES ({placeholders})",
            tuple(values[key] for key in _PHOTO_COLUMNS),
        )
        self.conn.commit()
        logging.debug("Inserted photo row %s for diary %s", values["id"], values["diary_id"])
        return dict(values)

    async def update(self, photo_id: str, values: Mapping[str, Any]) -> dict[str, Any] | None:
        updates = {key: value for key, value in values.items() if key in _PHOTO_COLUMNS and key != "id"}
        if updates:
            assignments = ", ".join(f"{key}=?" for key in updates)
            self.conn.execute(
                f"UPDATE {PHOTOS_TABLE} SET {assignments} WHERE id=?",
                (*updates.values(), photo_id),
            )
            self.conn.commit()
        return await self.get(photo_id)

    async def set_display_order(self, diary_id: str, photo_id: str, order: int) -> None:
        self.conn.execute(
            f"UPDATE {PHOTOS_TABLE} SET display_order=? WHERE id=? AND diary_id=?",
            (order, photo_id, diary_id),
        )
        self.conn.commit()

    async def delete(self, photo_id: str) -> bool:
        cur = self.conn.execute(f"DELETE FROM {PHOTOS_TABLE} WHERE id=?", (photo_id,))
        self.conn.commit()
        return cur.rowcount > 0


class SupabasePhotoRecords:
    """Photo rows in the ``diary_photos`` table exposed through PostgREST."""

    def __init__(self, client: SupabaseClient, table: str = PHOTOS_TABLE) -> None:
        self.client = client
        self.table = table

    async def list_for_diary(self, diary_id: str) -> list[dict[str, Any]]:
        return await self.client.select_rows(
            self.table,
            filters={"diary_id": f"eq.{diary_id}"},
            order=LIST_ORDER,
        )

    async def get(self, photo_id: str) -> dict[str, Any] | None:
        rows = await self.client.select_rows(
            self.table, filters={"id": f"eq.{photo_id}"}, limit=1
        )
        return rows[0] if rows else None

    async def next_display_order(self, diary_id: str) -> int:
        rows = await self.client.select_rows(
            self.table,
            select="display_order",
            filters={"diary_id": f"eq.{diary_id}"},
            order="display_order.desc",
            limit=1,
        )
        if not rows or rows[0].get("display_order") is None:
            return 0
        return int(rows[0]["display_order"]) + 1

    async def insert(self, row: Mapping[str, Any]) -> dict[str, Any]:
        payload = {key: value for key, value in row.items() if value is not None}
        return await self.client.insert_row(self.table, payload)

    async def update(self, photo_id: str, values: Mapping[str, Any]) -> dict[str, Any] | None:
        rows = await self.client.update_rows(
            self.table, filters={"id": f"eq.{photo_id}"}, values=values
        )
        return rows[0] if rows else None

    async def set_display_order(self, diary_id: str, photo_id: str, order: int) -> None:
        await self.client.update_rows(
            self.table,
            filters={"id": f"eq.{photo_id}", "diary_id": f"eq.{diary_id}"},
            values={"display_order": order},
        )

    async def delete(self, photo_id: str) -> bool:
        await self.client.delete_rows(self.table, filters={"id": f"eq.{photo_id}"})
        return True
