"""SQLite storage adapter.

Implements the core MappingStore and RouteTable ports using a simple SQLite
database. Calls run in a worker thread so the event loop never blocks.
"""

from __future__ import annotations

import asyncio
import sqlite3
from datetime import datetime, timezone
from typing import Iterable, Optional

from core.errors import MappingConflict
from core.models import AuthorizationRoute, EntityReference, ThreadMapping


def _parse_ts(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _row_to_mapping(row: sqlite3.Row) -> ThreadMapping:
    return ThreadMapping(
        reference_type=row["reference_type"],
        reference_id=row["reference_id"],
        thread_id=row["thread_id"],
        created_by=row["created_by"],
        created_at=_parse_ts(row["created_at"]),
        updated_by=row["updated_by"],
        updated_at=_parse_ts(row["updated_at"]),
    )


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the MappingStore and RouteTable contracts."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - topics: one forum thread per (reference_type, reference_id)
        - reference_lookups: authorization endpoint per reference_type
        """

        with self._connect() as conn:
            # topics is the single source of truth for "a thread exists".
            # Fields:
            # - reference_type / reference_id: the entity reference (UNIQUE together)
            # - thread_id: forum topic id, immutable once written
            # - created_* / updated_*: audit fields, actor handle and UTC timestamp
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS topics (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    reference_type TEXT NOT NULL,
                    reference_id TEXT NOT NULL,
                    thread_id TEXT NOT NULL,
                    created_by TEXT NOT NULL,
                    created_at TIMESTAMP NOT NULL,
                    updated_by TEXT NOT NULL,
                    updated_at TIMESTAMP NOT NULL,
                    UNIQUE (reference_type, reference_id)
                )
                """
            )
            # reference_lookups holds endpoint templates with an {id} placeholder.
            # A reference_type without a row needs no authorization.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS reference_lookups (
                    reference_type TEXT PRIMARY KEY,
                    endpoint TEXT NOT NULL
                )
                """
            )

    def _get_mapping(self, reference: EntityReference) -> Optional[ThreadMapping]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM topics WHERE reference_type = ? AND reference_id = ?",
                (reference.reference_type, reference.reference_id),
            ).fetchone()
        return _row_to_mapping(row) if row else None

    def _insert_mapping(self, mapping: ThreadMapping) -> ThreadMapping:
        with self._connect() as conn:
            # INSERT OR IGNORE keeps the first writer; the follow-up SELECT
            # tells us who won.
            conn.execute(
                """
                INSERT OR IGNORE INTO topics (
                    reference_type,
                    reference_id,
                    thread_id,
                    created_by,
                    created_at,
                    updated_by,
                    updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    mapping.reference_type,
                    mapping.reference_id,
                    mapping.thread_id,
                    mapping.created_by,
                    mapping.created_at.isoformat(),
                    mapping.updated_by,
                    mapping.updated_at.isoformat(),
                ),
            )
            row = conn.execute(
                "SELECT * FROM topics WHERE reference_type = ? AND reference_id = ?",
                (mapping.reference_type, mapping.reference_id),
            ).fetchone()
        stored = _row_to_mapping(row)
        if stored.thread_id != mapping.thread_id:
            raise MappingConflict(stored, mapping.thread_id)
        return stored

    def _get_route(self, reference_type: str) -> Optional[AuthorizationRoute]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT reference_type, endpoint FROM reference_lookups WHERE reference_type = ?",
                (reference_type,),
            ).fetchone()
        if not row:
            return None
        return AuthorizationRoute(reference_type=row["reference_type"], endpoint_template=row["endpoint"])

    async def get_mapping(self, reference: EntityReference) -> Optional[ThreadMapping]:
        """Return the mapping for a reference, if any."""

        return await asyncio.to_thread(self._get_mapping, reference)

    async def insert_mapping(self, mapping: ThreadMapping) -> ThreadMapping:
        """Insert a mapping; raise MappingConflict if another thread id won."""

        return await asyncio.to_thread(self._insert_mapping, mapping)

    async def get_route(self, reference_type: str) -> Optional[AuthorizationRoute]:
        return await asyncio.to_thread(self._get_route, reference_type)

    def set_route(self, reference_type: str, endpoint_template: str) -> None:
        """Upsert the authorization endpoint for a reference type."""

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO reference_lookups (reference_type, endpoint)
                VALUES (?, ?)
                ON CONFLICT(reference_type) DO UPDATE SET endpoint = excluded.endpoint
                """,
                (reference_type, endpoint_template),
            )

    def seed_routes(self, routes: Iterable[AuthorizationRoute]) -> int:
        """Upsert configured routes and return how many were written."""

        count = 0
        for route in routes:
            self.set_route(route.reference_type, route.endpoint_template)
            count += 1
        return count

    def list_routes(self) -> list[AuthorizationRoute]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT reference_type, endpoint FROM reference_lookups ORDER BY reference_type"
            ).fetchall()
        return [
            AuthorizationRoute(reference_type=row["reference_type"], endpoint_template=row["endpoint"])
            for row in rows
        ]
