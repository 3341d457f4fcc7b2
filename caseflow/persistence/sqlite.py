"""SQLite implementation of the request store."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any

from ..contracts import ServiceRequest, WorkflowHistoryEvent
from ..exceptions import ConcurrencyError, InvalidStateError, NotFoundError
from .models import RequestFilter
from .repository import RequestStore

_REQUEST_COLUMNS = (
    "id, workflow_definition_id, status, current_step_id, assigned_to_office_id, "
    "assigned_to_user_id, subject_id, creation_data, data, created_at, updated_at, version"
)


class SQLiteRequestStore(RequestStore):
    """Persist service requests using SQLite.

    History lives in its own insert-only table; a save inserts the events
    past the persisted count and updates the request row in the same
    transaction.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS service_requests (
                id TEXT PRIMARY KEY,
                workflow_definition_id TEXT NOT NULL,
                status TEXT NOT NULL,
                current_step_id TEXT NOT NULL,
                assigned_to_office_id TEXT,
                assigned_to_user_id TEXT,
                subject_id TEXT NOT NULL,
                creation_data TEXT NOT NULL,
                data TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                version INTEGER NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS request_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                request_id TEXT NOT NULL,
                position INTEGER NOT NULL,
                event TEXT NOT NULL,
                UNIQUE (request_id, position)
            )
            """
        )
        cur.execute(
            "CREATE TABLE IF NOT EXISTS id_counter (name TEXT PRIMARY KEY, value INTEGER NOT NULL)"
        )
        cur.execute(
            "INSERT OR IGNORE INTO id_counter (name, value) VALUES ('service_request', 0)"
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    def _row_to_request(
        self, row: sqlite3.Row, history: list[WorkflowHistoryEvent]
    ) -> ServiceRequest:
        return ServiceRequest(
            id=row["id"],
            workflow_definition_id=row["workflow_definition_id"],
            status=row["status"],
            current_step_id=row["current_step_id"],
            assigned_to_office_id=row["assigned_to_office_id"],
            assigned_to_user_id=row["assigned_to_user_id"],
            creation_data=json.loads(row["creation_data"]),
            data=json.loads(row["data"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            history=history,
            version=row["version"],
        )

    def _load_history(self, request_id: str) -> list[WorkflowHistoryEvent]:
        rows = self._fetchall(
            "SELECT event FROM request_history WHERE request_id = ? ORDER BY position",
            request_id,
        )
        return [WorkflowHistoryEvent.model_validate_json(r["event"]) for r in rows]

    def _insert_history(
        self,
        cur: sqlite3.Cursor,
        request_id: str,
        events: list[WorkflowHistoryEvent],
        start: int,
    ) -> None:
        cur.executemany(
            "INSERT INTO request_history (request_id, position, event) VALUES (?, ?, ?)",
            [
                (request_id, start + offset, event.model_dump_json())
                for offset, event in enumerate(events)
            ],
        )

    def _check_version(
        self, cur: sqlite3.Cursor, request_id: str, expected_version: int
    ) -> int:
        cur.execute(
            "SELECT version FROM service_requests WHERE id = ?", (request_id,)
        )
        row = cur.fetchone()
        if row is None:
            raise NotFoundError("Service request", request_id)
        if row["version"] != expected_version:
            raise ConcurrencyError(request_id, expected_version, row["version"])
        cur.execute(
            "SELECT COUNT(*) AS n FROM request_history WHERE request_id = ?",
            (request_id,),
        )
        return cur.fetchone()["n"]

    def _check_history_prefix(
        self, cur: sqlite3.Cursor, request: ServiceRequest
    ) -> int:
        cur.execute(
            "SELECT event FROM request_history WHERE request_id = ? ORDER BY position",
            (request.id,),
        )
        persisted = [
            WorkflowHistoryEvent.model_validate_json(r["event"]) for r in cur.fetchall()
        ]
        if request.history[: len(persisted)] != persisted:
            raise InvalidStateError(
                f"History of service request {request.id} is append-only"
            )
        return len(persisted)

    def _allocate(self) -> str:
        with self._lock, self._conn:
            self._conn.execute(
                "UPDATE id_counter SET value = value + 1 WHERE name = 'service_request'"
            )
            row = self._conn.execute(
                "SELECT value FROM id_counter WHERE name = 'service_request'"
            ).fetchone()
        return f"SR{row['value']:05d}"

    def _create(self, request: ServiceRequest) -> None:
        with self._lock, self._conn:
            cur = self._conn.cursor()
            cur.execute(
                f"INSERT INTO service_requests ({_REQUEST_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    request.id,
                    request.workflow_definition_id,
                    request.status.value,
                    request.current_step_id,
                    request.assigned_to_office_id,
                    request.assigned_to_user_id,
                    request.subject_id,
                    request.creation_data.model_dump_json(),
                    json.dumps(request.data, default=str),
                    request.created_at.isoformat(),
                    request.updated_at.isoformat(),
                    1,
                ),
            )
            self._insert_history(cur, request.id, request.history, 0)

    def _save(self, request: ServiceRequest, expected_version: int) -> None:
        with self._lock, self._conn:
            cur = self._conn.cursor()
            self._check_version(cur, request.id, expected_version)
            persisted = self._check_history_prefix(cur, request)
            cur.execute(
                """
                UPDATE service_requests
                SET status = ?, current_step_id = ?, assigned_to_office_id = ?,
                    assigned_to_user_id = ?, data = ?, updated_at = ?, version = ?
                WHERE id = ?
                """,
                (
                    request.status.value,
                    request.current_step_id,
                    request.assigned_to_office_id,
                    request.assigned_to_user_id,
                    json.dumps(request.data, default=str),
                    request.updated_at.isoformat(),
                    expected_version + 1,
                    request.id,
                ),
            )
            self._insert_history(
                cur, request.id, request.history[persisted:], persisted
            )

    def _append(
        self, request_id: str, event: WorkflowHistoryEvent, expected_version: int
    ) -> None:
        with self._lock, self._conn:
            cur = self._conn.cursor()
            persisted = self._check_version(cur, request_id, expected_version)
            cur.execute(
                "UPDATE service_requests SET updated_at = ?, version = ? WHERE id = ?",
                (event.timestamp.isoformat(), expected_version + 1, request_id),
            )
            self._insert_history(cur, request_id, [event], persisted)

    def _get(self, request_id: str) -> ServiceRequest | None:
        with self._lock:
            return self._get_unlocked(request_id)

    def _get_unlocked(self, request_id: str) -> ServiceRequest | None:
        row = self._fetchone(
            f"SELECT {_REQUEST_COLUMNS} FROM service_requests WHERE id = ?",
            request_id,
        )
        if not row:
            return None
        return self._row_to_request(row, self._load_history(request_id))

    def _list(self) -> list[ServiceRequest]:
        with self._lock:
            return self._list_unlocked()

    def _list_unlocked(self) -> list[ServiceRequest]:
        rows = self._fetchall(
            f"SELECT {_REQUEST_COLUMNS} FROM service_requests ORDER BY rowid"
        )
        history_rows = self._fetchall(
            "SELECT request_id, event FROM request_history ORDER BY request_id, position"
        )
        history: dict[str, list[WorkflowHistoryEvent]] = {}
        for r in history_rows:
            history.setdefault(r["request_id"], []).append(
                WorkflowHistoryEvent.model_validate_json(r["event"])
            )
        return [self._row_to_request(r, history.get(r["id"], [])) for r in rows]

    # ------------------------------------------------------------------
    # Store API
    async def allocate_request_id(self) -> str:
        return await asyncio.to_thread(self._allocate)

    async def create_request(self, request: ServiceRequest) -> ServiceRequest:
        await asyncio.to_thread(self._create, request)
        return await self._require(request.id)

    async def get_request(self, request_id: str) -> ServiceRequest | None:
        return await asyncio.to_thread(self._get, request_id)

    async def save_request(
        self, request: ServiceRequest, expected_version: int
    ) -> ServiceRequest:
        await asyncio.to_thread(self._save, request, expected_version)
        return await self._require(request.id)

    async def append_history(
        self, request_id: str, event: WorkflowHistoryEvent, expected_version: int
    ) -> ServiceRequest:
        await asyncio.to_thread(self._append, request_id, event, expected_version)
        return await self._require(request_id)

    async def list_requests(
        self, filters: RequestFilter | None = None
    ) -> list[ServiceRequest]:
        requests = await asyncio.to_thread(self._list)
        return [r for r in requests if filters is None or filters.matches(r)]

    async def _require(self, request_id: str) -> ServiceRequest:
        request = await self.get_request(request_id)
        if request is None:
            raise NotFoundError("Service request", request_id)
        return request

    def close(self) -> None:
        self._conn.close()
