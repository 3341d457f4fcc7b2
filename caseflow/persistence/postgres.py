"""PostgreSQL implementation of the request store."""

from __future__ import annotations

import json

import asyncpg

from ..contracts import ServiceRequest, WorkflowHistoryEvent
from ..exceptions import ConcurrencyError, InvalidStateError, NotFoundError
from .models import RequestFilter
from .repository import RequestStore

_REQUEST_COLUMNS = (
    "id, workflow_definition_id, status, current_step_id, assigned_to_office_id, "
    "assigned_to_user_id, subject_id, creation_data, data, created_at, updated_at, version"
)


class PostgresRequestStore(RequestStore):
    """Persist service requests using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS service_requests (
                seq BIGSERIAL,
                id TEXT PRIMARY KEY,
                workflow_definition_id TEXT NOT NULL,
                status TEXT NOT NULL,
                current_step_id TEXT NOT NULL,
                assigned_to_office_id TEXT,
                assigned_to_user_id TEXT,
                subject_id TEXT NOT NULL,
                creation_data JSONB NOT NULL,
                data JSONB NOT NULL,
                created_at TIMESTAMPTZ NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                version INTEGER NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS request_history (
                id SERIAL PRIMARY KEY,
                request_id TEXT NOT NULL REFERENCES service_requests (id),
                position INTEGER NOT NULL,
                event JSONB NOT NULL,
                UNIQUE (request_id, position)
            )
            """
        )
        await conn.execute("CREATE SEQUENCE IF NOT EXISTS service_request_ids")

    # ------------------------------------------------------------------
    @staticmethod
    def _row_to_request(row, history: list[WorkflowHistoryEvent]) -> ServiceRequest:
        return ServiceRequest(
            id=row["id"],
            workflow_definition_id=row["workflow_definition_id"],
            status=row["status"],
            current_step_id=row["current_step_id"],
            assigned_to_office_id=row["assigned_to_office_id"],
            assigned_to_user_id=row["assigned_to_user_id"],
            creation_data=json.loads(row["creation_data"]),
            data=json.loads(row["data"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            history=history,
            version=row["version"],
        )

    @staticmethod
    async def _insert_history(
        conn: asyncpg.Connection,
        request_id: str,
        events: list[WorkflowHistoryEvent],
        start: int,
    ) -> None:
        if not events:
            return
        await conn.executemany(
            "INSERT INTO request_history (request_id, position, event) VALUES ($1, $2, $3)",
            [
                (request_id, start + offset, event.model_dump_json())
                for offset, event in enumerate(events)
            ],
        )

    @staticmethod
    async def _check_version(
        conn: asyncpg.Connection, request_id: str, expected_version: int
    ) -> int:
        row = await conn.fetchrow(
            "SELECT version FROM service_requests WHERE id = $1 FOR UPDATE",
            request_id,
        )
        if row is None:
            raise NotFoundError("Service request", request_id)
        if row["version"] != expected_version:
            raise ConcurrencyError(request_id, expected_version, row["version"])
        return await conn.fetchval(
            "SELECT COUNT(*) FROM request_history WHERE request_id = $1", request_id
        )

    @staticmethod
    async def _check_history_prefix(
        conn: asyncpg.Connection, request: ServiceRequest
    ) -> int:
        rows = await conn.fetch(
            "SELECT event FROM request_history WHERE request_id = $1 ORDER BY position",
            request.id,
        )
        persisted = [WorkflowHistoryEvent.model_validate_json(r["event"]) for r in rows]
        if request.history[: len(persisted)] != persisted:
            raise InvalidStateError(
                f"History of service request {request.id} is append-only"
            )
        return len(persisted)

    async def _fetch(
        self, conn: asyncpg.Connection, request_id: str
    ) -> ServiceRequest | None:
        row = await conn.fetchrow(
            f"SELECT {_REQUEST_COLUMNS} FROM service_requests WHERE id = $1",
            request_id,
        )
        if not row:
            return None
        events = await conn.fetch(
            "SELECT event FROM request_history WHERE request_id = $1 ORDER BY position",
            request_id,
        )
        history = [WorkflowHistoryEvent.model_validate_json(r["event"]) for r in events]
        return self._row_to_request(row, history)

    # ------------------------------------------------------------------
    async def allocate_request_id(self) -> str:
        conn = await self._connect()
        try:
            value = await conn.fetchval("SELECT nextval('service_request_ids')")
        finally:
            await conn.close()
        return f"SR{value:05d}"

    async def create_request(self, request: ServiceRequest) -> ServiceRequest:
        conn = await self._connect()
        try:
            async with conn.transaction():
                await conn.execute(
                    f"INSERT INTO service_requests ({_REQUEST_COLUMNS}) "
                    "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)",
                    request.id,
                    request.workflow_definition_id,
                    request.status.value,
                    request.current_step_id,
                    request.assigned_to_office_id,
                    request.assigned_to_user_id,
                    request.subject_id,
                    request.creation_data.model_dump_json(),
                    json.dumps(request.data, default=str),
                    request.created_at,
                    request.updated_at,
                    1,
                )
                await self._insert_history(conn, request.id, request.history, 0)
            stored = await self._fetch(conn, request.id)
        finally:
            await conn.close()
        return stored

    async def get_request(self, request_id: str) -> ServiceRequest | None:
        conn = await self._connect()
        try:
            return await self._fetch(conn, request_id)
        finally:
            await conn.close()

    async def save_request(
        self, request: ServiceRequest, expected_version: int
    ) -> ServiceRequest:
        conn = await self._connect()
        try:
            async with conn.transaction():
                await self._check_version(conn, request.id, expected_version)
                persisted = await self._check_history_prefix(conn, request)
                await conn.execute(
                    """
                    UPDATE service_requests
                    SET status = $1, current_step_id = $2, assigned_to_office_id = $3,
                        assigned_to_user_id = $4, data = $5, updated_at = $6, version = $7
                    WHERE id = $8
                    """,
                    request.status.value,
                    request.current_step_id,
                    request.assigned_to_office_id,
                    request.assigned_to_user_id,
                    json.dumps(request.data, default=str),
                    request.updated_at,
                    expected_version + 1,
                    request.id,
                )
                await self._insert_history(
                    conn, request.id, request.history[persisted:], persisted
                )
            stored = await self._fetch(conn, request.id)
        finally:
            await conn.close()
        return stored

    async def append_history(
        self, request_id: str, event: WorkflowHistoryEvent, expected_version: int
    ) -> ServiceRequest:
        conn = await self._connect()
        try:
            async with conn.transaction():
                persisted = await self._check_version(conn, request_id, expected_version)
                await conn.execute(
                    "UPDATE service_requests SET updated_at = $1, version = $2 WHERE id = $3",
                    event.timestamp,
                    expected_version + 1,
                    request_id,
                )
                await self._insert_history(conn, request_id, [event], persisted)
            stored = await self._fetch(conn, request_id)
        finally:
            await conn.close()
        return stored

    async def list_requests(
        self, filters: RequestFilter | None = None
    ) -> list[ServiceRequest]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT {_REQUEST_COLUMNS} FROM service_requests ORDER BY seq"
            )
            history_rows = await conn.fetch(
                "SELECT request_id, event FROM request_history ORDER BY request_id, position"
            )
        finally:
            await conn.close()
        history: dict[str, list[WorkflowHistoryEvent]] = {}
        for r in history_rows:
            history.setdefault(r["request_id"], []).append(
                WorkflowHistoryEvent.model_validate_json(r["event"])
            )
        requests = [self._row_to_request(r, history.get(r["id"], [])) for r in rows]
        return [r for r in requests if filters is None or filters.matches(r)]
