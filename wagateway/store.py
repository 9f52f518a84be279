from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import asyncpg

from .errors import ConflictError, StoreError
from .metrics import DB_ERRORS_COUNTER
from .models import ApiKeyRecord, ClientRecord


logger = logging.getLogger("wagateway.store")

_CONNECTION_ERRORS = (OSError, asyncpg.PostgresError, asyncpg.InterfaceError)


def _row_to_client(row: Mapping[str, Any]) -> ClientRecord:
    created_raw = row.get("created_at")
    if isinstance(created_raw, datetime):
        created_at = created_raw
    elif created_raw:
        created_at = datetime.fromisoformat(str(created_raw))
    else:
        created_at = datetime.now(timezone.utc)
    return ClientRecord(
        id=int(row["id"]),
        client_id=str(row["client_id"]),
        session_dir=str(row["session_dir"]),
        created_at=created_at,
    )


class SessionStore:
    """PostgreSQL-backed persistence for clients and their API keys."""

    def __init__(self, dsn: str, *, min_size: int = 1, max_size: int = 10) -> None:
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._pool: Optional[asyncpg.Pool] = None

    async def connect(self) -> None:
        if self._pool is not None:
            return
        try:
            self._pool = await asyncpg.create_pool(
                self._dsn, min_size=self._min_size, max_size=self._max_size
            )
        except _CONNECTION_ERRORS as exc:
            DB_ERRORS_COUNTER.labels("connect").inc()
            logger.error("event=store_connect_failed error=%s", exc)
            raise StoreError(str(exc) or "store_unavailable") from exc
        logger.info(
            "event=store_connected pool_min=%s pool_max=%s",
            self._min_size,
            self._max_size,
        )

    async def close(self) -> None:
        pool, self._pool = self._pool, None
        if pool is not None:
            await pool.close()

    async def _ensure_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            await self.connect()
        assert self._pool is not None
        return self._pool

    async def _fetchrow(self, operation: str, sql: str, *args: Any):
        pool = await self._ensure_pool()
        try:
            async with pool.acquire() as con:
                return await con.fetchrow(sql, *args)
        except asyncpg.UniqueViolationError:
            raise
        except _CONNECTION_ERRORS as exc:
            DB_ERRORS_COUNTER.labels(operation).inc()
            logger.error("event=store_query_failed operation=%s error=%s", operation, exc)
            raise StoreError(str(exc) or "store_unavailable") from exc

    async def fetch_client(self, client_id: str) -> ClientRecord | None:
        row = await self._fetchrow(
            "fetch_client",
            "SELECT id, client_id, session_dir, created_at FROM clients WHERE client_id = $1",
            client_id,
        )
        if not row:
            return None
        return _row_to_client(row)

    async def insert_client(self, client_id: str, session_dir: str) -> ClientRecord:
        try:
            row = await self._fetchrow(
                "insert_client",
                """
                INSERT INTO clients (client_id, session_dir)
                VALUES ($1, $2)
                RETURNING id, client_id, session_dir, created_at
                """,
                client_id,
                session_dir,
            )
        except asyncpg.UniqueViolationError as exc:
            raise ConflictError(f"client {client_id} already exists", code="client_exists") from exc
        return _row_to_client(row)

    async def insert_api_key(self, api_key: str, client_pk: int) -> ApiKeyRecord:
        try:
            row = await self._fetchrow(
                "insert_api_key",
                """
                INSERT INTO api_keys (api_key, client_id)
                VALUES ($1, $2)
                RETURNING id, api_key, client_id
                """,
                api_key,
                int(client_pk),
            )
        except asyncpg.UniqueViolationError as exc:
            raise ConflictError("api key collision", code="api_key_exists") from exc
        return ApiKeyRecord(id=int(row["id"]), api_key=str(row["api_key"]), client_id=int(row["client_id"]))

    async def api_key_exists(self, api_key: str) -> bool:
        row = await self._fetchrow(
            "api_key_exists",
            "SELECT 1 FROM api_keys WHERE api_key = $1",
            api_key,
        )
        return row is not None


__all__ = ["SessionStore"]
