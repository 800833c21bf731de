# airdlivers/infra/pg_request_repo_async.py
"""
Async PostgreSQL request store (asyncpg).

Envelope fields are columns; the role payload is one jsonb column.
Every conditional write is a single UPDATE whose WHERE clause is the
precondition, so the returned row count tells the caller whether it won.
"""
from __future__ import annotations
import json
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional

import asyncpg

from airdlivers.core.engine.domain import Request, RequestStatus, Role, details_from_payload
from airdlivers.core.engine.errors import DuplicateRequestIdError
from airdlivers.core.engine.ports import AsyncRequestStore
from airdlivers.infra.db_resilience_async import safe_db_conn
from airdlivers.infra.logging_config import get_logger, mask_id
from airdlivers.infra.metrics import AppMetrics

logger = get_logger(__name__)

_SELECT = """
    SELECT request_id, owner_id, role, status, payload::text AS payload, moderator_note,
           match_locked, pending_match_with, matched_with, match_finalized_at,
           created_at, updated_at
    FROM requests
"""

# Filter key -> SQL expression
_FILTER_COLUMNS = {
    "request_id": "request_id",
    "owner_id": "owner_id",
    "role": "role",
    "status": "status",
    "match_locked": "match_locked",
    "pending_match_with": "pending_match_with",
    "matched_with": "matched_with",
    "phone": "payload->>'phone'",
}

# Writable column -> value used by unset
_WRITABLE_COLUMNS = {
    "status": None,
    "moderator_note": None,
    "match_locked": False,
    "pending_match_with": None,
    "matched_with": None,
    "match_finalized_at": None,
}


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _build_where(filters: dict[str, Any], params: list[Any]) -> str:
    """
    Render filters as a WHERE body, appending bind values to ``params``.

    ``None`` -> IS NULL; a list/tuple/set -> ANY (with IS NULL when it
    contains ``None``); anything else -> equality.
    """
    clauses = []
    for key, value in filters.items():
        column = _FILTER_COLUMNS.get(key)
        if column is None:
            raise ValueError(f"unsupported filter: {key}")

        if value is None:
            clauses.append(f"{column} IS NULL")
        elif isinstance(value, (list, tuple, set, frozenset)):
            members = [_plain(v) for v in value if v is not None]
            has_null = len(members) != len(value)
            params.append(members)
            any_clause = f"{column} = ANY(${len(params)})"
            clauses.append(f"({column} IS NULL OR {any_clause})" if has_null else any_clause)
        else:
            params.append(_plain(value))
            clauses.append(f"{column} = ${len(params)}")

    return " AND ".join(clauses) if clauses else "TRUE"


def _row_count(result: str | None) -> int:
    # asyncpg returns a status string like "UPDATE 2"
    if not result:
        return 0
    return int(result.split()[-1])


def _row_to_request(row: asyncpg.Record) -> Request:
    role = Role(row['role'])
    return Request(
        request_id=row['request_id'],
        owner_id=row['owner_id'],
        role=role,
        details=details_from_payload(role, json.loads(row['payload'])),
        status=RequestStatus(row['status']),
        moderator_note=row['moderator_note'],
        match_locked=row['match_locked'],
        pending_match_with=row['pending_match_with'],
        matched_with=row['matched_with'],
        created_at=row['created_at'],
        updated_at=row['updated_at'],
        match_finalized_at=row['match_finalized_at'],
    )


class AsyncPostgresRequestStore(AsyncRequestStore):
    """Async PostgreSQL implementation of AsyncRequestStore."""

    async def insert(self, request: Request) -> None:
        try:
            async with safe_db_conn() as conn:
                await conn.execute(
                    """
                    INSERT INTO requests (
                      request_id, owner_id, role, status, payload, moderator_note,
                      match_locked, pending_match_with, matched_with, created_at
                    )
                    VALUES ($1, $2, $3, $4, $5::jsonb, $6, $7, $8, $9, $10)
                    """,
                    request.request_id,
                    request.owner_id,
                    request.role.value,
                    request.status.value,
                    json.dumps(request.details.to_payload()),
                    request.moderator_note,
                    request.match_locked,
                    request.pending_match_with,
                    request.matched_with,
                    request.created_at,
                )
        except asyncpg.UniqueViolationError as exc:
            raise DuplicateRequestIdError(request.request_id) from exc
        except Exception:
            logger.error(
                f"Failed to insert request: id={request.request_id}, owner={mask_id(request.owner_id)}",
                exc_info=True,
            )
            AppMetrics.database_error("request_insert")
            raise

        logger.info(f"Request stored: id={request.request_id}, role={request.role.value}")

    async def find_one(self, **filters: Any) -> Optional[Request]:
        params: list[Any] = []
        where = _build_where(filters, params)
        try:
            async with safe_db_conn() as conn:
                row = await conn.fetchrow(
                    f"{_SELECT} WHERE {where} ORDER BY created_at DESC LIMIT 1",
                    *params,
                )
        except Exception:
            logger.error(f"Failed to find request: filters={sorted(filters)}", exc_info=True)
            AppMetrics.database_error("request_find_one")
            raise
        return _row_to_request(row) if row else None

    async def find_many(self, **filters: Any) -> list[Request]:
        params: list[Any] = []
        where = _build_where(filters, params)
        try:
            async with safe_db_conn() as conn:
                rows = await conn.fetch(f"{_SELECT} WHERE {where} ORDER BY created_at", *params)
        except Exception:
            logger.error(f"Failed to list requests: filters={sorted(filters)}", exc_info=True)
            AppMetrics.database_error("request_find_many")
            raise
        return [_row_to_request(r) for r in rows]

    async def update_fields(
        self,
        filters: dict[str, Any],
        set_fields: dict[str, Any] | None = None,
        unset_fields: Iterable[str] = (),
    ) -> int:
        if not filters:
            raise ValueError("update_fields requires at least one filter")

        params: list[Any] = []
        assignments = []
        for key, value in (set_fields or {}).items():
            if key == "details":
                params.append(json.dumps(value.to_payload()))
                assignments.append(f"payload = ${len(params)}::jsonb")
                continue
            if key not in _WRITABLE_COLUMNS:
                raise ValueError(f"unsupported field: {key}")
            params.append(_plain(value))
            assignments.append(f"{key} = ${len(params)}")

        for key in unset_fields:
            if key not in _WRITABLE_COLUMNS:
                raise ValueError(f"unsupported field: {key}")
            assignments.append(f"{key} = {'false' if key == 'match_locked' else 'NULL'}")

        assignments.append("updated_at = now()")
        where = _build_where(filters, params)

        try:
            async with safe_db_conn() as conn:
                result = await conn.execute(
                    f"UPDATE requests SET {', '.join(assignments)} WHERE {where}",
                    *params,
                )
        except Exception:
            logger.error(f"Failed to update requests: filters={sorted(filters)}", exc_info=True)
            AppMetrics.database_error("request_update")
            raise

        return _row_count(result)

    async def lock_pair(self, my_id: str, other_id: str, locked_at: datetime) -> bool:
        """
        Lock both rows in one transaction.

        Rows are taken FOR UPDATE in request_id order so two racing
        confirmations of the same pair queue instead of deadlocking.
        """
        try:
            async with safe_db_conn(autocommit=False) as conn:
                rows = await conn.fetch(
                    """
                    SELECT request_id, status, match_locked, pending_match_with
                    FROM requests
                    WHERE request_id = ANY($1::text[])
                    ORDER BY request_id
                    FOR UPDATE
                    """,
                    sorted([my_id, other_id]),
                )
                by_id = {r['request_id']: r for r in rows}
                me, other = by_id.get(my_id), by_id.get(other_id)
                if me is None or other is None:
                    return False

                approved = RequestStatus.APPROVED.value
                if (
                    me['status'] != approved or other['status'] != approved
                    or me['match_locked'] or other['match_locked']
                    or other['pending_match_with'] != my_id
                    or me['pending_match_with'] not in (None, other_id)
                ):
                    return False

                await conn.execute(
                    """
                    UPDATE requests
                    SET match_locked = true,
                        matched_with = CASE WHEN request_id = $1 THEN $2 ELSE $1 END,
                        pending_match_with = NULL,
                        match_finalized_at = $3,
                        updated_at = now()
                    WHERE request_id IN ($1, $2)
                    """,
                    my_id,
                    other_id,
                    locked_at,
                )
        except Exception:
            logger.error(f"Failed to lock pair: {my_id} <-> {other_id}", exc_info=True)
            AppMetrics.database_error("request_lock_pair")
            raise

        logger.info(f"Pair locked: {my_id} <-> {other_id}")
        return True
