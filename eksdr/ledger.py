# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
EKS DR Job Ledger - Local audit trail of provider jobs.

Every backup and restore job started by a flow is recorded here with its
final status. Rows are only ever inserted and then completed once, so the
ledger doubles as a history of drills and as a cache of the most recent
recovery point per cluster.
"""

import json
from datetime import datetime, UTC
from pathlib import Path
from typing import List, TypedDict

import aiosqlite
import structlog

from eksdr.exceptions import LedgerError

logger = structlog.get_logger()

RUNNING = "RUNNING"

_COLUMNS = """
    id, kind, job_id, cluster_name, resource_arn, recovery_point_arn,
    status, started_at, completed_at, detail
"""


class JobRecord(TypedDict):
    """Ledger entry for one provider job."""

    id: str  # ULID
    kind: str  # JobKind value
    job_id: str  # provider job ID
    cluster_name: str
    resource_arn: str | None
    recovery_point_arn: str | None
    status: str  # RUNNING until completed
    started_at: str  # ISO 8601
    completed_at: str | None  # ISO 8601
    detail: dict


async def init_ledger_db(db_path: Path) -> None:
    """
    Initialize the ledger schema.

    Creates tables if they don't exist. This is idempotent.

    Args:
        db_path: Path to the SQLite database file
    """
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    id TEXT PRIMARY KEY,
                    kind TEXT NOT NULL,
                    job_id TEXT NOT NULL,
                    cluster_name TEXT NOT NULL,
                    resource_arn TEXT,
                    recovery_point_arn TEXT,
                    status TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    completed_at TEXT,
                    detail TEXT NOT NULL DEFAULT '{}'
                )
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_cluster_kind
                ON jobs(cluster_name, kind)
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_jobs_started_at
                ON jobs(started_at)
            """)

            await db.commit()

        logger.debug("ledger_db_initialized", db_path=str(db_path))

    except Exception as e:
        raise LedgerError(
            f"Failed to initialize job ledger: {e}",
            details={"db_path": str(db_path)},
        )


async def record_job(
    db: aiosqlite.Connection,
    run_id: str,
    kind: str,
    job_id: str,
    cluster_name: str,
    resource_arn: str | None = None,
    detail: dict | None = None,
) -> None:
    """
    Record a job that has just been started.

    Args:
        db: SQLite database connection
        run_id: Unique ledger ID (ULID)
        kind: JobKind value
        job_id: Provider job ID
        cluster_name: Cluster the job backs up or restores into
        resource_arn: Resource (or recovery point) the job acts on
        detail: Extra context stored as JSON
    """
    now = datetime.now(UTC).isoformat()

    await db.execute(
        """
        INSERT INTO jobs
        (id, kind, job_id, cluster_name, resource_arn, status, started_at, detail)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (run_id, kind, job_id, cluster_name, resource_arn, RUNNING, now, json.dumps(detail or {})),
    )
    await db.commit()

    logger.info("job_recorded", run_id=run_id, kind=kind, job_id=job_id)


async def complete_job(
    db: aiosqlite.Connection,
    run_id: str,
    status: str,
    recovery_point_arn: str | None = None,
    detail: dict | None = None,
) -> None:
    """
    Store the final status of a job.

    Args:
        db: SQLite database connection
        run_id: Ledger ID given to record_job()
        status: Final provider status (or TIMED_OUT)
        recovery_point_arn: Recovery point produced by a backup job
        detail: Extra context merged into the stored detail
    """
    now = datetime.now(UTC).isoformat()

    existing = await get_job(db, run_id)
    if existing is None:
        raise LedgerError(f"Unknown ledger entry: {run_id}", details={"run_id": run_id})

    merged = {**existing["detail"], **(detail or {})}

    await db.execute(
        """
        UPDATE jobs
        SET status = ?, completed_at = ?, recovery_point_arn = COALESCE(?, recovery_point_arn),
            detail = ?
        WHERE id = ?
        """,
        (status, now, recovery_point_arn, json.dumps(merged, default=str), run_id),
    )
    await db.commit()


async def get_job(db: aiosqlite.Connection, run_id: str) -> JobRecord | None:
    """
    Get one ledger entry.

    Returns:
        Job record or None if not found
    """
    async with db.execute(
        f"SELECT {_COLUMNS} FROM jobs WHERE id = ?",
        (run_id,),
    ) as cursor:
        row = await cursor.fetchone()
        return _to_record(row) if row else None


async def list_jobs(
    db: aiosqlite.Connection,
    kind: str | None = None,
    limit: int = 20,
) -> List[JobRecord]:
    """
    List ledger entries, newest first.

    Args:
        db: SQLite database connection
        kind: Only entries of this JobKind value
        limit: Maximum number of entries
    """
    query = f"SELECT {_COLUMNS} FROM jobs"
    params: list = []
    if kind:
        query += " WHERE kind = ?"
        params.append(kind)
    query += " ORDER BY started_at DESC, id DESC LIMIT ?"
    params.append(limit)

    records: List[JobRecord] = []
    async with db.execute(query, params) as cursor:
        async for row in cursor:
            records.append(_to_record(row))
    return records


async def latest_recovery_point(db: aiosqlite.Connection, cluster_name: str) -> str | None:
    """Recovery point of the newest completed backup of a cluster."""
    async with db.execute(
        """
        SELECT recovery_point_arn FROM jobs
        WHERE cluster_name = ? AND kind = 'backup' AND status = 'COMPLETED'
          AND recovery_point_arn IS NOT NULL
        ORDER BY started_at DESC, id DESC
        LIMIT 1
        """,
        (cluster_name,),
    ) as cursor:
        row = await cursor.fetchone()
        return row[0] if row else None


def _to_record(row) -> JobRecord:
    return JobRecord(
        id=row[0],
        kind=row[1],
        job_id=row[2],
        cluster_name=row[3],
        resource_arn=row[4],
        recovery_point_arn=row[5],
        status=row[6],
        started_at=row[7],
        completed_at=row[8],
        detail=json.loads(row[9] or "{}"),
    )
