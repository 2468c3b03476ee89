# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
EKS DR Backup Manager - On-demand AWS Backup jobs for an EKS cluster.

A backup run:
1. Resolves the cluster ARN
2. Ensures the AWS Backup service role exists
3. Starts a backup job into the configured vault and records it
4. Polls the job to completion
5. Collects the recovery point and its child recovery points
6. Dumps the job description to results/backup-<ts>.json
"""

from dataclasses import dataclass, field
from datetime import datetime, UTC
from pathlib import Path
from typing import List

import aiosqlite
import structlog
from botocore.exceptions import ClientError
from ulid import ULID

from eksdr.aws import backup_job_failure, backup_job_status, collect_pages, describe_cluster
from eksdr.config import DRConfig, JobKind
from eksdr.core import DRState, create_client
from eksdr.exceptions import BackupError
from eksdr.identity.roles import RoleKind, RoleResolver
from eksdr.ledger import complete_job, record_job
from eksdr.poller import PollOutcome, poll_with_profile, raise_for_result
from eksdr.reports import timestamp_slug, write_json

logger = structlog.get_logger()

# Child recovery points show up shortly after the parent completes
CHILD_LISTING_DELAY = 5


@dataclass
class BackupResult:
    """Result of a backup run."""

    run_id: str  # ULID
    cluster_name: str
    backup_job_id: str
    status: str
    recovery_point_arn: str | None
    backup_size_bytes: int | None
    duration_seconds: float
    child_recovery_points: List[dict] = field(default_factory=list)
    dump_path: Path | None = None


async def run_backup(config: DRConfig, state: DRState, cluster_name: str) -> BackupResult:
    """
    Back up an EKS cluster and wait for the recovery point.

    Args:
        config: DR configuration
        state: Runtime state
        cluster_name: Cluster to back up

    Returns:
        BackupResult with the recovery point ARN

    Raises:
        ClusterError: The cluster does not exist
        BackupError: The backup job could not be started
        JobFailedError: The job failed
        JobTimeoutError: The job did not finish in time
    """
    run_id = str(ULID())
    start_time = datetime.now(UTC)

    logger.info(
        "backup_started",
        run_id=run_id,
        cluster=cluster_name,
        vault=config.backup_vault,
        region=config.region,
    )

    async with (
        create_client(config, state, "eks") as eks,
        create_client(config, state, "backup") as backup,
        create_client(config, state, "iam") as iam,
    ):
        # Step 1: cluster ARN
        cluster = await describe_cluster(eks, cluster_name, config.region)
        cluster_arn = cluster["arn"]

        # Step 2: service role
        resolver = RoleResolver(
            iam,
            settle_seconds=config.role_settle_seconds,
            clock=state["clock"],
        )
        role_arn = await resolver.ensure_kind(RoleKind.BACKUP_SERVICE)

        # Step 3: start the job
        try:
            response = await backup.start_backup_job(
                BackupVaultName=config.backup_vault,
                ResourceArn=cluster_arn,
                IamRoleArn=role_arn,
            )
        except ClientError as e:
            raise BackupError(
                f"Failed to start backup job for {cluster_name}: {e}",
                details={
                    "cluster": cluster_name,
                    "vault": config.backup_vault,
                    "response": e.response.get("Error", {}),
                },
            ) from e
        job_id = response.get("BackupJobId")
        if not job_id:
            raise BackupError(
                "Backup job was not created",
                details={"cluster": cluster_name, "response": response},
            )

        async with aiosqlite.connect(state["ledger_db_path"]) as db:
            await record_job(
                db,
                run_id,
                JobKind.BACKUP.value,
                job_id,
                cluster_name,
                resource_arn=cluster_arn,
                detail={"vault": config.backup_vault},
            )

        logger.info("backup_job_started", run_id=run_id, backup_job_id=job_id)

        # Step 4: wait
        result = await poll_with_profile(
            job_id,
            JobKind.BACKUP,
            backup_job_status(backup, job_id),
            failure_detail=backup_job_failure(backup, job_id),
            timeout=config.backup_timeout,
            clock=state["clock"],
        )

        if not result.succeeded:
            final_status = (
                PollOutcome.TIMED_OUT.name if result.outcome == PollOutcome.TIMED_OUT else result.status
            )
            async with aiosqlite.connect(state["ledger_db_path"]) as db:
                await complete_job(db, run_id, final_status, detail={"error": result.detail})
            raise_for_result(result)

        # Step 5: recovery point and children
        job = await backup.describe_backup_job(BackupJobId=job_id)
        recovery_point_arn = job.get("RecoveryPointArn")

        children: List[dict] = []
        if recovery_point_arn:
            await state["clock"].sleep(CHILD_LISTING_DELAY)
            children = await collect_pages(
                backup,
                "list_recovery_points_by_backup_vault",
                "RecoveryPoints",
                BackupVaultName=config.backup_vault,
                ByParentRecoveryPointArn=recovery_point_arn,
            )

    async with aiosqlite.connect(state["ledger_db_path"]) as db:
        await complete_job(
            db,
            run_id,
            result.status,
            recovery_point_arn=recovery_point_arn,
            detail={
                "backup_size_bytes": job.get("BackupSizeInBytes"),
                "children": len(children),
            },
        )

    # Step 6: dump
    dump_path = await write_json(
        config.results_dir / f"backup-{timestamp_slug()}.json",
        {"backupJob": job, "childRecoveryPoints": children},
    )

    duration = (datetime.now(UTC) - start_time).total_seconds()
    logger.info(
        "backup_completed",
        run_id=run_id,
        recovery_point_arn=recovery_point_arn,
        size_bytes=job.get("BackupSizeInBytes"),
        children=len(children),
        duration=duration,
    )

    return BackupResult(
        run_id=run_id,
        cluster_name=cluster_name,
        backup_job_id=job_id,
        status=result.status,
        recovery_point_arn=recovery_point_arn,
        backup_size_bytes=job.get("BackupSizeInBytes"),
        duration_seconds=duration,
        child_recovery_points=children,
        dump_path=dump_path,
    )
