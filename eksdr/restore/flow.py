# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
EKS DR Restore Flow - Restore an EKS recovery point into a cluster.

The flow measures RTO as it goes (results/rto-<ts>.csv) and ends with a
job dump and a Markdown report. A failed restore is not rolled back:
partially created resources are left for the cleanup command.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List

import aiosqlite
import structlog
from botocore.exceptions import ClientError
from ulid import ULID

from eksdr.aws import (
    cluster_arn,
    cluster_exists,
    collect_pages,
    restore_job_failure,
    restore_job_status,
)
from eksdr.config import DRConfig, JobKind
from eksdr.core import DRState, create_client
from eksdr.errors import (
    explain_cluster_exists,
    explain_cluster_missing,
    explain_missing_recovery_point,
)
from eksdr.exceptions import ClusterError, ConfigurationError, EKSDRError, RestoreError
from eksdr.ledger import complete_job, latest_recovery_point, record_job
from eksdr.poller import PollOutcome, poll_with_profile, raise_for_result
from eksdr.reports import RtoTimeline, markdown_table, timestamp_slug, write_flow_report, write_json
from eksdr.restore.descriptor import build_restore_descriptor
from eksdr.restore.lookups import (
    BackupSnapshotSource,
    Ec2ZoneLookup,
    EksClusterLookup,
    TerraformIdentityLookup,
    TerraformNetworkLookup,
    resolve_restore_role,
)
from eksdr.tools import update_kubeconfig

logger = structlog.get_logger()


@dataclass
class RestoreOutcome:
    """Result of a restore run."""

    run_id: str  # ULID
    cluster_name: str
    restore_job_id: str
    status: str
    created_resource_arn: str | None
    rto_seconds: float | None
    kubectl_ready: bool
    skipped_node_groups: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    timeline_path: Path | None = None
    dump_path: Path | None = None
    report_path: Path | None = None


async def run_restore(
    config: DRConfig,
    state: DRState,
    recovery_point_arn: str,
    cluster_name: str,
    cluster_version: str,
    *,
    existing: bool = False,
    strict_node_groups: bool = False,
) -> RestoreOutcome:
    """
    Restore an EKS recovery point.

    Args:
        config: DR configuration
        state: Runtime state
        recovery_point_arn: Parent EKS recovery point
        cluster_name: Target cluster name
        cluster_version: Kubernetes version of the target cluster
        existing: Restore into an existing cluster instead of a new one
        strict_node_groups: Abort when a source node group is unreadable

    Returns:
        RestoreOutcome with the restore job and measured RTO

    Raises:
        ConfigurationError: Target name taken, missing network or role
        ClusterError: existing=True but the target cluster is missing
        RestoreError: The restore job could not be started
        JobFailedError: The job failed
        JobTimeoutError: The job did not finish in time
    """
    run_id = str(ULID())
    slug = timestamp_slug()
    timeline = RtoTimeline(config.results_dir / f"rto-{slug}.csv")
    await timeline.start("restore started")

    logger.info(
        "restore_started",
        run_id=run_id,
        recovery_point_arn=recovery_point_arn,
        cluster=cluster_name,
        version=cluster_version,
        existing=existing,
    )

    async with (
        create_client(config, state, "eks") as eks,
        create_client(config, state, "backup") as backup,
        create_client(config, state, "iam") as iam,
        create_client(config, state, "ec2") as ec2,
    ):
        present = await cluster_exists(eks, cluster_name)
        if present and not existing:
            raise ConfigurationError(
                explain_cluster_exists(cluster_name), details={"cluster": cluster_name}
            )
        if existing and not present:
            raise ClusterError(
                explain_cluster_missing(cluster_name, config.region),
                details={"cluster": cluster_name},
            )

        outputs = state["outputs"]
        build = await build_restore_descriptor(
            recovery_point_arn,
            cluster_name,
            cluster_version,
            snapshots=BackupSnapshotSource(backup, config.backup_vault),
            source=EksClusterLookup(eks),
            network=TerraformNetworkLookup(outputs, ec2),
            identity=TerraformIdentityLookup(outputs),
            zones=Ec2ZoneLookup(ec2),
            account_id=state["account_id"],
            new_cluster=not existing,
            strict_node_groups=strict_node_groups,
        )
        metadata = build.descriptor.to_metadata()

        role_arn = await resolve_restore_role(iam, outputs)

        try:
            response = await backup.start_restore_job(
                RecoveryPointArn=recovery_point_arn,
                IamRoleArn=role_arn,
                Metadata=metadata,
                ResourceType="EKS",
            )
        except ClientError as e:
            raise RestoreError(
                f"Failed to start restore job for {cluster_name}: {e}",
                details={
                    "recovery_point_arn": recovery_point_arn,
                    "response": e.response.get("Error", {}),
                },
            ) from e
        job_id = response.get("RestoreJobId")
        if not job_id:
            raise RestoreError(
                "Restore job was not created",
                details={"recovery_point_arn": recovery_point_arn, "response": response},
            )

        async with aiosqlite.connect(state["ledger_db_path"]) as db:
            await record_job(
                db,
                run_id,
                JobKind.RESTORE.value,
                job_id,
                cluster_name,
                resource_arn=recovery_point_arn,
                detail={"version": cluster_version, "existing": existing},
            )
        await timeline.record("restore job started")

        result = await poll_with_profile(
            job_id,
            JobKind.RESTORE,
            restore_job_status(backup, job_id),
            failure_detail=restore_job_failure(backup, job_id),
            timeout=config.restore_timeout,
            clock=state["clock"],
        )

        if not result.succeeded:
            final_status = (
                PollOutcome.TIMED_OUT.name if result.outcome == PollOutcome.TIMED_OUT else result.status
            )
            async with aiosqlite.connect(state["ledger_db_path"]) as db:
                await complete_job(db, run_id, final_status, detail={"error": result.detail})
            await timeline.record(f"restore job {final_status.lower()}")
            raise_for_result(result)

        await timeline.record("restore job completed")
        job = await backup.describe_restore_job(RestoreJobId=job_id)

    created = job.get("CreatedResourceArn")
    rto_seconds = _rto_seconds(job.get("CreationDate"), job.get("CompletionDate"))

    async with aiosqlite.connect(state["ledger_db_path"]) as db:
        await complete_job(
            db,
            run_id,
            result.status,
            detail={"created_resource_arn": created, "rto_seconds": rto_seconds},
        )

    # API server needs a moment after the job reports completion
    await state["clock"].sleep(config.kube_ready_delay)
    kubectl_ready = await _configure_kubectl(state, cluster_name, config.region)
    await timeline.record("kubectl configured")

    dump_path = await write_json(
        config.results_dir / f"restore-{slug}.json",
        {
            "restoreJob": job,
            "metadata": metadata,
            "skippedNodeGroups": build.skipped_node_groups,
            "warnings": build.warnings,
        },
    )

    report_path = await write_flow_report(
        config.results_dir,
        "restore-to-existing-cluster" if existing else "restore-to-new-cluster",
        "COMPLETED",
        state["account_id"],
        body=_report_body(job_id, created, job, rto_seconds, build.skipped_node_groups),
        timeline=timeline,
    )

    logger.info(
        "restore_completed",
        run_id=run_id,
        restore_job_id=job_id,
        cluster=cluster_name,
        rto_seconds=rto_seconds,
        skipped_node_groups=build.skipped_node_groups,
    )

    return RestoreOutcome(
        run_id=run_id,
        cluster_name=cluster_name,
        restore_job_id=job_id,
        status=result.status,
        created_resource_arn=created,
        rto_seconds=rto_seconds,
        kubectl_ready=kubectl_ready,
        skipped_node_groups=build.skipped_node_groups,
        warnings=build.warnings,
        timeline_path=timeline.path,
        dump_path=dump_path,
        report_path=report_path,
    )


async def find_latest_recovery_point(
    config: DRConfig,
    state: DRState,
    source_cluster: str,
) -> str:
    """
    Newest completed recovery point of a cluster.

    The local ledger is consulted first; otherwise AWS Backup is asked for
    recovery points of the cluster's ARN (the cluster itself may be gone).

    Raises:
        ConfigurationError: If no completed recovery point exists
    """
    async with aiosqlite.connect(state["ledger_db_path"]) as db:
        arn = await latest_recovery_point(db, source_cluster)
    if arn:
        logger.info("recovery_point_from_ledger", cluster=source_cluster, recovery_point_arn=arn)
        return arn

    resource_arn = cluster_arn(config.region, state["account_id"], source_cluster)
    async with create_client(config, state, "backup") as backup:
        points = await collect_pages(
            backup,
            "list_recovery_points_by_resource",
            "RecoveryPoints",
            ResourceArn=resource_arn,
        )

    completed = [p for p in points if p.get("Status", "COMPLETED") == "COMPLETED"]
    if not completed:
        raise ConfigurationError(
            explain_missing_recovery_point(source_cluster),
            details={"resource_arn": resource_arn},
        )

    newest = max(completed, key=lambda p: p["CreationDate"])
    logger.info(
        "recovery_point_discovered",
        cluster=source_cluster,
        recovery_point_arn=newest["RecoveryPointArn"],
    )
    return newest["RecoveryPointArn"]


async def _configure_kubectl(state: DRState, cluster_name: str, region: str) -> bool:
    try:
        return await update_kubeconfig(state["runner"], cluster_name, region)
    except EKSDRError as e:
        logger.warning("kubectl_configuration_failed", cluster=cluster_name, error=str(e))
        return False


def _rto_seconds(created: datetime | None, completed: datetime | None) -> float | None:
    if not created or not completed:
        return None
    return (completed - created).total_seconds()


def _report_body(
    job_id: str,
    created: str | None,
    job: dict,
    rto_seconds: float | None,
    skipped: List[str],
) -> str:
    rto = f"{rto_seconds / 60:.1f} min ({rto_seconds:.0f} s)" if rto_seconds is not None else "n/a"
    rows = [
        ("Restore job", job_id),
        ("Created resource", created or "n/a"),
        ("Started", job.get("CreationDate", "n/a")),
        ("Completed", job.get("CompletionDate", "n/a")),
        ("RTO", rto),
        ("Skipped node groups", ", ".join(skipped) or "none"),
    ]
    return markdown_table(("Field", "Value"), rows)
