# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup and Restore Flow Tests.

These tests verify the drill guarantees:
1. Every started job is recorded in the ledger with its final status
2. A failed job surfaces its provider reason
3. A restore never targets an existing cluster by accident
4. RTO is measured from the provider's job timestamps
"""

import json
from datetime import datetime, UTC

import aiosqlite
import pytest

from eksdr.aws import cluster_arn
from eksdr.backup import run_backup
from eksdr.exceptions import (
    BackupError,
    ClusterError,
    ConfigurationError,
    JobFailedError,
    JobTimeoutError,
    RestoreError,
)
from eksdr.ledger import get_job, list_jobs, record_job, complete_job, latest_recovery_point
from eksdr.restore import find_latest_recovery_point, run_restore

SOURCE = "source"


def source_point(backup, arn="arn:aws:backup:us-west-2:123456789012:recovery-point:snap-1"):
    backup.add_recovery_point(
        arn,
        "EKS",
        cluster_arn("us-west-2", "123456789012", SOURCE),
    )
    return arn


# ============================================================================
# Test 1: BACKUP
# ============================================================================

@pytest.mark.asyncio
async def test_backup_records_job_and_dumps_description(dr_state, test_config, eks, backup, iam):
    eks.add_cluster(SOURCE)
    backup.add_recovery_point(
        "child-1", "EBS", "arn:aws:ec2:us-west-2::volume/vol-1", parent_arn=backup.recovery_point_arn
    )
    backup.add_recovery_point(
        "child-2", "EFS", "arn:aws:elasticfilesystem:us-west-2::file-system/fs-1",
        parent_arn=backup.recovery_point_arn,
    )

    result = await run_backup(test_config, dr_state, SOURCE)

    assert result.status == "COMPLETED"
    assert result.recovery_point_arn == backup.recovery_point_arn
    assert result.backup_size_bytes == 2048
    assert [c["RecoveryPointArn"] for c in result.child_recovery_points] == ["child-1", "child-2"]

    started = backup.called("start_backup_job")[0]
    assert started["ResourceArn"] == "arn:aws:eks:us-west-2:123456789012:cluster/source"
    assert started["BackupVaultName"] == "Default"
    assert started["IamRoleArn"].endswith("role/AWSBackupDefaultServiceRole")
    assert "AWSBackupDefaultServiceRole" in iam.roles

    dump = json.loads(result.dump_path.read_text())
    assert dump["backupJob"]["State"] == "COMPLETED"
    assert len(dump["childRecoveryPoints"]) == 2

    async with aiosqlite.connect(dr_state["ledger_db_path"]) as db:
        record = await get_job(db, result.run_id)
    assert record["status"] == "COMPLETED"
    assert record["job_id"] == "backup-job-1"
    assert record["recovery_point_arn"] == backup.recovery_point_arn
    assert record["detail"]["children"] == 2


@pytest.mark.asyncio
async def test_backup_failure_keeps_reason(dr_state, test_config, eks, backup):
    """
    A failed backup job must be stored as FAILED and raise with the
    provider's status message.
    """
    eks.add_cluster(SOURCE)
    backup.backup_states = ["RUNNING", "FAILED"]
    backup.status_message = "Insufficient privileges to perform this action"

    with pytest.raises(JobFailedError) as excinfo:
        await run_backup(test_config, dr_state, SOURCE)

    assert "Insufficient privileges" in str(excinfo.value)

    async with aiosqlite.connect(dr_state["ledger_db_path"]) as db:
        records = await list_jobs(db, kind="backup")
    assert len(records) == 1
    assert records[0]["status"] == "FAILED"
    assert "Insufficient privileges" in records[0]["detail"]["error"]


@pytest.mark.asyncio
async def test_backup_timeout_is_recorded(dr_state, test_config, eks, backup):
    eks.add_cluster(SOURCE)
    backup.backup_states = ["RUNNING"]
    config = test_config.with_updates(backup_timeout=90)

    with pytest.raises(JobTimeoutError):
        await run_backup(config, dr_state, SOURCE)

    async with aiosqlite.connect(dr_state["ledger_db_path"]) as db:
        records = await list_jobs(db)
    assert records[0]["status"] == "TIMED_OUT"


@pytest.mark.asyncio
async def test_backup_of_missing_cluster(dr_state, test_config, backup):
    with pytest.raises(ClusterError):
        await run_backup(test_config, dr_state, "nope")

    assert backup.called("start_backup_job") == []


@pytest.mark.asyncio
async def test_backup_without_job_id(dr_state, test_config, eks, backup):
    eks.add_cluster(SOURCE)
    backup.backup_job_id = None

    with pytest.raises(BackupError):
        await run_backup(test_config, dr_state, SOURCE)


@pytest.mark.asyncio
async def test_backup_start_rejected(dr_state, test_config, eks, backup):
    """
    A provider error on start_backup_job surfaces as BackupError carrying
    the provider response, and nothing is recorded.
    """
    eks.add_cluster(SOURCE)
    backup.fail("start_backup_job")

    with pytest.raises(BackupError) as excinfo:
        await run_backup(test_config, dr_state, SOURCE)

    assert excinfo.value.details["cluster"] == SOURCE
    assert excinfo.value.details["response"]["Code"] == "AccessDenied"

    async with aiosqlite.connect(dr_state["ledger_db_path"]) as db:
        assert await list_jobs(db) == []


# ============================================================================
# Test 2: RESTORE
# ============================================================================

@pytest.mark.asyncio
async def test_restore_to_new_cluster(dr_state, test_config, eks, backup, iam, fake_runner):
    arn = source_point(backup)
    backup.add_recovery_point("vol-point", "EBS", "arn:aws:ec2:::volume/vol-1", parent_arn=arn)
    eks.add_nodegroup(SOURCE, "ng-1", subnets=("subnet-x",), instance_types=("m5.large",))
    iam.add_role("AWSBackupDefaultServiceRole")

    outcome = await run_restore(test_config, dr_state, arn, "restored", "1.32")

    assert outcome.status == "COMPLETED"
    assert outcome.restore_job_id == "restore-job-1"
    assert outcome.rto_seconds == 1500
    assert outcome.kubectl_ready
    assert outcome.skipped_node_groups == []

    started = backup.called("start_restore_job")[0]
    assert started["ResourceType"] == "EKS"
    assert started["IamRoleArn"].endswith("role/AWSBackupDefaultServiceRole")
    metadata = started["Metadata"]
    assert metadata["clusterName"] == "restored"
    assert metadata["newCluster"] == "true"
    assert json.loads(metadata["clusterVpcConfig"]) == {
        "vpcId": "vpc-default",
        "subnetIds": ["subnet-d1", "subnet-d2"],
    }
    node_groups = json.loads(metadata["nodeGroups"])
    assert node_groups[0]["instanceTypes"] == ["m5.large"]
    assert node_groups[0]["nodeRole"] == "arn:aws:iam::123456789012:role/eksNodeRole"
    nested = json.loads(metadata["nestedRestoreJobs"])
    assert json.loads(nested["vol-point"]) == {"availabilityZone": "us-west-2a"}

    assert fake_runner.ran("aws", "eks", "update-kubeconfig", "--name", "restored")
    timeline = outcome.timeline_path.read_text().splitlines()
    assert timeline[0] == "timestamp,event"
    assert [row.split(",", 1)[1] for row in timeline[1:]] == [
        "restore started",
        "restore job started",
        "restore job completed",
        "kubectl configured",
    ]

    dump = json.loads(outcome.dump_path.read_text())
    assert dump["restoreJob"]["Status"] == "COMPLETED"
    assert dump["metadata"] == metadata
    assert dump["skippedNodeGroups"] == []

    report = outcome.report_path.read_text()
    assert "restore-to-new-cluster" in report
    assert "25.0 min" in report


@pytest.mark.asyncio
async def test_restore_refuses_existing_target(dr_state, test_config, eks, backup):
    """
    CRITICAL: Restoring as a new cluster onto an existing name must fail
    before any restore job starts.
    """
    arn = source_point(backup)
    eks.add_cluster("restored")

    with pytest.raises(ConfigurationError):
        await run_restore(test_config, dr_state, arn, "restored", "1.32")

    assert backup.called("start_restore_job") == []


@pytest.mark.asyncio
async def test_restore_into_existing_requires_cluster(dr_state, test_config, backup):
    arn = source_point(backup)

    with pytest.raises(ClusterError):
        await run_restore(test_config, dr_state, arn, "restored", "1.32", existing=True)


@pytest.mark.asyncio
async def test_restore_with_single_subnet_never_starts(dr_state, test_config, backup, ec2, iam):
    arn = source_point(backup)
    iam.add_role("AWSBackupDefaultServiceRole")
    del ec2.subnets["subnet-d2"]

    with pytest.raises(ConfigurationError):
        await run_restore(test_config, dr_state, arn, "restored", "1.32")

    assert backup.called("start_restore_job") == []


@pytest.mark.asyncio
async def test_restore_without_backup_role(dr_state, test_config, backup):
    arn = source_point(backup)

    with pytest.raises(ConfigurationError):
        await run_restore(test_config, dr_state, arn, "restored", "1.32")


@pytest.mark.asyncio
async def test_restore_prefers_discovered_backup_role(dr_state, test_config, backup, iam):
    arn = source_point(backup)
    iam.add_role("AWSBackupDefaultServiceRole")
    discovered = iam.add_role("AWSBackupServiceRole-lab")

    await run_restore(test_config, dr_state, arn, "restored", "1.32")

    assert backup.called("start_restore_job")[0]["IamRoleArn"] == discovered


@pytest.mark.asyncio
async def test_restore_failure_is_recorded(dr_state, test_config, backup, iam):
    arn = source_point(backup)
    iam.add_role("AWSBackupDefaultServiceRole")
    backup.restore_states = ["RUNNING", "FAILED"]
    backup.status_message = "Subnets are in the same availability zone"

    with pytest.raises(JobFailedError):
        await run_restore(test_config, dr_state, arn, "restored", "1.32")

    async with aiosqlite.connect(dr_state["ledger_db_path"]) as db:
        records = await list_jobs(db, kind="restore")
    assert records[0]["status"] == "FAILED"
    assert records[0]["resource_arn"] == arn


@pytest.mark.asyncio
async def test_restore_start_rejected(dr_state, test_config, backup, iam):
    arn = source_point(backup)
    iam.add_role("AWSBackupDefaultServiceRole")
    backup.fail("start_restore_job", code="InvalidParameterValueException")

    with pytest.raises(RestoreError) as excinfo:
        await run_restore(test_config, dr_state, arn, "restored", "1.32")

    assert excinfo.value.details["recovery_point_arn"] == arn
    assert excinfo.value.details["response"]["Code"] == "InvalidParameterValueException"

    async with aiosqlite.connect(dr_state["ledger_db_path"]) as db:
        assert await list_jobs(db, kind="restore") == []


# ============================================================================
# Test 3: RECOVERY POINT DISCOVERY
# ============================================================================

@pytest.mark.asyncio
async def test_latest_recovery_point_from_ledger(dr_state, test_config, eks, backup):
    eks.add_cluster(SOURCE)
    await run_backup(test_config, dr_state, SOURCE)

    arn = await find_latest_recovery_point(test_config, dr_state, SOURCE)

    assert arn == backup.recovery_point_arn
    assert backup.called("list_recovery_points_by_resource") == []


@pytest.mark.asyncio
async def test_latest_recovery_point_from_provider(dr_state, test_config, backup):
    resource = cluster_arn("us-west-2", "123456789012", SOURCE)
    backup.add_recovery_point("old", "EKS", resource, created=datetime(2026, 1, 1, tzinfo=UTC))
    backup.add_recovery_point("new", "EKS", resource, created=datetime(2026, 2, 1, tzinfo=UTC))
    backup.add_recovery_point(
        "partial", "EKS", resource, status="PARTIAL", created=datetime(2026, 3, 1, tzinfo=UTC)
    )

    assert await find_latest_recovery_point(test_config, dr_state, SOURCE) == "new"


@pytest.mark.asyncio
async def test_no_recovery_point(dr_state, test_config):
    with pytest.raises(ConfigurationError):
        await find_latest_recovery_point(test_config, dr_state, SOURCE)


# ============================================================================
# Test 4: LEDGER
# ============================================================================

@pytest.mark.asyncio
async def test_ledger_latest_recovery_point_ignores_failures(dr_state):
    async with aiosqlite.connect(dr_state["ledger_db_path"]) as db:
        await record_job(db, "01A", "backup", "job-a", SOURCE)
        await complete_job(db, "01A", "COMPLETED", recovery_point_arn="rp-a")
        await record_job(db, "01B", "backup", "job-b", SOURCE)
        await complete_job(db, "01B", "FAILED", detail={"error": "boom"})
        await record_job(db, "01C", "restore", "job-c", SOURCE, resource_arn="rp-a")

        assert await latest_recovery_point(db, SOURCE) == "rp-a"
        assert await latest_recovery_point(db, "other") is None

        running = await get_job(db, "01C")
        assert running["status"] == "RUNNING"
        assert running["completed_at"] is None
        assert len(await list_jobs(db, limit=2)) == 2
