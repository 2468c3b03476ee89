# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
EKS DR Cleanup - Tear down everything a drill created.

Order matters: Karpenter resources first (they keep nodes alive), then the
CSI driver identities, then the clusters, then the terraform stack.
Recovery points are only listed, never deleted.

In dry-run mode only read calls are made and every deletion is logged as
`would_delete`. A failed deletion is logged as a warning and cleanup moves
on to the next resource.
"""

from dataclasses import dataclass, field
from typing import Any, List, Sequence

import structlog
from botocore.exceptions import ClientError

from eksdr.aws import cluster_exists, collect_pages, is_not_found, stack_failure, stack_status
from eksdr.cluster.addons import CSI_ADDONS, KUBE_SYSTEM
from eksdr.cluster.karpenter import NAMESPACE as KARPENTER_NAMESPACE
from eksdr.cluster.karpenter import SERVICE_ACCOUNT as KARPENTER_SERVICE_ACCOUNT
from eksdr.config import DRConfig, JobKind
from eksdr.core import DRState, create_client
from eksdr.exceptions import EKSDRError
from eksdr.identity.pod_identity import delete_pod_identity_association
from eksdr.identity.roles import RoleKind, default_role_name
from eksdr.poller import Clock, poll_with_profile
from eksdr import terraform

logger = structlog.get_logger()

LAUNCH_TEMPLATE_TAG = "karpenter.k8s.aws/cluster"


@dataclass
class CleanupReport:
    """What cleanup deleted (or would delete) and what it could not."""

    clusters: List[str]
    dry_run: bool
    deleted: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    recovery_points: List[str] = field(default_factory=list)

    def note_deleted(self, resource: str) -> None:
        self.deleted.append(resource)
        if self.dry_run:
            logger.info("would_delete", resource=resource)
        else:
            logger.info("resource_deleted", resource=resource)

    def note_failure(self, resource: str, error: Exception | str) -> None:
        self.warnings.append(f"{resource}: {error}")
        logger.warning("cleanup_step_failed", resource=resource, error=str(error))


def karpenter_stack_name(cluster_name: str) -> str:
    return f"Karpenter-{cluster_name}"


async def cleanup_clusters(
    config: DRConfig,
    state: DRState,
    cluster_names: Sequence[str],
    *,
    dry_run: bool = False,
) -> CleanupReport:
    """
    Delete drill resources for one or more clusters.

    Args:
        config: DR configuration
        state: Runtime state
        cluster_names: Source and restored clusters to remove
        dry_run: Only report what would be deleted

    Returns:
        CleanupReport with deleted resources, warnings and the recovery
        points that were left in place
    """
    report = CleanupReport(clusters=list(cluster_names), dry_run=dry_run)
    logger.info("cleanup_started", clusters=report.clusters, dry_run=dry_run)

    async with (
        create_client(config, state, "eks") as eks,
        create_client(config, state, "iam") as iam,
        create_client(config, state, "ec2") as ec2,
        create_client(config, state, "cloudformation") as cloudformation,
    ):
        # Step 1: Karpenter
        for cluster_name in cluster_names:
            await delete_launch_templates(ec2, cluster_name, report)
            await _delete_association(
                eks, cluster_name, KARPENTER_NAMESPACE, KARPENTER_SERVICE_ACCOUNT, report
            )
            await delete_role(
                iam, default_role_name(RoleKind.AUTOSCALER_CONTROLLER, cluster_name), report
            )
            await delete_stack(
                cloudformation,
                karpenter_stack_name(cluster_name),
                report,
                timeout=config.stack_timeout,
                clock=state["clock"],
            )

        # Step 2: CSI drivers
        for cluster_name in cluster_names:
            for addon in CSI_ADDONS:
                await _delete_association(
                    eks, cluster_name, KUBE_SYSTEM, addon.service_account, report
                )
            for addon in CSI_ADDONS:
                await delete_role(iam, default_role_name(addon.role_kind, cluster_name), report)

        # Step 3: clusters
        for cluster_name in cluster_names:
            await delete_cluster(config, state, eks, cluster_name, report)

    # Step 4: terraform stack
    await _destroy_terraform(config, state, report)

    # Step 5: recovery points stay
    async with create_client(config, state, "backup") as backup:
        report.recovery_points = await list_vault_recovery_points(config, state, backup)

    logger.info(
        "cleanup_completed",
        dry_run=dry_run,
        deleted=len(report.deleted),
        warnings=len(report.warnings),
        recovery_points_kept=len(report.recovery_points),
    )
    return report


async def delete_launch_templates(ec2: Any, cluster_name: str, report: CleanupReport) -> None:
    """Delete launch templates Karpenter created for a cluster."""
    try:
        templates = await collect_pages(
            ec2,
            "describe_launch_templates",
            "LaunchTemplates",
            Filters=[{"Name": f"tag:{LAUNCH_TEMPLATE_TAG}", "Values": [cluster_name]}],
        )
    except ClientError as e:
        report.note_failure(f"launch templates of {cluster_name}", e)
        return

    for template in templates:
        name = template["LaunchTemplateName"]
        resource = f"launch template {name}"
        if report.dry_run:
            report.note_deleted(resource)
            continue
        try:
            await ec2.delete_launch_template(LaunchTemplateName=name)
            report.note_deleted(resource)
        except ClientError as e:
            report.note_failure(resource, e)


async def _delete_association(
    eks: Any,
    cluster_name: str,
    namespace: str,
    service_account: str,
    report: CleanupReport,
) -> None:
    resource = f"pod identity association {cluster_name}/{namespace}/{service_account}"
    try:
        if not await cluster_exists(eks, cluster_name):
            logger.debug("cluster_missing_skip_association", cluster=cluster_name)
            return
        if await delete_pod_identity_association(
            eks, cluster_name, namespace, service_account, dry_run=report.dry_run
        ):
            report.note_deleted(resource)
    except ClientError as e:
        report.note_failure(resource, e)


async def delete_role(iam: Any, role_name: str, report: CleanupReport) -> None:
    """
    Delete an IAM role and everything attached to it.

    Managed policies are detached, inline policies deleted and the role is
    removed from its instance profiles before delete_role.
    """
    resource = f"role {role_name}"
    try:
        await iam.get_role(RoleName=role_name)
    except ClientError as e:
        if is_not_found(e):
            logger.debug("role_missing", role=role_name)
        else:
            report.note_failure(resource, e)
        return

    if report.dry_run:
        report.note_deleted(resource)
        return

    try:
        attached = await collect_pages(
            iam, "list_attached_role_policies", "AttachedPolicies", RoleName=role_name
        )
        for policy in attached:
            await iam.detach_role_policy(RoleName=role_name, PolicyArn=policy["PolicyArn"])

        inline = await collect_pages(iam, "list_role_policies", "PolicyNames", RoleName=role_name)
        for policy_name in inline:
            await iam.delete_role_policy(RoleName=role_name, PolicyName=policy_name)

        profiles = await collect_pages(
            iam, "list_instance_profiles_for_role", "InstanceProfiles", RoleName=role_name
        )
        for profile in profiles:
            await iam.remove_role_from_instance_profile(
                InstanceProfileName=profile["InstanceProfileName"], RoleName=role_name
            )

        await iam.delete_role(RoleName=role_name)
        report.note_deleted(resource)
    except ClientError as e:
        report.note_failure(resource, e)


async def delete_stack(
    cloudformation: Any,
    stack_name: str,
    report: CleanupReport,
    *,
    timeout: float | None = None,
    clock: Clock | None = None,
) -> None:
    """Delete a CloudFormation stack and wait for DELETE_COMPLETE."""
    resource = f"stack {stack_name}"
    if await stack_status(cloudformation, stack_name)() == "DELETE_COMPLETE":
        logger.debug("stack_missing", stack=stack_name)
        return

    if report.dry_run:
        report.note_deleted(resource)
        return

    try:
        await cloudformation.delete_stack(StackName=stack_name)
    except ClientError as e:
        report.note_failure(resource, e)
        return

    result = await poll_with_profile(
        stack_name,
        JobKind.STACK_OPERATION,
        stack_status(cloudformation, stack_name),
        failure_detail=stack_failure(cloudformation, stack_name),
        timeout=timeout,
        clock=clock,
    )
    if result.succeeded:
        report.note_deleted(resource)
    else:
        report.note_failure(resource, result.detail or result.status)


async def delete_cluster(
    config: DRConfig,
    state: DRState,
    eks: Any,
    cluster_name: str,
    report: CleanupReport,
) -> None:
    """Delete a cluster with eksctl (node groups, OIDC provider, add-on roles)."""
    resource = f"cluster {cluster_name}"
    try:
        exists = await cluster_exists(eks, cluster_name)
    except ClientError as e:
        report.note_failure(resource, e)
        return
    if not exists:
        logger.info("cluster_missing", cluster=cluster_name)
        return

    if report.dry_run:
        report.note_deleted(resource)
        return

    try:
        result = await state["runner"].run(
            "eksctl",
            "delete",
            "cluster",
            "--name",
            cluster_name,
            "--region",
            config.region,
            "--wait",
        )
    except EKSDRError as e:
        report.note_failure(resource, e)
        return

    if result.ok:
        report.note_deleted(resource)
    else:
        report.note_failure(resource, result.stderr.strip() or f"exit code {result.returncode}")


async def _destroy_terraform(config: DRConfig, state: DRState, report: CleanupReport) -> None:
    resource = f"terraform stack {config.terraform_dir}"
    try:
        result = await terraform.destroy(
            state["runner"], config.terraform_dir, dry_run=report.dry_run
        )
    except EKSDRError as e:
        report.note_failure(resource, e)
        return

    if result is None:
        return
    if report.dry_run and not result.ok:
        report.note_failure(resource, "terraform plan -destroy failed")
        return
    report.note_deleted(resource)


async def list_vault_recovery_points(config: DRConfig, state: DRState, backup: Any) -> List[str]:
    """
    ARNs of every recovery point in the backup vault.

    The vault name comes from the terraform output `backup_vault_name`
    when present, otherwise from the configuration.
    """
    vault = await state["outputs"].get("backup_vault_name", config.backup_vault)
    try:
        points = await collect_pages(
            backup,
            "list_recovery_points_by_backup_vault",
            "RecoveryPoints",
            BackupVaultName=vault,
        )
    except ClientError as e:
        logger.warning("recovery_points_unavailable", vault=vault, error=str(e))
        return []

    arns = [point["RecoveryPointArn"] for point in points]
    for arn in arns:
        logger.warning("recovery_point_kept", vault=vault, recovery_point_arn=arn)
    return arns
