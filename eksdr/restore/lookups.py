# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
AWS-backed collaborators for the restore descriptor builder.
"""

from typing import Any, List

import structlog
from botocore.exceptions import ClientError

from eksdr.aws import collect_pages, is_not_found, resource_name_from_arn
from eksdr.errors import explain_missing_backup_role
from eksdr.exceptions import ConfigurationError
from eksdr.identity.roles import RoleKind, default_role_name
from eksdr.restore.descriptor import NetworkInfo, NodeGroupDetail, RecoverySnapshot
from eksdr.terraform import TerraformOutputs

logger = structlog.get_logger()

BACKUP_ROLE_PREFIX = "AWSBackupServiceRole-"


class BackupSnapshotSource:
    """Recovery points of one AWS Backup vault."""

    def __init__(self, backup: Any, vault_name: str):
        self._backup = backup
        self._vault_name = vault_name

    async def describe_snapshot(self, snapshot_arn: str) -> RecoverySnapshot:
        response = await self._backup.describe_recovery_point(
            BackupVaultName=self._vault_name,
            RecoveryPointArn=snapshot_arn,
        )
        return _snapshot_from_response(response)

    async def list_children(self, parent_arn: str) -> List[RecoverySnapshot]:
        items = await collect_pages(
            self._backup,
            "list_recovery_points_by_backup_vault",
            "RecoveryPoints",
            BackupVaultName=self._vault_name,
            ByParentRecoveryPointArn=parent_arn,
        )
        children = [_snapshot_from_response(item) for item in items]
        logger.info("child_recovery_points_found", parent_arn=parent_arn, count=len(children))
        return children


def _snapshot_from_response(item: dict) -> RecoverySnapshot:
    return RecoverySnapshot(
        arn=item["RecoveryPointArn"],
        resource_type=item.get("ResourceType"),
        resource_arn=item.get("ResourceArn"),
        parent_arn=item.get("ParentRecoveryPointArn"),
        status=item.get("Status"),
    )


class EksClusterLookup:
    """Node groups of a (source) EKS cluster."""

    def __init__(self, eks: Any):
        self._eks = eks

    async def list_node_groups(self, cluster_name: str) -> List[str]:
        return await collect_pages(
            self._eks, "list_nodegroups", "nodegroups", clusterName=cluster_name
        )

    async def describe_node_group(self, cluster_name: str, node_group: str) -> NodeGroupDetail:
        response = await self._eks.describe_nodegroup(
            clusterName=cluster_name, nodegroupName=node_group
        )
        nodegroup = response["nodegroup"]
        return NodeGroupDetail(
            name=node_group,
            subnet_ids=tuple(nodegroup.get("subnets", [])),
            instance_types=tuple(nodegroup.get("instanceTypes", [])),
            node_role_arn=nodegroup.get("nodeRole"),
        )


class TerraformNetworkLookup:
    """
    VPC and subnets from terraform outputs.

    Falls back to the region's default VPC when terraform has no VPC or
    fewer than two subnets.
    """

    def __init__(self, outputs: TerraformOutputs, ec2: Any):
        self._outputs = outputs
        self._ec2 = ec2

    async def resolve_network(self) -> NetworkInfo:
        vpc_id = await self._outputs.get("vpc_id")
        private = tuple(await self._outputs.get("private_subnet_ids", []))
        public = tuple(await self._outputs.get("public_subnet_ids", []))

        if vpc_id and len(set(private + public)) >= 2:
            logger.info("network_from_terraform", vpc_id=vpc_id)
            return NetworkInfo(vpc_id=vpc_id, private_subnet_ids=private, public_subnet_ids=public)

        logger.info("network_from_default_vpc")
        return await self._default_vpc()

    async def _default_vpc(self) -> NetworkInfo:
        response = await self._ec2.describe_vpcs(
            Filters=[{"Name": "is-default", "Values": ["true"]}]
        )
        vpcs = response.get("Vpcs", [])
        if not vpcs:
            return NetworkInfo(vpc_id=None)

        vpc_id = vpcs[0]["VpcId"]
        response = await self._ec2.describe_subnets(
            Filters=[{"Name": "vpc-id", "Values": [vpc_id]}]
        )
        subnet_ids = tuple(s["SubnetId"] for s in response.get("Subnets", []))
        return NetworkInfo(vpc_id=vpc_id, private_subnet_ids=subnet_ids)


class TerraformIdentityLookup:
    """Cluster and node role ARNs from terraform outputs."""

    def __init__(self, outputs: TerraformOutputs):
        self._outputs = outputs

    async def cluster_role_arn(self) -> str | None:
        return await self._outputs.get("cluster_role_arn")

    async def node_role_arn(self) -> str | None:
        return await self._outputs.get("node_role_arn")


class Ec2ZoneLookup:
    """Availability zones of the client's region in state 'available'."""

    def __init__(self, ec2: Any):
        self._ec2 = ec2

    async def available_zones(self) -> List[str]:
        response = await self._ec2.describe_availability_zones(
            Filters=[{"Name": "state", "Values": ["available"]}]
        )
        return [zone["ZoneName"] for zone in response.get("AvailabilityZones", [])]


async def resolve_restore_role(iam: Any, outputs: TerraformOutputs) -> str:
    """
    Find the role AWS Backup assumes for the restore job.

    Order: terraform's aws_backup_role_arn (if the role exists), the first
    role named AWSBackupServiceRole-*, then AWSBackupDefaultServiceRole.

    Raises:
        ConfigurationError: If none of them exists
    """
    terraform_arn = await outputs.get("aws_backup_role_arn")
    if terraform_arn:
        arn = await _existing_role_arn(iam, resource_name_from_arn(terraform_arn))
        if arn:
            logger.info("restore_role_from_terraform", role_arn=arn)
            return arn

    roles = await collect_pages(iam, "list_roles", "Roles")
    for role in roles:
        if role["RoleName"].startswith(BACKUP_ROLE_PREFIX):
            logger.info("restore_role_discovered", role_arn=role["Arn"])
            return role["Arn"]

    arn = await _existing_role_arn(iam, default_role_name(RoleKind.BACKUP_SERVICE))
    if arn:
        logger.info("restore_role_default", role_arn=arn)
        return arn

    raise ConfigurationError(explain_missing_backup_role())


async def _existing_role_arn(iam: Any, role_name: str) -> str | None:
    try:
        response = await iam.get_role(RoleName=role_name)
    except ClientError as e:
        if is_not_found(e):
            return None
        raise
    return response["Role"]["Arn"]
