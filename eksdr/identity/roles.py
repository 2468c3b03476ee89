# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
EKS DR Role Resolver - Find-or-create IAM roles by kind.

Every role the drills need is described once in ROLE_TEMPLATES. The
resolver looks a role up by its exact name and creates it from the
template only when it is missing:

1. get_role: an existing role is returned as-is, nothing is modified
2. create_role with the template's trust policy
3. attach managed policies, put inline policies
4. node roles get an instance profile of the same name containing them
5. pause so IAM propagates, then read the role back before returning

Roles are never deleted here; cleanup owns deletion.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Tuple

import structlog
from botocore.exceptions import ClientError

from eksdr.aws import is_not_found
from eksdr.exceptions import ConfigurationError, IdentityError
from eksdr.identity.policies import (
    KARPENTER_CONTROLLER_ACTIONS,
    POD_IDENTITY_ACTIONS,
    PolicyDocument,
    managed_policy_arn,
    permission_policy,
    trust_policy,
)
from eksdr.poller import Clock, SystemClock

logger = structlog.get_logger()


class RoleKind(str, Enum):
    """Purpose of an IAM role used by the drills."""

    CLUSTER = "cluster"
    NODE = "node"
    BACKUP_SERVICE = "backup_service"
    EBS_DRIVER = "ebs_driver"
    EFS_DRIVER = "efs_driver"
    AUTOSCALER_CONTROLLER = "autoscaler_controller"
    AUTOSCALER_NODE = "autoscaler_node"


@dataclass(frozen=True)
class RoleTemplate:
    """How to create a role of one kind."""

    name_pattern: str  # may contain {cluster}
    trust_policy: PolicyDocument
    managed_policy_arns: Tuple[str, ...] = ()
    inline_policies: Tuple[Tuple[str, PolicyDocument], ...] = ()
    instance_profile: bool = False
    description: str = ""


_NODE_POLICIES = (
    managed_policy_arn("AmazonEKSWorkerNodePolicy"),
    managed_policy_arn("AmazonEKS_CNI_Policy"),
    managed_policy_arn("AmazonEC2ContainerRegistryReadOnly"),
)

ROLE_TEMPLATES: Dict[RoleKind, RoleTemplate] = {
    RoleKind.CLUSTER: RoleTemplate(
        name_pattern="eksClusterRole",
        trust_policy=trust_policy("eks.amazonaws.com"),
        managed_policy_arns=(managed_policy_arn("AmazonEKSClusterPolicy"),),
        description="EKS cluster control plane role",
    ),
    RoleKind.NODE: RoleTemplate(
        name_pattern="eksNodeRole",
        trust_policy=trust_policy("ec2.amazonaws.com"),
        managed_policy_arns=_NODE_POLICIES,
        instance_profile=True,
        description="EKS managed node group role",
    ),
    RoleKind.BACKUP_SERVICE: RoleTemplate(
        name_pattern="AWSBackupDefaultServiceRole",
        trust_policy=trust_policy("backup.amazonaws.com"),
        managed_policy_arns=(
            managed_policy_arn("service-role/AWSBackupServiceRolePolicyForBackup"),
            managed_policy_arn("service-role/AWSBackupServiceRolePolicyForRestores"),
        ),
        description="AWS Backup service role for EKS backups and restores",
    ),
    RoleKind.EBS_DRIVER: RoleTemplate(
        name_pattern="AmazonEKS_EBS_CSI_DriverRole_{cluster}",
        trust_policy=trust_policy("pods.eks.amazonaws.com", POD_IDENTITY_ACTIONS),
        managed_policy_arns=(managed_policy_arn("service-role/AmazonEBSCSIDriverPolicy"),),
        description="EBS CSI driver role (Pod Identity)",
    ),
    RoleKind.EFS_DRIVER: RoleTemplate(
        name_pattern="AmazonEKS_EFS_CSI_DriverRole_{cluster}",
        trust_policy=trust_policy("pods.eks.amazonaws.com", POD_IDENTITY_ACTIONS),
        managed_policy_arns=(managed_policy_arn("service-role/AmazonEFSCSIDriverPolicy"),),
        description="EFS CSI driver role (Pod Identity)",
    ),
    RoleKind.AUTOSCALER_CONTROLLER: RoleTemplate(
        name_pattern="KarpenterControllerRole-{cluster}",
        trust_policy=trust_policy("pods.eks.amazonaws.com", POD_IDENTITY_ACTIONS),
        inline_policies=(
            ("KarpenterControllerPolicy", permission_policy(KARPENTER_CONTROLLER_ACTIONS)),
        ),
        description="Karpenter controller role (Pod Identity)",
    ),
    RoleKind.AUTOSCALER_NODE: RoleTemplate(
        name_pattern="KarpenterNodeRole-{cluster}",
        trust_policy=trust_policy("ec2.amazonaws.com"),
        managed_policy_arns=_NODE_POLICIES
        + (managed_policy_arn("AmazonSSMManagedInstanceCore"),),
        instance_profile=True,
        description="Role for nodes launched by Karpenter",
    ),
}


def default_role_name(kind: RoleKind, cluster_name: str | None = None) -> str:
    """
    Conventional role name for a kind.

    Raises:
        ConfigurationError: If the kind is per-cluster and no cluster is given
    """
    pattern = ROLE_TEMPLATES[kind].name_pattern
    if "{cluster}" in pattern:
        if not cluster_name:
            raise ConfigurationError(
                f"A cluster name is required to name the {kind.value} role"
            )
        return pattern.format(cluster=cluster_name)
    return pattern


def conventional_role_arn(account_id: str, kind: RoleKind, cluster_name: str | None = None) -> str:
    """ARN a role would have under the naming convention, without looking it up."""
    return f"arn:aws:iam::{account_id}:role/{default_role_name(kind, cluster_name)}"


class RoleResolver:
    """Idempotent find-or-create of IAM roles."""

    def __init__(
        self,
        iam: Any,
        *,
        settle_seconds: float = 10,
        clock: Clock | None = None,
        visibility_attempts: int = 5,
        visibility_interval: float = 2,
    ):
        self._iam = iam
        self._settle_seconds = settle_seconds
        self._clock = clock or SystemClock()
        self._visibility_attempts = visibility_attempts
        self._visibility_interval = visibility_interval

    async def ensure(self, name: str, kind: RoleKind) -> str:
        """
        Return the ARN of role `name`, creating it from the kind's template.

        Args:
            name: Exact role name
            kind: Role kind selecting trust and permission policies

        Returns:
            Role ARN

        Raises:
            IdentityError: If creation or a policy attachment fails
        """
        existing = await self._get_role_arn(name)
        if existing:
            logger.info("role_exists", role=name, kind=kind.value)
            return existing

        template = ROLE_TEMPLATES[kind]
        logger.info("role_creating", role=name, kind=kind.value)

        try:
            response = await self._iam.create_role(
                RoleName=name,
                AssumeRolePolicyDocument=template.trust_policy.to_json(),
                Description=template.description,
            )
            arn = response["Role"]["Arn"]

            for policy_arn in template.managed_policy_arns:
                await self._iam.attach_role_policy(RoleName=name, PolicyArn=policy_arn)

            for policy_name, document in template.inline_policies:
                await self._iam.put_role_policy(
                    RoleName=name,
                    PolicyName=policy_name,
                    PolicyDocument=document.to_json(),
                )

            if template.instance_profile:
                await self._ensure_instance_profile(name)

        except ClientError as e:
            raise IdentityError(
                f"Failed to create role {name}: {e}",
                details={"role": name, "kind": kind.value},
            ) from e

        if self._settle_seconds > 0:
            await self._clock.sleep(self._settle_seconds)

        await self._wait_until_visible(name)
        logger.info("role_created", role=name, kind=kind.value, arn=arn)
        return arn

    async def ensure_kind(self, kind: RoleKind, cluster_name: str | None = None) -> str:
        """ensure() using the conventional name for the kind."""
        return await self.ensure(default_role_name(kind, cluster_name), kind)

    async def get_role_arn(self, name: str) -> str | None:
        """ARN of an existing role, or None."""
        return await self._get_role_arn(name)

    async def _get_role_arn(self, name: str) -> str | None:
        try:
            response = await self._iam.get_role(RoleName=name)
        except ClientError as e:
            if is_not_found(e):
                return None
            raise IdentityError(
                f"Failed to look up role {name}: {e}",
                details={"role": name},
            ) from e
        return response["Role"]["Arn"]

    async def _ensure_instance_profile(self, name: str) -> None:
        try:
            response = await self._iam.get_instance_profile(InstanceProfileName=name)
            members = [r["RoleName"] for r in response["InstanceProfile"].get("Roles", [])]
        except ClientError as e:
            if not is_not_found(e):
                raise
            await self._iam.create_instance_profile(InstanceProfileName=name)
            members = []
            logger.info("instance_profile_created", instance_profile=name)

        if name not in members:
            await self._iam.add_role_to_instance_profile(
                InstanceProfileName=name, RoleName=name
            )

    async def _wait_until_visible(self, name: str) -> None:
        for attempt in range(1, self._visibility_attempts + 1):
            if await self._get_role_arn(name):
                return
            logger.debug("role_not_visible_yet", role=name, attempt=attempt)
            await self._clock.sleep(self._visibility_interval)

        raise IdentityError(
            f"Role {name} was created but never became readable",
            details={"role": name, "attempts": self._visibility_attempts},
        )


async def ensure_base_roles(resolver: RoleResolver, cluster_name: str) -> Dict[RoleKind, str]:
    """
    Ensure the roles a freshly restored cluster and its autoscaler need.

    Returns:
        Mapping of role kind to ARN
    """
    arns: Dict[RoleKind, str] = {}
    for kind in (
        RoleKind.CLUSTER,
        RoleKind.NODE,
        RoleKind.AUTOSCALER_CONTROLLER,
        RoleKind.AUTOSCALER_NODE,
    ):
        arns[kind] = await resolver.ensure_kind(kind, cluster_name)
    return arns
