# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Role Resolver Tests.

These tests verify the find-or-create guarantees:
1. An existing role is returned untouched
2. A missing role is created once, from its template
3. Node roles get an instance profile of the same name
4. Creation failures surface as IdentityError
"""

import json

import pytest

from eksdr.exceptions import ConfigurationError, IdentityError
from eksdr.identity import (
    ROLE_TEMPLATES,
    RoleKind,
    RoleResolver,
    conventional_role_arn,
    default_role_name,
    ensure_base_roles,
    ensure_pod_identity_association,
    delete_pod_identity_association,
)
from eksdr.identity.policies import managed_policy_arn, trust_policy


@pytest.mark.asyncio
async def test_ensure_creates_cluster_role_with_eks_trust(iam, fake_clock):
    resolver = RoleResolver(iam, settle_seconds=10, clock=fake_clock)

    arn = await resolver.ensure("eksClusterRole", RoleKind.CLUSTER)

    assert arn == "arn:aws:iam::123456789012:role/eksClusterRole"
    role = iam.roles["eksClusterRole"]
    assert role["trust"]["Statement"][0]["Principal"] == {"Service": "eks.amazonaws.com"}
    assert role["trust"]["Statement"][0]["Action"] == "sts:AssumeRole"
    assert role["attached"] == ["arn:aws:iam::aws:policy/AmazonEKSClusterPolicy"]
    assert role["inline"] == {}
    assert fake_clock.sleeps == [10], "Settle pause after creation"


@pytest.mark.asyncio
async def test_ensure_twice_creates_once(iam, fake_clock):
    resolver = RoleResolver(iam, settle_seconds=0, clock=fake_clock)

    first = await resolver.ensure("eksClusterRole", RoleKind.CLUSTER)
    second = await resolver.ensure("eksClusterRole", RoleKind.CLUSTER)

    assert first == second
    assert len(iam.called("create_role")) == 1
    assert len(iam.called("attach_role_policy")) == 1


@pytest.mark.asyncio
async def test_existing_role_is_not_modified(iam, fake_clock):
    arn = iam.add_role("eksNodeRole", policies=["arn:aws:iam::aws:policy/Custom"])
    resolver = RoleResolver(iam, clock=fake_clock)

    assert await resolver.ensure("eksNodeRole", RoleKind.NODE) == arn

    assert iam.called("create_role") == []
    assert iam.called("attach_role_policy") == []
    assert iam.roles["eksNodeRole"]["attached"] == ["arn:aws:iam::aws:policy/Custom"]
    assert fake_clock.sleeps == []


@pytest.mark.asyncio
async def test_node_role_gets_instance_profile(iam, fake_clock):
    resolver = RoleResolver(iam, settle_seconds=0, clock=fake_clock)

    await resolver.ensure_kind(RoleKind.AUTOSCALER_NODE, "demo")

    name = "KarpenterNodeRole-demo"
    assert iam.instance_profiles == {name: [name]}
    assert managed_policy_arn("AmazonSSMManagedInstanceCore") in iam.roles[name]["attached"]


@pytest.mark.asyncio
async def test_existing_instance_profile_is_reused(iam, fake_clock):
    iam.instance_profiles["eksNodeRole"] = ["eksNodeRole"]
    resolver = RoleResolver(iam, settle_seconds=0, clock=fake_clock)

    await resolver.ensure("eksNodeRole", RoleKind.NODE)

    assert iam.called("create_instance_profile") == []
    assert iam.called("add_role_to_instance_profile") == []


@pytest.mark.asyncio
async def test_controller_role_has_inline_policy_and_pod_trust(iam, fake_clock):
    resolver = RoleResolver(iam, settle_seconds=0, clock=fake_clock)

    await resolver.ensure_kind(RoleKind.AUTOSCALER_CONTROLLER, "demo")

    role = iam.roles["KarpenterControllerRole-demo"]
    assert role["attached"] == []
    policy = json.loads(role["inline"]["KarpenterControllerPolicy"])
    assert "ec2:CreateFleet" in policy["Statement"][0]["Action"]
    assert policy["Statement"][0]["Resource"] == "*"
    trust = role["trust"]["Statement"][0]
    assert trust["Principal"] == {"Service": "pods.eks.amazonaws.com"}
    assert trust["Action"] == ["sts:AssumeRole", "sts:TagSession"]


@pytest.mark.asyncio
async def test_role_visibility_is_retried(iam, fake_clock):
    resolver = RoleResolver(
        iam, settle_seconds=0, clock=fake_clock, visibility_attempts=3, visibility_interval=2
    )
    iam.hidden_reads["eksClusterRole"] = 1

    # first read after creation misses, the retry sees the role
    arn = await resolver.ensure("eksClusterRole", RoleKind.CLUSTER)

    assert arn.endswith("role/eksClusterRole")
    assert fake_clock.sleeps == [2]


@pytest.mark.asyncio
async def test_role_never_visible_raises(iam, fake_clock):
    resolver = RoleResolver(
        iam, settle_seconds=0, clock=fake_clock, visibility_attempts=2, visibility_interval=1
    )
    iam.hidden_reads["eksClusterRole"] = 10

    with pytest.raises(IdentityError):
        await resolver.ensure("eksClusterRole", RoleKind.CLUSTER)


@pytest.mark.asyncio
async def test_create_failure_raises_identity_error(iam, fake_clock):
    iam.fail("attach_role_policy")
    resolver = RoleResolver(iam, settle_seconds=0, clock=fake_clock)

    with pytest.raises(IdentityError) as excinfo:
        await resolver.ensure("eksClusterRole", RoleKind.CLUSTER)

    assert excinfo.value.details["kind"] == "cluster"


@pytest.mark.asyncio
async def test_lookup_failure_raises_identity_error(iam, fake_clock):
    iam.fail("get_role", code="AccessDenied")
    resolver = RoleResolver(iam, clock=fake_clock)

    with pytest.raises(IdentityError):
        await resolver.get_role_arn("eksClusterRole")


@pytest.mark.asyncio
async def test_ensure_base_roles(iam, fake_clock):
    resolver = RoleResolver(iam, settle_seconds=0, clock=fake_clock)

    arns = await ensure_base_roles(resolver, "demo")

    assert set(arns) == {
        RoleKind.CLUSTER,
        RoleKind.NODE,
        RoleKind.AUTOSCALER_CONTROLLER,
        RoleKind.AUTOSCALER_NODE,
    }
    assert set(iam.roles) == {
        "eksClusterRole",
        "eksNodeRole",
        "KarpenterControllerRole-demo",
        "KarpenterNodeRole-demo",
    }


# ============================================================================
# Naming and policy documents
# ============================================================================

def test_default_role_names():
    assert default_role_name(RoleKind.BACKUP_SERVICE) == "AWSBackupDefaultServiceRole"
    assert default_role_name(RoleKind.EBS_DRIVER, "demo") == "AmazonEKS_EBS_CSI_DriverRole_demo"
    assert default_role_name(RoleKind.EFS_DRIVER, "demo") == "AmazonEKS_EFS_CSI_DriverRole_demo"
    assert (
        conventional_role_arn("111122223333", RoleKind.NODE)
        == "arn:aws:iam::111122223333:role/eksNodeRole"
    )


def test_per_cluster_role_requires_cluster_name():
    with pytest.raises(ConfigurationError):
        default_role_name(RoleKind.AUTOSCALER_CONTROLLER)


def test_csi_roles_use_service_role_policies():
    ebs = ROLE_TEMPLATES[RoleKind.EBS_DRIVER]
    assert ebs.managed_policy_arns == (
        "arn:aws:iam::aws:policy/service-role/AmazonEBSCSIDriverPolicy",
    )
    assert not ebs.instance_profile


def test_trust_policy_document():
    document = trust_policy("backup.amazonaws.com").to_dict()

    assert document == {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Principal": {"Service": "backup.amazonaws.com"},
                "Action": "sts:AssumeRole",
            }
        ],
    }


# ============================================================================
# Pod Identity
# ============================================================================

@pytest.mark.asyncio
async def test_pod_identity_association_is_idempotent(eks):
    first = await ensure_pod_identity_association(
        eks, "demo", "karpenter", "karpenter", "arn:aws:iam::123456789012:role/r"
    )
    second = await ensure_pod_identity_association(
        eks, "demo", "karpenter", "karpenter", "arn:aws:iam::123456789012:role/r"
    )

    assert first == second
    assert len(eks.called("create_pod_identity_association")) == 1


@pytest.mark.asyncio
async def test_delete_pod_identity_association(eks):
    await ensure_pod_identity_association(eks, "demo", "kube-system", "ebs-csi-controller-sa", "arn:r")

    assert await delete_pod_identity_association(
        eks, "demo", "kube-system", "ebs-csi-controller-sa", dry_run=True
    )
    assert eks.associations, "Dry run keeps the association"

    assert await delete_pod_identity_association(eks, "demo", "kube-system", "ebs-csi-controller-sa")
    assert eks.associations == {}
    assert not await delete_pod_identity_association(eks, "demo", "kube-system", "ebs-csi-controller-sa")
