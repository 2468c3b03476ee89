# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
EKS DR Restore Descriptor - Declarative input for an EKS restore job.

An EKS recovery point restores the cluster definition and, through the
same job, every child recovery point (EBS volumes, EFS file systems, ...)
taken alongside it. The descriptor collects everything the restore job
needs to know up front:

1. Node groups of the source cluster, with the target node role
2. One override per child recovery point, chosen by its resource type
3. Network placement (VPC and at least two subnets)
4. Cluster and node role ARNs

Data comes from small collaborator protocols so the builder can be
exercised without AWS. The result is deterministic for identical inputs
and keeps every collection in the order collaborators returned it.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Protocol, Sequence, Tuple, Union

import structlog

from eksdr.aws import resource_name_from_arn
from eksdr.errors import explain_insufficient_subnets, explain_missing_vpc
from eksdr.exceptions import ConfigurationError, RestoreError
from eksdr.identity.roles import RoleKind, conventional_role_arn

logger = structlog.get_logger()

MIN_SUBNETS = 2


# ============================================================================
# Snapshot and override types
# ============================================================================

class ChildSnapshotKind(str, Enum):
    """Resource type of a child recovery point, as reported by AWS Backup."""

    VOLUME = "EBS"
    SHARED_FILESYSTEM = "EFS"
    OTHER = "OTHER"

    @classmethod
    def classify(cls, resource_type: str | None) -> "ChildSnapshotKind":
        """Map a provider resource type onto a kind; unknown types are OTHER."""
        for kind in (cls.VOLUME, cls.SHARED_FILESYSTEM):
            if resource_type == kind.value:
                return kind
        return cls.OTHER


@dataclass(frozen=True)
class RecoverySnapshot:
    """A recovery point in a backup vault."""

    arn: str
    resource_type: str | None = None
    resource_arn: str | None = None
    parent_arn: str | None = None
    status: str | None = None


@dataclass(frozen=True)
class VolumeOverride:
    """Restore a block volume into a specific availability zone."""

    availability_zone: str

    def to_metadata(self) -> Dict[str, str]:
        return {"availabilityZone": self.availability_zone}


@dataclass(frozen=True)
class FileSystemOverride:
    """Restore a shared file system as a new file system."""

    new_file_system: bool = True
    performance_mode: str = "generalPurpose"

    def to_metadata(self) -> Dict[str, str]:
        return {
            "newFileSystem": "true" if self.new_file_system else "false",
            "PerformanceMode": self.performance_mode,
        }


@dataclass(frozen=True)
class EmptyOverride:
    """Restore with the provider's defaults."""

    def to_metadata(self) -> Dict[str, str]:
        return {}


ChildOverride = Union[VolumeOverride, FileSystemOverride, EmptyOverride]


# ============================================================================
# Cluster shape types
# ============================================================================

@dataclass(frozen=True)
class NodeGroupDetail:
    """Configuration of a node group on the source cluster."""

    name: str
    subnet_ids: Tuple[str, ...]
    instance_types: Tuple[str, ...]
    node_role_arn: str | None = None


@dataclass(frozen=True)
class NodeGroupSpec:
    """A node group to recreate on the restored cluster."""

    node_group_id: str
    subnet_ids: Tuple[str, ...]
    instance_types: Tuple[str, ...]
    node_role_arn: str

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "nodeGroupId": self.node_group_id,
            "subnetIds": list(self.subnet_ids),
            "instanceTypes": list(self.instance_types),
            "nodeRole": self.node_role_arn,
        }


@dataclass(frozen=True)
class NetworkInfo:
    """Raw network data from a network lookup."""

    vpc_id: str | None
    private_subnet_ids: Tuple[str, ...] = ()
    public_subnet_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class NetworkPlacement:
    """Validated VPC and subnets for the restored control plane."""

    vpc_id: str
    subnet_ids: Tuple[str, ...]

    def to_metadata(self) -> Dict[str, Any]:
        return {"vpcId": self.vpc_id, "subnetIds": list(self.subnet_ids)}


@dataclass(frozen=True)
class RestoreDescriptor:
    """Everything the EKS restore job needs, in typed form."""

    cluster_name: str
    cluster_version: str
    network: NetworkPlacement
    cluster_role_arn: str
    node_groups: Tuple[NodeGroupSpec, ...]
    child_overrides: Dict[str, ChildOverride]
    new_cluster: bool = True

    def to_metadata(self) -> Dict[str, str]:
        """
        Render the restore job's Metadata map.

        AWS Backup takes a flat string map, so nested structures are
        embedded as compact JSON strings (the nested restore jobs map holds
        JSON strings itself).
        """
        nested = {
            arn: _compact_json(override.to_metadata())
            for arn, override in self.child_overrides.items()
        }
        return {
            "clusterName": self.cluster_name,
            "newCluster": "true" if self.new_cluster else "false",
            "eksClusterVersion": self.cluster_version,
            "clusterRole": self.cluster_role_arn,
            "clusterVpcConfig": _compact_json(self.network.to_metadata()),
            "nodeGroups": _compact_json([ng.to_metadata() for ng in self.node_groups]),
            "nestedRestoreJobs": _compact_json(nested),
        }


@dataclass
class DescriptorBuild:
    """A built descriptor plus what was dropped along the way."""

    descriptor: RestoreDescriptor
    source_cluster_name: str
    skipped_node_groups: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def _compact_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"))


# ============================================================================
# Collaborators
# ============================================================================

class SnapshotSource(Protocol):
    async def describe_snapshot(self, snapshot_arn: str) -> RecoverySnapshot: ...

    async def list_children(self, parent_arn: str) -> List[RecoverySnapshot]: ...


class SourceClusterLookup(Protocol):
    async def list_node_groups(self, cluster_name: str) -> List[str]: ...

    async def describe_node_group(self, cluster_name: str, node_group: str) -> NodeGroupDetail: ...


class NetworkLookup(Protocol):
    async def resolve_network(self) -> NetworkInfo: ...


class IdentityLookup(Protocol):
    async def cluster_role_arn(self) -> str | None: ...

    async def node_role_arn(self) -> str | None: ...


class ZoneLookup(Protocol):
    async def available_zones(self) -> List[str]: ...


# ============================================================================
# Child override dispatch
# ============================================================================

class _FirstZone:
    """Fetches the zone list at most once, and only if a volume needs it."""

    def __init__(self, zones: ZoneLookup):
        self._zones = zones
        self._zone: str | None = None

    async def get(self) -> str:
        if self._zone is None:
            available = await self._zones.available_zones()
            if not available:
                raise ConfigurationError("No available availability zone in the target region")
            self._zone = available[0]
        return self._zone


async def _volume_override(first_zone: _FirstZone) -> ChildOverride:
    return VolumeOverride(availability_zone=await first_zone.get())


async def _filesystem_override(first_zone: _FirstZone) -> ChildOverride:
    return FileSystemOverride(new_file_system=True)


async def _empty_override(first_zone: _FirstZone) -> ChildOverride:
    return EmptyOverride()


CHILD_OVERRIDE_FACTORIES: Dict[ChildSnapshotKind, Callable[[_FirstZone], Awaitable[ChildOverride]]] = {
    ChildSnapshotKind.VOLUME: _volume_override,
    ChildSnapshotKind.SHARED_FILESYSTEM: _filesystem_override,
    ChildSnapshotKind.OTHER: _empty_override,
}


# ============================================================================
# Builder
# ============================================================================

async def build_restore_descriptor(
    snapshot_arn: str,
    target_name: str,
    target_version: str,
    *,
    snapshots: SnapshotSource,
    source: SourceClusterLookup,
    network: NetworkLookup,
    identity: IdentityLookup,
    zones: ZoneLookup,
    account_id: str,
    new_cluster: bool = True,
    strict_node_groups: bool = False,
) -> DescriptorBuild:
    """
    Build the restore descriptor for an EKS recovery point.

    Args:
        snapshot_arn: Parent (EKS) recovery point ARN
        target_name: Name of the cluster to restore into
        target_version: Kubernetes version for the restored cluster
        snapshots: Recovery point lookups
        source: Source cluster node group lookups
        network: VPC and subnet lookup
        identity: Cluster and node role lookup
        zones: Availability zone lookup
        account_id: Account used for conventional role ARNs
        new_cluster: Restore into a new cluster (False: an existing one)
        strict_node_groups: Abort instead of skipping unreadable node groups

    Returns:
        DescriptorBuild with the descriptor and any skipped node groups

    Raises:
        ConfigurationError: Missing VPC or fewer than two subnets
        RestoreError: Unusable recovery point, or a node group is
            unreadable while strict_node_groups is set
    """
    build_warnings: List[str] = []

    # Step 1: source cluster and its node groups
    snapshot = await snapshots.describe_snapshot(snapshot_arn)
    if not snapshot.resource_arn:
        raise RestoreError(
            "Recovery point does not reference a source resource",
            details={"recovery_point_arn": snapshot_arn},
        )
    source_cluster = resource_name_from_arn(snapshot.resource_arn)
    logger.info("restore_source_resolved", source_cluster=source_cluster)

    try:
        node_group_names = await source.list_node_groups(source_cluster)
    except Exception as e:
        if strict_node_groups:
            raise RestoreError(
                f"Cannot list node groups of source cluster {source_cluster}: {e}",
                details={"source_cluster": source_cluster},
            ) from e
        message = f"Node groups of {source_cluster} could not be listed: {e}"
        logger.warning("node_groups_unavailable", source_cluster=source_cluster, error=str(e))
        build_warnings.append(message)
        node_group_names = []

    # Step 2: roles, which every node group spec carries
    cluster_role_arn = await identity.cluster_role_arn()
    if not cluster_role_arn:
        cluster_role_arn = conventional_role_arn(account_id, RoleKind.CLUSTER)
        logger.info("cluster_role_defaulted", role_arn=cluster_role_arn)

    node_role_arn = await identity.node_role_arn()
    if not node_role_arn:
        node_role_arn = conventional_role_arn(account_id, RoleKind.NODE)
        logger.info("node_role_defaulted", role_arn=node_role_arn)

    # Step 3: node group specs
    node_groups: List[NodeGroupSpec] = []
    skipped: List[str] = []
    for name in node_group_names:
        try:
            detail = await source.describe_node_group(source_cluster, name)
        except Exception as e:
            if strict_node_groups:
                raise RestoreError(
                    f"Node group {name} of {source_cluster} could not be described: {e}",
                    details={"source_cluster": source_cluster, "node_group": name},
                ) from e
            logger.warning(
                "node_group_skipped",
                source_cluster=source_cluster,
                node_group=name,
                error=str(e),
            )
            skipped.append(name)
            build_warnings.append(f"Node group {name} skipped: {e}")
            continue

        node_groups.append(
            NodeGroupSpec(
                node_group_id=name,
                subnet_ids=tuple(detail.subnet_ids),
                instance_types=tuple(detail.instance_types),
                node_role_arn=node_role_arn,
            )
        )

    # Step 4: one override per child recovery point
    children = await snapshots.list_children(snapshot_arn)
    first_zone = _FirstZone(zones)
    overrides: Dict[str, ChildOverride] = {}
    for child in children:
        kind = ChildSnapshotKind.classify(child.resource_type)
        overrides[child.arn] = await CHILD_OVERRIDE_FACTORIES[kind](first_zone)
        logger.debug("child_override_built", child_arn=child.arn, kind=kind.value)

    # Step 5: network
    placement = resolve_network_placement(await network.resolve_network())

    descriptor = RestoreDescriptor(
        cluster_name=target_name,
        cluster_version=target_version,
        network=placement,
        cluster_role_arn=cluster_role_arn,
        node_groups=tuple(node_groups),
        child_overrides=overrides,
        new_cluster=new_cluster,
    )

    logger.info(
        "restore_descriptor_built",
        cluster=target_name,
        version=target_version,
        vpc_id=placement.vpc_id,
        subnets=len(placement.subnet_ids),
        node_groups=len(node_groups),
        skipped_node_groups=len(skipped),
        children=len(overrides),
    )

    return DescriptorBuild(
        descriptor=descriptor,
        source_cluster_name=source_cluster,
        skipped_node_groups=skipped,
        warnings=build_warnings,
    )


def resolve_network_placement(info: NetworkInfo) -> NetworkPlacement:
    """
    Validate network data: a VPC and at least two distinct subnets.

    Subnets are the private ones followed by the public ones, with
    duplicates removed and first-seen order kept.
    """
    if not info.vpc_id:
        raise ConfigurationError(explain_missing_vpc())

    subnet_ids = _unique(list(info.private_subnet_ids) + list(info.public_subnet_ids))
    if len(subnet_ids) < MIN_SUBNETS:
        raise ConfigurationError(
            explain_insufficient_subnets(subnet_ids),
            details={"vpc_id": info.vpc_id, "subnet_ids": list(subnet_ids)},
        )

    return NetworkPlacement(vpc_id=info.vpc_id, subnet_ids=subnet_ids)


def _unique(values: Sequence[str]) -> Tuple[str, ...]:
    return tuple(dict.fromkeys(v for v in values if v))
