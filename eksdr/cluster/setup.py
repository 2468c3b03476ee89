# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
EKS DR Setup - Create the source cluster a drill backs up.

The cluster is described by a typed ClusterConfigSpec, rendered to an
eksctl ClusterConfig with PyYAML and created with `eksctl create cluster
-f`. When the terraform stack is present its VPC, subnets and roles are
used; otherwise eksctl creates its own.

AWS Backup requires the API_AND_CONFIG_MAP authentication mode, so it is
always set.
"""

import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import structlog
import yaml

from eksdr.aws import cluster_exists, cluster_status
from eksdr.cluster.addons import AddonReport, enable_csi_addons
from eksdr.config import DRConfig, JobKind
from eksdr.core import DRState, create_client
from eksdr.errors import explain_cluster_exists
from eksdr.exceptions import ConfigurationError
from eksdr.poller import poll_with_profile, raise_for_result
from eksdr.reports import write_text
from eksdr.terraform import TerraformOutputs
from eksdr.tools import require_tools, update_kubeconfig

logger = structlog.get_logger()

DEFAULT_CLUSTER_NAME = "eks-backup-test-source"
DEFAULT_KUBERNETES_VERSION = "1.32"
LOG_TYPES = ("api", "audit", "authenticator", "controllerManager", "scheduler")


@dataclass(frozen=True)
class ClusterConfigSpec:
    """Everything eksctl needs to create the source cluster."""

    name: str = DEFAULT_CLUSTER_NAME
    region: str = "us-west-2"
    version: str = DEFAULT_KUBERNETES_VERSION
    node_type: str = "t3.medium"
    node_count: int = 2
    volume_size: int = 50

    # Optional existing network and roles (from terraform)
    vpc_id: str | None = None
    private_subnets: Dict[str, str] = field(default_factory=dict)  # zone -> subnet id
    public_subnets: Dict[str, str] = field(default_factory=dict)
    service_role_arn: str | None = None
    node_role_arn: str | None = None

    def __post_init__(self) -> None:
        errors: List[str] = []
        if self.node_count < 1:
            errors.append(f"node_count must be >= 1, got {self.node_count}")
        if self.volume_size < 1:
            errors.append(f"volume_size must be >= 1, got {self.volume_size}")
        if (self.private_subnets or self.public_subnets) and not self.vpc_id:
            errors.append("subnets require vpc_id")
        if errors:
            raise ConfigurationError(
                "Invalid cluster configuration",
                details={"errors": errors},
            )

    def to_dict(self) -> Dict[str, Any]:
        """The eksctl ClusterConfig document."""
        node_group: Dict[str, Any] = {
            "name": "ng-1",
            "instanceType": self.node_type,
            "desiredCapacity": self.node_count,
            "minSize": self.node_count,
            "maxSize": self.node_count + 2,
            "volumeSize": self.volume_size,
            "labels": {"role": "worker"},
            "tags": {
                "k8s.io/cluster-autoscaler/enabled": "true",
                f"k8s.io/cluster-autoscaler/{self.name}": "owned",
                "karpenter.sh/discovery": self.name,
            },
        }
        if self.node_role_arn:
            node_group["iam"] = {"instanceRoleARN": self.node_role_arn}
        if self.private_subnets:
            node_group["privateNetworking"] = True

        iam: Dict[str, Any] = {"withOIDC": True}
        if self.service_role_arn:
            iam["serviceRoleARN"] = self.service_role_arn

        document: Dict[str, Any] = {
            "apiVersion": "eksctl.io/v1alpha5",
            "kind": "ClusterConfig",
            "metadata": {
                "name": self.name,
                "region": self.region,
                "version": self.version,
            },
            "accessConfig": {"authenticationMode": "API_AND_CONFIG_MAP"},
            "iam": iam,
            "addons": [{"name": "eks-pod-identity-agent"}],
            "managedNodeGroups": [node_group],
            "cloudWatch": {"clusterLogging": {"enableTypes": list(LOG_TYPES)}},
        }

        if self.vpc_id:
            subnets: Dict[str, Any] = {}
            if self.private_subnets:
                subnets["private"] = {z: {"id": s} for z, s in self.private_subnets.items()}
            if self.public_subnets:
                subnets["public"] = {z: {"id": s} for z, s in self.public_subnets.items()}
            document["vpc"] = {"id": self.vpc_id, "subnets": subnets}

        return document

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), sort_keys=False, default_flow_style=False)


@dataclass
class SetupResult:
    """Outcome of creating (or reusing) the source cluster."""

    cluster_name: str
    created: bool
    config_path: Path | None
    addons: List[AddonReport] = field(default_factory=list)
    workloads_applied: List[str] = field(default_factory=list)
    test_data_written: bool = False


async def cluster_config_from_terraform(
    outputs: TerraformOutputs,
    ec2: Any,
    *,
    version: str = DEFAULT_KUBERNETES_VERSION,
    **overrides: Any,
) -> ClusterConfigSpec:
    """
    Build a ClusterConfigSpec from terraform outputs.

    Uses cluster_name, aws_region, vpc_id, private_subnet_ids,
    public_subnet_ids, cluster_role_arn and node_role_arn. Subnets are keyed
    by their availability zone, looked up with describe_subnets.

    Raises:
        ConfigurationError: If the terraform stack has no VPC
    """
    vpc_id = await outputs.get("vpc_id")
    if not vpc_id:
        raise ConfigurationError(
            "Terraform outputs do not contain vpc_id; run 'terraform apply' first",
            details={"output": "vpc_id"},
        )

    private = await _subnets_by_zone(ec2, await outputs.get("private_subnet_ids", []))
    public = await _subnets_by_zone(ec2, await outputs.get("public_subnet_ids", []))

    values: Dict[str, Any] = {
        "name": await outputs.get("cluster_name", DEFAULT_CLUSTER_NAME),
        "region": await outputs.get("aws_region", "us-west-2"),
        "version": version,
        "vpc_id": vpc_id,
        "private_subnets": private,
        "public_subnets": public,
        "service_role_arn": await outputs.get("cluster_role_arn"),
        "node_role_arn": await outputs.get("node_role_arn"),
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    return ClusterConfigSpec(**values)


async def _subnets_by_zone(ec2: Any, subnet_ids: List[str]) -> Dict[str, str]:
    if not subnet_ids:
        return {}
    response = await ec2.describe_subnets(SubnetIds=list(subnet_ids))
    by_id = {s["SubnetId"]: s["AvailabilityZone"] for s in response.get("Subnets", [])}
    return {by_id[subnet]: subnet for subnet in subnet_ids if subnet in by_id}


async def write_cluster_config(spec: ClusterConfigSpec, path: Path) -> Path:
    """Write the eksctl config file."""
    header = f"# Generated eksctl configuration for {spec.name}\n"
    return await write_text(path, header + spec.to_yaml())


async def create_source_cluster(
    config: DRConfig,
    state: DRState,
    spec: ClusterConfigSpec,
    *,
    reuse_existing: bool = False,
    workloads_dir: Path | None = None,
) -> SetupResult:
    """
    Create the source cluster and prepare it for a backup drill.

    Steps: eksctl create (unless reusing), wait for ACTIVE, kubectl,
    CSI add-ons, then optionally the test workloads and test data.

    Raises:
        ConfigurationError: Tools missing, or the cluster exists and
            reuse_existing is False
        JobFailedError: The cluster reached FAILED
        JobTimeoutError: The cluster did not become ACTIVE in time
        ToolError: eksctl or kubectl apply failed
    """
    runner = state["runner"]
    require_tools(runner, ("aws", "eksctl", "kubectl"))

    result = SetupResult(cluster_name=spec.name, created=False, config_path=None)
    logger.info("setup_started", cluster=spec.name, version=spec.version, region=spec.region)

    async with create_client(config, state, "eks") as eks:
        if await cluster_exists(eks, spec.name):
            if not reuse_existing:
                raise ConfigurationError(
                    explain_cluster_exists(spec.name),
                    details={"cluster": spec.name},
                )
            logger.warning("cluster_exists_reusing", cluster=spec.name)
        else:
            config_path = config.results_dir / f"cluster-config-{spec.name}.yaml"
            result.config_path = await write_cluster_config(spec, config_path)

            await runner.run("eksctl", "create", "cluster", "-f", str(config_path), check=True)
            result.created = True

        poll = await poll_with_profile(
            spec.name,
            JobKind.CLUSTER_CREATION,
            cluster_status(eks, spec.name),
            timeout=config.cluster_timeout,
            clock=state["clock"],
        )
        raise_for_result(poll)

    await update_kubeconfig(runner, spec.name, config.region)
    result.addons = await enable_csi_addons(config, state, spec.name)

    if workloads_dir is not None:
        result.workloads_applied = await apply_workloads(state, workloads_dir)
        result.test_data_written = await write_test_data(config, state)

    logger.info(
        "setup_completed",
        cluster=spec.name,
        created=result.created,
        workloads=len(result.workloads_applied),
        test_data=result.test_data_written,
    )
    return result


async def apply_workloads(state: DRState, workloads_dir: Path) -> List[str]:
    """
    `kubectl apply` every manifest of a directory, namespaces first.

    Raises:
        ConfigurationError: The directory holds no manifests
        ToolError: A manifest was rejected
    """
    manifests = sorted(workloads_dir.glob("*.yaml")) + sorted(workloads_dir.glob("*.yml"))
    if not manifests:
        raise ConfigurationError(
            f"No manifests found in {workloads_dir}",
            details={"workloads_dir": str(workloads_dir)},
        )

    # namespaces must exist before the workloads inside them
    manifests.sort(key=lambda p: (not p.stem.startswith("namespace"), p.name))

    applied: List[str] = []
    for manifest in manifests:
        await state["runner"].run("kubectl", "apply", "-f", str(manifest), check=True)
        applied.append(manifest.name)
        logger.info("workload_applied", manifest=manifest.name)
    return applied


async def write_test_data(config: DRConfig, state: DRState) -> bool:
    """
    Write the files the verification data check looks for.

    Returns:
        False when the data pod never became ready or a write failed
    """
    runner = state["runner"]
    namespace = config.data_check_namespace
    pod = f"{config.data_check_statefulset}-0"

    ready = await runner.run(
        "kubectl",
        "wait",
        "--for=condition=ready",
        f"pod/{pod}",
        "-n",
        namespace,
        f"--timeout={int(config.pod_ready_timeout)}s",
    )
    if not ready.ok:
        logger.warning("test_data_pod_not_ready", pod=pod, namespace=namespace)
        return False

    stamp = int(time.time())
    for index, path in enumerate(config.data_check_files):
        line = (
            f"Test data for EKS backup drill - {stamp}"
            if index == 0
            else f"Backup timestamp: {stamp}"
        )
        written = await runner.run(
            "kubectl", "exec", "-n", namespace, pod, "--", "sh", "-c", f"echo '{line}' > {path}"
        )
        if not written.ok:
            logger.warning("test_data_write_failed", pod=pod, path=path)
            return False

    logger.info("test_data_written", pod=pod, files=list(config.data_check_files))
    return True
