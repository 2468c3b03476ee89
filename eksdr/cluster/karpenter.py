# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
EKS DR Karpenter - Reinstall the Karpenter controller on a restored cluster.

AWS Backup restores Karpenter's CRDs and custom resources (NodePools,
EC2NodeClasses) but not a working controller: the controller's IAM role
and Pod Identity association are account resources, and the Helm release
has to be installed again against the new cluster endpoint.
"""

from dataclasses import dataclass, field
from typing import Dict, List

import structlog

from eksdr.aws import describe_cluster
from eksdr.config import DRConfig
from eksdr.core import DRState, create_client
from eksdr.identity.pod_identity import ensure_pod_identity_association
from eksdr.identity.roles import RoleKind, RoleResolver
from eksdr.tools import ToolRunner, kubectl_items, require_tools, update_kubeconfig

logger = structlog.get_logger()

NAMESPACE = "karpenter"
SERVICE_ACCOUNT = "karpenter"
CHART = "oci://public.ecr.aws/karpenter/karpenter"
CRDS = ("nodepools.karpenter.sh", "ec2nodeclasses.karpenter.k8s.aws")
POD_SELECTOR = "app.kubernetes.io/name=karpenter"

CONTROLLER_RESOURCES = {
    "controller.resources.requests.cpu": "1",
    "controller.resources.requests.memory": "1Gi",
    "controller.resources.limits.cpu": "1",
    "controller.resources.limits.memory": "1Gi",
}


@dataclass
class KarpenterInstall:
    """Result of a Karpenter installation."""

    cluster_name: str
    version: str
    controller_role_arn: str
    node_role_arn: str
    crds_present: Dict[str, bool] = field(default_factory=dict)
    controller_ready: bool = False
    node_pools: List[str] = field(default_factory=list)


def helm_install_args(
    cluster_name: str,
    cluster_endpoint: str,
    version: str,
) -> List[str]:
    """Arguments of `helm upgrade --install` for the Karpenter chart."""
    settings = {
        "settings.clusterName": cluster_name,
        "settings.clusterEndpoint": cluster_endpoint,
        "settings.interruptionQueue": cluster_name,
        **CONTROLLER_RESOURCES,
    }
    args = [
        "helm",
        "upgrade",
        "--install",
        "karpenter",
        CHART,
        "--namespace",
        NAMESPACE,
        "--create-namespace",
        "--version",
        version,
    ]
    for key, value in settings.items():
        args.extend(["--set", f"{key}={value}"])
    args.append("--wait")
    return args


async def crd_presence(runner: ToolRunner) -> Dict[str, bool]:
    """Which Karpenter CRDs exist on the current cluster."""
    present = {}
    for crd in CRDS:
        present[crd] = (await runner.run("kubectl", "get", "crd", crd)).ok
    return present


async def list_node_pools(runner: ToolRunner) -> List[str]:
    """Names of Karpenter NodePools."""
    items = await kubectl_items(runner, "get", "nodepools")
    return [item["metadata"]["name"] for item in items]


async def install_karpenter(
    config: DRConfig,
    state: DRState,
    cluster_name: str,
    version: str | None = None,
) -> KarpenterInstall:
    """
    Install (or upgrade) Karpenter on a cluster.

    Args:
        config: DR configuration
        state: Runtime state
        cluster_name: Target cluster
        version: Chart version (defaults to config.karpenter_version)

    Raises:
        ConfigurationError: helm, kubectl or aws is not installed
        ClusterError: The cluster does not exist
        IdentityError: A Karpenter role could not be created
        ToolError: The Helm installation failed
    """
    runner = state["runner"]
    version = version or config.karpenter_version
    require_tools(runner, ("aws", "kubectl", "helm"))

    logger.info("karpenter_install_started", cluster=cluster_name, version=version)

    async with (
        create_client(config, state, "eks") as eks,
        create_client(config, state, "iam") as iam,
    ):
        cluster = await describe_cluster(eks, cluster_name, config.region)

        # Step 1: kubectl
        await update_kubeconfig(runner, cluster_name, config.region)

        # Step 2: CRDs restored by AWS Backup (Helm creates missing ones)
        crds = await crd_presence(runner)
        for crd, present in crds.items():
            if not present:
                logger.warning("karpenter_crd_missing", crd=crd)

        # Step 3: IAM
        resolver = RoleResolver(
            iam,
            settle_seconds=config.role_settle_seconds,
            clock=state["clock"],
        )
        controller_role = await resolver.ensure_kind(RoleKind.AUTOSCALER_CONTROLLER, cluster_name)
        node_role = await resolver.ensure_kind(RoleKind.AUTOSCALER_NODE, cluster_name)

        # Step 4: namespace and Pod Identity
        namespace = await runner.run("kubectl", "create", "namespace", NAMESPACE)
        if not namespace.ok:
            logger.info("karpenter_namespace_exists")

        await ensure_pod_identity_association(
            eks, cluster_name, NAMESPACE, SERVICE_ACCOUNT, controller_role
        )

    # Step 5: Helm (anonymous pull from public ECR)
    logout = await runner.run("helm", "registry", "logout", "public.ecr.aws")
    if not logout.ok:
        logger.debug("helm_registry_logout_skipped")

    await runner.run(
        *helm_install_args(cluster_name, cluster["endpoint"], version),
        check=True,
    )
    logger.info("karpenter_chart_installed", cluster=cluster_name, version=version)

    # Step 6: verification
    wait = await runner.run(
        "kubectl",
        "wait",
        "--for=condition=ready",
        "pod",
        "-l",
        POD_SELECTOR,
        "-n",
        NAMESPACE,
        f"--timeout={int(config.pod_ready_timeout)}s",
    )
    if not wait.ok:
        logger.warning("karpenter_controller_not_ready", cluster=cluster_name)

    node_pools = await list_node_pools(runner)
    if not node_pools:
        logger.warning("karpenter_node_pools_missing", cluster=cluster_name)

    logger.info(
        "karpenter_install_completed",
        cluster=cluster_name,
        controller_ready=wait.ok,
        node_pools=len(node_pools),
    )

    return KarpenterInstall(
        cluster_name=cluster_name,
        version=version,
        controller_role_arn=controller_role,
        node_role_arn=node_role,
        crds_present=crds,
        controller_ready=wait.ok,
        node_pools=node_pools,
    )
