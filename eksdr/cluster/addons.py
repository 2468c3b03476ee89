# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
EKS DR Add-ons - Enable the EBS and EFS CSI drivers as managed add-ons.

Restored clusters come back without their storage drivers. For each
driver the flow ensures a Pod Identity role and association, creates the
managed add-on, waits until it is ACTIVE and then waits for a running
controller pod.
"""

from dataclasses import dataclass
from typing import Any, List

import structlog
from botocore.exceptions import ClientError

from eksdr.aws import addon_failure, addon_status, describe_cluster, is_not_found
from eksdr.config import DRConfig, JobKind
from eksdr.core import DRState, create_client
from eksdr.identity.pod_identity import ensure_pod_identity_association
from eksdr.identity.roles import RoleKind, RoleResolver
from eksdr.poller import Clock, poll_job, poll_with_profile, raise_for_result
from eksdr.tools import ToolRunner, kubectl_items

logger = structlog.get_logger()

KUBE_SYSTEM = "kube-system"
POD_CHECK_INTERVAL = 10


@dataclass(frozen=True)
class CsiAddon:
    """A CSI driver shipped as an EKS managed add-on."""

    addon_name: str
    role_kind: RoleKind
    service_account: str
    pod_selector: str


CSI_ADDONS = (
    CsiAddon(
        addon_name="aws-ebs-csi-driver",
        role_kind=RoleKind.EBS_DRIVER,
        service_account="ebs-csi-controller-sa",
        pod_selector="app.kubernetes.io/name=aws-ebs-csi-driver,app.kubernetes.io/component=csi-driver",
    ),
    CsiAddon(
        addon_name="aws-efs-csi-driver",
        role_kind=RoleKind.EFS_DRIVER,
        service_account="efs-csi-controller-sa",
        pod_selector="app.kubernetes.io/name=aws-efs-csi-driver,app.kubernetes.io/component=csi-driver",
    ),
)


@dataclass
class AddonReport:
    """State of one add-on after the flow ran."""

    addon_name: str
    status: str
    created: bool
    controller_ready: bool


async def enable_csi_addons(
    config: DRConfig,
    state: DRState,
    cluster_name: str,
    addons: tuple = CSI_ADDONS,
) -> List[AddonReport]:
    """
    Enable every CSI driver add-on on a cluster.

    Raises:
        ClusterError: The cluster does not exist
        IdentityError: A driver role could not be created
        JobFailedError: An add-on reached CREATE_FAILED or DEGRADED
        JobTimeoutError: An add-on did not become ACTIVE in time
    """
    reports: List[AddonReport] = []

    async with (
        create_client(config, state, "eks") as eks,
        create_client(config, state, "iam") as iam,
    ):
        await describe_cluster(eks, cluster_name, config.region)
        resolver = RoleResolver(
            iam,
            settle_seconds=config.role_settle_seconds,
            clock=state["clock"],
        )

        for addon in addons:
            reports.append(
                await _enable_addon(config, state, eks, resolver, cluster_name, addon)
            )

    for report in reports:
        logger.info(
            "addon_state",
            cluster=cluster_name,
            addon=report.addon_name,
            status=report.status,
            controller_ready=report.controller_ready,
        )
    return reports


async def _enable_addon(
    config: DRConfig,
    state: DRState,
    eks: Any,
    resolver: RoleResolver,
    cluster_name: str,
    addon: CsiAddon,
) -> AddonReport:
    current = await _current_status(eks, cluster_name, addon.addon_name)
    created = False

    if current is None:
        role_arn = await resolver.ensure_kind(addon.role_kind, cluster_name)
        await ensure_pod_identity_association(
            eks, cluster_name, KUBE_SYSTEM, addon.service_account, role_arn
        )
        await eks.create_addon(
            clusterName=cluster_name,
            addonName=addon.addon_name,
            resolveConflicts="OVERWRITE",
        )
        created = True
        logger.info("addon_created", cluster=cluster_name, addon=addon.addon_name)
    else:
        logger.info(
            "addon_exists", cluster=cluster_name, addon=addon.addon_name, status=current
        )

    if current != "ACTIVE":
        result = await poll_with_profile(
            f"{cluster_name}/{addon.addon_name}",
            JobKind.ADDON_ACTIVATION,
            addon_status(eks, cluster_name, addon.addon_name),
            failure_detail=addon_failure(eks, cluster_name, addon.addon_name),
            timeout=config.addon_timeout,
            clock=state["clock"],
        )
        raise_for_result(result)

    controller_ready = await wait_for_controller_pods(
        state["runner"],
        addon.pod_selector,
        timeout=config.pod_ready_timeout,
        clock=state["clock"],
    )

    return AddonReport(
        addon_name=addon.addon_name,
        status="ACTIVE",
        created=created,
        controller_ready=controller_ready,
    )


async def _current_status(eks: Any, cluster_name: str, addon_name: str) -> str | None:
    try:
        response = await eks.describe_addon(clusterName=cluster_name, addonName=addon_name)
    except ClientError as e:
        if is_not_found(e):
            return None
        raise
    return response["addon"].get("status")


async def running_controller_pods(runner: ToolRunner, selector: str) -> List[str]:
    """Names of Running CSI controller pods matching a label selector."""
    pods = await kubectl_items(runner, "get", "pods", "-n", KUBE_SYSTEM, "-l", selector)
    return [
        pod["metadata"]["name"]
        for pod in pods
        if "controller" in pod["metadata"]["name"]
        and pod.get("status", {}).get("phase") == "Running"
    ]


async def wait_for_controller_pods(
    runner: ToolRunner,
    selector: str,
    *,
    timeout: float,
    clock: Clock | None = None,
) -> bool:
    """
    Wait until at least one CSI controller pod is Running.

    Returns:
        True if a controller pod came up before the timeout
    """

    async def controller_state() -> str:
        return "READY" if await running_controller_pods(runner, selector) else "PENDING"

    result = await poll_job(
        selector,
        controller_state,
        success_states=("READY",),
        failure_states=(),
        interval=POD_CHECK_INTERVAL,
        timeout=timeout,
        clock=clock,
    )
    if not result.succeeded:
        logger.warning("csi_controller_not_ready", selector=selector, elapsed=result.elapsed)
    return result.succeeded
