# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
EKS DR Verification - Check that a restored cluster is actually usable.

Ten checks run against the cluster (control plane, nodes, add-ons,
namespaces, workloads, storage, Karpenter, data on a restored volume) and
an eleventh step writes results/verification-<ts>/ with raw listings and
a Markdown report. Every check runs even if an earlier one fails.
"""

from dataclasses import dataclass, field
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Tuple

import structlog
from botocore.exceptions import ClientError

from eksdr.aws import describe_cluster
from eksdr.cluster.addons import CSI_ADDONS, KUBE_SYSTEM
from eksdr.cluster.karpenter import NAMESPACE as KARPENTER_NAMESPACE
from eksdr.cluster.karpenter import crd_presence, list_node_pools
from eksdr.config import DRConfig
from eksdr.core import DRState, create_client
from eksdr.reports import markdown_table, timestamp_slug, write_text
from eksdr.tools import ToolRunner, kubectl_items, kubectl_json, require_tools, update_kubeconfig

logger = structlog.get_logger()


@dataclass
class CheckResult:
    """Outcome of one verification check."""

    name: str
    passed: bool
    summary: str
    details: List[str] = field(default_factory=list)


@dataclass
class VerificationReport:
    """All checks for one cluster."""

    cluster_name: str
    region: str
    checks: List[CheckResult] = field(default_factory=list)
    report_path: Path | None = None

    @property
    def passed(self) -> bool:
        return all(check.passed for check in self.checks)

    @property
    def failed_checks(self) -> List[str]:
        return [check.name for check in self.checks if not check.passed]


@dataclass
class _Context:
    config: DRConfig
    runner: ToolRunner
    eks: Any
    cluster_name: str


# ============================================================================
# Checks
# ============================================================================

async def check_cluster_version(ctx: _Context) -> CheckResult:
    cluster = await describe_cluster(ctx.eks, ctx.cluster_name, ctx.config.region)
    status = cluster.get("status")
    return CheckResult(
        name="cluster version",
        passed=status == "ACTIVE",
        summary=f"Kubernetes {cluster.get('version')} ({status})",
        details=[f"endpoint: {cluster.get('endpoint')}"],
    )


def _node_ready(node: dict) -> bool:
    for condition in node.get("status", {}).get("conditions", []):
        if condition.get("type") == "Ready":
            return condition.get("status") == "True"
    return False


async def check_nodes(ctx: _Context) -> CheckResult:
    nodes = await kubectl_items(ctx.runner, "get", "nodes")
    not_ready = [n["metadata"]["name"] for n in nodes if not _node_ready(n)]
    return CheckResult(
        name="nodes",
        passed=bool(nodes) and not not_ready,
        summary=f"{len(nodes) - len(not_ready)}/{len(nodes)} nodes Ready",
        details=[f"not ready: {name}" for name in not_ready],
    )


async def check_managed_addons(ctx: _Context) -> CheckResult:
    details: List[str] = []
    healthy = True

    for addon in CSI_ADDONS:
        try:
            response = await ctx.eks.describe_addon(
                clusterName=ctx.cluster_name, addonName=addon.addon_name
            )
            status = response["addon"].get("status")
        except ClientError:
            status = "NOT_INSTALLED"

        running = 0
        if status == "ACTIVE":
            selector = addon.pod_selector.split(",")[0]
            pods = await kubectl_items(ctx.runner, "get", "pods", "-n", KUBE_SYSTEM, "-l", selector)
            running = sum(1 for p in pods if p.get("status", {}).get("phase") == "Running")

        if status != "ACTIVE" or running == 0:
            healthy = False
        details.append(f"{addon.addon_name}: {status}, {running} running pods")

    return CheckResult(
        name="managed add-ons",
        passed=healthy,
        summary="all CSI drivers active" if healthy else "CSI drivers not healthy",
        details=details,
    )


async def check_namespaces(ctx: _Context) -> CheckResult:
    items = await kubectl_items(ctx.runner, "get", "namespaces")
    names = {ns["metadata"]["name"] for ns in items}
    missing = [ns for ns in ctx.config.expected_namespaces if ns not in names]
    # informational only
    return CheckResult(
        name="namespaces",
        passed=True,
        summary=f"{len(names)} namespaces",
        details=[f"missing: {ns}" for ns in missing],
    )


def _replicas_ready(workload: dict) -> bool:
    status = workload.get("status", {})
    return status.get("readyReplicas", 0) == status.get("replicas", 0)


def _qualified(item: dict) -> str:
    return f"{item['metadata'].get('namespace', '')}/{item['metadata']['name']}"


async def _check_workloads(ctx: _Context, resource: str, label: str) -> CheckResult:
    items = await kubectl_items(ctx.runner, "get", resource, "--all-namespaces")
    not_ready = [_qualified(i) for i in items if not _replicas_ready(i)]
    return CheckResult(
        name=label,
        passed=not not_ready,
        summary=f"{len(items) - len(not_ready)}/{len(items)} ready",
        details=[f"not ready: {name}" for name in not_ready],
    )


async def check_deployments(ctx: _Context) -> CheckResult:
    return await _check_workloads(ctx, "deployments", "deployments")


async def check_statefulsets(ctx: _Context) -> CheckResult:
    return await _check_workloads(ctx, "statefulsets", "statefulsets")


async def check_storage_classes(ctx: _Context) -> CheckResult:
    items = await kubectl_items(ctx.runner, "get", "storageclasses")
    by_name = {sc["metadata"]["name"]: sc for sc in items}
    missing = [sc for sc in ctx.config.required_storage_classes if sc not in by_name]

    details = [
        f"{name}: {sc.get('provisioner')} ({sc.get('volumeBindingMode')})"
        for name, sc in by_name.items()
        if name in ctx.config.required_storage_classes
    ]
    details.extend(f"missing: {name}" for name in missing)

    return CheckResult(
        name="storage classes",
        passed=bool(items) and not missing,
        summary=f"{len(items)} storage classes",
        details=details,
    )


async def check_pvcs(ctx: _Context) -> CheckResult:
    items = await kubectl_items(ctx.runner, "get", "pvc", "--all-namespaces")
    pending = [
        f"{_qualified(p)} ({p.get('status', {}).get('phase')})"
        for p in items
        if p.get("status", {}).get("phase") != "Bound"
    ]
    return CheckResult(
        name="persistent volume claims",
        passed=not pending,
        summary=f"{len(items) - len(pending)}/{len(items)} Bound",
        details=[f"not bound: {p}" for p in pending],
    )


async def check_karpenter(ctx: _Context) -> CheckResult:
    crds = await crd_presence(ctx.runner)
    details = [f"{crd}: {'present' if ok else 'missing'}" for crd, ok in crds.items()]

    deployment = await kubectl_json(
        ctx.runner, "get", "deployment", "karpenter", "-n", KARPENTER_NAMESPACE
    )
    if deployment:
        status = deployment.get("status", {})
        ready, desired = status.get("readyReplicas", 0), status.get("replicas", 0)
        details.append(f"controller: {ready}/{desired} ready")
    else:
        details.append("controller: not installed")

    node_pools = await list_node_pools(ctx.runner)
    details.append(f"node pools: {len(node_pools)}")

    # controller and node pools are reported, CRDs decide
    return CheckResult(
        name="karpenter",
        passed=all(crds.values()),
        summary=f"{sum(crds.values())}/{len(crds)} CRDs present",
        details=details,
    )


async def check_data_integrity(ctx: _Context) -> CheckResult:
    namespace = ctx.config.data_check_namespace
    statefulset = ctx.config.data_check_statefulset
    pod = f"{statefulset}-0"
    name = "data integrity"

    exists = await ctx.runner.run("kubectl", "get", "statefulset", statefulset, "-n", namespace)
    if not exists.ok:
        return CheckResult(name=name, passed=True, summary=f"no {statefulset}, skipped")

    ready = await ctx.runner.run(
        "kubectl", "wait", "--for=condition=ready", f"pod/{pod}", "-n", namespace, "--timeout=60s"
    )
    if not ready.ok:
        return CheckResult(name=name, passed=False, summary=f"pod {pod} not ready")

    details: List[str] = []
    missing: List[str] = []
    for path in ctx.config.data_check_files:
        found = await ctx.runner.run("kubectl", "exec", "-n", namespace, pod, "--", "test", "-f", path)
        if not found.ok:
            missing.append(path)
            details.append(f"{path}: missing")
            continue
        content = await ctx.runner.run("kubectl", "exec", "-n", namespace, pod, "--", "cat", path)
        details.append(f"{path}: {content.stdout.strip()}")

    return CheckResult(
        name=name,
        passed=not missing,
        summary="restored files present" if not missing else f"{len(missing)} files missing",
        details=details,
    )


CHECKS: Tuple[Callable[[_Context], Awaitable[CheckResult]], ...] = (
    check_cluster_version,
    check_nodes,
    check_managed_addons,
    check_namespaces,
    check_deployments,
    check_statefulsets,
    check_storage_classes,
    check_pvcs,
    check_karpenter,
    check_data_integrity,
)


# ============================================================================
# Flow
# ============================================================================

async def verify_cluster(config: DRConfig, state: DRState, cluster_name: str) -> VerificationReport:
    """
    Run every verification check and write the report.

    Returns:
        VerificationReport; `passed` is True only if every check passed

    Raises:
        ConfigurationError: aws or kubectl is not installed
        ClusterError: The cluster does not exist
    """
    runner = state["runner"]
    require_tools(runner, ("aws", "kubectl"))

    report = VerificationReport(cluster_name=cluster_name, region=config.region)
    logger.info("verification_started", cluster=cluster_name)

    async with create_client(config, state, "eks") as eks:
        await describe_cluster(eks, cluster_name, config.region)
        await update_kubeconfig(runner, cluster_name, config.region)

        ctx = _Context(config=config, runner=runner, eks=eks, cluster_name=cluster_name)
        for step, check in enumerate(CHECKS, start=1):
            result = await check(ctx)
            report.checks.append(result)
            log = logger.info if result.passed else logger.warning
            log(
                "verification_check",
                step=f"{step}/{len(CHECKS) + 1}",
                check=result.name,
                passed=result.passed,
                summary=result.summary,
            )

    report.report_path = await write_verification_report(config, runner, report)

    logger.info(
        "verification_completed",
        cluster=cluster_name,
        passed=report.passed,
        failed=report.failed_checks,
    )
    return report


async def write_verification_report(
    config: DRConfig,
    runner: ToolRunner,
    report: VerificationReport,
) -> Path:
    """Write raw listings and verification-report.md under verification-<ts>/."""
    output_dir = config.results_dir / f"verification-{timestamp_slug()}"

    listings = {
        "all-resources.txt": ("get", "all", "--all-namespaces"),
        "pvcs.txt": ("get", "pvc", "--all-namespaces"),
        "karpenter-crds.txt": ("get", "crd", "-l", "app.kubernetes.io/part-of=karpenter"),
        "nodepools.txt": ("get", "nodepools"),
    }
    for filename, args in listings.items():
        result = await runner.run("kubectl", *args)
        await write_text(output_dir / filename, result.stdout or result.stderr)

    rows = [
        (check.name, "PASS" if check.passed else "FAIL", check.summary)
        for check in report.checks
    ]
    sections = [
        "# EKS restore verification report",
        "",
        f"**Cluster**: {report.cluster_name}",
        f"**Region**: {report.region}",
        f"**Verified at**: {datetime.now(UTC).strftime('%Y-%m-%d %H:%M:%S')} UTC",
        f"**Result**: {'PASS' if report.passed else 'FAIL'}",
        "",
        "## Checks",
        "",
        markdown_table(("Check", "Result", "Summary"), rows),
        "",
    ]
    for check in report.checks:
        if check.details:
            sections.extend([f"### {check.name}", ""])
            sections.extend(f"- {line}" for line in check.details)
            sections.append("")

    path = await write_text(output_dir / "verification-report.md", "\n".join(sections))
    logger.info("verification_report_written", report=str(path))
    return path
