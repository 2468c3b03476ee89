# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Command line interface for EKS backup and restore drills.

    eksdr backup my-cluster
    eksdr restore --source-cluster my-cluster --cluster-name my-cluster-dr --eks-version 1.32
    eksdr verify my-cluster-dr
    eksdr cleanup --dry-run my-cluster my-cluster-dr

Every command builds its configuration from the environment plus the
command's options, runs one flow and exits with 1 on failure.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable

import aiosqlite
import click
import structlog

from eksdr import __version__
from eksdr.backup import run_backup
from eksdr.cluster import (
    ClusterConfigSpec,
    cleanup_clusters,
    cluster_config_from_terraform,
    create_source_cluster,
    enable_csi_addons,
    install_karpenter,
    verify_cluster,
)
from eksdr.cluster.setup import DEFAULT_CLUSTER_NAME, DEFAULT_KUBERNETES_VERSION
from eksdr.config import DRConfig
from eksdr.core import DRState, create_client, initialize_dr_state, shutdown_dr_state
from eksdr.env import create_config_from_env, patient_timeouts
from eksdr.exceptions import ConfigurationError, EKSDRError
from eksdr.identity import RoleResolver, ensure_base_roles
from eksdr.ledger import init_ledger_db, list_jobs
from eksdr.reports import markdown_table
from eksdr.restore import find_latest_recovery_point, run_restore

logger = structlog.get_logger()

Flow = Callable[[DRConfig, DRState], Awaitable[Any]]


def configure_logging(verbose: bool = False, json_output: bool = False) -> None:
    """Configure structlog for the command line (logs go to stderr)."""
    processors = [
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if verbose else logging.INFO
        ),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def _run(ctx: click.Context, flow: Flow, **overrides: Any) -> Any:
    """Build config and state, run one flow, map EKSDRError to exit code 1."""
    settings = {**ctx.obj["overrides"], **overrides}

    async def execute() -> Any:
        config = create_config_from_env(**settings)
        if ctx.obj["patient"]:
            config = patient_timeouts(config)
        state = await initialize_dr_state(config)
        try:
            return await flow(config, state)
        finally:
            await shutdown_dr_state(state)

    try:
        return asyncio.run(execute())
    except EKSDRError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)


@click.group()
@click.version_option(__version__, prog_name="eksdr")
@click.option("--verbose", is_flag=True, help="Debug logging.")
@click.option("--json-logs", is_flag=True, help="Log as JSON lines.")
@click.option("--results-dir", type=click.Path(path_type=Path), default=None)
@click.option("--terraform-dir", type=click.Path(path_type=Path), default=None)
@click.option("--patient", is_flag=True, help="Double every job timeout.")
@click.pass_context
def cli(ctx, verbose, json_logs, results_dir, terraform_dir, patient):
    """EKS backup, restore and verification drills with AWS Backup."""
    configure_logging(verbose, json_logs)
    ctx.ensure_object(dict)
    ctx.obj["overrides"] = {"results_dir": results_dir, "terraform_dir": terraform_dir}
    ctx.obj["patient"] = patient


@cli.command()
@click.option("-n", "--cluster-name", default=DEFAULT_CLUSTER_NAME, show_default=True)
@click.option("-r", "--region", default=None)
@click.option("-v", "--version", "k8s_version", default=DEFAULT_KUBERNETES_VERSION, show_default=True)
@click.option("-t", "--node-type", default="t3.medium", show_default=True)
@click.option("-c", "--node-count", default=2, type=int, show_default=True)
@click.option("--from-terraform", is_flag=True, help="Use the terraform VPC, subnets and roles.")
@click.option("--reuse-existing", is_flag=True, help="Continue with an existing cluster.")
@click.option("--workloads-dir", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.pass_context
def setup(ctx, cluster_name, region, k8s_version, node_type, node_count, from_terraform, reuse_existing, workloads_dir):
    """Create the source cluster and prepare it for a drill."""

    async def flow(config: DRConfig, state: DRState):
        if from_terraform:
            async with create_client(config, state, "ec2") as ec2:
                spec = await cluster_config_from_terraform(
                    state["outputs"],
                    ec2,
                    version=k8s_version,
                    node_type=node_type,
                    node_count=node_count,
                )
        else:
            spec = ClusterConfigSpec(
                name=cluster_name,
                region=config.region,
                version=k8s_version,
                node_type=node_type,
                node_count=node_count,
            )
        return await create_source_cluster(
            config, state, spec, reuse_existing=reuse_existing, workloads_dir=workloads_dir
        )

    result = _run(ctx, flow, region=region)
    click.echo(f"Cluster {result.cluster_name} ready (created: {result.created})")
    for addon in result.addons:
        click.echo(f"  {addon.addon_name}: {addon.status}")
    click.echo(f"Next: eksdr backup {result.cluster_name}")


@cli.command()
@click.argument("cluster_name", required=False)
@click.option("-r", "--region", default=None)
@click.pass_context
def roles(ctx, cluster_name, region):
    """Ensure the cluster, node and Karpenter roles exist."""

    async def flow(config: DRConfig, state: DRState):
        name = cluster_name or await state["outputs"].get("cluster_name")
        if not name:
            raise ConfigurationError(
                "No cluster name given and terraform has no cluster_name output"
            )
        async with create_client(config, state, "iam") as iam:
            resolver = RoleResolver(
                iam, settle_seconds=config.role_settle_seconds, clock=state["clock"]
            )
            return await ensure_base_roles(resolver, name)

    arns = _run(ctx, flow, region=region)
    for kind, arn in arns.items():
        click.echo(f"{kind.value}: {arn}")


@cli.command()
@click.argument("cluster_name")
@click.option("-r", "--region", default=None)
@click.option("-v", "--vault", default=None, help="Backup vault name.")
@click.pass_context
def backup(ctx, cluster_name, region, vault):
    """Back up a cluster and wait for the recovery point."""

    async def flow(config: DRConfig, state: DRState):
        return await run_backup(config, state, cluster_name)

    result = _run(ctx, flow, region=region, backup_vault=vault)
    click.echo(f"Backup job: {result.backup_job_id} ({result.status})")
    click.echo(f"Recovery point: {result.recovery_point_arn}")
    click.echo(f"Child recovery points: {len(result.child_recovery_points)}")
    click.echo(f"Job dump: {result.dump_path}")


@cli.command()
@click.option("--recovery-point-arn", default=None)
@click.option("--source-cluster", default=None, help="Use the newest recovery point of this cluster.")
@click.option("--cluster-name", required=True, help="Target cluster.")
@click.option("--eks-version", required=True, help="Kubernetes version of the target.")
@click.option("-r", "--region", default=None)
@click.option("-v", "--vault", default=None, help="Backup vault name.")
@click.option("--existing", is_flag=True, help="Restore into an existing cluster.")
@click.option("--skip-addons", is_flag=True, help="Do not enable CSI add-ons afterwards.")
@click.option("--strict-node-groups", is_flag=True, help="Abort on unreadable node groups.")
@click.pass_context
def restore(ctx, recovery_point_arn, source_cluster, cluster_name, eks_version, region, vault, existing, skip_addons, strict_node_groups):
    """Restore a recovery point into a new (or existing) cluster."""
    if not recovery_point_arn and not source_cluster:
        raise click.UsageError("Pass --recovery-point-arn or --source-cluster")

    async def flow(config: DRConfig, state: DRState):
        arn = recovery_point_arn or await find_latest_recovery_point(config, state, source_cluster)
        outcome = await run_restore(
            config,
            state,
            arn,
            cluster_name,
            eks_version,
            existing=existing,
            strict_node_groups=strict_node_groups,
        )
        addons = [] if skip_addons else await enable_csi_addons(config, state, cluster_name)
        return outcome, addons

    outcome, addons = _run(ctx, flow, region=region, backup_vault=vault)
    click.echo(f"Restore job: {outcome.restore_job_id} ({outcome.status})")
    if outcome.rto_seconds is not None:
        click.echo(f"RTO: {outcome.rto_seconds:.0f}s")
    for warning in outcome.warnings:
        click.echo(f"Warning: {warning}", err=True)
    for addon in addons:
        click.echo(f"  {addon.addon_name}: {addon.status}")
    click.echo(f"Report: {outcome.report_path}")
    click.echo(f"Next: eksdr karpenter {cluster_name} && eksdr verify {cluster_name}")


@cli.command()
@click.argument("cluster_name")
@click.option("-r", "--region", default=None)
@click.pass_context
def addons(ctx, cluster_name, region):
    """Enable the EBS and EFS CSI driver add-ons."""

    async def flow(config: DRConfig, state: DRState):
        return await enable_csi_addons(config, state, cluster_name)

    for report in _run(ctx, flow, region=region):
        ready = "controller running" if report.controller_ready else "controller not ready"
        click.echo(f"{report.addon_name}: {report.status} ({ready})")


@cli.command()
@click.argument("cluster_name")
@click.option("-r", "--region", default=None)
@click.option("--version", "chart_version", default=None, help="Karpenter chart version.")
@click.pass_context
def karpenter(ctx, cluster_name, region, chart_version):
    """Reinstall the Karpenter controller on a cluster."""

    async def flow(config: DRConfig, state: DRState):
        return await install_karpenter(config, state, cluster_name, chart_version)

    result = _run(ctx, flow, region=region)
    click.echo(f"Karpenter {result.version} installed on {result.cluster_name}")
    click.echo(f"Controller ready: {result.controller_ready}")
    click.echo(f"NodePools: {', '.join(result.node_pools) or 'none'}")


@cli.command()
@click.argument("cluster_name")
@click.option("-r", "--region", default=None)
@click.pass_context
def verify(ctx, cluster_name, region):
    """Check that a restored cluster works; exit 1 on any failed check."""

    async def flow(config: DRConfig, state: DRState):
        return await verify_cluster(config, state, cluster_name)

    report = _run(ctx, flow, region=region)
    rows = [(c.name, "PASS" if c.passed else "FAIL", c.summary) for c in report.checks]
    click.echo(markdown_table(("Check", "Result", "Summary"), rows))
    click.echo(f"Report: {report.report_path}")
    if not report.passed:
        ctx.exit(1)


@cli.command()
@click.argument("cluster_names", nargs=-1, required=True)
@click.option("-r", "--region", default=None)
@click.option("--dry-run", is_flag=True, help="Only show what would be deleted.")
@click.option("--confirm", is_flag=True, help="Skip the confirmation prompt.")
@click.pass_context
def cleanup(ctx, cluster_names, region, dry_run, confirm):
    """Delete every resource the drills created for the given clusters."""
    if not dry_run and not confirm:
        click.echo("This deletes Karpenter resources, CSI driver roles, the clusters")
        click.echo(f"and the terraform stack for: {', '.join(cluster_names)}")
        answer = click.prompt("Type 'yes' to continue", default="", show_default=False)
        if answer != "yes":
            click.echo("Cancelled")
            return

    async def flow(config: DRConfig, state: DRState):
        return await cleanup_clusters(config, state, cluster_names, dry_run=dry_run)

    report = _run(ctx, flow, region=region)
    verb = "Would delete" if dry_run else "Deleted"
    for resource in report.deleted:
        click.echo(f"{verb}: {resource}")
    for warning in report.warnings:
        click.echo(f"Warning: {warning}", err=True)
    if report.recovery_points:
        click.echo("Recovery points were kept; delete them manually if needed:")
        for arn in report.recovery_points:
            click.echo(f"  {arn}")


@cli.command()
@click.option("--limit", default=20, type=int, show_default=True)
@click.option("--kind", default=None, help="Only jobs of this kind (backup, restore, ...).")
@click.pass_context
def history(ctx, limit, kind):
    """Show recent jobs from the local ledger."""

    async def read() -> list:
        config = create_config_from_env(**ctx.obj["overrides"])
        await init_ledger_db(config.ledger_path)
        async with aiosqlite.connect(config.ledger_path) as db:
            return await list_jobs(db, kind=kind, limit=limit)

    try:
        records = asyncio.run(read())
    except EKSDRError as e:
        click.echo(f"Error: {e}", err=True)
        ctx.exit(1)

    if not records:
        click.echo("No jobs recorded")
        return
    rows = [
        (r["started_at"], r["kind"], r["cluster_name"], r["job_id"], r["status"])
        for r in records
    ]
    click.echo(markdown_table(("Started", "Kind", "Cluster", "Job", "Status"), rows))


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
