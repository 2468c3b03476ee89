# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Example end-to-end disaster recovery drill.

This example backs up a source cluster, restores the recovery point into a
new cluster, repairs what AWS Backup does not restore (CSI add-ons and the
Karpenter controller) and verifies the result.

Run with:
    python examples/dr_drill.py my-source-cluster my-source-cluster-dr

Environment variables:
    AWS_PROFILE / AWS_ACCESS_KEY_ID: AWS credentials
    AWS_REGION: Region of both clusters (default: us-west-2)
    BACKUP_VAULT: AWS Backup vault (default: Default)
    EKS_VERSION: Kubernetes version of the restored cluster (default: 1.32)
"""

import asyncio
import os
import sys

from eksdr.backup import run_backup
from eksdr.builder import (
    build_config,
    create_empty_config,
    pipe,
    with_region,
    with_results_dir,
    with_timeouts,
    with_vault,
)
from eksdr.cli import configure_logging
from eksdr.cluster import enable_csi_addons, install_karpenter, verify_cluster
from eksdr.config import DRConfig
from eksdr.core import initialize_dr_state, shutdown_dr_state
from eksdr.restore import run_restore


def create_drill_config() -> DRConfig:
    """
    Create the drill configuration from environment variables.

    Large clusters get generous job timeouts: a restore with many volumes
    can take well over an hour.
    """
    return build_config(
        pipe(
            lambda c: with_region(c, os.getenv("AWS_REGION", "us-west-2")),
            lambda c: with_vault(c, os.getenv("BACKUP_VAULT", "Default")),
            lambda c: with_results_dir(c, "./results"),
            lambda c: with_timeouts(c, backup=7200, restore=7200),
        )(create_empty_config())
    )


async def run_drill(source_cluster: str, target_cluster: str) -> bool:
    config = create_drill_config()
    state = await initialize_dr_state(config)

    try:
        # Step 1: backup
        backup = await run_backup(config, state, source_cluster)
        print(f"Recovery point: {backup.recovery_point_arn}")

        # Step 2: restore into a new cluster
        outcome = await run_restore(
            config,
            state,
            backup.recovery_point_arn,
            target_cluster,
            os.getenv("EKS_VERSION", "1.32"),
        )
        print(f"Restore job {outcome.restore_job_id}: RTO {outcome.rto_seconds}s")

        # Step 3: repair what the restore leaves out
        await enable_csi_addons(config, state, target_cluster)
        await install_karpenter(config, state, target_cluster)

        # Step 4: verify
        report = await verify_cluster(config, state, target_cluster)
        for check in report.checks:
            print(f"  {'PASS' if check.passed else 'FAIL'}  {check.name}: {check.summary}")
        print(f"Verification report: {report.report_path}")
        return report.passed

    finally:
        await shutdown_dr_state(state)


if __name__ == "__main__":
    if len(sys.argv) != 3:
        print("usage: dr_drill.py SOURCE_CLUSTER TARGET_CLUSTER", file=sys.stderr)
        sys.exit(2)

    configure_logging()
    passed = asyncio.run(run_drill(sys.argv[1], sys.argv[2]))
    sys.exit(0 if passed else 1)
