# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Cluster - Setup, post-restore repair, verification and cleanup flows.
"""

from eksdr.cluster.addons import AddonReport, CSI_ADDONS, CsiAddon, enable_csi_addons
from eksdr.cluster.cleanup import CleanupReport, cleanup_clusters
from eksdr.cluster.karpenter import KarpenterInstall, install_karpenter
from eksdr.cluster.setup import (
    ClusterConfigSpec,
    SetupResult,
    cluster_config_from_terraform,
    create_source_cluster,
)
from eksdr.cluster.verify import CheckResult, VerificationReport, verify_cluster

__all__ = [
    # Add-ons
    "AddonReport",
    "CSI_ADDONS",
    "CsiAddon",
    "enable_csi_addons",
    # Karpenter
    "KarpenterInstall",
    "install_karpenter",
    # Verification
    "CheckResult",
    "VerificationReport",
    "verify_cluster",
    # Cleanup
    "CleanupReport",
    "cleanup_clusters",
    # Setup
    "ClusterConfigSpec",
    "SetupResult",
    "cluster_config_from_terraform",
    "create_source_cluster",
]
