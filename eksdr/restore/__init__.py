# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Restore - Descriptor building and the restore-to-cluster flow.
"""

from eksdr.restore.descriptor import (
    ChildSnapshotKind,
    DescriptorBuild,
    EmptyOverride,
    FileSystemOverride,
    NetworkInfo,
    NetworkPlacement,
    NodeGroupDetail,
    NodeGroupSpec,
    RecoverySnapshot,
    RestoreDescriptor,
    VolumeOverride,
    build_restore_descriptor,
    resolve_network_placement,
)

from eksdr.restore.flow import (
    RestoreOutcome,
    find_latest_recovery_point,
    run_restore,
)

__all__ = [
    # Descriptor
    "build_restore_descriptor",
    "ChildSnapshotKind",
    "DescriptorBuild",
    "EmptyOverride",
    "FileSystemOverride",
    "NetworkInfo",
    "NetworkPlacement",
    "NodeGroupDetail",
    "NodeGroupSpec",
    "RecoverySnapshot",
    "RestoreDescriptor",
    "VolumeOverride",
    "resolve_network_placement",
    # Flow
    "RestoreOutcome",
    "find_latest_recovery_point",
    "run_restore",
]
