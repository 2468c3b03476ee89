# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
EKS Backup DR - Backup, restore and verification drills for EKS.

Backs up a cluster with AWS Backup, restores the recovery point into a new
cluster, repairs what a restore does not bring back (CSI add-ons,
Karpenter) and verifies the result, measuring RTO along the way.
Package name: eksdr.
"""

__version__ = "0.1.0"

# Configuration creation (user-facing API)
from eksdr.builder import create_config

# Core functions
from eksdr.core import initialize_dr_state, shutdown_dr_state

# Environment-based configuration and profiles (additional helpers)
from eksdr.env import create_config_from_env, patient_timeouts

# Flows
from eksdr.backup import run_backup
from eksdr.restore import find_latest_recovery_point, run_restore

__all__ = [
    # Version
    "__version__",
    # Configuration creation
    "create_config",
    "create_config_from_env",
    "patient_timeouts",
    # Core
    "initialize_dr_state",
    "shutdown_dr_state",
    # Flows
    "run_backup",
    "run_restore",
    "find_latest_recovery_point",
]
