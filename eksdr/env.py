# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration helpers and timeout profiles.

These helpers are small wrappers around create_config() and
DRConfig.with_updates(). They make it easy to:

- Build a configuration from environment variables
- Apply ready-made timeout profiles
"""

from __future__ import annotations

import os
from pathlib import Path

from eksdr.builder import create_config
from eksdr.config import DRConfig, validate_region
from eksdr.errors import explain_invalid_region_env, explain_invalid_seconds_env
from eksdr.exceptions import ConfigurationError


def _parse_region(value: str | None) -> str:
    if not value:
        return "us-west-2"
    if not validate_region(value):
        raise ConfigurationError(explain_invalid_region_env(value))
    return value


def _parse_seconds(name: str, value: str | None, default: float) -> float:
    if not value:
        return default
    try:
        seconds = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_seconds_env(name, value)) from exc
    if seconds < 0:
        raise ConfigurationError(explain_invalid_seconds_env(name, value))
    return seconds


def create_config_from_env(**overrides) -> DRConfig:
    """
    Create a DRConfig from environment variables.

    Explicit keyword overrides win over the environment, which lets the
    command line pass its options through unchanged.

    Optional environment variables:
        - AWS_REGION (or REGION): AWS region (default: us-west-2)
        - BACKUP_VAULT: AWS Backup vault name (default: Default)
        - EKSDR_RESULTS_DIR: Directory for reports and the ledger (default: ./results)
        - EKSDR_TERRAFORM_DIR: Terraform working directory (default: ./terraform)
        - KARPENTER_VERSION: Karpenter chart version (default: 1.8.1)
        - EKSDR_ROLE_SETTLE_SECONDS: Pause after IAM role creation (default: 10)
    """

    region = _parse_region(os.getenv("AWS_REGION") or os.getenv("REGION"))
    results_dir = Path(os.getenv("EKSDR_RESULTS_DIR", "./results"))
    terraform_dir = Path(os.getenv("EKSDR_TERRAFORM_DIR", "./terraform"))

    settings = {
        "region": region,
        "backup_vault": os.getenv("BACKUP_VAULT", "Default"),
        "results_dir": results_dir,
        "terraform_dir": terraform_dir,
        "karpenter_version": os.getenv("KARPENTER_VERSION", "1.8.1"),
        "role_settle_seconds": _parse_seconds(
            "EKSDR_ROLE_SETTLE_SECONDS",
            os.getenv("EKSDR_ROLE_SETTLE_SECONDS"),
            10,
        ),
    }
    settings.update({k: v for k, v in overrides.items() if v is not None})
    return create_config(**settings)


# ============================================================================
# Profiles
# ============================================================================

def patient_timeouts(config: DRConfig) -> DRConfig:
    """
    Double every job timeout.

    Large clusters with many persistent volumes routinely need more than
    an hour for a backup or restore job.
    """

    return config.with_updates(
        backup_timeout=config.backup_timeout * 2,
        restore_timeout=config.restore_timeout * 2,
        addon_timeout=config.addon_timeout * 2,
        cluster_timeout=config.cluster_timeout * 2,
        stack_timeout=config.stack_timeout * 2,
        pod_ready_timeout=config.pod_ready_timeout * 2,
    )
