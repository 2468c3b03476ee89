# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
EKS DR Builder - Functional builder pattern for configuration.

This module provides pure functions for building DRConfig objects.
Each function takes a config dict and returns a new dict with the
modification applied (immutable updates).
"""

from pathlib import Path
from typing import Any, Callable, Dict

from eksdr.config import DRConfig, JobKind


# Type alias for builder functions
ConfigDict = Dict[str, Any]
BuilderFunc = Callable[[ConfigDict], ConfigDict]

_TIMEOUT_FIELDS = {
    JobKind.BACKUP: "backup_timeout",
    JobKind.RESTORE: "restore_timeout",
    JobKind.ADDON_ACTIVATION: "addon_timeout",
    JobKind.CLUSTER_CREATION: "cluster_timeout",
    JobKind.STACK_OPERATION: "stack_timeout",
}


def create_empty_config() -> ConfigDict:
    """
    Create an initial configuration dictionary.

    Returns:
        Dict with default values for the commonly tuned fields
    """
    return {
        "region": "us-west-2",
        "backup_vault": "Default",
        "results_dir": Path("./results"),
        "terraform_dir": Path("./terraform"),
        "karpenter_version": "1.8.1",
        "role_settle_seconds": 10,
        "kube_ready_delay": 30,
    }


def with_region(config: ConfigDict, region: str) -> ConfigDict:
    """
    Set the AWS region.

    Args:
        config: Current configuration dictionary
        region: AWS region (e.g., 'us-west-2', 'eu-west-1')

    Returns:
        New configuration dictionary with region set
    """
    return {**config, "region": region}


def with_vault(config: ConfigDict, vault_name: str) -> ConfigDict:
    """
    Set the AWS Backup vault used for backups and restores.

    Args:
        config: Current configuration dictionary
        vault_name: Backup vault name

    Returns:
        New configuration dictionary with the vault set
    """
    return {**config, "backup_vault": vault_name}


def with_results_dir(config: ConfigDict, results_dir: Path | str) -> ConfigDict:
    """Set the directory for reports, job dumps and the ledger."""
    return {**config, "results_dir": Path(results_dir)}


def with_terraform_dir(config: ConfigDict, terraform_dir: Path | str) -> ConfigDict:
    """Set the terraform working directory."""
    return {**config, "terraform_dir": Path(terraform_dir)}


def with_karpenter_version(config: ConfigDict, version: str) -> ConfigDict:
    """Pin the Karpenter chart version."""
    return {**config, "karpenter_version": version}


def with_timeouts(config: ConfigDict, **timeouts: float) -> ConfigDict:
    """
    Override job timeouts by job kind.

    Keys are JobKind values, for example:

        with_timeouts(config, backup=7200, restore=7200)

    Args:
        config: Current configuration dictionary
        **timeouts: Seconds keyed by JobKind value

    Returns:
        New configuration dictionary with the timeouts set
    """
    updates = {}
    for kind_value, seconds in timeouts.items():
        updates[_TIMEOUT_FIELDS[JobKind(kind_value)]] = seconds
    return {**config, **updates}


def skip_settle_delays(config: ConfigDict) -> ConfigDict:
    """
    Disable the IAM propagation and API server settle pauses.

    Only useful against stub endpoints; real IAM needs the pause.
    """
    return {**config, "role_settle_seconds": 0, "kube_ready_delay": 0}


def build_config(config_dict: ConfigDict) -> DRConfig:
    """
    Build a validated DRConfig from a configuration dictionary.

    Args:
        config_dict: Configuration dictionary

    Returns:
        Validated, immutable DRConfig instance

    Raises:
        ConfigurationError: If validation fails
    """
    return DRConfig(**config_dict)


def pipe(*funcs: BuilderFunc) -> BuilderFunc:
    """
    Compose multiple builder functions into a single function.

        config = pipe(
            lambda c: with_region(c, "eu-west-1"),
            lambda c: with_vault(c, "dr-vault"),
        )(create_empty_config())

    Args:
        *funcs: Builder functions to compose

    Returns:
        A single function that applies all functions in sequence
    """

    def composed(config: ConfigDict) -> ConfigDict:
        result = config
        for func in funcs:
            result = func(result)
        return result

    return composed


def create_config(**kwargs: Any) -> DRConfig:
    """
    Build a DRConfig from keyword arguments on top of the defaults.

    Example:
        config = create_config(region="eu-west-1", backup_vault="dr-vault")
    """
    config = create_empty_config()
    config.update(kwargs)
    if "results_dir" in config:
        config["results_dir"] = Path(config["results_dir"])
    if "terraform_dir" in config:
        config["terraform_dir"] = Path(config["terraform_dir"])
    return build_config(config)
