# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for eksdr.

These helpers centralize wording for the failures an operator is most
likely to hit during a drill, so every flow reports them the same way.
"""

from typing import Sequence


def explain_missing_tool(tool: str) -> str:
    """
    Explain that a required command line tool is not on PATH.
    """

    return (
        f"Required tool '{tool}' was not found on PATH. "
        "Install it and make sure it is executable before running this command."
    )


def explain_missing_vpc() -> str:
    """
    Explain that no VPC could be resolved for the restored cluster.
    """

    return (
        "No VPC could be resolved for the restored cluster. "
        "Run 'terraform apply' so the vpc_id output exists, or make sure the "
        "region has a default VPC."
    )


def explain_insufficient_subnets(subnet_ids: Sequence[str]) -> str:
    """
    Explain that an EKS cluster needs subnets in at least two zones.
    """

    return (
        f"At least 2 subnets are required for an EKS cluster, found {len(subnet_ids)}. "
        "Add private or public subnets to the terraform outputs or the default VPC."
    )


def explain_cluster_exists(cluster_name: str) -> str:
    """
    Explain that the restore target name is already taken.
    """

    return (
        f"Cluster '{cluster_name}' already exists. "
        "Pick a new cluster name, or pass --existing to restore into it."
    )


def explain_cluster_missing(cluster_name: str, region: str) -> str:
    """
    Explain that a cluster that must exist could not be described.
    """

    return (
        f"Cluster '{cluster_name}' was not found in {region}. "
        "Check the cluster name and region."
    )


def explain_missing_backup_role() -> str:
    """
    Explain that no role is available for AWS Backup to assume.
    """

    return (
        "No AWS Backup service role could be found. "
        "Create one with 'terraform apply' (aws_backup_role_arn output) or run "
        "'eksdr backup' once so AWSBackupDefaultServiceRole is created."
    )


def explain_missing_recovery_point(cluster_name: str) -> str:
    """
    Explain that no recovery point is known for a source cluster.
    """

    return (
        f"No completed recovery point was found for cluster '{cluster_name}'. "
        "Run 'eksdr backup' first or pass --recovery-point-arn explicitly."
    )


def explain_invalid_region_env(value: str | None) -> str:
    """
    Explain that AWS_REGION is invalid.
    """

    return (
        f"Invalid AWS_REGION value: {value!r}. "
        "Expected an AWS region name such as 'us-west-2'."
    )


def explain_invalid_seconds_env(name: str, value: str | None) -> str:
    """
    Explain that a duration environment variable is invalid.
    """

    return (
        f"Invalid {name} value: {value!r}. "
        "It must be a non-negative integer number of seconds."
    )
