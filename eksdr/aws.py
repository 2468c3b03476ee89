# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Small helpers over aiobotocore clients.

Status queries for the poller, ARN parsing and client error inspection.
Describe failures inside status queries are reported as NOT_FOUND so the
poller keeps waiting instead of aborting on eventual consistency.
"""

from typing import Any, List

import structlog
from botocore.exceptions import ClientError

from eksdr.errors import explain_cluster_missing
from eksdr.exceptions import ClusterError
from eksdr.poller import NOT_FOUND, DetailQuery, StatusQuery

logger = structlog.get_logger()


def error_code(exc: ClientError) -> str:
    """Return the provider error code of a ClientError."""
    return exc.response.get("Error", {}).get("Code", "")


def is_not_found(exc: ClientError) -> bool:
    """True when the error means the requested resource does not exist."""
    return error_code(exc) in (
        "NoSuchEntity",
        "NoSuchEntityException",
        "ResourceNotFoundException",
        "NotFoundException",
    )


def resource_name_from_arn(arn: str) -> str:
    """Return the segment after the last '/' of an ARN."""
    return arn.rsplit("/", 1)[-1]


async def collect_pages(client: Any, operation: str, result_key: str, **kwargs) -> List[Any]:
    """Gather every item under `result_key` across all pages of an operation."""
    items: List[Any] = []
    paginator = client.get_paginator(operation)
    async for page in paginator.paginate(**kwargs):
        items.extend(page.get(result_key, []))
    return items


async def cluster_exists(eks: Any, cluster_name: str) -> bool:
    """True when describe_cluster finds the cluster."""
    try:
        await eks.describe_cluster(name=cluster_name)
        return True
    except ClientError as e:
        if is_not_found(e):
            return False
        raise


# ============================================================================
# Status queries
# ============================================================================

def backup_job_status(backup: Any, job_id: str) -> StatusQuery:
    async def query() -> str:
        try:
            response = await backup.describe_backup_job(BackupJobId=job_id)
        except ClientError as e:
            logger.debug("status_query_failed", job_id=job_id, error=str(e))
            return NOT_FOUND
        return response.get("State") or NOT_FOUND

    return query


def backup_job_failure(backup: Any, job_id: str) -> DetailQuery:
    async def query() -> str | None:
        response = await backup.describe_backup_job(BackupJobId=job_id)
        return response.get("StatusMessage")

    return query


def restore_job_status(backup: Any, job_id: str) -> StatusQuery:
    async def query() -> str:
        try:
            response = await backup.describe_restore_job(RestoreJobId=job_id)
        except ClientError as e:
            logger.debug("status_query_failed", job_id=job_id, error=str(e))
            return NOT_FOUND
        return response.get("Status") or NOT_FOUND

    return query


def restore_job_failure(backup: Any, job_id: str) -> DetailQuery:
    async def query() -> str | None:
        response = await backup.describe_restore_job(RestoreJobId=job_id)
        return response.get("StatusMessage")

    return query


def cluster_status(eks: Any, cluster_name: str) -> StatusQuery:
    async def query() -> str:
        try:
            response = await eks.describe_cluster(name=cluster_name)
        except ClientError as e:
            logger.debug("status_query_failed", cluster=cluster_name, error=str(e))
            return NOT_FOUND
        return response["cluster"].get("status") or NOT_FOUND

    return query


def addon_status(eks: Any, cluster_name: str, addon_name: str) -> StatusQuery:
    async def query() -> str:
        try:
            response = await eks.describe_addon(
                clusterName=cluster_name, addonName=addon_name
            )
        except ClientError as e:
            logger.debug("status_query_failed", addon=addon_name, error=str(e))
            return NOT_FOUND
        return response["addon"].get("status") or NOT_FOUND

    return query


def addon_failure(eks: Any, cluster_name: str, addon_name: str) -> DetailQuery:
    async def query() -> list:
        response = await eks.describe_addon(clusterName=cluster_name, addonName=addon_name)
        return response["addon"].get("health", {}).get("issues", [])

    return query


def stack_status(cloudformation: Any, stack_name: str) -> StatusQuery:
    """A stack that no longer exists counts as DELETE_COMPLETE."""

    async def query() -> str:
        try:
            response = await cloudformation.describe_stacks(StackName=stack_name)
        except ClientError as e:
            if "does not exist" in str(e):
                return "DELETE_COMPLETE"
            logger.debug("status_query_failed", stack=stack_name, error=str(e))
            return NOT_FOUND
        stacks = response.get("Stacks", [])
        if not stacks:
            return "DELETE_COMPLETE"
        return stacks[0].get("StackStatus") or NOT_FOUND

    return query


def stack_failure(cloudformation: Any, stack_name: str) -> DetailQuery:
    async def query() -> str | None:
        response = await cloudformation.describe_stacks(StackName=stack_name)
        stacks = response.get("Stacks", [])
        return stacks[0].get("StackStatusReason") if stacks else None

    return query


async def describe_cluster(eks: Any, cluster_name: str, region: str) -> dict:
    """
    Describe a cluster that must exist.

    Raises:
        ClusterError: If the cluster is missing or cannot be described
    """
    try:
        response = await eks.describe_cluster(name=cluster_name)
    except ClientError as e:
        raise ClusterError(
            explain_cluster_missing(cluster_name, region),
            details={"cluster": cluster_name, "error": str(e)},
        ) from e
    return response["cluster"]


def cluster_arn(region: str, account_id: str, cluster_name: str) -> str:
    """ARN an EKS cluster has (or had) in an account."""
    return f"arn:aws:eks:{region}:{account_id}:cluster/{cluster_name}"
