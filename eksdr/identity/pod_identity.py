# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
EKS Pod Identity associations between service accounts and IAM roles.
"""

from typing import Any

import structlog

logger = structlog.get_logger()


async def find_pod_identity_association(
    eks: Any,
    cluster_name: str,
    namespace: str,
    service_account: str,
) -> str | None:
    """Association ID for a service account, or None when there is none."""
    response = await eks.list_pod_identity_associations(
        clusterName=cluster_name,
        namespace=namespace,
        serviceAccount=service_account,
    )
    associations = response.get("associations", [])
    if not associations:
        return None
    return associations[0]["associationId"]


async def ensure_pod_identity_association(
    eks: Any,
    cluster_name: str,
    namespace: str,
    service_account: str,
    role_arn: str,
) -> str:
    """
    Bind a service account to a role, unless a binding already exists.

    Returns:
        Association ID
    """
    existing = await find_pod_identity_association(
        eks, cluster_name, namespace, service_account
    )
    if existing:
        logger.info(
            "pod_identity_association_exists",
            cluster=cluster_name,
            service_account=f"{namespace}/{service_account}",
        )
        return existing

    response = await eks.create_pod_identity_association(
        clusterName=cluster_name,
        namespace=namespace,
        serviceAccount=service_account,
        roleArn=role_arn,
    )
    association_id = response["association"]["associationId"]
    logger.info(
        "pod_identity_association_created",
        cluster=cluster_name,
        service_account=f"{namespace}/{service_account}",
        association_id=association_id,
    )
    return association_id


async def delete_pod_identity_association(
    eks: Any,
    cluster_name: str,
    namespace: str,
    service_account: str,
    *,
    dry_run: bool = False,
) -> bool:
    """
    Remove the association for a service account.

    Returns:
        True if an association existed (and was deleted unless dry_run)
    """
    association_id = await find_pod_identity_association(
        eks, cluster_name, namespace, service_account
    )
    if not association_id:
        return False

    if dry_run:
        logger.info(
            "would_delete_pod_identity_association",
            cluster=cluster_name,
            association_id=association_id,
        )
        return True

    await eks.delete_pod_identity_association(
        clusterName=cluster_name, associationId=association_id
    )
    logger.info(
        "pod_identity_association_deleted",
        cluster=cluster_name,
        association_id=association_id,
    )
    return True
