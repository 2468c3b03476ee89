# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
IAM roles, policies and Pod Identity associations.
"""

from eksdr.identity.pod_identity import (
    delete_pod_identity_association,
    ensure_pod_identity_association,
    find_pod_identity_association,
)
from eksdr.identity.roles import (
    ROLE_TEMPLATES,
    RoleKind,
    RoleResolver,
    RoleTemplate,
    conventional_role_arn,
    default_role_name,
    ensure_base_roles,
)

__all__ = [
    "ROLE_TEMPLATES",
    "RoleKind",
    "RoleResolver",
    "RoleTemplate",
    "conventional_role_arn",
    "default_role_name",
    "ensure_base_roles",
    "delete_pod_identity_association",
    "ensure_pod_identity_association",
    "find_pod_identity_association",
]
