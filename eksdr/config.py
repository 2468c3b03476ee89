# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
EKS DR Configuration - Immutable configuration data structures.

One DRConfig is created per command invocation and handed explicitly to
every flow, so no flow reads process-wide settings on its own.
"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Tuple
import re


class JobKind(str, Enum):
    """Kind of long-running provider operation tracked by the poller."""

    BACKUP = "backup"
    RESTORE = "restore"
    ADDON_ACTIVATION = "addon_activation"
    CLUSTER_CREATION = "cluster_creation"
    STACK_OPERATION = "stack_operation"


_REGION_PATTERN = re.compile(r"^[a-z]{2}(-gov)?-[a-z]+-\d$")
_CLUSTER_NAME_PATTERN = re.compile(r"^[0-9A-Za-z][A-Za-z0-9\-_]{0,99}$")


def validate_region(region: str) -> bool:
    """Validate an AWS region name such as 'us-west-2'."""
    return bool(region) and bool(_REGION_PATTERN.match(region))


def validate_cluster_name(name: str) -> bool:
    """
    Validate an EKS cluster name.

    Rules:
    - 1-100 characters
    - Starts with a letter or digit
    - Letters, digits, hyphens and underscores only
    """
    return bool(name) and bool(_CLUSTER_NAME_PATTERN.match(name))


@dataclass(frozen=True)
class DRConfig:
    """
    Immutable configuration for backup, restore and verification runs.
    """

    # AWS region for every client and CLI call
    region: str = "us-west-2"

    # AWS Backup vault holding recovery points
    backup_vault: str = "Default"

    # Reports, job dumps and the job ledger live here
    results_dir: Path = field(default_factory=lambda: Path("./results"))

    # Terraform working directory (outputs feed network and role lookups)
    terraform_dir: Path = field(default_factory=lambda: Path("./terraform"))

    # Karpenter chart version installed by the karpenter flow
    karpenter_version: str = "1.8.1"

    # Job timeouts in seconds (intervals are fixed per job kind)
    backup_timeout: float = 3600
    restore_timeout: float = 3600
    addon_timeout: float = 600
    cluster_timeout: float = 600
    stack_timeout: float = 1800
    pod_ready_timeout: float = 300

    # Pause after creating an IAM role so it propagates
    role_settle_seconds: float = 10

    # Pause after a restore completes before touching the API server
    kube_ready_delay: float = 30

    # Verification expectations
    expected_namespaces: Tuple[str, ...] = ("test", "karpenter")
    required_storage_classes: Tuple[str, ...] = ("ebs-sc",)
    data_check_namespace: str = "test"
    data_check_statefulset: str = "mysql-statefulset"
    data_check_files: Tuple[str, ...] = ("/data/test_file.txt", "/data/timestamp.txt")

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        if not validate_region(self.region):
            errors.append(f"Invalid region: {self.region}")

        if not self.backup_vault:
            errors.append("backup_vault must not be empty")

        if not self.karpenter_version:
            errors.append("karpenter_version must not be empty")

        for name in (
            "backup_timeout",
            "restore_timeout",
            "addon_timeout",
            "cluster_timeout",
            "stack_timeout",
            "pod_ready_timeout",
        ):
            value = getattr(self, name)
            if value <= 0:
                errors.append(f"{name} must be > 0, got {value}")

        if self.role_settle_seconds < 0:
            errors.append(
                f"role_settle_seconds must be >= 0, got {self.role_settle_seconds}"
            )

        if self.kube_ready_delay < 0:
            errors.append(f"kube_ready_delay must be >= 0, got {self.kube_ready_delay}")

        # Raise all errors at once
        if errors:
            from eksdr.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

    @property
    def ledger_path(self) -> Path:
        """Location of the local job ledger database."""
        return self.results_dir / "jobs.db"

    def timeout_for(self, kind: JobKind) -> float:
        """Configured timeout for a job kind."""
        return {
            JobKind.BACKUP: self.backup_timeout,
            JobKind.RESTORE: self.restore_timeout,
            JobKind.ADDON_ACTIVATION: self.addon_timeout,
            JobKind.CLUSTER_CREATION: self.cluster_timeout,
            JobKind.STACK_OPERATION: self.stack_timeout,
        }[kind]

    def with_updates(self, **kwargs) -> "DRConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        from dataclasses import asdict

        current = asdict(self)
        current.update(kwargs)
        return DRConfig(**current)
