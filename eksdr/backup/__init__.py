# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup - On-demand AWS Backup jobs for EKS clusters.
"""

from eksdr.backup.manager import BackupResult, run_backup

__all__ = [
    "BackupResult",
    "run_backup",
]
