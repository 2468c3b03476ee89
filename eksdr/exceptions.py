# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
EKS DR Exceptions - Custom exceptions for the eksdr package.
"""


class EKSDRError(Exception):
    """Base exception for all eksdr errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(EKSDRError):
    """Raised when configuration or the environment is unusable."""

    pass


class JobFailedError(EKSDRError):
    """Raised when a polled job reaches a failure state."""

    pass


class JobTimeoutError(EKSDRError):
    """Raised when a polled job does not finish before its deadline."""

    pass


class IdentityError(EKSDRError):
    """Raised when an IAM role or its attachments cannot be created."""

    pass


class BackupError(EKSDRError):
    """Raised when backup operations fail."""

    pass


class RestoreError(EKSDRError):
    """Raised when restore operations fail."""

    pass


class ClusterError(EKSDRError):
    """Raised when a required cluster cannot be described."""

    pass


class ToolError(EKSDRError):
    """Raised when an external command exits non-zero."""

    pass


class LedgerError(EKSDRError):
    """Raised when the local job ledger cannot be read or written."""

    pass
