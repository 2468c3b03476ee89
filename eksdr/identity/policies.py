# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Typed IAM policy documents.

Policies are built as data and serialized with json.dumps, so a trust or
permission policy can never be malformed by string substitution.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Tuple

POLICY_VERSION = "2012-10-17"
AWS_MANAGED_POLICY_PREFIX = "arn:aws:iam::aws:policy/"


@dataclass(frozen=True)
class Statement:
    """One IAM policy statement."""

    actions: Tuple[str, ...]
    effect: str = "Allow"
    service_principal: str | None = None
    resources: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        statement: Dict[str, Any] = {"Effect": self.effect}
        if self.service_principal:
            statement["Principal"] = {"Service": self.service_principal}
        statement["Action"] = self.actions[0] if len(self.actions) == 1 else list(self.actions)
        if self.resources:
            statement["Resource"] = (
                self.resources[0] if len(self.resources) == 1 else list(self.resources)
            )
        return statement


@dataclass(frozen=True)
class PolicyDocument:
    """An IAM policy: a version plus its statements."""

    statements: Tuple[Statement, ...]
    version: str = POLICY_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "Version": self.version,
            "Statement": [s.to_dict() for s in self.statements],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def trust_policy(service: str, actions: Tuple[str, ...] = ("sts:AssumeRole",)) -> PolicyDocument:
    """Trust policy letting a single AWS service assume the role."""
    return PolicyDocument(statements=(Statement(actions=actions, service_principal=service),))


def permission_policy(actions: Tuple[str, ...], resources: Tuple[str, ...] = ("*",)) -> PolicyDocument:
    """Single-statement Allow policy."""
    return PolicyDocument(statements=(Statement(actions=actions, resources=resources),))


def managed_policy_arn(name: str) -> str:
    """ARN of an AWS managed policy, e.g. 'AmazonEKSClusterPolicy'."""
    return f"{AWS_MANAGED_POLICY_PREFIX}{name}"


POD_IDENTITY_ACTIONS = ("sts:AssumeRole", "sts:TagSession")

KARPENTER_CONTROLLER_ACTIONS = (
    "ec2:CreateFleet",
    "ec2:CreateLaunchTemplate",
    "ec2:CreateTags",
    "ec2:DescribeAvailabilityZones",
    "ec2:DescribeImages",
    "ec2:DescribeInstances",
    "ec2:DescribeInstanceTypeOfferings",
    "ec2:DescribeInstanceTypes",
    "ec2:DescribeLaunchTemplates",
    "ec2:DescribeSecurityGroups",
    "ec2:DescribeSpotPriceHistory",
    "ec2:DescribeSubnets",
    "ec2:DeleteLaunchTemplate",
    "ec2:RunInstances",
    "ec2:TerminateInstances",
    "iam:PassRole",
    "eks:DescribeCluster",
    "ssm:GetParameter",
    "pricing:GetProducts",
)
