# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Configuration Tests: validation, the functional builder and env helpers.
"""

from pathlib import Path

import pytest

from eksdr.builder import (
    build_config,
    create_config,
    create_empty_config,
    pipe,
    skip_settle_delays,
    with_karpenter_version,
    with_region,
    with_results_dir,
    with_timeouts,
    with_vault,
)
from eksdr.config import DRConfig, JobKind, validate_cluster_name, validate_region
from eksdr.env import create_config_from_env, patient_timeouts
from eksdr.exceptions import ConfigurationError


def test_defaults():
    config = DRConfig()

    assert config.region == "us-west-2"
    assert config.backup_vault == "Default"
    assert config.ledger_path == Path("./results") / "jobs.db"
    assert config.timeout_for(JobKind.BACKUP) == 3600
    assert config.timeout_for(JobKind.ADDON_ACTIVATION) == 600


def test_validation_collects_every_error():
    with pytest.raises(ConfigurationError) as excinfo:
        DRConfig(region="nowhere", backup_vault="", restore_timeout=0, kube_ready_delay=-1)

    errors = excinfo.value.details["errors"]
    assert len(errors) == 4
    assert any("region" in e for e in errors)
    assert any("restore_timeout" in e for e in errors)


@pytest.mark.parametrize(
    "region,valid",
    [
        ("us-west-2", True),
        ("eu-central-1", True),
        ("us-gov-west-1", True),
        ("US-WEST-2", False),
        ("uswest2", False),
        ("", False),
    ],
)
def test_validate_region(region, valid):
    assert validate_region(region) is valid


@pytest.mark.parametrize(
    "name,valid",
    [
        ("eks-backup-test-source", True),
        ("restored_1", True),
        ("-leading-dash", False),
        ("has space", False),
        ("x" * 101, False),
    ],
)
def test_validate_cluster_name(name, valid):
    assert validate_cluster_name(name) is valid


def test_builder_pipe():
    config = build_config(
        pipe(
            lambda c: with_region(c, "eu-west-1"),
            lambda c: with_vault(c, "dr-vault"),
            lambda c: with_results_dir(c, "/tmp/drill"),
            lambda c: with_karpenter_version(c, "1.6.0"),
            lambda c: with_timeouts(c, backup=7200, restore=5400),
            skip_settle_delays,
        )(create_empty_config())
    )

    assert config.region == "eu-west-1"
    assert config.backup_vault == "dr-vault"
    assert config.results_dir == Path("/tmp/drill")
    assert config.karpenter_version == "1.6.0"
    assert config.backup_timeout == 7200
    assert config.restore_timeout == 5400
    assert config.addon_timeout == 600
    assert config.role_settle_seconds == 0
    assert config.kube_ready_delay == 0


def test_builder_does_not_mutate_input():
    base = create_empty_config()

    with_region(base, "eu-west-1")

    assert base["region"] == "us-west-2"


def test_unknown_timeout_kind_rejected():
    with pytest.raises(ValueError):
        with_timeouts(create_empty_config(), lunch=60)


def test_create_config_coerces_paths():
    config = create_config(results_dir="out", terraform_dir="tf")

    assert config.results_dir == Path("out")
    assert config.terraform_dir == Path("tf")


def test_with_updates_revalidates():
    config = DRConfig()

    assert config.with_updates(backup_vault="other").backup_vault == "other"
    with pytest.raises(ConfigurationError):
        config.with_updates(stack_timeout=-5)


def test_patient_timeouts_double_every_timeout():
    config = patient_timeouts(DRConfig())

    assert config.backup_timeout == 7200
    assert config.restore_timeout == 7200
    assert config.pod_ready_timeout == 600
    assert config.role_settle_seconds == 10


# ============================================================================
# Environment
# ============================================================================

@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "AWS_REGION",
        "REGION",
        "BACKUP_VAULT",
        "EKSDR_RESULTS_DIR",
        "EKSDR_TERRAFORM_DIR",
        "KARPENTER_VERSION",
        "EKSDR_ROLE_SETTLE_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_env_defaults(clean_env):
    config = create_config_from_env()

    assert config.region == "us-west-2"
    assert config.backup_vault == "Default"
    assert config.results_dir == Path("./results")


def test_env_values(clean_env):
    clean_env.setenv("REGION", "eu-west-1")
    clean_env.setenv("BACKUP_VAULT", "dr-vault")
    clean_env.setenv("EKSDR_ROLE_SETTLE_SECONDS", "3")

    config = create_config_from_env()

    assert config.region == "eu-west-1"
    assert config.backup_vault == "dr-vault"
    assert config.role_settle_seconds == 3


def test_aws_region_wins_over_region(clean_env):
    clean_env.setenv("AWS_REGION", "ap-southeast-2")
    clean_env.setenv("REGION", "eu-west-1")

    assert create_config_from_env().region == "ap-southeast-2"


def test_overrides_win_over_env(clean_env):
    clean_env.setenv("BACKUP_VAULT", "from-env")

    config = create_config_from_env(backup_vault="from-cli", results_dir=None)

    assert config.backup_vault == "from-cli"
    assert config.results_dir == Path("./results")


@pytest.mark.parametrize(
    "name,value",
    [
        ("AWS_REGION", "not-a-region"),
        ("EKSDR_ROLE_SETTLE_SECONDS", "soon"),
        ("EKSDR_ROLE_SETTLE_SECONDS", "-1"),
    ],
)
def test_invalid_env_values(clean_env, name, value):
    clean_env.setenv(name, value)

    with pytest.raises(ConfigurationError):
        create_config_from_env()
