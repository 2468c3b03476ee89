# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
EKS DR Core - Runtime state shared by every flow.

A DRState is created once per command from the DRConfig. It holds the
AWS session, the caller's identity, the external tool runner and the
clock, so flows receive all of their collaborators explicitly.
"""

from pathlib import Path
from typing import Any, TypedDict

import structlog
from botocore.exceptions import BotoCoreError, ClientError

from eksdr.config import DRConfig
from eksdr.exceptions import ConfigurationError
from eksdr.ledger import init_ledger_db
from eksdr.poller import Clock, SystemClock
from eksdr.terraform import TerraformOutputs
from eksdr.tools import ToolRunner

logger = structlog.get_logger()


class DRState(TypedDict):
    """Runtime state for DR flows."""

    session: Any  # aiobotocore session
    account_id: str
    caller_arn: str
    runner: ToolRunner
    clock: Clock
    outputs: TerraformOutputs
    results_dir: Path
    ledger_db_path: Path


async def initialize_dr_state(
    config: DRConfig,
    *,
    session: Any = None,
    runner: ToolRunner | None = None,
    clock: Clock | None = None,
) -> DRState:
    """
    Initialize runtime state for DR flows.

    Creates the results directory, initializes the job ledger and checks
    that AWS credentials work.

    Args:
        config: DR configuration
        session: aiobotocore session (a new one by default)
        runner: External tool runner
        clock: Time source for polling and settle pauses

    Returns:
        Initialized DRState dictionary

    Raises:
        ConfigurationError: If the AWS credentials are missing or invalid
    """
    from aiobotocore.session import get_session

    config.results_dir.mkdir(parents=True, exist_ok=True)
    await init_ledger_db(config.ledger_path)

    session = session or get_session()
    runner = runner or ToolRunner()

    try:
        async with session.create_client("sts", region_name=config.region) as sts:
            identity = await sts.get_caller_identity()
    except (BotoCoreError, ClientError) as e:
        raise ConfigurationError(
            f"AWS credentials are not configured or invalid: {e}",
            details={"region": config.region},
        ) from e

    logger.info(
        "aws_identity_verified",
        account_id=identity["Account"],
        caller_arn=identity["Arn"],
        region=config.region,
    )

    return DRState(
        session=session,
        account_id=identity["Account"],
        caller_arn=identity["Arn"],
        runner=runner,
        clock=clock or SystemClock(),
        outputs=TerraformOutputs(runner, config.terraform_dir),
        results_dir=config.results_dir,
        ledger_db_path=config.ledger_path,
    )


def create_client(config: DRConfig, state: DRState, service: str) -> Any:
    """
    Client context manager for one AWS service in the configured region.

        async with create_client(config, state, "eks") as eks:
            ...
    """
    return state["session"].create_client(service, region_name=config.region)


async def shutdown_dr_state(state: DRState) -> None:
    """Release runtime state."""
    logger.debug("dr_state_shutdown_complete", account_id=state["account_id"])
