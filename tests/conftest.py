# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for EKS DR tests.

Provides a fake AWS session, a recording tool runner, a manual clock and
test configuration helpers.
"""

import tempfile
from pathlib import Path
from typing import Generator

import pytest
import pytest_asyncio

from fakes import FakeClock, FakeSession, FakeToolRunner


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def fake_runner() -> FakeToolRunner:
    return FakeToolRunner()


@pytest.fixture
def iam(fake_session):
    return fake_session.clients["iam"]


@pytest.fixture
def eks(fake_session):
    return fake_session.clients["eks"]


@pytest.fixture
def backup(fake_session):
    return fake_session.clients["backup"]


@pytest.fixture
def ec2(fake_session):
    return fake_session.clients["ec2"]


@pytest.fixture
def cloudformation(fake_session):
    return fake_session.clients["cloudformation"]


@pytest.fixture
def test_config(temp_dir: Path):
    """Create a test configuration without settle pauses."""
    from eksdr.builder import create_config

    return create_config(
        region="us-west-2",
        backup_vault="Default",
        results_dir=temp_dir / "results",
        terraform_dir=temp_dir / "terraform",
        role_settle_seconds=0,
        kube_ready_delay=0,
    )


@pytest_asyncio.fixture
async def dr_state(test_config, fake_session, fake_runner, fake_clock):
    """Create initialized DR state backed by the fakes."""
    from eksdr.core import initialize_dr_state, shutdown_dr_state

    state = await initialize_dr_state(
        test_config,
        session=fake_session,
        runner=fake_runner,
        clock=fake_clock,
    )
    yield state
    await shutdown_dr_state(state)

