# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Poller Tests.

The poller must:
1. Stop querying as soon as a terminal state is seen
2. Carry a failure reason on every failed result
3. Time out within one interval of the deadline, never sleeping past it
"""

import pytest
from structlog.testing import capture_logs

from eksdr.config import JobKind
from eksdr.exceptions import ConfigurationError, JobFailedError, JobTimeoutError
from eksdr.poller import (
    JOB_PROFILES,
    PollOutcome,
    poll_job,
    poll_with_profile,
    raise_for_result,
)

from fakes import FakeClock


def scripted(statuses):
    """Status query returning the given statuses in order, counting calls."""
    calls = {"count": 0}

    async def query() -> str:
        index = min(calls["count"], len(statuses) - 1)
        calls["count"] += 1
        return statuses[index]

    return query, calls


# ============================================================================
# Terminal states
# ============================================================================

@pytest.mark.asyncio
async def test_success_stops_querying(fake_clock: FakeClock):
    query, calls = scripted(["RUNNING", "RUNNING", "COMPLETED", "RUNNING"])

    result = await poll_job(
        "job-1", query, {"COMPLETED"}, {"FAILED"}, interval=30, timeout=3600, clock=fake_clock
    )

    assert result.outcome == PollOutcome.SUCCEEDED
    assert result.succeeded
    assert result.status == "COMPLETED"
    assert result.detail is None
    assert result.polls == 3
    assert calls["count"] == 3, "No query after the success state"
    assert fake_clock.sleeps == [30, 30]


@pytest.mark.asyncio
async def test_immediate_success_never_sleeps(fake_clock: FakeClock):
    query, _ = scripted(["ACTIVE"])

    result = await poll_job("c", query, {"ACTIVE"}, (), interval=10, timeout=600, clock=fake_clock)

    assert result.succeeded
    assert result.elapsed == 0
    assert fake_clock.sleeps == []


@pytest.mark.asyncio
async def test_failure_carries_detail(fake_clock: FakeClock):
    query, calls = scripted(["RUNNING", "FAILED"])

    async def detail() -> str:
        return "Insufficient privileges to perform this action"

    result = await poll_job(
        "job-2",
        query,
        {"COMPLETED"},
        {"FAILED", "ABORTED"},
        interval=30,
        timeout=3600,
        failure_detail=detail,
        clock=fake_clock,
    )

    assert result.outcome == PollOutcome.FAILED
    assert result.status == "FAILED"
    assert result.detail == "Insufficient privileges to perform this action"
    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_failure_detail_falls_back_to_status(fake_clock: FakeClock):
    query, _ = scripted(["ABORTED"])

    async def broken_detail() -> str:
        raise RuntimeError("describe failed")

    with capture_logs() as logs:
        result = await poll_job(
            "job-3",
            query,
            {"COMPLETED"},
            {"ABORTED"},
            interval=30,
            timeout=60,
            failure_detail=broken_detail,
            clock=fake_clock,
        )

    assert result.detail == "Job ended in status ABORTED"
    assert any(log["event"] == "failure_detail_unavailable" for log in logs)


@pytest.mark.asyncio
async def test_structured_failure_detail_is_serialized(fake_clock: FakeClock):
    query, _ = scripted(["DEGRADED"])

    async def issues() -> list:
        return [{"code": "AccessDenied", "message": "role missing"}]

    result = await poll_job(
        "addon", query, {"ACTIVE"}, {"DEGRADED"}, interval=10, timeout=60,
        failure_detail=issues, clock=fake_clock,
    )

    assert "AccessDenied" in result.detail
    assert "role missing" in result.detail


# ============================================================================
# Timeouts
# ============================================================================

@pytest.mark.asyncio
async def test_timeout_within_one_interval(fake_clock: FakeClock):
    query, calls = scripted(["RUNNING"])

    result = await poll_job(
        "job-4", query, {"COMPLETED"}, {"FAILED"}, interval=10, timeout=25, clock=fake_clock
    )

    assert result.outcome == PollOutcome.TIMED_OUT
    assert result.status == "RUNNING"
    # Queries at t=0, 10, 20 and a final one at the deadline
    assert calls["count"] == 4
    assert result.polls == 4
    assert result.elapsed == 25
    assert fake_clock.sleeps == [10, 10, 5], "Last sleep is capped at the deadline"
    assert "25" in result.detail


@pytest.mark.asyncio
async def test_unknown_status_keeps_polling(fake_clock: FakeClock):
    query, calls = scripted(["NOT_FOUND", "NOT_FOUND", "COMPLETED"])

    result = await poll_job(
        "job-5", query, {"COMPLETED"}, {"FAILED"}, interval=30, timeout=3600, clock=fake_clock
    )

    assert result.succeeded
    assert calls["count"] == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("interval,timeout", [(0, 10), (10, 0), (-1, 10)])
async def test_invalid_parameters_rejected(interval, timeout, fake_clock: FakeClock):
    query, calls = scripted(["RUNNING"])

    with pytest.raises(ConfigurationError):
        await poll_job("job", query, {"OK"}, (), interval=interval, timeout=timeout, clock=fake_clock)

    assert calls["count"] == 0


# ============================================================================
# Profiles
# ============================================================================

def test_job_profiles_cover_every_kind():
    assert set(JOB_PROFILES) == set(JobKind)
    assert JOB_PROFILES[JobKind.BACKUP].interval == 30
    assert JOB_PROFILES[JobKind.ADDON_ACTIVATION].interval == 10
    assert "CREATE_FAILED" in JOB_PROFILES[JobKind.ADDON_ACTIVATION].failure_states
    assert JOB_PROFILES[JobKind.STACK_OPERATION].success_states == frozenset({"DELETE_COMPLETE"})


@pytest.mark.asyncio
async def test_profile_timeout_override(fake_clock: FakeClock):
    query, _ = scripted(["RUNNING"])

    result = await poll_with_profile(
        "job-6", JobKind.RESTORE, query, timeout=60, clock=fake_clock
    )

    assert result.kind == JobKind.RESTORE
    assert result.outcome == PollOutcome.TIMED_OUT
    assert result.elapsed == 60
    assert fake_clock.sleeps == [30, 30]


# ============================================================================
# raise_for_result
# ============================================================================

@pytest.mark.asyncio
async def test_raise_for_result(fake_clock: FakeClock):
    ok, _ = scripted(["COMPLETED"])
    failed, _ = scripted(["FAILED"])
    slow, _ = scripted(["RUNNING"])

    success = await poll_with_profile("a", JobKind.BACKUP, ok, clock=fake_clock)
    assert raise_for_result(success) is success

    failure = await poll_with_profile("b", JobKind.BACKUP, failed, clock=fake_clock)
    with pytest.raises(JobFailedError) as excinfo:
        raise_for_result(failure)
    assert excinfo.value.details["status"] == "FAILED"

    timeout = await poll_with_profile("c", JobKind.BACKUP, slow, timeout=30, clock=fake_clock)
    with pytest.raises(JobTimeoutError):
        raise_for_result(timeout)
