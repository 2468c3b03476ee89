# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
EKS DR Poller - Wait for long-running provider jobs to finish.

Every asynchronous provider operation (backup job, restore job, add-on
activation, cluster creation, stack deletion) is driven to a terminal
state here. A poll:

1. Queries the current status through a caller-supplied coroutine
2. Stops immediately on a success or failure state
3. Sleeps a fixed interval otherwise, never past the deadline
4. Reports a timeout within one interval of the deadline

Polling never raises for transient states. Callers decide what a failed
or timed-out result means through raise_for_result().
"""

import asyncio
import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, Protocol

import structlog

from eksdr.config import JobKind
from eksdr.exceptions import ConfigurationError, JobFailedError, JobTimeoutError

logger = structlog.get_logger()

# Status reported when the provider does not know the job (yet)
NOT_FOUND = "NOT_FOUND"

StatusQuery = Callable[[], Awaitable[str]]
DetailQuery = Callable[[], Awaitable[Any]]


class Clock(Protocol):
    """Time source used for elapsed-time accounting and sleeping."""

    def now(self) -> float: ...

    async def sleep(self, seconds: float) -> None: ...


class SystemClock:
    """Monotonic wall clock backed by asyncio.sleep."""

    def now(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


class PollOutcome(str, Enum):
    """Terminal classification of a polled job."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class PollResult:
    """Result of polling one job to a terminal state."""

    job_id: str
    kind: JobKind | None
    outcome: PollOutcome
    status: str  # last provider status seen
    detail: str | None  # always set unless the job succeeded
    elapsed: float
    polls: int

    @property
    def succeeded(self) -> bool:
        return self.outcome == PollOutcome.SUCCEEDED


@dataclass(frozen=True)
class JobProfile:
    """Fixed polling parameters for one job kind."""

    kind: JobKind
    interval: float
    timeout: float
    success_states: FrozenSet[str]
    failure_states: FrozenSet[str]


JOB_PROFILES: Dict[JobKind, JobProfile] = {
    JobKind.BACKUP: JobProfile(
        kind=JobKind.BACKUP,
        interval=30,
        timeout=3600,
        success_states=frozenset({"COMPLETED"}),
        failure_states=frozenset({"FAILED", "ABORTED", "EXPIRED", "PARTIAL"}),
    ),
    JobKind.RESTORE: JobProfile(
        kind=JobKind.RESTORE,
        interval=30,
        timeout=3600,
        success_states=frozenset({"COMPLETED"}),
        failure_states=frozenset({"FAILED", "ABORTED"}),
    ),
    JobKind.ADDON_ACTIVATION: JobProfile(
        kind=JobKind.ADDON_ACTIVATION,
        interval=10,
        timeout=600,
        success_states=frozenset({"ACTIVE"}),
        failure_states=frozenset({"CREATE_FAILED", "DEGRADED"}),
    ),
    JobKind.CLUSTER_CREATION: JobProfile(
        kind=JobKind.CLUSTER_CREATION,
        interval=10,
        timeout=600,
        success_states=frozenset({"ACTIVE"}),
        failure_states=frozenset({"FAILED"}),
    ),
    JobKind.STACK_OPERATION: JobProfile(
        kind=JobKind.STACK_OPERATION,
        interval=10,
        timeout=1800,
        success_states=frozenset({"DELETE_COMPLETE"}),
        failure_states=frozenset({"DELETE_FAILED"}),
    ),
}


async def poll_job(
    job_id: str,
    status_query: StatusQuery,
    success_states: Iterable[str],
    failure_states: Iterable[str],
    interval: float,
    timeout: float,
    *,
    failure_detail: DetailQuery | None = None,
    kind: JobKind | None = None,
    clock: Clock | None = None,
) -> PollResult:
    """
    Poll a job until it succeeds, fails, or runs out of time.

    The status query is never called again after a terminal state has
    been observed. Sleeps are capped to the time left before the deadline,
    so a timed-out result is returned within one interval of `timeout`.

    Args:
        job_id: Provider job identifier (used for logging and the result)
        status_query: Coroutine returning the current status string
        success_states: Statuses that end the poll successfully
        failure_states: Statuses that end the poll as failed
        interval: Seconds between queries
        timeout: Seconds before giving up
        failure_detail: Coroutine returning a failure reason
        kind: Job kind, recorded on the result
        clock: Time source (defaults to SystemClock)

    Returns:
        PollResult describing the terminal outcome
    """
    if interval <= 0 or timeout <= 0:
        raise ConfigurationError(
            "Poll interval and timeout must be positive",
            details={"interval": interval, "timeout": timeout},
        )

    clock = clock or SystemClock()
    success = frozenset(success_states)
    failure = frozenset(failure_states)
    kind_value = kind.value if kind else None

    started = clock.now()
    polls = 0

    try:
        while True:
            status = await status_query()
            polls += 1
            elapsed = clock.now() - started

            if status in success:
                logger.info(
                    "job_poll_succeeded",
                    job_id=job_id,
                    kind=kind_value,
                    status=status,
                    elapsed=elapsed,
                )
                return PollResult(
                    job_id=job_id,
                    kind=kind,
                    outcome=PollOutcome.SUCCEEDED,
                    status=status,
                    detail=None,
                    elapsed=elapsed,
                    polls=polls,
                )

            if status in failure:
                detail = await _describe_failure(job_id, status, failure_detail)
                logger.error(
                    "job_poll_failed",
                    job_id=job_id,
                    kind=kind_value,
                    status=status,
                    detail=detail,
                )
                return PollResult(
                    job_id=job_id,
                    kind=kind,
                    outcome=PollOutcome.FAILED,
                    status=status,
                    detail=detail,
                    elapsed=clock.now() - started,
                    polls=polls,
                )

            if elapsed >= timeout:
                logger.error(
                    "job_poll_timed_out",
                    job_id=job_id,
                    kind=kind_value,
                    status=status,
                    timeout=timeout,
                )
                return PollResult(
                    job_id=job_id,
                    kind=kind,
                    outcome=PollOutcome.TIMED_OUT,
                    status=status,
                    detail=f"Timed out after {timeout:g}s, last status {status}",
                    elapsed=elapsed,
                    polls=polls,
                )

            logger.info(
                "job_poll_waiting",
                job_id=job_id,
                kind=kind_value,
                status=status,
                elapsed=round(elapsed, 1),
            )
            await clock.sleep(min(interval, timeout - elapsed))

    except asyncio.CancelledError:
        logger.warning("job_poll_cancelled", job_id=job_id, kind=kind_value, polls=polls)
        raise


async def poll_with_profile(
    job_id: str,
    kind: JobKind,
    status_query: StatusQuery,
    *,
    failure_detail: DetailQuery | None = None,
    timeout: float | None = None,
    clock: Clock | None = None,
) -> PollResult:
    """
    Poll a job with the fixed interval and states of its kind.

    Only the timeout may be overridden (usually from DRConfig).
    """
    profile = JOB_PROFILES[kind]
    return await poll_job(
        job_id,
        status_query,
        profile.success_states,
        profile.failure_states,
        profile.interval,
        timeout if timeout is not None else profile.timeout,
        failure_detail=failure_detail,
        kind=kind,
        clock=clock,
    )


def raise_for_result(result: PollResult) -> PollResult:
    """
    Turn a failed or timed-out poll into an exception.

    Returns:
        The result unchanged when it succeeded

    Raises:
        JobFailedError: The job reached a failure state
        JobTimeoutError: The job did not finish in time
    """
    details = {
        "job_id": result.job_id,
        "status": result.status,
        "detail": result.detail,
    }
    label = result.kind.value if result.kind else "job"

    if result.outcome == PollOutcome.FAILED:
        raise JobFailedError(f"{label} {result.job_id} failed", details=details)
    if result.outcome == PollOutcome.TIMED_OUT:
        raise JobTimeoutError(
            f"{label} {result.job_id} timed out after {result.elapsed:.0f}s",
            details=details,
        )
    return result


async def _describe_failure(
    job_id: str,
    status: str,
    failure_detail: DetailQuery | None,
) -> str:
    """Fetch a failure reason, falling back to the status itself."""
    fallback = f"Job ended in status {status}"
    if failure_detail is None:
        return fallback

    try:
        detail = await failure_detail()
    except Exception as e:
        logger.warning("failure_detail_unavailable", job_id=job_id, error=str(e))
        return fallback

    if not detail:
        return fallback
    if isinstance(detail, str):
        return detail
    return json.dumps(detail, default=str)
