# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
EKS DR Reports - Job dumps, RTO timelines and Markdown reports.

Everything lands under the configured results directory. Files are
written atomically (write to temp, then rename) so an interrupted drill
never leaves a half-written report behind.
"""

import getpass
import json
from datetime import datetime, UTC
from pathlib import Path
from typing import Any, Iterable, List, Sequence, Tuple

import aiofiles
import structlog

logger = structlog.get_logger()


def timestamp_slug(now: datetime | None = None) -> str:
    """Filesystem-friendly timestamp, e.g. 20260101-120000."""
    return (now or datetime.now(UTC)).strftime("%Y%m%d-%H%M%S")


def _display_time(now: datetime | None = None) -> str:
    return (now or datetime.now(UTC)).strftime("%Y-%m-%d %H:%M:%S")


async def write_text(path: Path, text: str) -> Path:
    """
    Write a text file atomically.

    Args:
        path: Destination file
        text: File contents

    Returns:
        The destination path
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(path.name + ".tmp")

    async with aiofiles.open(temp_path, "w") as f:
        await f.write(text)

    temp_path.replace(path)
    logger.debug("report_written", path=str(path), size=len(text))
    return path


async def write_json(path: Path, data: Any) -> Path:
    """Write data as indented JSON atomically (datetimes become strings)."""
    return await write_text(path, json.dumps(data, indent=2, default=str) + "\n")


class RtoTimeline:
    """
    CSV timeline of drill milestones (`timestamp,event`).

    The difference between the first and last rows is the observed
    recovery time of the drill.
    """

    def __init__(self, path: Path):
        self.path = path
        self.events: List[Tuple[str, str]] = []

    async def start(self, event: str) -> None:
        """Create the file with its header and record the first event."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(self.path, "w") as f:
            await f.write("timestamp,event\n")
        await self.record(event)

    async def record(self, event: str) -> None:
        stamp = _display_time()
        self.events.append((stamp, event))
        async with aiofiles.open(self.path, "a") as f:
            await f.write(f"{stamp},{event}\n")
        logger.info("rto_event", milestone=event, recorded_at=stamp)

    async def read(self) -> str:
        async with aiofiles.open(self.path) as f:
            return await f.read()


def markdown_table(headers: Sequence[str], rows: Iterable[Sequence[Any]]) -> str:
    """Render a simple Markdown table."""
    lines = [
        "| " + " | ".join(headers) + " |",
        "|" + "|".join("---" for _ in headers) + "|",
    ]
    for row in rows:
        lines.append("| " + " | ".join(str(cell) for cell in row) + " |")
    return "\n".join(lines)


async def write_flow_report(
    results_dir: Path,
    name: str,
    status: str,
    account_id: str,
    body: str = "",
    timeline: RtoTimeline | None = None,
) -> Path:
    """
    Write `test-run-<ts>/<name>-report.md`.

    Args:
        results_dir: Results directory
        name: Flow name, e.g. 'restore-to-new-cluster'
        status: Outcome shown in the header
        account_id: AWS account the drill ran in
        body: Markdown appended after the header
        timeline: RTO timeline appended as CSV

    Returns:
        Path of the report file
    """
    report_path = results_dir / f"test-run-{timestamp_slug()}" / f"{name}-report.md"

    parts = [
        f"# Test report: {name}",
        "",
        f"**Time**: {_display_time()}",
        f"**Status**: {status}",
        f"**Operator**: {_operator()}",
        f"**AWS account**: {account_id}",
        "",
        "## Results",
        "",
    ]
    if body:
        parts.extend([body, ""])
    if timeline is not None:
        parts.extend(["```csv", (await timeline.read()).rstrip("\n"), "```", ""])

    await write_text(report_path, "\n".join(parts))
    logger.info("flow_report_written", report=str(report_path))
    return report_path


def _operator() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"
