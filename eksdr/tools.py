# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
EKS DR Tools - Run the external command line tools the drills depend on.

aws (for update-kubeconfig), kubectl, helm, eksctl and terraform are
started as subprocesses with asyncio and their output captured.
"""

import asyncio
import json
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence, Tuple

import structlog

from eksdr.errors import explain_missing_tool
from eksdr.exceptions import ConfigurationError, ToolError

logger = structlog.get_logger()


@dataclass(frozen=True)
class ToolResult:
    """Outcome of one external command."""

    args: Tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def json(self) -> Any:
        """Parse stdout as JSON."""
        return json.loads(self.stdout)


class ToolRunner:
    """Runs external commands with captured output."""

    async def run(
        self,
        *args: str,
        cwd: Path | None = None,
        check: bool = False,
        timeout: float | None = None,
    ) -> ToolResult:
        """
        Run a command and wait for it to exit.

        Args:
            *args: Program and its arguments
            cwd: Working directory
            check: Raise ToolError on a non-zero exit code
            timeout: Seconds before the process is killed

        Returns:
            ToolResult with decoded stdout and stderr
        """
        logger.debug("tool_started", args=list(args), cwd=str(cwd) if cwd else None)

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=str(cwd) if cwd else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ConfigurationError(explain_missing_tool(args[0])) from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise ToolError(
                f"{args[0]} did not finish within {timeout}s",
                details={"args": list(args)},
            ) from e

        result = ToolResult(
            args=tuple(args),
            returncode=process.returncode,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )

        if not result.ok:
            logger.debug("tool_failed", args=list(args), returncode=result.returncode)
            if check:
                raise ToolError(
                    f"{args[0]} exited with code {result.returncode}",
                    details={"args": list(args), "stderr": result.stderr.strip()[-2000:]},
                )
        return result

    def which(self, tool: str) -> str | None:
        """Path of a tool on PATH, or None."""
        return shutil.which(tool)


def require_tools(runner: ToolRunner, tools: Sequence[str]) -> None:
    """
    Fail fast when a required tool is missing.

    Raises:
        ConfigurationError: For the first tool not found on PATH
    """
    for tool in tools:
        if not runner.which(tool):
            raise ConfigurationError(explain_missing_tool(tool), details={"tool": tool})


async def update_kubeconfig(runner: ToolRunner, cluster_name: str, region: str) -> bool:
    """
    Point kubectl at a cluster (context alias = cluster name).

    Returns:
        True if the API server answered afterwards

    Raises:
        ToolError: If the kubeconfig could not be written
    """
    await runner.run(
        "aws",
        "eks",
        "update-kubeconfig",
        "--name",
        cluster_name,
        "--region",
        region,
        "--alias",
        cluster_name,
        check=True,
    )

    reachable = (await runner.run("kubectl", "cluster-info")).ok
    if reachable:
        logger.info("kubectl_configured", cluster=cluster_name)
    else:
        logger.warning("cluster_unreachable", cluster=cluster_name)
    return reachable


async def kubectl_json(runner: ToolRunner, *args: str) -> Any | None:
    """
    Run `kubectl <args> -o json` and parse the output.

    Returns:
        Parsed JSON, or None if kubectl failed or printed invalid JSON
    """
    result = await runner.run("kubectl", *args, "-o", "json")
    if not result.ok:
        logger.debug("kubectl_query_failed", args=list(args), stderr=result.stderr.strip())
        return None
    try:
        return result.json()
    except ValueError:
        logger.warning("kubectl_invalid_json", args=list(args))
        return None


async def kubectl_items(runner: ToolRunner, *args: str) -> list:
    """Items of a kubectl list query; empty when the query failed."""
    document = await kubectl_json(runner, *args)
    if not document:
        return []
    return document.get("items", [])
