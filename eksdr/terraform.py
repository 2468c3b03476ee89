# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Terraform outputs and teardown.

The lab's terraform stack (VPC, subnets, roles, backup vault) is optional.
Missing outputs are not errors: callers fall back to conventions.
"""

from pathlib import Path
from typing import Any, Dict

import structlog

from eksdr.tools import ToolResult, ToolRunner

logger = structlog.get_logger()


class TerraformOutputs:
    """Lazily loaded `terraform output -json` of one working directory."""

    def __init__(self, runner: ToolRunner, terraform_dir: Path):
        self._runner = runner
        self._terraform_dir = terraform_dir
        self._values: Dict[str, Any] | None = None

    async def load(self) -> Dict[str, Any]:
        """
        Read every output once.

        Returns:
            Mapping of output name to value; empty when terraform has no
            state, is not installed, or fails
        """
        if self._values is not None:
            return self._values

        self._values = {}
        if not self._terraform_dir.is_dir():
            logger.info("terraform_dir_missing", terraform_dir=str(self._terraform_dir))
            return self._values

        if not self._runner.which("terraform"):
            logger.warning("terraform_not_installed")
            return self._values

        result = await self._runner.run("terraform", "output", "-json", cwd=self._terraform_dir)
        if not result.ok:
            logger.warning("terraform_outputs_unavailable", stderr=result.stderr.strip())
            return self._values

        try:
            raw = result.json()
        except ValueError:
            logger.warning("terraform_outputs_invalid")
            return self._values

        self._values = {name: item.get("value") for name, item in raw.items()}
        logger.debug("terraform_outputs_loaded", outputs=sorted(self._values))
        return self._values

    async def get(self, name: str, default: Any = None) -> Any:
        """Value of one output, or `default` when absent or empty."""
        values = await self.load()
        value = values.get(name)
        return value if value not in (None, "", []) else default


def has_state(terraform_dir: Path) -> bool:
    """True when the directory holds a local terraform state file."""
    return (terraform_dir / "terraform.tfstate").exists()


async def destroy(runner: ToolRunner, terraform_dir: Path, *, dry_run: bool = False) -> ToolResult | None:
    """
    Destroy the terraform stack, or plan its destruction when dry_run.

    Returns:
        The terraform result, or None when there is no state to destroy
    """
    if not has_state(terraform_dir):
        logger.info("terraform_state_missing", terraform_dir=str(terraform_dir))
        return None

    if dry_run:
        logger.info("terraform_plan_destroy", terraform_dir=str(terraform_dir))
        return await runner.run("terraform", "plan", "-destroy", cwd=terraform_dir)

    logger.info("terraform_destroy", terraform_dir=str(terraform_dir))
    return await runner.run(
        "terraform", "destroy", "-auto-approve", cwd=terraform_dir, check=True
    )
