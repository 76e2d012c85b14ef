"""
Quality-Scan stage - submit coverage and sources to the code-quality service
"""

import logging
from typing import List

from core.exceptions import CommandError, QualityGateError
from ..context import RunContext
from .base import Stage, StageResult


logger = logging.getLogger(__name__)


class QualityScanStage(Stage):
    name = "quality-scan"

    def scanner_command(self, ctx: RunContext) -> List[str]:
        config = ctx.config
        scan = ctx.definition.scan
        return [
            scan.command,
            f"-Dsonar.projectKey={config.sonar_project_key}",
            f"-Dsonar.organization={config.sonar_organization}",
            f"-Dsonar.host.url={config.sonar_host_url}",
            *scan.extra_args,
            f"-Dsonar.coverage.jacoco.xmlReportPaths={scan.coverage_report}",
            f"-Dsonar.branch.name={ctx.event.ref_name}",
        ]

    def execute(self, ctx: RunContext) -> StageResult:
        ctx.config.require("sonar_token", "sonar_project_key", "sonar_organization")
        logger.info(f"Branch name is {ctx.event.ref_name}")

        token = ctx.config.sonar_token.get_secret_value()
        ctx.runner.add_secret(token)
        command = self.scanner_command(ctx)
        try:
            ctx.runner.run(command, cwd=ctx.project_dir, env={"SONAR_TOKEN": token})
        except CommandError as e:
            raise QualityGateError(f"Quality scan failed: {e}") from e

        return self.succeeded(
            f"Scan submitted for branch {ctx.event.ref_name}",
            branch=ctx.event.ref_name,
            project_key=ctx.config.sonar_project_key
        )
