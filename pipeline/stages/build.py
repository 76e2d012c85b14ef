"""
Build-and-Test stage - runtime check, build, tests with coverage, artifacts
"""

import logging
import re
import shutil
import stat
from pathlib import Path
from typing import Dict, List

from core.exceptions import BuildError, CommandError
from ..context import RunContext
from ..definition import RuntimeSpec
from .base import Stage, StageResult


logger = logging.getLogger(__name__)

# openjdk version "17.0.9", java version "1.8.0_381"
_VERSION_PATTERN = re.compile(r'version\s+"?(\d+)(?:\.(\d+))?')
# Python 3.12.1, node v20.11.0
_BARE_VERSION_PATTERN = re.compile(r'(?:^|\s)v?(\d+)(?:\.(\d+))?')


def parse_runtime_major(output: str) -> str:
    """Extract the major version from a runtime's version banner

    Legacy 1.x numbering reports the minor as major (1.8 -> 8).
    """
    match = _VERSION_PATTERN.search(output) or _BARE_VERSION_PATTERN.search(output)
    if match is None:
        return ""
    major, minor = match.group(1), match.group(2)
    if major == "1" and minor:
        return minor
    return major


class BuildAndTestStage(Stage):
    name = "build-and-test"

    def execute(self, ctx: RunContext) -> StageResult:
        settings = ctx.definition.build
        project = ctx.project_dir

        runtime_version = None
        if settings.runtime is not None:
            runtime_version = self._check_runtime(ctx, settings.runtime)

        if settings.build_script:
            self._make_executable(project / settings.build_script)

        self._run(ctx, settings.build_command, "Build")
        self._run(ctx, settings.test_command, "Tests")

        uploaded = self._persist_artifacts(ctx)
        return self.succeeded(
            "Build and tests passed",
            runtime=runtime_version,
            artifacts=uploaded
        )

    def _check_runtime(self, ctx: RunContext, runtime: RuntimeSpec) -> str:
        try:
            result = ctx.runner.run(runtime.probe, cwd=ctx.project_dir)
        except CommandError as e:
            raise BuildError(f"{runtime.name} runtime is not available: {e}") from e

        # java -version writes its banner to stderr
        major = parse_runtime_major(result.stderr + "\n" + result.stdout)
        if major != runtime.version:
            raise BuildError(
                f"{runtime.name} {runtime.version} required, found {major or 'unknown version'}"
            )
        logger.info(f"Using {runtime.name} {major}")
        return major

    def _make_executable(self, script: Path) -> None:
        if not script.is_file():
            raise BuildError(f"Build script not found: {script}")
        mode = script.stat().st_mode
        script.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    def _run(self, ctx: RunContext, command: List[str], label: str) -> None:
        logger.info(f"{label}: {' '.join(command)}")
        try:
            ctx.runner.run(command, cwd=ctx.project_dir)
        except CommandError as e:
            raise BuildError(f"{label} failed: {e}") from e

    def _persist_artifacts(self, ctx: RunContext) -> Dict[str, str]:
        """Copy artifact paths into the run's artifact directory"""
        uploaded: Dict[str, str] = {}
        for artifact in ctx.definition.build.artifacts:
            source = ctx.project_dir / artifact.path
            if not source.exists():
                logger.warning(f"No files found for artifact {artifact.name} at {artifact.path}")
                continue
            target = ctx.artifacts_dir / artifact.name
            target.mkdir(parents=True, exist_ok=True)
            if source.is_dir():
                shutil.copytree(source, target / source.name, dirs_exist_ok=True)
            else:
                shutil.copy2(source, target / source.name)
            uploaded[artifact.name] = str(target)
            logger.info(f"Stored artifact {artifact.name} -> {target}")
        return uploaded
