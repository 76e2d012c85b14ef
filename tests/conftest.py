"""
Shared fixtures
"""

import shutil
import subprocess
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

import pytest

from core.config import Config
from core.exceptions import CommandError
from core.process import CommandResult, CommandRunner
from pipeline.context import RunContext
from pipeline.definition import PipelineDefinition, ManifestSettings
from pipeline.triggers import Event


FIXED_NOW = datetime(2024, 6, 15, 10, 30, 45, tzinfo=ZoneInfo("Asia/Kolkata"))

VALUES_YAML = """replicaCount: 1
image:
  repository: user/github-actions-backend
  pullPolicy: IfNotPresent
  # Overrides the image tag
  tag: main-20240601000000
service:
  port: 8080
"""

CHART_YAML = """apiVersion: v2
name: spring-boot-backend
version: 0.1.0
appVersion: "2024.06.3"
"""


@dataclass
class Call:
    command: List[str]
    cwd: Optional[str]
    env: Optional[Dict[str, str]]
    input: Optional[str]


class RecordingRunner(CommandRunner):
    """CommandRunner that records commands instead of executing them

    failures: command prefix -> exit code
    outputs: command prefix -> (stdout, stderr)
    """

    def __init__(self, failures=None, outputs=None):
        super().__init__()
        self.calls: List[Call] = []
        self.failures: Dict[Tuple[str, ...], int] = failures or {}
        self.outputs: Dict[Tuple[str, ...], Tuple[str, str]] = outputs or {}

    @staticmethod
    def _matches(command: List[str], prefix: Tuple[str, ...]) -> bool:
        return tuple(command[:len(prefix)]) == prefix

    def run(self, command, *, cwd=None, env=None, input=None, timeout=None, check=True):
        command = [str(part) for part in command]
        self.calls.append(Call(command, str(cwd) if cwd else None, dict(env) if env else None, input))

        stdout, stderr = "", ""
        for prefix, output in self.outputs.items():
            if self._matches(command, prefix):
                stdout, stderr = output
        returncode = 0
        for prefix, code in self.failures.items():
            if self._matches(command, prefix):
                returncode = code

        if check and returncode != 0:
            raise CommandError(command, returncode, stdout, stderr or "boom")
        return CommandResult(command, returncode, stdout, stderr)

    @property
    def commands(self) -> List[List[str]]:
        return [call.command for call in self.calls]


@pytest.fixture
def config(tmp_path):
    return Config(
        _env_file=None,
        docker_username="octo",
        docker_password="docker-secret",
        sonar_token="sonar-secret",
        sonar_project_key="backend",
        sonar_organization="octo-org",
        gh_pat_update_manifest="ghp_secret",
        pipeline_tz="Asia/Kolkata",
        state_dir=str(tmp_path / "state")
    )


@pytest.fixture
def runner():
    return RecordingRunner(outputs={("java", "-version"): ("", 'openjdk version "17.0.9" 2023-10-17\n')})


@pytest.fixture
def make_ctx(tmp_path, config, runner):
    def _make(
        event: Optional[Event] = None,
        definition: Optional[PipelineDefinition] = None,
        runner: CommandRunner = runner,
        outputs: Optional[dict] = None,
        clock=lambda: FIXED_NOW
    ) -> RunContext:
        project = tmp_path / "project"
        project.mkdir(exist_ok=True)
        work = tmp_path / "work"
        work.mkdir(exist_ok=True)
        artifacts = tmp_path / "artifacts"
        artifacts.mkdir(exist_ok=True)
        return RunContext(
            event=event or Event("push", ref="refs/heads/main"),
            definition=definition or PipelineDefinition(),
            config=config,
            project_dir=project,
            run_id="test-run",
            work_dir=work,
            artifacts_dir=artifacts,
            runner=runner,
            outputs=dict(outputs or {}),
            clock=clock
        )
    return _make


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")


def git(*args, cwd=None) -> str:
    result = subprocess.run(
        ["git", "-c", "user.name=Test", "-c", "user.email=test@example.com", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        check=True
    )
    return result.stdout


@pytest.fixture
def manifests_remote(tmp_path) -> Path:
    """Bare repository with a Helm chart on main"""
    seed = tmp_path / "seed"
    chart = seed / "chart"
    chart.mkdir(parents=True)
    (chart / "values.yaml").write_text(VALUES_YAML, encoding="utf-8")
    (chart / "Chart.yaml").write_text(CHART_YAML, encoding="utf-8")

    git("init", "-q", cwd=seed)
    git("checkout", "-q", "-b", "main", cwd=seed)
    git("add", ".", cwd=seed)
    git("commit", "-q", "-m", "initial chart", cwd=seed)

    remote = tmp_path / "remote.git"
    git("clone", "-q", "--bare", str(seed), str(remote))
    return remote


@pytest.fixture
def manifest_definition() -> PipelineDefinition:
    return PipelineDefinition(
        manifests=ManifestSettings(repository="octo/manifests", chart_dir="chart")
    )


def remote_file(remote: Path, ref: str, path: str) -> str:
    return git("--git-dir", str(remote), "show", f"{ref}:{path}")


def remote_branches(remote: Path) -> List[str]:
    out = git("--git-dir", str(remote), "for-each-ref", "--format=%(refname:short)", "refs/heads")
    return [line.strip() for line in out.splitlines() if line.strip()]
