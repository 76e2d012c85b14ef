"""
Pipeline definition - triggers and stage settings loaded from YAML
"""

import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from core.exceptions import DefinitionError
from .triggers import TriggerRules


DEFAULT_DEFINITION = Path(__file__).parent / "default_pipeline.yaml"


@dataclass
class RuntimeSpec:
    """Pinned language runtime"""
    name: str = "java"
    version: str = "17"
    probe: List[str] = field(default_factory=lambda: ["java", "-version"])


@dataclass
class ArtifactSpec:
    name: str
    path: str


@dataclass
class BuildSettings:
    runtime: Optional[RuntimeSpec] = field(default_factory=RuntimeSpec)
    build_script: Optional[str] = "gradlew"
    build_command: List[str] = field(default_factory=lambda: ["./gradlew", "build"])
    test_command: List[str] = field(default_factory=lambda: ["./gradlew", "test", "jacocoTestReport"])
    artifacts: List[ArtifactSpec] = field(default_factory=list)


@dataclass
class ScanSettings:
    command: str = "sonar-scanner"
    coverage_report: str = "build/reports/jacoco/test/jacocoTestReport.xml"
    extra_args: List[str] = field(default_factory=lambda: ["-Dsonar.java.coveragePlugin=jacoco"])


@dataclass
class ImageSettings:
    name: str = "github-actions-backend"
    namespace: Optional[str] = None
    context: str = "."
    dockerfile: Optional[str] = None


@dataclass
class ManifestSettings:
    repository: str = ""
    chart_dir: str = "."
    values_file: str = "values.yaml"
    chart_file: str = "Chart.yaml"
    branch_prefix: str = "update-feature"
    git_user_name: str = "GitHub-Actions-CI-Build"
    git_user_email: str = "user@gitHubActions.com"

    @property
    def values_path(self) -> str:
        return str(Path(self.chart_dir) / self.values_file)

    @property
    def chart_path(self) -> str:
        return str(Path(self.chart_dir) / self.chart_file)


@dataclass
class PipelineDefinition:
    """Everything about the pipeline that is not a secret"""
    name: str = "pipeline"
    triggers: TriggerRules = field(default_factory=TriggerRules)
    main_branch: str = "main"
    build: BuildSettings = field(default_factory=BuildSettings)
    scan: ScanSettings = field(default_factory=ScanSettings)
    image: ImageSettings = field(default_factory=ImageSettings)
    manifests: ManifestSettings = field(default_factory=ManifestSettings)

    @property
    def main_ref(self) -> str:
        return f"refs/heads/{self.main_branch}"

    @classmethod
    def from_yaml(cls, yaml_path: Union[str, Path]) -> "PipelineDefinition":
        """Load from a YAML file

        Raises:
            FileNotFoundError: If YAML file doesn't exist
            DefinitionError: If the definition is invalid
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Pipeline definition not found: {yaml_path}")

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise DefinitionError(f"Invalid YAML in {yaml_path}: {e}")

        if data is None:
            raise DefinitionError(f"Empty YAML file: {yaml_path}")
        if not isinstance(data, dict):
            raise DefinitionError(f"Top level of {yaml_path} must be a mapping")

        return cls.from_dict(data, source=str(yaml_path))

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: str = "<dict>") -> "PipelineDefinition":
        errors: List[str] = []
        parser = _SectionParser(errors)

        triggers = parser.triggers(data.get("triggers", {}))
        build = parser.build(data.get("build", {}))
        scan = parser.scan(data.get("scan", {}))
        image = parser.image(data.get("image", {}))
        manifests = parser.manifests(data.get("manifests", {}))

        main_branch = data.get("main_branch", "main")
        if not isinstance(main_branch, str) or not main_branch.strip():
            errors.append("main_branch must be a non-empty string")

        if errors:
            raise DefinitionError(
                f"Pipeline definition errors in {source}:\n" + "\n".join(f"  - {e}" for e in errors)
            )

        return cls(
            name=str(data.get("name", "pipeline")),
            triggers=triggers,
            main_branch=main_branch,
            build=build,
            scan=scan,
            image=image,
            manifests=manifests
        )


def _as_command(value: Union[str, List[Any]]) -> List[str]:
    if isinstance(value, str):
        return shlex.split(value)
    return [str(v) for v in value]


def _as_str_list(value: Any) -> Optional[List[str]]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(v, (str, int, float)) for v in value):
        return [str(v) for v in value]
    return None


class _SectionParser:
    """Section parsers that collect errors instead of failing on the first"""

    def __init__(self, errors: List[str]):
        self.errors = errors

    def _mapping(self, name: str, value: Any) -> Dict[str, Any]:
        if value is None:
            return {}
        if not isinstance(value, dict):
            self.errors.append(f"'{name}' must be a mapping")
            return {}
        return value

    def _list(self, name: str, value: Any, default: List[str]) -> List[str]:
        if value is None:
            return list(default)
        parsed = _as_str_list(value)
        if parsed is None:
            self.errors.append(f"'{name}' must be a string or list of strings")
            return list(default)
        return parsed

    def _string(self, name: str, value: Any, default: Optional[str]) -> Optional[str]:
        if value is None:
            return default
        if not isinstance(value, str) or not value.strip():
            self.errors.append(f"'{name}' must be a non-empty string")
            return default
        return value

    def _command(self, name: str, value: Any, default: List[str]) -> List[str]:
        if value is None:
            return list(default)
        if not isinstance(value, (str, list)):
            self.errors.append(f"'{name}' must be a command string or list")
            return list(default)
        try:
            command = _as_command(value)
        except ValueError as e:
            self.errors.append(f"'{name}' is not a valid command: {e}")
            return list(default)
        if not command:
            self.errors.append(f"'{name}' is empty")
        return command

    def triggers(self, value: Any) -> TriggerRules:
        data = self._mapping("triggers", value)
        defaults = TriggerRules()
        push = self._mapping("triggers.push", data.get("push"))
        pull_request = self._mapping("triggers.pull_request", data.get("pull_request"))
        dispatch = data.get("workflow_dispatch", defaults.workflow_dispatch)
        if not isinstance(dispatch, bool):
            self.errors.append("'triggers.workflow_dispatch' must be true or false")
            dispatch = defaults.workflow_dispatch
        return TriggerRules(
            push_branches=self._list("triggers.push.branches", push.get("branches"), defaults.push_branches),
            pull_request_branches=self._list(
                "triggers.pull_request.branches", pull_request.get("branches"), defaults.pull_request_branches
            ),
            pull_request_types=self._list(
                "triggers.pull_request.types", pull_request.get("types"), defaults.pull_request_types
            ),
            workflow_dispatch=dispatch
        )

    def build(self, value: Any) -> BuildSettings:
        data = self._mapping("build", value)
        defaults = BuildSettings()

        runtime: Optional[RuntimeSpec] = defaults.runtime
        if "runtime" in data:
            raw = data["runtime"]
            if raw is None:
                runtime = None
            else:
                raw = self._mapping("build.runtime", raw)
                base = RuntimeSpec()
                runtime = RuntimeSpec(
                    name=str(raw.get("name", base.name)),
                    version=str(raw.get("version", base.version)),
                    probe=self._command("build.runtime.probe", raw.get("probe"), base.probe)
                )

        artifacts = []
        raw_artifacts = data.get("artifacts", [])
        if not isinstance(raw_artifacts, list):
            self.errors.append("'build.artifacts' must be a list")
            raw_artifacts = []
        seen = set()
        for i, item in enumerate(raw_artifacts):
            if not isinstance(item, dict) or "name" not in item or "path" not in item:
                self.errors.append(f"Artifact at index {i}: needs 'name' and 'path'")
                continue
            if item["name"] in seen:
                self.errors.append(f"Duplicate artifact name: {item['name']}")
            seen.add(item["name"])
            artifacts.append(ArtifactSpec(name=str(item["name"]), path=str(item["path"])))

        build_script = data.get("build_script", defaults.build_script)
        return BuildSettings(
            runtime=runtime,
            build_script=str(build_script) if build_script else None,
            build_command=self._command("build.build_command", data.get("build_command"), defaults.build_command),
            test_command=self._command("build.test_command", data.get("test_command"), defaults.test_command),
            artifacts=artifacts
        )

    def scan(self, value: Any) -> ScanSettings:
        data = self._mapping("scan", value)
        defaults = ScanSettings()
        return ScanSettings(
            command=self._string("scan.command", data.get("command"), defaults.command),
            coverage_report=str(data.get("coverage_report", defaults.coverage_report)),
            extra_args=self._list("scan.extra_args", data.get("extra_args"), defaults.extra_args)
        )

    def image(self, value: Any) -> ImageSettings:
        data = self._mapping("image", value)
        defaults = ImageSettings()
        return ImageSettings(
            name=self._string("image.name", data.get("name"), defaults.name),
            namespace=self._string("image.namespace", data.get("namespace"), None),
            context=str(data.get("context", defaults.context)),
            dockerfile=self._string("image.dockerfile", data.get("dockerfile"), None)
        )

    def manifests(self, value: Any) -> ManifestSettings:
        data = self._mapping("manifests", value)
        defaults = ManifestSettings()
        repository = data.get("repository", defaults.repository)
        if repository and (not isinstance(repository, str) or repository.count("/") != 1):
            self.errors.append("'manifests.repository' must look like 'owner/name'")
        return ManifestSettings(
            repository=str(repository or ""),
            chart_dir=str(data.get("chart_dir", defaults.chart_dir)),
            values_file=str(data.get("values_file", defaults.values_file)),
            chart_file=str(data.get("chart_file", defaults.chart_file)),
            branch_prefix=str(data.get("branch_prefix", defaults.branch_prefix)),
            git_user_name=str(data.get("git_user_name", defaults.git_user_name)),
            git_user_email=str(data.get("git_user_email", defaults.git_user_email))
        )


def load_definition(yaml_path: Optional[Union[str, Path]] = None) -> PipelineDefinition:
    """Load the pipeline definition

    Args:
        yaml_path: Path to a YAML file. If None, the bundled default is used.
    """
    if yaml_path is None:
        yaml_path = DEFAULT_DEFINITION
    return PipelineDefinition.from_yaml(yaml_path)
