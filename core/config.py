"""
Configuration System - Pydantic Settings with .env support

Secrets and host-level settings come from the environment. The shape of the
pipeline itself lives in the pipeline definition YAML (see pipeline.definition).
"""

from pathlib import Path
from typing import Optional, List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import MissingConfigError


class Config(BaseSettings):
    """helmsman configuration"""

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore'
    )

    # Container registry
    docker_username: Optional[str] = None
    docker_password: Optional[SecretStr] = None
    docker_registry: Optional[str] = None

    # Code-quality scan
    sonar_token: Optional[SecretStr] = None
    sonar_project_key: Optional[str] = None
    sonar_organization: Optional[str] = None
    sonar_host_url: str = "https://sonarcloud.io"

    # Manifest repository
    gh_pat_update_manifest: Optional[SecretStr] = None
    github_api_url: str = "https://api.github.com"
    github_server_url: str = "https://github.com"

    # Clock used for image tags, versions and branch names
    pipeline_tz: str = Field(default="Asia/Kolkata")

    # Timeouts (seconds)
    command_timeout: int = 1800
    git_command_timeout: int = 120
    git_push_timeout: int = 300

    # Directories
    state_dir: str = ".helmsman"
    log_dir: Optional[str] = None
    run_history_limit: int = 20

    @field_validator('pipeline_tz')
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate that the time zone is known"""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown time zone: {v}")
        return v

    @field_validator('command_timeout', 'git_command_timeout', 'git_push_timeout', 'run_history_limit')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator('sonar_host_url', 'github_api_url', 'github_server_url')
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip('/')

    @property
    def timezone(self) -> ZoneInfo:
        return ZoneInfo(self.pipeline_tz)

    @property
    def state_path(self) -> Path:
        return Path(self.state_dir)

    def secret_values(self) -> List[str]:
        """All configured secret values, for redaction in logs"""
        secrets = []
        for value in (self.docker_password, self.sonar_token, self.gh_pat_update_manifest):
            if value is not None and value.get_secret_value():
                secrets.append(value.get_secret_value())
        return secrets

    def require(self, *names: str) -> None:
        """Raise MissingConfigError listing every unset field in names"""
        missing = []
        for name in names:
            value = getattr(self, name)
            if isinstance(value, SecretStr):
                value = value.get_secret_value()
            if not value:
                missing.append(name.upper())
        if missing:
            raise MissingConfigError(f"Missing required settings: {', '.join(missing)}")


def load_config(env_file: Optional[str] = None) -> Config:
    """Load configuration"""
    if env_file:
        return Config(_env_file=env_file)
    return Config()
