"""helmsman core"""

from .config import Config, load_config
from .exceptions import (
    HelmsmanError,
    ConfigError,
    MissingConfigError,
    DefinitionError,
    CommandError,
    PipelineError,
    StageError,
    BuildError,
    QualityGateError,
    RegistryError,
    ManifestError,
    ManifestNotFoundError,
    ManifestFormatError,
    VersionFormatError,
    GitError,
    GitConflictError,
    GitAuthError,
    PullRequestError,
)
from .logging_config import setup_logging, LogContext
from .process import CommandRunner, CommandResult

__all__ = [
    "Config",
    "load_config",
    "HelmsmanError",
    "ConfigError",
    "MissingConfigError",
    "DefinitionError",
    "CommandError",
    "PipelineError",
    "StageError",
    "BuildError",
    "QualityGateError",
    "RegistryError",
    "ManifestError",
    "ManifestNotFoundError",
    "ManifestFormatError",
    "VersionFormatError",
    "GitError",
    "GitConflictError",
    "GitAuthError",
    "PullRequestError",
    "setup_logging",
    "LogContext",
    "CommandRunner",
    "CommandResult",
]
