"""
Custom exceptions for helmsman
"""

from typing import List, Optional, Sequence


class HelmsmanError(Exception):
    """Base exception for all helmsman errors"""
    pass


# Config exceptions
class ConfigError(HelmsmanError):
    """Configuration error"""
    pass


class MissingConfigError(ConfigError):
    """Required configuration is missing"""
    pass


class DefinitionError(ConfigError):
    """Invalid pipeline definition file"""
    pass


# Process exceptions
class CommandError(HelmsmanError):
    """External command exited with a non-zero status or timed out"""

    def __init__(
        self,
        command: Sequence[str],
        returncode: Optional[int],
        stdout: str = "",
        stderr: str = "",
        timed_out: bool = False
    ):
        self.command: List[str] = list(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.timed_out = timed_out
        if timed_out:
            summary = f"Command timed out: {' '.join(self.command)}"
        else:
            summary = f"Command {' '.join(self.command)} failed with exit code {returncode}"
        tail = stderr.strip().splitlines()[-5:] if stderr else []
        if tail:
            summary += "\n" + "\n".join(tail)
        super().__init__(summary)


# Pipeline exceptions
class PipelineError(HelmsmanError):
    """Base exception for pipeline errors"""
    pass


class StageError(PipelineError):
    """Error during stage execution"""
    pass


class BuildError(StageError):
    """Build, runtime check or test failure"""
    pass


class QualityGateError(StageError):
    """Code-quality scan failed"""
    pass


class RegistryError(StageError):
    """Registry login, image build or push failed"""
    pass


class ManifestError(StageError):
    """Manifest repository update failed"""
    pass


class ManifestNotFoundError(ManifestError):
    """Expected manifest file is missing"""
    pass


class ManifestFormatError(ManifestError):
    """Manifest file does not have the expected field layout"""
    pass


class VersionFormatError(ManifestError):
    """appVersion is not in year.month.patch form"""
    pass


# Git exceptions
class GitError(HelmsmanError):
    """Base exception for git operations"""
    pass


class GitConflictError(GitError):
    """Remote moved or push was rejected"""
    pass


class GitAuthError(GitError):
    """Git authentication failed"""
    pass


# Integration exceptions
class PullRequestError(HelmsmanError):
    """Pull request could not be created"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
