"""
Unit tests for core module
"""

import json
import logging
import sys

import pytest
from unittest.mock import patch

from core.config import Config
from core.exceptions import (
    HelmsmanError,
    CommandError,
    ConfigError,
    MissingConfigError,
    PipelineError,
    StageError,
    RegistryError,
    ManifestError,
    VersionFormatError,
    GitError,
    GitConflictError,
    PullRequestError,
)
from core.logging_config import JSONFormatter, LogContext, StagePrefixFilter
from core.process import CommandRunner, redact


class TestConfig:
    """Tests for Config class"""

    def test_config_from_env(self):
        """Should load config from environment"""
        with patch.dict('os.environ', {
            'DOCKER_USERNAME': 'octo',
            'DOCKER_PASSWORD': 'pw',
            'SONAR_PROJECT_KEY': 'backend',
        }):
            config = Config(_env_file=None)
            assert config.docker_username == 'octo'
            assert config.docker_password.get_secret_value() == 'pw'
            assert config.sonar_project_key == 'backend'

    def test_config_defaults(self):
        """Should have sensible defaults"""
        with patch.dict('os.environ', {}, clear=True):
            config = Config(_env_file=None)
            assert config.pipeline_tz == 'Asia/Kolkata'
            assert config.sonar_host_url == 'https://sonarcloud.io'
            assert config.command_timeout == 1800

    def test_unknown_timezone_raises(self):
        """Should reject unknown time zones"""
        with pytest.raises(Exception):
            Config(_env_file=None, pipeline_tz='Mars/Olympus_Mons')

    def test_non_positive_timeout_raises(self):
        with pytest.raises(Exception):
            Config(_env_file=None, git_push_timeout=0)

    def test_require_lists_all_missing(self):
        """Should name every missing setting at once"""
        with patch.dict('os.environ', {}, clear=True):
            config = Config(_env_file=None, docker_username='octo')
            with pytest.raises(MissingConfigError) as exc_info:
                config.require('docker_username', 'docker_password', 'sonar_token')
            message = str(exc_info.value)
            assert 'DOCKER_PASSWORD' in message
            assert 'SONAR_TOKEN' in message
            assert 'DOCKER_USERNAME' not in message

    def test_secret_values(self, config):
        assert set(config.secret_values()) == {'docker-secret', 'sonar-secret', 'ghp_secret'}

    def test_secrets_hidden_in_repr(self, config):
        assert 'docker-secret' not in repr(config)


class TestExceptions:
    """Tests for custom exceptions"""

    def test_hierarchy(self):
        """Stage failures are pipeline errors, all are HelmsmanError"""
        assert issubclass(RegistryError, StageError)
        assert issubclass(StageError, PipelineError)
        assert issubclass(VersionFormatError, ManifestError)
        assert issubclass(GitConflictError, GitError)
        assert issubclass(MissingConfigError, ConfigError)
        for exc in (PipelineError, GitError, ConfigError, CommandError, PullRequestError):
            assert issubclass(exc, HelmsmanError)

    def test_command_error_message(self):
        """Should carry command, exit code and stderr tail"""
        error = CommandError(["docker", "push", "x"], 1, "", "denied: requested access")
        assert error.returncode == 1
        assert "docker push x" in str(error)
        assert "denied" in str(error)

    def test_command_error_timeout(self):
        error = CommandError(["sleep", "10"], None, timed_out=True)
        assert error.timed_out
        assert "timed out" in str(error)

    def test_pull_request_error_status(self):
        error = PullRequestError("rejected", status_code=422)
        assert error.status_code == 422


class TestCommandRunner:
    """Tests for CommandRunner"""

    def test_run_success(self):
        runner = CommandRunner()
        result = runner.run([sys.executable, "-c", "print('hello')"])
        assert result.ok
        assert result.stdout.strip() == "hello"

    def test_run_failure_raises(self):
        runner = CommandRunner()
        with pytest.raises(CommandError) as exc_info:
            runner.run([sys.executable, "-c", "import sys; sys.exit(3)"])
        assert exc_info.value.returncode == 3

    def test_run_failure_no_check(self):
        runner = CommandRunner()
        result = runner.run([sys.executable, "-c", "import sys; sys.exit(2)"], check=False)
        assert result.returncode == 2
        assert not result.ok

    def test_input_passed_on_stdin(self):
        runner = CommandRunner()
        result = runner.run([sys.executable, "-c", "import sys; print(sys.stdin.read().upper())"], input="pw")
        assert result.stdout.strip() == "PW"

    def test_env_merged(self):
        runner = CommandRunner(env={"HELMSMAN_A": "1"})
        result = runner.run(
            [sys.executable, "-c", "import os; print(os.environ['HELMSMAN_A'] + os.environ['HELMSMAN_B'])"],
            env={"HELMSMAN_B": "2"}
        )
        assert result.stdout.strip() == "12"

    def test_timeout_raises(self):
        runner = CommandRunner(timeout=1)
        with pytest.raises(CommandError) as exc_info:
            runner.run([sys.executable, "-c", "import time; time.sleep(5)"])
        assert exc_info.value.timed_out

    def test_missing_binary_raises(self):
        runner = CommandRunner()
        with pytest.raises(CommandError) as exc_info:
            runner.run(["helmsman-no-such-binary"])
        assert exc_info.value.returncode == 127

    def test_secrets_redacted(self):
        """Secrets should not leak through output or errors"""
        runner = CommandRunner(secrets=["s3cret"])
        result = runner.run([sys.executable, "-c", "print('token=s3cret')"])
        assert "s3cret" not in result.stdout
        assert "***" in result.stdout

        with pytest.raises(CommandError) as exc_info:
            runner.run([sys.executable, "-c", "import sys; sys.exit(1)", "s3cret"])
        assert "s3cret" not in str(exc_info.value)

    def test_undecodable_output_replaced(self):
        """Non-UTF-8 bytes from a passing command must not fail the run"""
        runner = CommandRunner()
        result = runner.run([
            sys.executable, "-c",
            "import sys; sys.stdout.buffer.write(b'caf\\xe9 ok\\n'); sys.stderr.buffer.write(b'\\xff warn\\n')"
        ])
        assert result.ok
        assert result.stdout == "caf� ok\n"
        assert result.stderr.endswith(" warn\n")

    def test_undecodable_output_on_timeout(self):
        runner = CommandRunner(timeout=1)
        with pytest.raises(CommandError) as exc_info:
            runner.run([
                sys.executable, "-c",
                "import sys, time; sys.stdout.buffer.write(b'caf\\xe9\\n'); sys.stdout.flush(); time.sleep(5)"
            ])
        assert exc_info.value.timed_out

    def test_redact(self):
        assert redact("a-b-a", ["a"]) == "***-b-***"
        assert redact("text", [""]) == "text"


class TestLogging:
    """Tests for JSON logs and LogContext"""

    def test_json_line_carries_run_fields(self):
        logger = logging.getLogger("helmsman.test")
        with LogContext(run_id="r1", ref="refs/heads/main"):
            with LogContext(stage="image-publish"):
                record = logger.makeRecord(logger.name, logging.INFO, __file__, 1, "pushed %s", ("x",), None)
        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "pushed x"
        assert entry["run_id"] == "r1"
        assert entry["stage"] == "image-publish"
        assert entry["ref"] == "refs/heads/main"
        assert "duration_ms" not in entry

    def test_context_restored(self):
        logger = logging.getLogger("helmsman.test")
        with LogContext(stage="build-and-test"):
            pass
        record = logger.makeRecord(logger.name, logging.INFO, __file__, 1, "m", (), None)
        assert not hasattr(record, "stage")

    def test_stage_prefix(self):
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "m", (), None)
        record.stage = "quality-scan"
        StagePrefixFilter().filter(record)
        assert record.stage_prefix == "[quality-scan] "
