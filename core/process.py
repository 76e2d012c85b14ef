"""
Process runner - blocking subprocess execution with timeouts and secret redaction
"""

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Mapping, Optional, Sequence, Union

from .exceptions import CommandError


logger = logging.getLogger(__name__)

REDACTED = "***"

# Default timeout for build/test/scan/docker commands
DEFAULT_TIMEOUT = 1800


@dataclass
class CommandResult:
    """Completed external command"""
    command: List[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def redact(text: str, secrets: Iterable[str]) -> str:
    """Replace every secret value in text with ***"""
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


class CommandRunner:
    """Runs external commands for pipeline stages

    Every command line and output that leaves this class (logs, exceptions)
    has the registered secrets masked.
    """

    def __init__(
        self,
        secrets: Optional[Iterable[str]] = None,
        timeout: int = DEFAULT_TIMEOUT,
        env: Optional[Mapping[str, str]] = None
    ):
        self.secrets: List[str] = [s for s in (secrets or []) if s]
        self.timeout = timeout
        self.env = dict(env or {})

    def add_secret(self, secret: Optional[str]) -> None:
        if secret and secret not in self.secrets:
            self.secrets.append(secret)

    def _redact(self, text: str) -> str:
        return redact(text, self.secrets)

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Union[str, Path, None] = None,
        env: Optional[Mapping[str, str]] = None,
        input: Optional[str] = None,
        timeout: Optional[int] = None,
        check: bool = True
    ) -> CommandResult:
        """Execute command and return its result

        Raises:
            CommandError: on timeout, or on non-zero exit when check is True
        """
        if timeout is None:
            timeout = self.timeout

        process_env = os.environ.copy()
        process_env.update(self.env)
        if env:
            process_env.update(env)

        display = [self._redact(str(part)) for part in command]
        logger.debug(f"$ {' '.join(display)}" + (f"  (cwd={cwd})" if cwd else ""))

        try:
            completed = subprocess.run(
                [str(part) for part in command],
                cwd=str(cwd) if cwd else None,
                env=process_env,
                input=input,
                capture_output=True,
                encoding="utf-8",
                errors="replace",
                timeout=timeout
            )
        except subprocess.TimeoutExpired as e:
            stdout = e.stdout.decode("utf-8", errors="replace") if isinstance(e.stdout, bytes) else (e.stdout or "")
            stderr = e.stderr.decode("utf-8", errors="replace") if isinstance(e.stderr, bytes) else (e.stderr or "")
            raise CommandError(
                display, None, self._redact(stdout), self._redact(stderr), timed_out=True
            ) from e
        except FileNotFoundError as e:
            raise CommandError(display, 127, "", f"{command[0]}: command not found") from e

        result = CommandResult(
            command=display,
            returncode=completed.returncode,
            stdout=self._redact(completed.stdout or ""),
            stderr=self._redact(completed.stderr or "")
        )

        if check and not result.ok:
            raise CommandError(result.command, result.returncode, result.stdout, result.stderr)
        return result
