"""
Git Manager - git operations on the manifests checkout

Clone, identity, staging, commit, branch and push. Push failures are
classified so the caller can tell a conflict from an auth problem.
"""

import logging
from typing import Optional, Sequence, Tuple
from pathlib import Path
from dataclasses import dataclass

from core.exceptions import CommandError, GitAuthError, GitConflictError, GitError
from core.process import CommandRunner


logger = logging.getLogger(__name__)


# Configurable timeouts
GIT_COMMAND_TIMEOUT = 120  # 2 minutes for most commands
GIT_PUSH_TIMEOUT = 300     # 5 minutes for push and clone


CONFLICT = "conflict"
AUTH = "auth"
NO_REMOTE = "no_remote"


@dataclass
class GitResult:
    """Git operation result"""
    success: bool
    message: str
    kind: Optional[str] = None
    error: Optional[str] = None

    def raise_for_failure(self) -> "GitResult":
        if self.success:
            return self
        detail = f"{self.message}: {self.error}" if self.error else self.message
        if self.kind == CONFLICT:
            raise GitConflictError(detail)
        if self.kind == AUTH:
            raise GitAuthError(detail)
        raise GitError(detail)


def classify_push_error(stderr: str) -> Tuple[str, Optional[str]]:
    """Map git push stderr to (message, kind)"""
    error_text = stderr.lower()

    if "no upstream branch" in error_text or "no configured push destination" in error_text:
        return "No remote configured", NO_REMOTE

    if "conflict" in error_text or "rejected" in error_text or "non-fast-forward" in error_text:
        return "Push rejected - remote has moved", CONFLICT

    if ("authentication" in error_text or "permission" in error_text
            or "could not read username" in error_text or "403" in error_text):
        return "Authentication failed", AUTH

    return "Push failed", None


class GitManager:
    """Git operations on one working copy"""

    def __init__(
        self,
        repo_path: str,
        runner: Optional[CommandRunner] = None,
        command_timeout: int = GIT_COMMAND_TIMEOUT,
        push_timeout: int = GIT_PUSH_TIMEOUT
    ):
        self.repo_path = Path(repo_path)
        self.runner = runner or CommandRunner()
        self.command_timeout = command_timeout
        self.push_timeout = push_timeout
        self._commit_count = 0

    @classmethod
    def clone(
        cls,
        url: str,
        dest: str,
        runner: Optional[CommandRunner] = None,
        branch: Optional[str] = None,
        command_timeout: int = GIT_COMMAND_TIMEOUT,
        push_timeout: int = GIT_PUSH_TIMEOUT
    ) -> "GitManager":
        """Clone url into dest and return a manager for it

        Raises:
            GitAuthError: if the remote refused the credentials
            GitError: on any other clone failure
        """
        runner = runner or CommandRunner()
        dest_path = Path(dest)
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            command = ['git', 'clone']
            if branch:
                command += ['--branch', branch]
            runner.run([*command, url, str(dest_path)], timeout=push_timeout)
        except CommandError as e:
            message, kind = classify_push_error(e.stderr)
            if kind == AUTH:
                raise GitAuthError(f"Clone failed: {message}") from e
            raise GitError(f"Clone failed: {e}") from e
        logger.info(f"Cloned into {dest_path}")
        return cls(str(dest_path), runner, command_timeout, push_timeout)

    def _run_git(self, *args, timeout: Optional[int] = None) -> Tuple[bool, str, str]:
        """Run a git command"""
        if timeout is None:
            timeout = self.command_timeout
        try:
            result = self.runner.run(
                ['git', *args],
                cwd=self.repo_path,
                timeout=timeout,
                check=False
            )
        except CommandError as e:
            return False, e.stdout, str(e)
        return result.ok, result.stdout, result.stderr

    def _checked(self, *args, timeout: Optional[int] = None) -> str:
        success, stdout, stderr = self._run_git(*args, timeout=timeout)
        if not success:
            raise GitError(f"git {' '.join(args)} failed: {stderr.strip()}")
        return stdout

    def is_git_repo(self) -> bool:
        success, _, _ = self._run_git('rev-parse', '--git-dir')
        return success

    def configure_identity(self, name: str, email: str) -> None:
        """Set the committer identity on this working copy only"""
        self._checked('config', 'user.name', name)
        self._checked('config', 'user.email', email)

    def head_commit(self) -> str:
        return self._checked('rev-parse', 'HEAD').strip()

    def remote_head(self, branch: str, remote: str = "origin") -> Optional[str]:
        """Commit the remote branch currently points at, None if it doesn't exist"""
        stdout = self._checked('ls-remote', remote, f"refs/heads/{branch}", timeout=self.push_timeout)
        line = stdout.strip().splitlines()
        if not line:
            return None
        return line[0].split()[0]

    def stage_all(self) -> None:
        self._checked('add', '.')

    def has_staged_changes(self) -> bool:
        """True when the index differs from HEAD"""
        success, _, stderr = self._run_git('diff-index', '--quiet', 'HEAD', '--')
        if success:
            return False
        if stderr.strip():
            raise GitError(f"git diff-index failed: {stderr.strip()}")
        return True

    def checkout_new_branch(self, branch: str, start_point: Optional[str] = None) -> None:
        args = ['checkout', '-b', branch]
        if start_point:
            args.append(start_point)
        self._checked(*args)

    def commit(self, message: str, paths: Optional[Sequence[str]] = None) -> str:
        """Commit staged changes (or only paths) and return the new commit"""
        args = ['commit', '-m', message]
        if paths:
            args += ['--', *paths]
        self._checked(*args)
        self._commit_count += 1
        sha = self.head_commit()
        logger.info(f"Committed {sha[:8]}: {message}")
        return sha

    def push(self, refspec: str, remote: str = "origin", set_upstream: bool = False) -> GitResult:
        """Push refspec to remote"""
        args = ['push']
        if set_upstream:
            args.append('-u')
        args += [remote, refspec]
        success, _, stderr = self._run_git(*args, timeout=self.push_timeout)

        if success:
            logger.info(f"Pushed {refspec} to {remote}")
            return GitResult(success=True, message="Pushed successfully")

        message, kind = classify_push_error(stderr)
        logger.warning(f"Push of {refspec} failed: {message}")
        return GitResult(success=False, message=message, kind=kind, error=stderr.strip())

    def get_current_branch(self) -> str:
        """Current branch

        Returns:
            Branch name, or 'detached:SHORT_SHA' if in detached HEAD state
        """
        success, stdout, _ = self._run_git('rev-parse', '--abbrev-ref', 'HEAD')
        if not success:
            return "unknown"

        branch = stdout.strip()
        if branch == "HEAD":
            success, sha, _ = self._run_git('rev-parse', '--short', 'HEAD')
            if success:
                return f"detached:{sha.strip()}"
            return "detached:unknown"

        return branch

    @property
    def commit_count(self) -> int:
        """Commits made through this manager"""
        return self._commit_count
