"""
Trigger evaluation - decides whether an incoming repository event starts a run
"""

import json
import logging
import re
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Mapping, Optional


logger = logging.getLogger(__name__)

BRANCH_REF_PREFIX = "refs/heads/"

PUSH = "push"
PULL_REQUEST = "pull_request"
WORKFLOW_DISPATCH = "workflow_dispatch"


@dataclass
class Event:
    """Repository event that may start a run"""
    name: str
    ref: str = ""
    ref_name: str = ""
    action: Optional[str] = None
    base_ref: Optional[str] = None

    def __post_init__(self):
        if self.ref and not self.ref_name:
            self.ref_name = ref_to_name(self.ref)

    @property
    def branch(self) -> Optional[str]:
        """Branch name for branch refs, None for tags and pull refs"""
        if self.ref.startswith(BRANCH_REF_PREFIX):
            return self.ref[len(BRANCH_REF_PREFIX):]
        return None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "name": self.name,
            "ref": self.ref,
            "ref_name": self.ref_name,
            "action": self.action,
            "base_ref": self.base_ref,
        }

    @classmethod
    def from_github_env(cls, environ: Mapping[str, str]) -> "Event":
        """Build an event from GitHub Actions environment variables

        Reads GITHUB_EVENT_NAME, GITHUB_REF, GITHUB_REF_NAME and the JSON
        payload at GITHUB_EVENT_PATH (for the pull-request action and base).
        """
        payload: Dict = {}
        event_path = environ.get("GITHUB_EVENT_PATH")
        if event_path and Path(event_path).is_file():
            try:
                payload = json.loads(Path(event_path).read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                logger.warning(f"Could not read event payload {event_path}: {e}")

        base_ref = environ.get("GITHUB_BASE_REF") or None
        pull_request = payload.get("pull_request") or {}
        if isinstance(pull_request, dict):
            base_ref = (pull_request.get("base") or {}).get("ref") or base_ref

        return cls(
            name=environ.get("GITHUB_EVENT_NAME", ""),
            ref=environ.get("GITHUB_REF", ""),
            ref_name=environ.get("GITHUB_REF_NAME", ""),
            action=payload.get("action"),
            base_ref=base_ref
        )


def ref_to_name(ref: str) -> str:
    """refs/heads/dev/foo -> dev/foo, refs/tags/v1 -> v1"""
    for prefix in (BRANCH_REF_PREFIX, "refs/tags/"):
        if ref.startswith(prefix):
            return ref[len(prefix):]
    if ref.startswith("refs/pull/"):
        return ref[len("refs/pull/"):]
    return ref


@lru_cache(maxsize=256)
def _compile_branch_pattern(pattern: str) -> "re.Pattern[str]":
    parts = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if pattern.startswith("**", i):
            parts.append(".*")
            i += 2
            continue
        if char == "*":
            parts.append("[^/]*")
        elif char == "?":
            parts.append("[^/]")
        else:
            parts.append(re.escape(char))
        i += 1
    return re.compile("".join(parts) + r"\Z")


def branch_matches(branch: str, pattern: str) -> bool:
    """Match a branch name against a workflow-style glob

    '*' does not cross '/', '**' does.
    """
    return _compile_branch_pattern(pattern).match(branch) is not None


def matches_any(branch: Optional[str], patterns: List[str]) -> bool:
    if not branch:
        return False
    return any(branch_matches(branch, p) for p in patterns)


@dataclass
class TriggerRules:
    """Trigger matrix"""
    push_branches: List[str] = field(default_factory=lambda: ["main", "dev/**"])
    pull_request_branches: List[str] = field(default_factory=lambda: ["main"])
    pull_request_types: List[str] = field(default_factory=lambda: ["assigned"])
    workflow_dispatch: bool = True


@dataclass
class TriggerDecision:
    triggered: bool
    reason: str


def evaluate(event: Event, rules: TriggerRules) -> TriggerDecision:
    """Decide whether event starts a run under rules"""
    if event.name == PUSH:
        if matches_any(event.branch, rules.push_branches):
            return TriggerDecision(True, f"push to {event.branch}")
        return TriggerDecision(False, f"push to {event.ref or '<no ref>'} does not match {rules.push_branches}")

    if event.name == PULL_REQUEST:
        if event.action not in rules.pull_request_types:
            return TriggerDecision(False, f"pull_request action {event.action!r} not in {rules.pull_request_types}")
        if matches_any(event.base_ref, rules.pull_request_branches):
            return TriggerDecision(True, f"pull_request {event.action} into {event.base_ref}")
        return TriggerDecision(False, f"pull_request base {event.base_ref!r} does not match {rules.pull_request_branches}")

    if event.name == WORKFLOW_DISPATCH:
        if rules.workflow_dispatch:
            return TriggerDecision(True, "manual dispatch")
        return TriggerDecision(False, "manual dispatch disabled")

    return TriggerDecision(False, f"event {event.name!r} does not start runs")
