"""
Image tags - branch normalization and tag composition
"""

import re
from dataclasses import dataclass
from datetime import datetime

from .triggers import BRANCH_REF_PREFIX


TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"

# Docker reference grammar for the tag part
_DOCKER_TAG = re.compile(r"[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}\Z")


def normalize_branch(ref: str) -> str:
    """Turn a ref into a tag component

    A leading refs/heads/ is stripped and every '/' becomes '-':
    refs/heads/dev/foo -> dev-foo.
    """
    if ref.startswith(BRANCH_REF_PREFIX):
        ref = ref[len(BRANCH_REF_PREFIX):]
    return ref.replace("/", "-")


def make_timestamp(now: datetime) -> str:
    return now.strftime(TIMESTAMP_FORMAT)


def is_valid_tag(tag: str) -> bool:
    return _DOCKER_TAG.match(tag) is not None


@dataclass(frozen=True)
class ImageTags:
    """Versioned and latest tags for one run"""
    repository: str
    short_tag: str
    latest_short_tag: str

    @property
    def versioned(self) -> str:
        return f"{self.repository}:{self.short_tag}"

    @property
    def latest(self) -> str:
        return f"{self.repository}:{self.latest_short_tag}"

    @classmethod
    def compose(cls, repository: str, ref: str, now: datetime) -> "ImageTags":
        branch = normalize_branch(ref)
        return cls(
            repository=repository,
            short_tag=f"{branch}-{make_timestamp(now)}",
            latest_short_tag=f"{branch}-latest"
        )

    def invalid_tags(self) -> list:
        return [t for t in (self.short_tag, self.latest_short_tag) if not is_valid_tag(t)]
