"""
Manifest editing - line-oriented rewrites of Helm chart files

Edits are plain text substitutions so comments and formatting in the chart
survive untouched. A file with no matching line is an error rather than a
silent no-op.
"""

import logging
import re
from pathlib import Path
from typing import Optional

from core.exceptions import ManifestFormatError, ManifestNotFoundError


logger = logging.getLogger(__name__)

_TAG_LINE = re.compile(r"^(?P<indent>[ \t]*)tag:.*$", re.MULTILINE)
_APP_VERSION_LINE = re.compile(r"^appVersion:.*$", re.MULTILINE)
_APP_VERSION_VALUE = re.compile(r"^appVersion:[ \t]*[\"']?(?P<value>[^\"'\s#]*)", re.MULTILINE)


def require_file(path: Path) -> Path:
    """Fail fast when a manifest file is missing"""
    if not path.is_file():
        raise ManifestNotFoundError(f"Manifest file not found: {path}")
    return path


def _read(path: Path) -> str:
    return require_file(path).read_text(encoding="utf-8")


def _write(path: Path, content: str) -> None:
    path.write_text(content, encoding="utf-8")


def set_image_tag(values_file: Path, image_tag: str) -> int:
    """Rewrite every 'tag:' line in values_file to the new tag

    Returns:
        Number of lines rewritten
    """
    content = _read(values_file)
    updated, count = _TAG_LINE.subn(lambda m: f"{m.group('indent')}tag: {image_tag}", content)
    if count == 0:
        raise ManifestFormatError(f"No 'tag:' line in {values_file}")
    _write(values_file, updated)
    logger.info(f"Set image tag to {image_tag} in {values_file.name} ({count} line(s))")
    return count


def read_app_version(chart_file: Path) -> str:
    content = _read(chart_file)
    match = _APP_VERSION_VALUE.search(content)
    if match is None:
        raise ManifestFormatError(f"No 'appVersion:' line in {chart_file}")
    return match.group("value")


def set_app_version(chart_file: Path, version: str) -> Optional[str]:
    """Rewrite the appVersion line, returning the previous value"""
    previous = read_app_version(chart_file)
    content = _read(chart_file)
    updated = _APP_VERSION_LINE.sub(f'appVersion: "{version}"', content)
    _write(chart_file, updated)
    logger.info(f"Set appVersion {previous} -> {version} in {chart_file.name}")
    return previous
