"""
appVersion arithmetic - year.month.patch
"""

from datetime import date, datetime
from typing import Tuple, Union

from core.exceptions import VersionFormatError


def year_month(today: Union[date, datetime]) -> str:
    """2024-06-15 -> '2024.06'"""
    return today.strftime("%Y.%m")


def parse_version(version: str) -> Tuple[str, str, int]:
    """Split 'YYYY.MM.PATCH' into its parts

    Raises:
        VersionFormatError: if there are not three parts or patch is not a number
    """
    parts = version.strip().split(".")
    if len(parts) != 3:
        raise VersionFormatError(f"appVersion {version!r} is not year.month.patch")
    year, month, patch = parts
    if not patch.isdigit():
        raise VersionFormatError(f"appVersion {version!r} has a non-numeric patch")
    return year, month, int(patch)


def next_version(current: str, today: Union[date, datetime]) -> str:
    """Compute the appVersion that follows current

    Same year-month as today: patch + 1. Otherwise today's year-month with
    patch 0, whatever the stored value looked like.
    """
    prefix = year_month(today)
    current = current.strip()
    if current == prefix or current.startswith(prefix + "."):
        _, _, patch = parse_version(current)
        return f"{prefix}.{patch + 1}"
    return f"{prefix}.0"
