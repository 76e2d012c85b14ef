"""CLI module"""

from .main import cli, main
from .display import Display, DisplayMode, Colors

__all__ = [
    "cli",
    "main",
    "Display",
    "DisplayMode",
    "Colors",
]
