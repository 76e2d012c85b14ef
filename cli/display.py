"""
Display - terminal output for pipeline runs

Visible: stage banners, messages and info lines
Silent: one line per stage outcome plus the run summary
"""

import logging
import sys
from enum import Enum
from typing import Any, Dict

from pipeline.stages import StageResult, StageStatus


WIDTH = 64


class DisplayMode(str, Enum):
    VISIBLE = "visible"
    SILENT = "silent"


class Colors:
    """ANSI terminal colors"""
    RESET = "\033[0m"
    BOLD = "\033[1m"
    DIM = "\033[2m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    MAGENTA = "\033[35m"
    CYAN = "\033[36m"


STATUS_STYLE = {
    StageStatus.SUCCEEDED: ("✓", Colors.GREEN),
    StageStatus.FAILED: ("✗", Colors.RED),
    StageStatus.SKIPPED: ("-", Colors.DIM),
}


class Display:
    """Prints run progress; every line is mirrored to the debug log"""

    def __init__(self, mode: DisplayMode = DisplayMode.VISIBLE, use_colors: bool = True):
        self.mode = mode
        self.use_colors = use_colors and sys.stdout.isatty()
        self._logger = logging.getLogger("helmsman.display")

    @property
    def visible(self) -> bool:
        return self.mode == DisplayMode.VISIBLE

    def _paint(self, text: str, style: str) -> str:
        return f"{style}{text}{Colors.RESET}" if self.use_colors else text

    def _emit(self, text: str, style: str = "", err: bool = False):
        print(self._paint(text, style) if style else text, file=sys.stderr if err else sys.stdout)
        self._logger.debug(text.strip())

    def header(self, title: str):
        rule = "=" * WIDTH
        print()
        self._emit(rule, Colors.CYAN)
        self._emit(f"  {title}", Colors.BOLD + Colors.CYAN)
        self._emit(rule, Colors.CYAN)

    def separator(self):
        self._emit("-" * WIDTH, Colors.DIM)

    def info(self, text: str):
        if self.visible:
            self._emit(f"  {text}")

    def success(self, text: str):
        self._emit(f"  ✓ {text}", Colors.GREEN)

    def warning(self, text: str):
        self._emit(f"  ! {text}", Colors.YELLOW)

    def error(self, text: str):
        self._emit(f"  ✗ {text}", Colors.RED, err=True)

    def stage_start(self, name: str):
        if self.visible:
            print()
            self._emit(f"  ▶ {name}", Colors.BOLD + Colors.MAGENTA)

    def stage_result(self, result: StageResult):
        mark, style = STATUS_STYLE.get(result.status, ("?", ""))
        line = f"  {mark} {result.name}: {result.status.value}"
        if result.status != StageStatus.SKIPPED:
            line += f" ({result.duration_ms / 1000:.1f}s)"
        self._emit(line, style)
        if self.visible and result.message:
            self._emit(f"      {result.message}", Colors.DIM)

    def final_report(self, summary: Dict[str, Any]):
        """Run summary; None values are left out"""
        print()
        self.separator()
        self._emit("  RUN SUMMARY", Colors.BOLD)
        width = max((len(key) for key in summary), default=0)
        for key, value in summary.items():
            if value is not None:
                self._emit(f"  {key.ljust(width)}  {value}")
        self.separator()
