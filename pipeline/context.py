"""
Run context - everything a stage needs for one pipeline run
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from core.config import Config
from core.process import CommandRunner
from .definition import PipelineDefinition
from .triggers import Event


@dataclass
class RunContext:
    event: Event
    definition: PipelineDefinition
    config: Config
    project_dir: Path
    run_id: str
    work_dir: Path
    artifacts_dir: Path
    runner: CommandRunner
    outputs: Dict[str, Any] = field(default_factory=dict)
    clock: Optional[Callable[[], datetime]] = None

    def now(self) -> datetime:
        """Current time in the pipeline time zone"""
        if self.clock is not None:
            return self.clock()
        return datetime.now(self.config.timezone)

    @property
    def is_main(self) -> bool:
        return self.event.ref == self.definition.main_ref
