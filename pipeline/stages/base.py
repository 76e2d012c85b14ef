"""
Stage base class and result record
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from ..context import RunContext


logger = logging.getLogger(__name__)


class StageStatus(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


@dataclass
class StageResult:
    """Summary emitted by a stage"""
    name: str
    status: StageStatus
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    outputs: Dict[str, Any] = field(default_factory=dict)
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.name,
            "status": self.status.value,
            "message": self.message,
            "details": self.details,
            "outputs": self.outputs,
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StageResult":
        return cls(
            name=data.get("stage", ""),
            status=StageStatus(data.get("status", StageStatus.SKIPPED.value)),
            message=data.get("message", ""),
            details=data.get("details", {}),
            outputs=data.get("outputs", {}),
            duration_ms=data.get("duration_ms", 0),
        )


class Stage(ABC):
    """One pipeline job

    Subclasses implement execute(); run() times it and wraps the outcome.
    Exceptions propagate so the orchestrator can stop the run.
    """

    name: str = "stage"
    # Outputs this stage reads from earlier stages
    requires: tuple = ()
    # Run while holding the cross-run manifest lock
    exclusive: bool = False

    @abstractmethod
    def execute(self, ctx: RunContext) -> StageResult:
        pass

    def missing_inputs(self, ctx: RunContext) -> list:
        return [key for key in self.requires if not ctx.outputs.get(key)]

    def run(self, ctx: RunContext) -> StageResult:
        started = time.monotonic()
        result = self.execute(ctx)
        result.duration_ms = int((time.monotonic() - started) * 1000)
        ctx.outputs.update(result.outputs)
        return result

    def succeeded(self, message: str, outputs: Optional[Dict[str, Any]] = None, **details) -> StageResult:
        return StageResult(
            name=self.name,
            status=StageStatus.SUCCEEDED,
            message=message,
            details=details,
            outputs=outputs or {}
        )
