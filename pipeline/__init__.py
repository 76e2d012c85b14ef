"""Pipeline module"""

from .orchestrator import PipelineOrchestrator
from .definition import PipelineDefinition, load_definition
from .triggers import Event, TriggerRules, TriggerDecision, evaluate
from .tags import ImageTags, normalize_branch
from .versioning import next_version
from .git_manager import GitManager, GitResult
from .stages import Stage, StageResult, StageStatus, default_stages

__all__ = [
    "PipelineOrchestrator",
    "PipelineDefinition",
    "load_definition",
    "Event",
    "TriggerRules",
    "TriggerDecision",
    "evaluate",
    "ImageTags",
    "normalize_branch",
    "next_version",
    "GitManager",
    "GitResult",
    "Stage",
    "StageResult",
    "StageStatus",
    "default_stages",
]
