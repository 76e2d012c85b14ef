"""Pipeline stages, in run order"""

from typing import List

from .base import Stage, StageResult, StageStatus
from .build import BuildAndTestStage
from .scan import QualityScanStage
from .image import ImagePublishStage
from .manifest import ManifestUpdateStage


def default_stages() -> List[Stage]:
    return [
        BuildAndTestStage(),
        QualityScanStage(),
        ImagePublishStage(),
        ManifestUpdateStage(),
    ]


__all__ = [
    "Stage",
    "StageResult",
    "StageStatus",
    "BuildAndTestStage",
    "QualityScanStage",
    "ImagePublishStage",
    "ManifestUpdateStage",
    "default_stages",
]
