"""Run state module"""

from .persistence import RunStore, RunRecord, RunStatus, new_run_id

__all__ = [
    "RunStore",
    "RunRecord",
    "RunStatus",
    "new_run_id",
]
