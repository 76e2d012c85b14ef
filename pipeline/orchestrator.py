"""
Pipeline Orchestrator - runs the stages of one pipeline run

Handles:
- Trigger evaluation for the incoming event
- Strictly ordered stages, each gated on the previous one succeeding
- Fail-fast: the first failing stage stops the run, later stages are skipped
- Run records and the cross-run manifest lock
"""

import logging
from contextlib import nullcontext
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from core.config import Config
from core.exceptions import PipelineError
from core.logging_config import LogContext
from core.process import CommandRunner
from state.persistence import RunRecord, RunStatus, RunStore, new_run_id
from .context import RunContext
from .definition import PipelineDefinition, load_definition
from .stages import Stage, StageResult, StageStatus, default_stages
from .triggers import Event, TriggerDecision, evaluate


logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    """Runs the pipeline for one project checkout"""

    def __init__(
        self,
        project_path: str,
        config: Config,
        definition: Optional[PipelineDefinition] = None,
        stages: Optional[List[Stage]] = None,
        store: Optional[RunStore] = None,
        runner: Optional[CommandRunner] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.project_path = Path(project_path).resolve()
        self.config = config
        self.definition = definition or load_definition()
        self.stages = stages if stages is not None else default_stages()
        self.store = store or RunStore(
            str(self._state_dir(config)),
            history_limit=config.run_history_limit
        )
        self.runner = runner or CommandRunner(
            secrets=config.secret_values(),
            timeout=config.command_timeout
        )
        self.clock = clock

        # Callbacks
        self._on_stage_start: Optional[Callable[[Stage], None]] = None
        self._on_stage_complete: Optional[Callable[[StageResult], None]] = None

        names = [stage.name for stage in self.stages]
        if len(set(names)) != len(names):
            raise PipelineError(f"Duplicate stage names: {names}")

    def _state_dir(self, config: Config) -> Path:
        state = config.state_path
        return state if state.is_absolute() else self.project_path / state

    def set_callbacks(
        self,
        on_stage_start: Optional[Callable[[Stage], None]] = None,
        on_stage_complete: Optional[Callable[[StageResult], None]] = None
    ):
        self._on_stage_start = on_stage_start
        self._on_stage_complete = on_stage_complete

    @property
    def stage_names(self) -> List[str]:
        return [stage.name for stage in self.stages]

    def check_trigger(self, event: Event) -> TriggerDecision:
        return evaluate(event, self.definition.triggers)

    def run(
        self,
        event: Event,
        start_stage: Optional[str] = None,
        initial_outputs: Optional[Dict[str, Any]] = None,
        force: bool = False
    ) -> RunRecord:
        """Run the pipeline for event

        Args:
            event: Triggering event
            start_stage: Skip every stage before this one
            initial_outputs: Outputs normally produced by the skipped stages
            force: Run even if the event does not match the trigger matrix

        Returns:
            The run record. Not persisted when the event does not trigger.

        Raises:
            Whatever the failing stage raised, after the run is recorded as failed
        """
        decision = self.check_trigger(event)
        if not decision.triggered and not force:
            logger.info(f"No run: {decision.reason}")
            return RunRecord(
                run_id="",
                event=event.to_dict(),
                started_at=datetime.now().isoformat(),
                status=RunStatus.NOT_TRIGGERED,
                error=decision.reason
            )
        logger.info(f"Run triggered: {decision.reason}")

        start_index = 0
        if start_stage is not None:
            if start_stage not in self.stage_names:
                raise PipelineError(f"Unknown stage {start_stage!r}, expected one of {self.stage_names}")
            start_index = self.stage_names.index(start_stage)

        record = self.store.create_run(event.to_dict(), run_id=new_run_id())
        ctx = RunContext(
            event=event,
            definition=self.definition,
            config=self.config,
            project_dir=self.project_path,
            run_id=record.run_id,
            work_dir=self.store.work_dir(record.run_id),
            artifacts_dir=self.store.artifacts_dir(record.run_id),
            runner=self.runner,
            outputs=dict(initial_outputs or {}),
            clock=self.clock
        )

        with LogContext(run_id=record.run_id, event=event.name, ref=event.ref):
            try:
                for index, stage in enumerate(self.stages):
                    if index < start_index:
                        self._record(record, StageResult(
                            name=stage.name,
                            status=StageStatus.SKIPPED,
                            message=f"Run started from {start_stage}"
                        ))
                        continue
                    self._run_stage(stage, ctx, record)
            except KeyboardInterrupt:
                self._skip_remaining(record)
                self.store.finish(record, RunStatus.CANCELLED, "Cancelled")
                logger.warning(f"Run {record.run_id} cancelled")
                raise
            except Exception as e:
                self._skip_remaining(record)
                self.store.finish(record, RunStatus.FAILED, str(e))
                logger.error(f"Run {record.run_id} failed: {e}")
                raise
            finally:
                self.store.discard_work_dir(record.run_id)

        self.store.finish(record, RunStatus.COMPLETED)
        logger.info(f"Run {record.run_id} completed")
        return record

    def _run_stage(self, stage: Stage, ctx: RunContext, record: RunRecord) -> StageResult:
        if self._on_stage_start:
            self._on_stage_start(stage)

        lock = self.store.manifest_lock() if stage.exclusive else nullcontext()
        with LogContext(run_id=ctx.run_id, stage=stage.name):
            logger.info(f"Stage {stage.name} started")
            try:
                missing = stage.missing_inputs(ctx)
                if missing:
                    raise PipelineError(f"Stage {stage.name} needs outputs that are not available: {missing}")
                with lock:
                    result = stage.run(ctx)
            except KeyboardInterrupt:
                self._record(record, StageResult(
                    name=stage.name,
                    status=StageStatus.FAILED,
                    message="Cancelled"
                ))
                raise
            except Exception as e:
                self._record(record, StageResult(
                    name=stage.name,
                    status=StageStatus.FAILED,
                    message=str(e)
                ))
                raise
            logger.info(f"Stage {stage.name} finished in {result.duration_ms} ms: {result.message}")

        self._record(record, result)
        return result

    def _record(self, record: RunRecord, result: StageResult) -> None:
        record.stages.append(result.to_dict())
        for key in ("image_tag", "app_version", "pull_request_url"):
            if result.outputs.get(key):
                setattr(record, key, result.outputs[key])
        self.store.save(record)
        if self._on_stage_complete:
            self._on_stage_complete(result)

    def _skip_remaining(self, record: RunRecord) -> None:
        done = {entry["stage"] for entry in record.stages}
        for stage in self.stages:
            if stage.name not in done:
                record.stages.append(StageResult(
                    name=stage.name,
                    status=StageStatus.SKIPPED,
                    message="Previous stage did not succeed"
                ).to_dict())
