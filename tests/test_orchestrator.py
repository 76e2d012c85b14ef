"""
Unit tests for PipelineOrchestrator
"""

import pytest

from core.exceptions import BuildError, PipelineError
from pipeline.orchestrator import PipelineOrchestrator
from pipeline.stages import Stage, StageStatus
from pipeline.triggers import Event
from state.persistence import RunStatus, RunStore

from conftest import FIXED_NOW, RecordingRunner


class FakeStage(Stage):
    """Stage that records its calls"""

    def __init__(self, name, outputs=None, error=None, requires=(), exclusive=False, calls=None):
        self.name = name
        self.outputs = outputs or {}
        self.error = error
        self.requires = requires
        self.exclusive = exclusive
        self.calls = calls if calls is not None else []

    def execute(self, ctx):
        self.calls.append(self.name)
        if self.error is not None:
            raise self.error
        return self.succeeded(f"{self.name} done", outputs=self.outputs)


@pytest.fixture
def calls():
    return []


@pytest.fixture
def make_orchestrator(tmp_path, config, calls):
    def _make(stages):
        project = tmp_path / "project"
        project.mkdir(exist_ok=True)
        return PipelineOrchestrator(
            project_path=str(project),
            config=config,
            stages=stages,
            runner=RecordingRunner(),
            clock=lambda: FIXED_NOW
        )
    return _make


def four_stages(calls, failing=None):
    outputs = {"image-publish": {"image_tag": "main-1"}, "manifest-update": {"app_version": "2024.06.4"}}
    return [
        FakeStage(
            name,
            outputs=outputs.get(name),
            error=BuildError(f"{name} broke") if name == failing else None,
            requires=("image_tag",) if name == "manifest-update" else (),
            exclusive=name == "manifest-update",
            calls=calls
        )
        for name in ["build-and-test", "quality-scan", "image-publish", "manifest-update"]
    ]


PUSH_MAIN = Event("push", ref="refs/heads/main")


class TestRun:
    """Tests for ordered, fail-fast runs"""

    def test_all_stages_in_order(self, make_orchestrator, calls):
        orchestrator = make_orchestrator(four_stages(calls))
        record = orchestrator.run(PUSH_MAIN)

        assert calls == ["build-and-test", "quality-scan", "image-publish", "manifest-update"]
        assert record.status == RunStatus.COMPLETED
        assert record.image_tag == "main-1"
        assert record.app_version == "2024.06.4"
        assert [s["status"] for s in record.stages] == ["SUCCEEDED"] * 4
        assert record.finished_at is not None

    def test_failure_skips_later_stages(self, make_orchestrator, calls):
        orchestrator = make_orchestrator(four_stages(calls, failing="quality-scan"))
        with pytest.raises(BuildError):
            orchestrator.run(PUSH_MAIN)

        assert calls == ["build-and-test", "quality-scan"]
        record = orchestrator.store.load_last()
        assert record.status == RunStatus.FAILED
        assert "quality-scan broke" in record.error
        assert [(s["stage"], s["status"]) for s in record.stages] == [
            ("build-and-test", "SUCCEEDED"),
            ("quality-scan", "FAILED"),
            ("image-publish", "SKIPPED"),
            ("manifest-update", "SKIPPED"),
        ]

    def test_not_triggered(self, make_orchestrator, calls):
        orchestrator = make_orchestrator(four_stages(calls))
        record = orchestrator.run(Event("push", ref="refs/heads/feature/x"))

        assert record.status == RunStatus.NOT_TRIGGERED
        assert calls == []
        assert orchestrator.store.load_last() is None

    def test_force_ignores_triggers(self, make_orchestrator, calls):
        orchestrator = make_orchestrator(four_stages(calls))
        record = orchestrator.run(Event("push", ref="refs/heads/feature/x"), force=True)
        assert record.status == RunStatus.COMPLETED
        assert len(calls) == 4

    def test_start_stage(self, make_orchestrator, calls):
        """Earlier stages are recorded as skipped, outputs can be supplied"""
        orchestrator = make_orchestrator(four_stages(calls))
        record = orchestrator.run(PUSH_MAIN, start_stage="manifest-update", initial_outputs={"image_tag": "main-0"})

        assert calls == ["manifest-update"]
        assert [s["status"] for s in record.stages] == ["SKIPPED", "SKIPPED", "SKIPPED", "SUCCEEDED"]

    def test_start_stage_without_inputs_fails(self, make_orchestrator, calls):
        orchestrator = make_orchestrator(four_stages(calls))
        with pytest.raises(PipelineError) as exc_info:
            orchestrator.run(PUSH_MAIN, start_stage="manifest-update")

        assert "image_tag" in str(exc_info.value)
        assert calls == []
        record = orchestrator.store.load_last()
        assert record.stages[-1]["stage"] == "manifest-update"
        assert record.stages[-1]["status"] == "FAILED"

    def test_unknown_start_stage(self, make_orchestrator, calls):
        orchestrator = make_orchestrator(four_stages(calls))
        with pytest.raises(PipelineError):
            orchestrator.run(PUSH_MAIN, start_stage="deploy")

    def test_duplicate_stage_names(self, make_orchestrator):
        with pytest.raises(PipelineError):
            make_orchestrator([FakeStage("a"), FakeStage("a")])

    def test_cancel_recorded(self, make_orchestrator, calls):
        orchestrator = make_orchestrator([
            FakeStage("first", calls=calls),
            FakeStage("second", error=KeyboardInterrupt(), calls=calls),
            FakeStage("third", calls=calls),
        ])
        with pytest.raises(KeyboardInterrupt):
            orchestrator.run(PUSH_MAIN)

        record = orchestrator.store.load_last()
        assert record.status == RunStatus.CANCELLED
        assert calls == ["first", "second"]
        statuses = {entry["stage"]: entry for entry in record.stages}
        assert statuses["first"]["status"] == "SUCCEEDED"
        assert statuses["second"]["status"] == "FAILED"
        assert statuses["second"]["message"] == "Cancelled"
        assert statuses["third"]["status"] == "SKIPPED"

    @pytest.mark.parametrize("error", [None, BuildError("broke"), KeyboardInterrupt()])
    def test_work_dir_removed(self, make_orchestrator, error):
        """Scratch checkouts are gone after the run, whatever its outcome"""
        seen = []

        class CheckoutStage(FakeStage):
            def execute(self, ctx):
                (ctx.work_dir / "manifests").mkdir()
                (ctx.work_dir / "manifests" / "values.yaml").write_text("appVersion: 1\n")
                seen.append(ctx.work_dir)
                return super().execute(ctx)

        orchestrator = make_orchestrator([CheckoutStage("checkout", error=error)])
        try:
            orchestrator.run(PUSH_MAIN)
        except (BuildError, KeyboardInterrupt):
            pass

        assert seen and not seen[0].exists()
        record = orchestrator.store.load_last()
        assert (orchestrator.store.state_dir / "artifacts" / record.run_id).is_dir()

    def test_callbacks(self, make_orchestrator, calls):
        started, finished = [], []
        orchestrator = make_orchestrator(four_stages(calls))
        orchestrator.set_callbacks(
            on_stage_start=lambda stage: started.append(stage.name),
            on_stage_complete=lambda result: finished.append(result.status)
        )
        orchestrator.run(PUSH_MAIN)
        assert started == calls
        assert finished == [StageStatus.SUCCEEDED] * 4

    def test_exclusive_stage_holds_manifest_lock(self, make_orchestrator, monkeypatch):
        entered = []
        original = RunStore.manifest_lock

        def tracking_lock(store):
            entered.append(True)
            return original(store)

        monkeypatch.setattr(RunStore, "manifest_lock", tracking_lock)
        orchestrator = make_orchestrator([
            FakeStage("plain"),
            FakeStage("locked", exclusive=True),
        ])
        orchestrator.run(PUSH_MAIN)
        assert entered == [True]

    def test_absolute_state_dir_used(self, make_orchestrator, tmp_path):
        orchestrator = make_orchestrator([FakeStage("a")])
        assert orchestrator.store.state_dir == tmp_path / "state"
