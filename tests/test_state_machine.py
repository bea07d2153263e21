"""Tests for phase transitions and the derived overall status."""

from __future__ import annotations

import datetime as dt
import json
from pathlib import Path

import pytest

from agent_pipeline.errors import NotInitialized, UnknownPhase
from agent_pipeline.pipeline.phases import PipelineSettings
from agent_pipeline.pipeline.state_machine import PipelineStateMachine
from agent_pipeline.schemas import PhaseStatus

pytestmark = pytest.mark.unit

PHASES = ("discoverer", "builder", "inspector")


class _StepClock:
    """Advances one second on every call."""

    def __init__(self, start: dt.datetime | None = None) -> None:
        self.now = start or dt.datetime(2026, 1, 1, tzinfo=dt.timezone.utc)

    def __call__(self) -> dt.datetime:
        value = self.now
        self.now += dt.timedelta(seconds=1)
        return value


def _machine(tmp_path: Path, clock=None) -> PipelineStateMachine:
    return PipelineStateMachine.for_target(
        tmp_path / "repo",
        PipelineSettings(),
        clock=clock or _StepClock(),
    )


def test_initialize_creates_status_with_ordered_pending_phases(tmp_path: Path) -> None:
    machine = _machine(tmp_path)

    status = machine.initialize("endpoints.json")

    assert status.pipeline_id.startswith("pipeline-")
    assert status.overall_status == "initialized"
    assert status.input_file == "endpoints.json"
    assert [(name, record.order, record.label) for name, record in status.ordered_phases()] == [
        ("discoverer", 1, "Discovery"),
        ("builder", 2, "Build"),
        ("inspector", 3, "Inspection"),
    ]
    assert all(record.status == PhaseStatus.PENDING for record in status.phases.values())
    assert status.phases["builder"].output_file == "builder-output.json"

    raw = json.loads(machine.store.path_for("pipeline-status.json").read_text(encoding="utf-8"))
    assert list(raw["phases"]) == list(PHASES)


def test_initialize_is_idempotent_and_keeps_progress(tmp_path: Path) -> None:
    machine = _machine(tmp_path)
    first = machine.initialize()
    machine.start("discoverer")
    machine.complete("discoverer", {"occurrences": 2})

    again = machine.initialize()

    assert again.pipeline_id == first.pipeline_id
    assert again.started_at == first.started_at
    assert again.phases["discoverer"].status == PhaseStatus.COMPLETED
    assert again.phases["discoverer"].summary == {"occurrences": 2}
    assert again.overall_status == "discoverer_completed"


def test_transitions_before_initialize_raise_not_initialized(tmp_path: Path) -> None:
    machine = _machine(tmp_path)

    with pytest.raises(NotInitialized) as exc_info:
        machine.start("discoverer")

    assert "initialize" in str(exc_info.value)
    assert not machine.store.tracking_dir.exists()


def test_unknown_phase_is_rejected(tmp_path: Path) -> None:
    machine = _machine(tmp_path)
    machine.initialize()

    with pytest.raises(UnknownPhase) as exc_info:
        machine.start("deployer")

    assert exc_info.value.phase == "deployer"
    assert exc_info.value.known == list(PHASES)


def test_happy_path_ends_pipeline_completed_with_completed_at(tmp_path: Path) -> None:
    machine = _machine(tmp_path)
    machine.initialize()

    for name in PHASES:
        started = machine.start(name)
        assert started.overall_status == f"{name}_in_progress"
        done = machine.complete(name, {"ok": True})

    assert done.overall_status == "pipeline_completed"
    assert done.completed_at is not None
    assert all(record.completed_at for record in done.phases.values())


def test_pipeline_completed_only_while_every_phase_is_completed(tmp_path: Path) -> None:
    machine = _machine(tmp_path)
    machine.initialize()
    for name in PHASES:
        machine.start(name)
        machine.complete(name)
    completed_at = machine.load().completed_at

    restarted = machine.start("builder")

    assert restarted.overall_status == "builder_in_progress"
    assert restarted.completed_at == completed_at

    again = machine.complete("builder")
    assert again.overall_status == "pipeline_completed"
    assert again.completed_at == completed_at


def test_completed_at_is_restamped_when_inspector_pause_resolves(tmp_path: Path) -> None:
    machine = _machine(tmp_path)
    machine.initialize()
    for name in ("discoverer", "builder"):
        machine.start(name)
        machine.complete(name, {"ok": True})
    machine.start("inspector")
    paused = machine.complete("inspector", {"status": "awaiting_external_step"})
    assert paused.overall_status == "pipeline_completed"

    machine.start("inspector")
    done = machine.complete("inspector", {"confidenceScore": 90})

    assert done.overall_status == "pipeline_completed"
    assert done.completed_at > paused.completed_at
    assert done.completed_at >= done.phases["inspector"].completed_at

    again = machine.complete("builder", {"ok": True})
    assert again.completed_at == done.completed_at


def test_complete_without_summary_stores_empty_mapping(tmp_path: Path) -> None:
    machine = _machine(tmp_path)
    machine.initialize()
    machine.start("discoverer")

    status = machine.complete("discoverer")

    assert status.phases["discoverer"].summary == {}


def test_fail_appends_errors_and_start_keeps_history(tmp_path: Path) -> None:
    machine = _machine(tmp_path)
    machine.initialize()
    machine.start("builder")
    machine.fail("builder", "tests failed")
    failed = machine.fail("builder", "still failing")

    assert failed.overall_status == "builder_failed"
    assert [error.message for error in failed.phases["builder"].errors] == [
        "tests failed",
        "still failing",
    ]

    restarted = machine.start("builder")
    assert restarted.phases["builder"].status == PhaseStatus.IN_PROGRESS
    assert len(restarted.phases["builder"].errors) == 2


def test_timestamps_never_move_backwards(tmp_path: Path) -> None:
    times = iter(
        [
            dt.datetime(2026, 1, 1, 0, 0, 0, tzinfo=dt.timezone.utc),
            dt.datetime(2026, 1, 1, 0, 0, 10, tzinfo=dt.timezone.utc),
            dt.datetime(2026, 1, 1, 0, 0, 5, tzinfo=dt.timezone.utc),
        ]
    )
    machine = _machine(tmp_path, clock=lambda: next(times))
    machine.initialize()
    started = machine.start("discoverer")
    completed = machine.complete("discoverer")

    record = completed.phases["discoverer"]
    assert record.started_at == started.phases["discoverer"].started_at
    assert dt.datetime.fromisoformat(record.completed_at) >= dt.datetime.fromisoformat(
        record.started_at
    )


def test_partial_reset_cascades_to_later_phases_only(tmp_path: Path) -> None:
    machine = _machine(tmp_path)
    machine.initialize()
    for name in PHASES:
        machine.start(name)
        machine.complete(name, {"phase": name})
        machine.store.write(f"{name}-output.json", {"phase": name})
    machine.store.write("builder-loop-instructions.json", {"loop": 2, "items": []})
    machine.fail("inspector", "late failure")

    status = machine.reset("builder")

    assert status is not None
    assert status.overall_status == "builder_pending"
    assert status.completed_at is None
    discoverer = status.phases["discoverer"]
    assert discoverer.status == PhaseStatus.COMPLETED
    assert discoverer.summary == {"phase": "discoverer"}
    for name in ("builder", "inspector"):
        record = status.phases[name]
        assert record.status == PhaseStatus.PENDING
        assert record.started_at is None
        assert record.completed_at is None
        assert record.errors == []
        assert record.summary is None
        assert not machine.store.exists(f"{name}-output.json")
    assert machine.store.exists("discoverer-output.json")
    assert not machine.store.exists("builder-loop-instructions.json")


def test_reset_from_first_phase_returns_to_initialized(tmp_path: Path) -> None:
    machine = _machine(tmp_path)
    machine.initialize()
    machine.start("discoverer")
    machine.complete("discoverer")

    status = machine.reset("discoverer")

    assert status.overall_status == "initialized"


def test_reset_from_inspector_keeps_loop_instructions(tmp_path: Path) -> None:
    machine = _machine(tmp_path)
    machine.initialize()
    machine.store.write("builder-loop-instructions.json", {"loop": 2, "items": []})

    machine.reset("inspector")

    assert machine.store.exists("builder-loop-instructions.json")


def test_full_reset_removes_tracking_directory(tmp_path: Path) -> None:
    machine = _machine(tmp_path)
    first = machine.initialize()

    assert machine.reset() is None
    assert not machine.store.tracking_dir.exists()
    assert machine.load() is None

    assert machine.initialize().pipeline_id != first.pipeline_id


def test_partial_reset_without_pipeline_raises_not_initialized(tmp_path: Path) -> None:
    machine = _machine(tmp_path)

    with pytest.raises(NotInitialized):
        machine.reset("builder")
