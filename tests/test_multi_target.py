"""Tests for multi-target discovery, initialization and aggregation."""

from __future__ import annotations

import datetime as dt
import json
import os
from pathlib import Path

import pytest

from agent_pipeline.errors import DocumentValidationError
from agent_pipeline.pipeline.multi_target import MultiTargetCoordinator, bucket_for
from agent_pipeline.pipeline.phases import PipelineSettings
from agent_pipeline.pipeline.state_machine import PipelineStateMachine
from agent_pipeline.schemas import StatusSummary

pytestmark = pytest.mark.integration

FIXED_NOW = dt.datetime(2026, 3, 1, 12, 0, tzinfo=dt.timezone.utc)


def _coordinator(**settings: object) -> MultiTargetCoordinator:
    return MultiTargetCoordinator(PipelineSettings(**settings), clock=lambda: FIXED_NOW)


def _input(tmp_path: Path) -> Path:
    path = tmp_path / "endpoints.json"
    path.write_text(
        json.dumps({"endpoints": [{"method": "GET", "path": "/users", "attributes": ["id"]}]}),
        encoding="utf-8",
    )
    return path


def _project(folder: Path, name: str, marker: str = ".git") -> Path:
    target = folder / name
    target.mkdir(parents=True)
    if marker.startswith("."):
        (target / marker).mkdir()
    else:
        (target / marker).write_text("{}", encoding="utf-8")
    return target


def test_discover_keeps_marked_visible_directories_in_listing_order(tmp_path: Path) -> None:
    folder = tmp_path / "projects"
    _project(folder, "api", ".git")
    _project(folder, "web", "package.json")
    _project(folder, "svc", "pom.xml")
    _project(folder, "app", "build.gradle")
    _project(folder, ".hidden", ".git")
    (folder / "docs").mkdir()
    (folder / "README.md").write_text("x", encoding="utf-8")

    targets = _coordinator().discover(folder)

    expected = [
        name for name in os.listdir(folder) if name in {"api", "web", "svc", "app"}
    ]
    assert [target.name for target in targets] == expected
    assert all(target.is_absolute() for target in targets)


def test_discover_uses_configured_markers(tmp_path: Path) -> None:
    folder = tmp_path / "projects"
    _project(folder, "py", "pyproject.toml")
    _project(folder, "js", "package.json")

    targets = _coordinator(repo_markers=("pyproject.toml",)).discover(folder)

    assert [target.name for target in targets] == ["py"]


def test_initialize_all_copies_input_and_collects_failures(tmp_path: Path) -> None:
    folder = tmp_path / "projects"
    good = _project(folder, "good")
    bad = _project(folder, "bad")
    # A file where the tracking directory should be makes initialization fail.
    (bad / ".agent-tracking").write_text("not a directory", encoding="utf-8")
    input_file = _input(tmp_path)

    report = _coordinator().initialize_all([bad, good], input_file)

    assert report.initialized == [good.resolve()]
    assert list(report.errors) == [bad.resolve()]
    assert report.ok is False
    copied = json.loads((good / ".agent-tracking" / "discoverer-input.json").read_text("utf-8"))
    assert copied["endpoints"][0]["path"] == "/users"
    status = json.loads((good / ".agent-tracking" / "pipeline-status.json").read_text("utf-8"))
    assert status["inputFile"] == str(input_file.resolve())


def test_initialize_all_rejects_invalid_input_before_touching_targets(tmp_path: Path) -> None:
    folder = tmp_path / "projects"
    target = _project(folder, "api")
    input_file = tmp_path / "endpoints.json"
    input_file.write_text(json.dumps({"endpoints": "nope"}), encoding="utf-8")

    with pytest.raises(DocumentValidationError):
        _coordinator().initialize_all([target], input_file)

    assert not (target / ".agent-tracking").exists()


def test_aggregate_buckets_targets_and_writes_combined_status(tmp_path: Path) -> None:
    folder = tmp_path / "projects"
    settings = PipelineSettings()
    fresh = _project(folder, "fresh")
    done = _project(folder, "done")
    broken = _project(folder, "broken")
    running = _project(folder, "running")

    machine = PipelineStateMachine.for_target(done, settings)
    machine.initialize()
    for phase in ("discoverer", "builder", "inspector"):
        machine.start(phase)
        machine.complete(phase)
    machine = PipelineStateMachine.for_target(broken, settings)
    machine.initialize()
    machine.start("discoverer")
    machine.fail("discoverer", "scan crashed")
    machine = PipelineStateMachine.for_target(running, settings)
    machine.initialize()
    machine.start("discoverer")

    coordinator = _coordinator()
    combined = coordinator.aggregate(
        folder,
        [fresh, done, broken, running],
        errors={fresh: "could not initialize"},
    )

    totals = combined.totals
    assert (totals.total, totals.completed, totals.in_progress, totals.pending, totals.failed) == (
        4,
        1,
        1,
        1,
        1,
    )
    assert combined.targets[0].error == "could not initialize"
    assert combined.targets[0].status_summary.exists is False

    written = json.loads((folder / ".multi-repo-status.json").read_text(encoding="utf-8"))
    assert list(written) == ["folder", "targets", "totals", "generatedAt"]
    assert written["generatedAt"] == FIXED_NOW.isoformat()
    assert written["totals"] == {
        "total": 4,
        "completed": 1,
        "inProgress": 1,
        "pending": 1,
        "failed": 1,
    }
    assert written["targets"][0]["statusSummary"] == {"exists": False}
    assert written["targets"][1]["name"] == "done"


def test_aggregate_fully_replaces_previous_snapshot(tmp_path: Path) -> None:
    folder = tmp_path / "projects"
    first = _project(folder, "one")
    second = _project(folder, "two")
    coordinator = _coordinator()

    coordinator.aggregate(folder, [first, second])
    coordinator.aggregate(folder, [first])

    written = json.loads((folder / ".multi-repo-status.json").read_text(encoding="utf-8"))
    assert [entry["name"] for entry in written["targets"]] == ["one"]
    assert written["totals"]["total"] == 1


@pytest.mark.parametrize(
    ("summary", "bucket"),
    [
        (StatusSummary(exists=False), "pending"),
        (StatusSummary(exists=True, overall_status="pipeline_completed"), "completed"),
        (StatusSummary(exists=True, overall_status="builder_failed"), "failed"),
        (StatusSummary(exists=True, overall_status="initialized"), "in_progress"),
        (StatusSummary(exists=True, overall_status="inspector_completed"), "in_progress"),
    ],
)
def test_bucket_for(summary: StatusSummary, bucket: str) -> None:
    assert bucket_for(summary) == bucket
