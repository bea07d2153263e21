"""Tests for status summaries and their text rendering."""

from __future__ import annotations

from pathlib import Path

import pytest

from agent_pipeline.pipeline.manifest import ChangeManifestLog
from agent_pipeline.pipeline.phases import PipelineSettings
from agent_pipeline.pipeline.reporter import StatusReporter, status_marker
from agent_pipeline.pipeline.state_machine import PipelineStateMachine

pytestmark = pytest.mark.unit


def test_summary_of_missing_pipeline_does_not_exist(tmp_path: Path) -> None:
    reporter = StatusReporter(PipelineSettings())

    summary = reporter.summarize(tmp_path)

    assert summary.exists is False
    assert summary.to_document() == {"exists": False}
    assert reporter.manifest_summary(tmp_path) is None
    assert StatusReporter.render_table(summary) == ["No pipeline found for this target."]
    assert not (tmp_path / ".agent-tracking").exists()


def test_summary_lists_phases_in_order_with_error_counts(tmp_path: Path) -> None:
    settings = PipelineSettings()
    machine = PipelineStateMachine.for_target(tmp_path, settings)
    status = machine.initialize()
    machine.start("discoverer")
    machine.complete("discoverer")
    machine.start("builder")
    machine.fail("builder", "boom")

    summary = StatusReporter(settings).summarize(tmp_path)

    assert summary.exists is True
    assert summary.pipeline_id == status.pipeline_id
    assert summary.overall_status == "builder_failed"
    assert [(p.phase, p.status.value, p.error_count) for p in summary.phases] == [
        ("discoverer", "completed", 0),
        ("builder", "failed", 1),
        ("inspector", "pending", 0),
    ]
    document = summary.to_document()
    assert set(document["phases"][0]) == {
        "phase",
        "label",
        "status",
        "startedAt",
        "completedAt",
        "errorCount",
    }


def test_render_table_uses_status_markers(tmp_path: Path) -> None:
    settings = PipelineSettings()
    machine = PipelineStateMachine.for_target(tmp_path, settings)
    machine.initialize()
    machine.start("discoverer")
    machine.complete("discoverer")
    machine.start("builder")
    machine.fail("builder", "boom")
    machine.start("inspector")

    lines = StatusReporter.render_table(StatusReporter(settings).summarize(tmp_path))

    assert lines[0].startswith("Pipeline ID: pipeline-")
    assert lines[1] == "Overall: inspector_in_progress"
    assert lines[3].startswith("  [done] Discovery (discoverer) (started: ")
    assert lines[4].startswith("  [FAIL] Build (builder)")
    assert lines[4].endswith("(1 errors)")
    assert lines[5].startswith("  [....] Inspection (inspector)")


def test_status_marker_falls_back_to_blank() -> None:
    assert status_marker("pending") == "[    ]"
    assert status_marker("weird") == "[    ]"


def test_render_manifest_lists_changes_and_coverage(tmp_path: Path) -> None:
    settings = PipelineSettings()
    machine = PipelineStateMachine.for_target(tmp_path, settings)
    log = ChangeManifestLog(machine.store)
    log.record_change("builder", "src/client.py", "created")
    log.record_scan_coverage(["src"], 7)

    manifest = StatusReporter(settings).manifest_summary(tmp_path)
    lines = StatusReporter.render_manifest(manifest)

    assert lines == [
        "Changes tracked: 1 files",
        "  [created] src/client.py (builder)",
        "",
        "Scan coverage: 7 files scanned",
        "Coverage complete: true",
    ]


def test_summarize_never_writes(tmp_path: Path) -> None:
    settings = PipelineSettings()
    machine = PipelineStateMachine.for_target(tmp_path, settings)
    machine.initialize()
    status_file = machine.store.path_for("pipeline-status.json")
    before = status_file.read_text(encoding="utf-8")

    StatusReporter(settings).summarize(tmp_path)

    assert status_file.read_text(encoding="utf-8") == before
