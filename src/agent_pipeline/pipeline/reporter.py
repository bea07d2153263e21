"""Read-only status projections and their text rendering."""

from __future__ import annotations

from pathlib import Path

from agent_pipeline.pipeline.manifest import ChangeManifestLog
from agent_pipeline.pipeline.phases import MANIFEST_FILE, STATUS_FILE, PipelineSettings
from agent_pipeline.pipeline.tracker import TrackingStore
from agent_pipeline.schemas import (
    ChangeManifest,
    PhaseStatus,
    PhaseSummary,
    PipelineStatus,
    StatusSummary,
)

_STATUS_MARKERS: dict[PhaseStatus, str] = {
    PhaseStatus.COMPLETED: "[done]",
    PhaseStatus.IN_PROGRESS: "[....]",
    PhaseStatus.FAILED: "[FAIL]",
    PhaseStatus.PENDING: "[    ]",
}


def status_marker(status: PhaseStatus | str) -> str:
    try:
        return _STATUS_MARKERS[PhaseStatus(status)]
    except ValueError:
        return "[    ]"


class StatusReporter:
    """Projects tracking documents into summaries. Never writes."""

    def __init__(self, settings: PipelineSettings) -> None:
        self.settings = settings

    def summarize(self, target: str | Path) -> StatusSummary:
        store = TrackingStore(target, self.settings)
        status = store.read_model(STATUS_FILE, PipelineStatus)
        if status is None:
            return StatusSummary(exists=False)
        return StatusSummary(
            exists=True,
            pipeline_id=status.pipeline_id,
            overall_status=status.overall_status,
            phases=[
                PhaseSummary(
                    phase=name,
                    label=record.label,
                    status=record.status,
                    started_at=record.started_at,
                    completed_at=record.completed_at,
                    error_count=len(record.errors),
                )
                for name, record in status.ordered_phases()
            ],
        )

    def manifest_summary(self, target: str | Path) -> ChangeManifest | None:
        store = TrackingStore(target, self.settings)
        if not store.exists(MANIFEST_FILE):
            return None
        return ChangeManifestLog(store).load()

    # -- Rendering ------------------------------------------------------

    @staticmethod
    def render_table(summary: StatusSummary) -> list[str]:
        if not summary.exists:
            return ["No pipeline found for this target."]
        lines = [
            f"Pipeline ID: {summary.pipeline_id}",
            f"Overall: {summary.overall_status}",
            "",
        ]
        for phase in summary.phases:
            line = f"  {status_marker(phase.status)} {phase.label} ({phase.phase})"
            if phase.started_at:
                line += f" (started: {phase.started_at})"
            if phase.completed_at:
                line += f" (completed: {phase.completed_at})"
            if phase.error_count > 0:
                line += f" ({phase.error_count} errors)"
            lines.append(line)
        return lines

    @staticmethod
    def render_manifest(manifest: ChangeManifest | None) -> list[str]:
        if manifest is None:
            return []
        lines: list[str] = []
        if manifest.changes:
            lines.append(f"Changes tracked: {len(manifest.changes)} files")
            for change in manifest.changes:
                lines.append(f"  [{change.change_type.value}] {change.file} ({change.agent})")
        coverage = manifest.scan_coverage
        if coverage.total_files:
            if lines:
                lines.append("")
            lines.append(f"Scan coverage: {coverage.total_files} files scanned")
            lines.append(f"Coverage complete: {str(coverage.coverage_complete).lower()}")
        return lines
