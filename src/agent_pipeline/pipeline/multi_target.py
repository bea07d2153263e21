"""Run the pipeline set-up across every project found under one folder.

Each target keeps its own tracking directory and is handled independently:
a failure while initializing one target is recorded against it and the
remaining targets are still processed. The combined snapshot is written to
``<folder>/.multi-repo-status.json`` and fully replaced on every run.
"""

from __future__ import annotations

import datetime as dt
import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from agent_pipeline.errors import PipelineError
from agent_pipeline.file_io import atomic_write_json
from agent_pipeline.pipeline.orchestrator import copy_input, load_endpoints_input
from agent_pipeline.pipeline.phases import PipelineSettings
from agent_pipeline.pipeline.reporter import StatusReporter
from agent_pipeline.pipeline.state_machine import Clock, PipelineStateMachine, utc_now
from agent_pipeline.pipeline.tracker import TrackingStore
from agent_pipeline.schemas import (
    PIPELINE_COMPLETED,
    CombinedStatus,
    CombinedTotals,
    StatusSummary,
    TargetStatus,
)

logger = logging.getLogger(__name__)


@dataclass
class InitializationReport:
    """Targets that were initialized, and the error for each one that was not."""

    initialized: list[Path] = field(default_factory=list)
    errors: dict[Path, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


def bucket_for(summary: StatusSummary) -> str:
    """Classify a target's summary into one of the combined totals buckets."""
    if not summary.exists:
        return "pending"
    overall = summary.overall_status or ""
    if overall == PIPELINE_COMPLETED:
        return "completed"
    if "failed" in overall:
        return "failed"
    return "in_progress"


class MultiTargetCoordinator:
    """Discovers targets under a folder, initializes them and aggregates status."""

    def __init__(self, settings: PipelineSettings, *, clock: Clock | None = None) -> None:
        self.settings = settings
        self.clock = clock or utc_now
        self.reporter = StatusReporter(settings)

    def discover(self, folder: str | Path) -> list[Path]:
        """Return the project directories directly under *folder*.

        Entries keep the directory listing order. Hidden entries are skipped,
        and a directory counts as a project only when it holds at least one
        of the configured marker files or directories.
        """
        root = Path(folder).resolve()
        targets: list[Path] = []
        for name in os.listdir(root):
            if name.startswith(self.settings.hidden_prefix):
                continue
            candidate = root / name
            if not candidate.is_dir():
                continue
            if any((candidate / marker).exists() for marker in self.settings.repo_markers):
                targets.append(candidate)
            else:
                logger.debug("Skipping %s: no project marker", candidate)
        logger.info("Found %d target(s) in %s", len(targets), root)
        return targets

    def initialize_all(
        self,
        targets: Iterable[str | Path],
        input_file: str | Path,
    ) -> InitializationReport:
        """Initialize every target and copy *input_file* into each one.

        The input is validated once up front; an invalid input raises before
        any target is touched.
        """
        input_path = Path(input_file).resolve()
        load_endpoints_input(input_path)

        report = InitializationReport()
        for target in targets:
            path = Path(target).resolve()
            try:
                store = TrackingStore(path, self.settings)
                PipelineStateMachine(store, clock=self.clock).initialize(input_path)
                copy_input(store, input_path)
            except (PipelineError, OSError) as exc:
                logger.error("Failed to initialize %s: %s", path, exc)
                report.errors[path] = str(exc)
                continue
            report.initialized.append(path)
            logger.info("Initialized %s", path)
        return report

    def aggregate(
        self,
        folder: str | Path,
        targets: Iterable[str | Path],
        errors: dict[Path, str] | None = None,
    ) -> CombinedStatus:
        """Summarize every target and write the combined status document."""
        root = Path(folder).resolve()
        errors = {Path(key).resolve(): value for key, value in (errors or {}).items()}
        totals = CombinedTotals()
        entries: list[TargetStatus] = []
        for target in targets:
            path = Path(target).resolve()
            try:
                summary = self.reporter.summarize(path)
                error = errors.get(path)
            except PipelineError as exc:
                summary = StatusSummary(exists=False)
                error = str(exc)
            entries.append(
                TargetStatus(path=str(path), name=path.name, status_summary=summary, error=error)
            )
            totals.total += 1
            bucket = bucket_for(summary)
            setattr(totals, bucket, getattr(totals, bucket) + 1)

        combined = CombinedStatus(
            folder=str(root),
            targets=entries,
            totals=totals,
            generated_at=self.clock().isoformat(),
        )
        destination = root / self.settings.combined_status_file
        atomic_write_json(destination, combined.to_document())
        logger.info("Combined status written to %s", destination)
        return combined
