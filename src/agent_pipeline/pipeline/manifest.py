"""Change manifest: append-only record of files touched across phases."""

from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Iterable

from agent_pipeline.pipeline.phases import MANIFEST_FILE
from agent_pipeline.pipeline.tracker import TrackingStore
from agent_pipeline.schemas import (
    BuilderOutput,
    ChangeManifest,
    ChangeRecord,
    ChangeType,
    ScanCoverage,
)

logger = logging.getLogger(__name__)


class ChangeManifestLog:
    """Reads and appends to ``change-manifest.json`` for one target."""

    def __init__(self, store: TrackingStore) -> None:
        self.store = store

    def load(self) -> ChangeManifest:
        """Return the manifest, or an empty one when none was recorded yet."""
        return self.store.read_model(MANIFEST_FILE, ChangeManifest) or ChangeManifest()

    def record_change(
        self,
        agent: str,
        file: str,
        change_type: ChangeType | str,
        description: str = "",
    ) -> ChangeManifest:
        """Append one change. An identical existing entry is not repeated."""
        return self.record_changes([(agent, file, ChangeType(change_type), description)])

    def record_changes(
        self,
        changes: Iterable[tuple[str, str, ChangeType, str]],
    ) -> ChangeManifest:
        manifest = self.load()
        seen = {record.identity() for record in manifest.changes}
        now = dt.datetime.now(dt.timezone.utc).isoformat()
        appended = 0
        for agent, file, change_type, description in changes:
            record = ChangeRecord(
                agent=agent,
                file=file,
                change_type=change_type,
                description=description or "",
                timestamp=now,
            )
            if record.identity() in seen:
                continue
            seen.add(record.identity())
            manifest.changes.append(record)
            appended += 1
        if appended:
            self.store.write(MANIFEST_FILE, manifest)
            logger.info("Recorded %d change(s) in %s", appended, MANIFEST_FILE)
        return manifest

    def record_build(self, agent: str, built: BuilderOutput) -> ChangeManifest:
        """Record a builder's generated files as created and edits as modified."""
        changes = [
            (agent, item.file, ChangeType.CREATED, item.type or "generated")
            for item in built.generated_files
        ]
        changes += [
            (agent, item.file, ChangeType.MODIFIED, item.changes or "")
            for item in built.modified_files
        ]
        if not changes:
            return self.load()
        return self.record_changes(changes)

    def record_scan_coverage(self, scanned_paths: list[str], total_files: int) -> ChangeManifest:
        """Replace the scan coverage block wholesale."""
        manifest = self.load()
        manifest.scan_coverage = ScanCoverage(
            scanned_paths=list(scanned_paths),
            total_files=int(total_files),
            scanned_at=dt.datetime.now(dt.timezone.utc).isoformat(),
            coverage_complete=True,
        )
        self.store.write(MANIFEST_FILE, manifest)
        return manifest
