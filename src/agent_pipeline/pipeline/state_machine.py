"""Phase lifecycle for one target's ``pipeline-status.json``.

Per phase::

    pending -> in_progress -> completed | failed

``overallStatus`` is never set directly. It is derived from the phase records
every time the document is written, and equals ``pipeline_completed`` exactly
when every phase is ``completed``.

Every transition is a read-modify-write through :class:`TrackingStore`. There
is no cross-process lock: two drivers on the same target race and the last
write wins.
"""

from __future__ import annotations

import datetime as dt
import logging
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any

from agent_pipeline.errors import NotInitialized
from agent_pipeline.pipeline.phases import (
    LOOP_INSTRUCTIONS_FILE,
    STATUS_FILE,
    Phase,
    PipelineSettings,
    output_file_for,
)
from agent_pipeline.pipeline.tracker import TrackingStore
from agent_pipeline.schemas import (
    AWAITING_EXTERNAL_STEP,
    INITIALIZED,
    PIPELINE_COMPLETED,
    PhaseError,
    PhaseRecord,
    PhaseStatus,
    PipelineStatus,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], dt.datetime]


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _parse_timestamp(value: str | None) -> dt.datetime | None:
    if not value:
        return None
    text = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        parsed = dt.datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


def _is_pause(summary: Any) -> bool:
    return isinstance(summary, dict) and summary.get("status") == AWAITING_EXTERNAL_STEP


class PipelineStateMachine:
    """Owns phase transitions for a single target.

    Parameters
    ----------
    store:
        Tracking store of the target.
    clock:
        Returns the current time; injected so tests can pin timestamps.
    """

    def __init__(self, store: TrackingStore, *, clock: Clock | None = None) -> None:
        self.store = store
        self.settings: PipelineSettings = store.settings
        self._clock = clock or utc_now

    @classmethod
    def for_target(
        cls,
        target: str | Path,
        settings: PipelineSettings,
        *,
        clock: Clock | None = None,
    ) -> PipelineStateMachine:
        return cls(TrackingStore(target, settings), clock=clock)

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def load(self) -> PipelineStatus | None:
        """Return the persisted status, or ``None`` before initialization."""
        return self.store.read_model(STATUS_FILE, PipelineStatus)

    def _require(self) -> PipelineStatus:
        status = self.load()
        if status is None:
            raise NotInitialized(self.store.target)
        return status

    def _save(self, status: PipelineStatus, last_phase: str | None = None) -> PipelineStatus:
        status.overall_status = self._derive_overall(status, last_phase)
        if status.overall_status == PIPELINE_COMPLETED and status.completed_at is None:
            status.completed_at = self._stamp(status.started_at)
        self.store.write(STATUS_FILE, status)
        return status

    def _stamp(self, *previous: str | None) -> str:
        """Return "now", never earlier than any of *previous*."""
        now = self._clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=dt.timezone.utc)
        for value in previous:
            parsed = _parse_timestamp(value)
            if parsed is not None and parsed > now:
                now = parsed
        return now.isoformat()

    def _derive_overall(self, status: PipelineStatus, last_phase: str | None) -> str:
        if status.all_completed():
            return PIPELINE_COMPLETED
        if last_phase is not None and last_phase in status.phases:
            record = status.phases[last_phase]
            if record.status == PhaseStatus.PENDING and record.order == self._first_order():
                return INITIALIZED
            return f"{last_phase}_{record.status.value}"
        # No transition in hand: keep the stored value while it still
        # matches the records, else fall back to the furthest active phase.
        stored = status.overall_status
        for name, record in status.phases.items():
            if stored == f"{name}_{record.status.value}":
                return stored
        active = [
            (name, record)
            for name, record in status.ordered_phases()
            if record.status != PhaseStatus.PENDING
        ]
        if not active:
            return INITIALIZED
        name, record = active[-1]
        return f"{name}_{record.status.value}"

    def _first_order(self) -> int:
        return self.settings.first_phase().order

    def _record(self, status: PipelineStatus, phase: str | Phase) -> tuple[str, PhaseRecord]:
        spec = self.settings.phase_spec(phase)
        record = status.phases.get(spec.name)
        if record is None:
            record = self._new_record(spec.name)
            status.phases[spec.name] = record
        return spec.name, record

    def _new_record(self, name: str) -> PhaseRecord:
        spec = self.settings.phase_spec(name)
        return PhaseRecord(order=spec.order, label=spec.label, output_file=output_file_for(name))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def initialize(self, input_file: str | Path | None = None) -> PipelineStatus:
        """Load or create the status document.

        Phase records missing from an existing document are added; phases
        already present are left untouched, so repeated calls never lose
        progress and never regenerate the pipeline id.
        """
        status = self.load()
        if status is None:
            status = PipelineStatus(
                pipeline_id=f"pipeline-{uuid.uuid4().hex}",
                target_path=str(self.store.target),
                input_file=str(input_file) if input_file else None,
                started_at=self._stamp(),
            )
            logger.info("Initialized pipeline %s for %s", status.pipeline_id, self.store.target)
        added = []
        for spec in self.settings.ordered_phases():
            if spec.name not in status.phases:
                status.phases[spec.name] = self._new_record(spec.name)
                added.append(spec.name)
        status.phases = dict(status.ordered_phases())
        if added:
            logger.debug("Added phase records: %s", ", ".join(added))
        return self._save(status)

    def start(self, phase: str | Phase) -> PipelineStatus:
        """Mark *phase* in progress and stamp its start time."""
        status = self._require()
        name, record = self._record(status, phase)
        record.status = PhaseStatus.IN_PROGRESS
        record.started_at = self._stamp(record.started_at)
        logger.info("Phase %s started (%s)", name, self.store.target)
        return self._save(status, name)

    def complete(self, phase: str | Phase, summary: Any = None) -> PipelineStatus:
        """Mark *phase* completed and store the actor's *summary*.

        A pause is recorded as a completion carrying the awaiting marker, so
        the pipeline can look finished while the last phase is still out with
        the actor. The pipeline ``completedAt`` stamped then is provisional and
        is stamped again once every phase holds a real result.
        """
        status = self._require()
        name, record = self._record(status, phase)
        provisional = status.completed_at is not None and any(
            _is_pause(other.summary) for other in status.phases.values()
        )
        record.status = PhaseStatus.COMPLETED
        record.completed_at = self._stamp(record.completed_at, record.started_at)
        record.summary = summary if summary is not None else {}
        if provisional and status.all_completed() and not any(
            _is_pause(other.summary) for other in status.phases.values()
        ):
            status.completed_at = self._stamp(status.completed_at, record.completed_at)
        saved = self._save(status, name)
        logger.info("Phase %s completed -> %s", name, saved.overall_status)
        return saved

    def fail(self, phase: str | Phase, message: str) -> PipelineStatus:
        """Mark *phase* failed and append *message* to its error history."""
        status = self._require()
        name, record = self._record(status, phase)
        record.status = PhaseStatus.FAILED
        record.errors.append(PhaseError(message=str(message), timestamp=self._stamp()))
        logger.warning("Phase %s failed: %s", name, message)
        return self._save(status, name)

    def reset(self, from_phase: str | Phase | None = None) -> PipelineStatus | None:
        """Reset from *from_phase* onward, or wipe the tracking directory.

        With a phase, that phase and every later one return to ``pending``
        with cleared timestamps, errors and summary, and their output
        documents are deleted. Without a phase the whole tracking directory
        is removed and ``None`` is returned.
        """
        if from_phase is None:
            self.store.purge()
            logger.info("Pipeline fully reset for %s", self.store.target)
            return None

        spec = self.settings.phase_spec(from_phase)
        status = self._require()
        for other in self.settings.ordered_phases():
            if other.order < spec.order:
                continue
            record = status.phases.get(other.name)
            if record is None:
                continue
            record.status = PhaseStatus.PENDING
            record.started_at = None
            record.completed_at = None
            record.errors = []
            record.summary = None
            self.store.delete(output_file_for(other.name))
        if spec.order <= self.settings.phase_spec(Phase.BUILDER).order:
            self.store.delete(LOOP_INSTRUCTIONS_FILE)
        status.completed_at = None
        logger.info("Reset from phase %s (and later phases)", spec.name)
        return self._save(status, spec.name)
