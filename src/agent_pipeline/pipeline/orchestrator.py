"""Pipeline orchestrator - runs discovery once, then the build/inspect loop.

    Discoverer -> Builder -> Inspector -> (Builder -> Inspector)* -> done

The orchestrator never performs a phase's work. It records each transition
through :class:`PipelineStateMachine` and asks an :class:`ActorRunner` for the
phase's outcome. A phase whose output is not available yet pauses the
pipeline: the phase is recorded with ``{"status": "awaiting_external_step"}``
and re-running the pipeline resumes where it stopped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from agent_pipeline.actor_runner import (
    ActorFailure,
    ActorOutput,
    ActorPending,
    ActorRunner,
    PhaseContext,
)
from agent_pipeline.errors import DocumentValidationError, NotInitialized, PhaseFailure
from agent_pipeline.file_io import describe_decode_error, read_json
from agent_pipeline.pipeline.loop_controller import LoopController, LoopOutcome
from agent_pipeline.pipeline.manifest import ChangeManifestLog
from agent_pipeline.pipeline.phases import (
    Phase,
    PipelineSettings,
    input_file_for,
    output_file_for,
)
from agent_pipeline.pipeline.state_machine import Clock, PipelineStateMachine
from agent_pipeline.pipeline.tracker import TrackingStore
from agent_pipeline.schemas import (
    AWAITING_EXTERNAL_STEP,
    BuilderOutput,
    DiscovererOutput,
    EndpointsInput,
    InspectorOutput,
    LoopInstructions,
    PipelineStatus,
    validate_document,
)

logger = logging.getLogger(__name__)

DISCOVERER = Phase.DISCOVERER.value


def load_endpoints_input(path: str | Path) -> EndpointsInput:
    """Read and validate a pipeline input document."""
    source = Path(path)
    try:
        payload = read_json(source)
    except ValueError as exc:
        raise DocumentValidationError(source.name, describe_decode_error(exc), path=source) from exc
    except OSError as exc:
        raise DocumentValidationError(source.name, f"unreadable ({exc})", path=source) from exc
    if payload is None:
        raise DocumentValidationError(source.name, "file not found", path=source)
    document = validate_document(EndpointsInput, payload, source.name)
    logger.debug("Loaded %d endpoint(s) from %s", len(document.endpoints), source)
    return document


def copy_input(store: TrackingStore, input_file: str | Path) -> EndpointsInput:
    """Validate *input_file* and store it as the discoverer's input document."""
    document = load_endpoints_input(input_file)
    store.write(input_file_for(DISCOVERER), document)
    return document


@dataclass
class PipelineRunResult:
    """Outcome of one orchestrator invocation."""

    outcome: LoopOutcome
    status: PipelineStatus | None = None
    paused_phase: str | None = None
    instructions: list[str] = field(default_factory=list)
    error: str | None = None
    loop: int = 0
    builds: int = 0
    cap_reached: bool = False
    confidence_score: float | None = None

    @property
    def exit_code(self) -> int:
        return 1 if self.outcome == LoopOutcome.FAILED else 0


class PipelineOrchestrator:
    """Runs the pipeline, or a single phase, against one target.

    Parameters
    ----------
    target:
        Root directory of the target repository.
    settings:
        Pipeline settings shared by every component.
    runner:
        The actor runner asked for each phase's outcome.
    """

    def __init__(
        self,
        target: str | Path,
        settings: PipelineSettings,
        runner: ActorRunner,
        *,
        clock: Clock | None = None,
    ) -> None:
        self.settings = settings
        self.store = TrackingStore(target, settings)
        self.target = self.store.target
        self.machine = PipelineStateMachine(self.store, clock=clock)
        self.manifest = ChangeManifestLog(self.store)
        self.runner = runner

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run_pipeline(
        self,
        input_file: str | Path | None,
        max_loops: int | None = None,
    ) -> PipelineRunResult:
        """Run discovery, then the bounded build/inspect loop."""
        loops = max_loops if max_loops is not None else self.settings.max_loops
        logger.info("Starting pipeline for %s (max builder loops: %d)", self.target, loops)
        input_path = Path(input_file).resolve() if input_file else None
        document = load_endpoints_input(input_path) if input_path is not None else None
        self.machine.initialize(input_path)
        if document is not None:
            self.store.write(input_file_for(DISCOVERER), document)

        stopped = self._run_phase(DISCOVERER, input_file=input_path)
        if stopped is not None:
            return stopped

        loop_result = LoopController(self.machine, self.runner, manifest=self.manifest).run(loops)
        result = PipelineRunResult(
            outcome=loop_result.outcome,
            status=self.machine.load(),
            paused_phase=loop_result.paused_phase,
            instructions=loop_result.instructions,
            error=loop_result.error,
            loop=loop_result.loop,
            builds=loop_result.builds,
            cap_reached=loop_result.cap_reached,
        )
        if loop_result.inspection is not None:
            result.confidence_score = loop_result.inspection.confidence_score
        return result

    def run_agent(self, phase: str | Phase, input_file: str | Path | None = None) -> PipelineRunResult:
        """Run exactly one phase and record its outcome."""
        name = self.settings.phase_spec(phase).name
        input_path = Path(input_file).resolve() if input_file else None
        document = None
        if name == DISCOVERER and input_path is not None:
            document = load_endpoints_input(input_path)
        self.machine.initialize(input_path)
        if document is not None:
            self.store.write(input_file_for(DISCOVERER), document)
        stopped = self._run_phase(name, input_file=input_path)
        if stopped is not None:
            return stopped
        return PipelineRunResult(outcome=LoopOutcome.COMPLETED, status=self.machine.load())

    def reset(self, phase: str | Phase | None = None) -> bool:
        """Reset from *phase*, or fully. Returns False when there was nothing to reset."""
        if phase is not None:
            self.settings.phase_spec(phase)
            try:
                self.machine.reset(phase)
            except NotInitialized:
                logger.info("No pipeline to reset for %s", self.target)
                return False
            return True
        existed = self.store.tracking_dir.exists()
        self.machine.reset(None)
        return existed

    # ------------------------------------------------------------------
    # Single phase
    # ------------------------------------------------------------------

    def _run_phase(self, phase: str, *, input_file: Path | None = None) -> PipelineRunResult | None:
        """Start *phase*, ask the runner, record the result.

        Returns a result when the pipeline has to stop here (paused or
        failed), otherwise ``None``.
        """
        self.machine.start(phase)
        try:
            context = PhaseContext.for_store(
                self.store,
                phase,
                input_file=input_file,
                loop_instructions=self._loop_instructions(phase),
            )
            outcome = self.runner.run(phase, context)
        except PhaseFailure as exc:
            return self._failed(phase, exc.message)
        except DocumentValidationError as exc:
            return self._failed(phase, str(exc))

        if isinstance(outcome, ActorPending):
            summary: dict[str, Any] = {"status": AWAITING_EXTERNAL_STEP}
            if outcome.prompt_file is not None:
                summary["promptFile"] = str(outcome.prompt_file)
            status = self.machine.complete(phase, summary)
            logger.info("%s output not yet available; pipeline paused.", phase)
            return PipelineRunResult(
                outcome=LoopOutcome.PAUSED,
                status=status,
                paused_phase=phase,
                instructions=list(outcome.instructions),
            )
        if isinstance(outcome, ActorFailure):
            return self._failed(phase, outcome.message)

        assert isinstance(outcome, ActorOutput)
        try:
            summary = self._summarize(phase, outcome.payload)
        except DocumentValidationError as exc:
            return self._failed(phase, str(exc))
        self.machine.complete(phase, summary)
        return None

    def _failed(self, phase: str, message: str) -> PipelineRunResult:
        status = self.machine.fail(phase, message)
        return PipelineRunResult(
            outcome=LoopOutcome.FAILED,
            status=status,
            paused_phase=phase,
            error=message,
        )

    def _loop_instructions(self, phase: str) -> LoopInstructions | None:
        if phase != Phase.BUILDER.value:
            return None
        return LoopController(self.machine, self.runner).pending_instructions()

    def _summarize(self, phase: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Validate a phase's output and reduce it to the stored summary."""
        name = output_file_for(phase)
        if phase == DISCOVERER:
            discovered = validate_document(DiscovererOutput, payload, name)
            self.manifest.record_scan_coverage(
                discovered.scanned_paths or [discovered.target_path],
                discovered.scanned_files,
            )
            return {"occurrences": len(discovered.occurrences)}
        if phase == Phase.BUILDER.value:
            built = validate_document(BuilderOutput, payload, name)
            self.manifest.record_build(phase, built)
            return built.test_results.model_dump()
        if phase == Phase.INSPECTOR.value:
            inspection = validate_document(InspectorOutput, payload, name)
            if inspection.requires_builder_loop:
                logger.warning(
                    "Inspector requests another builder pass (%s); use run-pipeline to loop.",
                    inspection.loop_reason,
                )
            return inspection.validation_results
        return payload
