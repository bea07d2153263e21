"""Bounded builder/inspector loop.

Only the build and inspect phases loop; discovery runs once. Each pass
increments the loop counter, runs the builder, then the inspector. When the
inspector asks for another pass and the counter is still below ``max_loops``,
the request is persisted as ``builder-loop-instructions.json`` and the next
pass starts. Phase records are not reset between passes: the next ``start``
simply moves them out of their previous terminal state.

The counter resumes from pending loop instructions, so the bound also holds
when the loop is driven across several process invocations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

from agent_pipeline.actor_runner import (
    ActorFailure,
    ActorOutcome,
    ActorPending,
    ActorRunner,
    PhaseContext,
)
from agent_pipeline.errors import DocumentValidationError
from agent_pipeline.pipeline.manifest import ChangeManifestLog
from agent_pipeline.pipeline.phases import LOOP_INSTRUCTIONS_FILE, Phase, output_file_for
from agent_pipeline.pipeline.state_machine import PipelineStateMachine
from agent_pipeline.schemas import (
    AWAITING_EXTERNAL_STEP,
    BuilderOutput,
    InspectorOutput,
    LoopInstructions,
    validate_document,
)

logger = logging.getLogger(__name__)

BUILDER = Phase.BUILDER.value
INSPECTOR = Phase.INSPECTOR.value


class LoopOutcome(str, Enum):
    COMPLETED = "completed"
    PAUSED = "paused"
    FAILED = "failed"


@dataclass
class LoopResult:
    """What happened during one :meth:`LoopController.run` call."""

    outcome: LoopOutcome
    loop: int = 0
    builds: int = 0
    cap_reached: bool = False
    paused_phase: str | None = None
    instructions: list[str] = field(default_factory=list)
    error: str | None = None
    inspection: InspectorOutput | None = None


class LoopController:
    """Drives build and inspect passes up to a fixed number of loops."""

    def __init__(
        self,
        machine: PipelineStateMachine,
        runner: ActorRunner,
        *,
        manifest: ChangeManifestLog | None = None,
    ) -> None:
        self.machine = machine
        self.store = machine.store
        self.runner = runner
        self.manifest = manifest or ChangeManifestLog(machine.store)

    def pending_instructions(self) -> LoopInstructions | None:
        return self.store.read_model(LOOP_INSTRUCTIONS_FILE, LoopInstructions)

    def run(self, max_loops: int) -> LoopResult:
        """Run build/inspect passes until done, paused, failed, or capped."""
        if max_loops < 1:
            raise ValueError("max_loops must be >= 1")

        instructions = self.pending_instructions()
        loop = 0
        if instructions is not None:
            loop = min(instructions.loop - 1, max_loops)
            logger.info("Resuming builder loop %d (reason: %s)", instructions.loop, instructions.reason)
        builds = 0

        while loop < max_loops:
            loop += 1
            logger.info("Builder pass %d/%d", loop, max_loops)
            self.machine.start(BUILDER)
            builds += 1
            outcome = self.runner.run(BUILDER, self._context(BUILDER, loop, max_loops, instructions))
            stopped = self._stop_on(BUILDER, outcome, loop, builds)
            if stopped is not None:
                return stopped
            try:
                built = validate_document(BuilderOutput, outcome.payload, output_file_for(BUILDER))
            except DocumentValidationError as exc:
                return self._failed(BUILDER, str(exc), loop, builds)
            self.manifest.record_build(BUILDER, built)
            self.machine.complete(BUILDER, {"loop": loop, **built.test_results.model_dump()})

            self.machine.start(INSPECTOR)
            outcome = self.runner.run(INSPECTOR, self._context(INSPECTOR, loop, max_loops, None))
            stopped = self._stop_on(INSPECTOR, outcome, loop, builds)
            if stopped is not None:
                return stopped
            try:
                inspection = validate_document(
                    InspectorOutput, outcome.payload, output_file_for(INSPECTOR)
                )
            except DocumentValidationError as exc:
                return self._failed(INSPECTOR, str(exc), loop, builds)

            if inspection.requires_builder_loop and loop < max_loops:
                logger.info("Inspector requests builder loop (reason: %s)", inspection.loop_reason)
                instructions = LoopInstructions(
                    loop=loop + 1,
                    items=inspection.loop_items,
                    reason=inspection.loop_reason,
                )
                self.store.write(LOOP_INSTRUCTIONS_FILE, instructions)
                self.machine.complete(INSPECTOR, {"loopRequested": True, "loop": loop})
                # Consumed outputs; the next pass must produce fresh ones.
                self.store.delete(output_file_for(BUILDER))
                self.store.delete(output_file_for(INSPECTOR))
                continue

            return self._finish(inspection, loop, builds)

        # Only reachable when resumed instructions already sit at the cap.
        logger.warning("Max loops (%d) already reached; no builder pass left.", max_loops)
        self.store.delete(LOOP_INSTRUCTIONS_FILE)
        return LoopResult(outcome=LoopOutcome.COMPLETED, loop=loop, builds=builds, cap_reached=True)

    # ------------------------------------------------------------------

    def _context(
        self,
        phase: str,
        loop: int,
        max_loops: int,
        instructions: LoopInstructions | None,
    ) -> PhaseContext:
        return PhaseContext.for_store(
            self.store,
            phase,
            loop=loop,
            max_loops=max_loops,
            loop_instructions=instructions,
        )

    def _stop_on(
        self,
        phase: str,
        outcome: ActorOutcome,
        loop: int,
        builds: int,
    ) -> LoopResult | None:
        if isinstance(outcome, ActorPending):
            self.machine.complete(phase, {"status": AWAITING_EXTERNAL_STEP, "loop": loop})
            logger.info("%s output not yet available; pipeline paused.", phase)
            return LoopResult(
                outcome=LoopOutcome.PAUSED,
                loop=loop,
                builds=builds,
                paused_phase=phase,
                instructions=list(outcome.instructions),
            )
        if isinstance(outcome, ActorFailure):
            return self._failed(phase, outcome.message, loop, builds)
        return None

    def _failed(self, phase: str, message: str, loop: int, builds: int) -> LoopResult:
        self.machine.fail(phase, message)
        return LoopResult(
            outcome=LoopOutcome.FAILED,
            loop=loop,
            builds=builds,
            paused_phase=phase,
            error=message,
        )

    def _finish(self, inspection: InspectorOutput, loop: int, builds: int) -> LoopResult:
        cap_reached = inspection.requires_builder_loop
        self.machine.complete(INSPECTOR, inspection.validation_results)
        self.store.delete(LOOP_INSTRUCTIONS_FILE)
        if cap_reached:
            logger.warning(
                "Max loops (%d) reached with a loop still requested. Manual review required.",
                loop,
            )
        return LoopResult(
            outcome=LoopOutcome.COMPLETED,
            loop=loop,
            builds=builds,
            cap_reached=cap_reached,
            inspection=inspection,
        )
