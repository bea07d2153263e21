"""Exception taxonomy for pipeline tracking.

Waiting on an external actor is not represented here: a missing phase output
is an expected, paused state (see :class:`agent_pipeline.actor_runner.ActorPending`).
"""

from __future__ import annotations

from pathlib import Path


class PipelineError(Exception):
    """Base class for every error raised by the pipeline tracker."""


class UsageError(PipelineError):
    """Missing or invalid command-line arguments. No state is mutated."""


class NotInitialized(PipelineError):
    """A state-machine operation ran before ``initialize`` for the target."""

    def __init__(self, target: str | Path) -> None:
        self.target = str(target)
        super().__init__(
            f"Pipeline not initialized for {self.target}. Call initialize() first."
        )


class UnknownPhase(PipelineError):
    """A phase name outside the configured phase table."""

    def __init__(self, phase: str, known: list[str] | tuple[str, ...]) -> None:
        self.phase = phase
        self.known = list(known)
        super().__init__(f"Unknown phase: {phase!r}. Use one of: {', '.join(self.known)}")


class DocumentValidationError(PipelineError):
    """A persisted or external document failed structural validation."""

    def __init__(self, name: str, detail: str, *, path: Path | None = None) -> None:
        self.name = name
        self.detail = detail
        self.path = path
        where = f" ({path})" if path is not None else ""
        super().__init__(f"Invalid document {name}{where}: {detail}")


class PhaseFailure(PipelineError):
    """The external actor reported that a phase failed."""

    def __init__(self, phase: str, message: str) -> None:
        self.phase = phase
        self.message = message
        super().__init__(f"Phase {phase} failed: {message}")
