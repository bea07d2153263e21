"""Abstract interface for the external actor that performs a phase's work.

The tracker never does the work of a phase itself. A runner is asked to run a
phase and answers with one of three outcomes:

- :class:`ActorOutput` - the phase produced its output document.
- :class:`ActorPending` - the output is not available yet; the pipeline pauses
  and tells the operator how to continue.
- :class:`ActorFailure` - the actor reported that the phase failed.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Union

from agent_pipeline.schemas import LoopInstructions

if TYPE_CHECKING:
    from agent_pipeline.pipeline.phases import PipelineSettings
    from agent_pipeline.pipeline.tracker import TrackingStore


@dataclass(frozen=True)
class PhaseContext:
    """Everything a runner needs to know about the phase it is asked to run."""

    target: Path
    tracking_dir: Path
    phase: str
    settings: PipelineSettings
    loop: int = 0
    max_loops: int | None = None
    input_file: Path | None = None
    loop_instructions: LoopInstructions | None = None

    @classmethod
    def for_store(cls, store: TrackingStore, phase: str, **kwargs: Any) -> PhaseContext:
        return cls(
            target=store.target,
            tracking_dir=store.tracking_dir,
            phase=phase,
            settings=store.settings,
            **kwargs,
        )


@dataclass(frozen=True)
class ActorOutput:
    payload: dict[str, Any]
    source: Path | None = None


@dataclass(frozen=True)
class ActorPending:
    instructions: list[str] = field(default_factory=list)
    prompt_file: Path | None = None


@dataclass(frozen=True)
class ActorFailure:
    message: str


ActorOutcome = Union[ActorOutput, ActorPending, ActorFailure]


class ActorRunner(abc.ABC):
    """Common interface for anything that can carry out a pipeline phase."""

    #: Human-readable name shown in CLI output.
    name: str = "base"

    @abc.abstractmethod
    def run(self, phase: str, context: PhaseContext) -> ActorOutcome:
        """Run (or look up the result of) *phase* for ``context.target``.

        Report a failed phase by returning :class:`ActorFailure` or raising
        :class:`agent_pipeline.errors.PhaseFailure`; either is recorded
        against the phase.
        """


# -- Registry ---------------------------------------------------------
#
# Maps the ``--actor`` choice on the command line to a runner class.

_ACTORS: dict[str, type[ActorRunner]] = {}


def _actor_key(key: str) -> str:
    return (key or "").strip()


def register_actor(key: str, cls: type[ActorRunner]) -> None:
    """Make *cls* selectable as ``--actor <key>``.

    Registering the same class twice is a no-op; claiming a key that already
    belongs to another runner class is rejected.
    """
    name = _actor_key(key)
    if not name:
        raise ValueError("Actor key must be a non-empty string")
    if not (isinstance(cls, type) and issubclass(cls, ActorRunner)):
        raise TypeError(f"{cls!r} is not an ActorRunner subclass")
    current = _ACTORS.setdefault(name, cls)
    if current is not cls:
        raise ValueError(f"Actor '{name}' is already registered with {current.__name__}")


def get_actor_class(key: str) -> type[ActorRunner]:
    """Resolve an ``--actor`` value to its runner class."""
    name = _actor_key(key)
    try:
        return _ACTORS[name]
    except KeyError:
        choices = ", ".join(list_actors()) or "(none)"
        raise KeyError(f"Unknown actor '{name}'. Available: {choices}") from None


def list_actors() -> list[str]:
    """Actor keys accepted by ``--actor``, sorted."""
    return sorted(_ACTORS)
