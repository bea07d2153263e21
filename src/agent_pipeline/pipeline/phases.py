"""Phase definitions and pipeline settings.

The phase table and every other tracking constant live on
:class:`PipelineSettings`, which is handed to each component explicitly.
"""

from __future__ import annotations

import logging
import os
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, model_validator

from agent_pipeline.errors import UnknownPhase

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    """The three fixed phases of the pipeline."""

    DISCOVERER = "discoverer"
    BUILDER = "builder"
    INSPECTOR = "inspector"


class PhaseSpec(BaseModel):
    """Static description of one phase: its name, position and display label."""

    name: str
    order: int = Field(ge=1)
    label: str


DEFAULT_PHASES: list[PhaseSpec] = [
    PhaseSpec(name=Phase.DISCOVERER.value, order=1, label="Discovery"),
    PhaseSpec(name=Phase.BUILDER.value, order=2, label="Build"),
    PhaseSpec(name=Phase.INSPECTOR.value, order=3, label="Inspection"),
]

DEFAULT_TRACKING_DIR = ".agent-tracking"
DEFAULT_MAX_LOOPS = 3
DEFAULT_REPO_MARKERS: tuple[str, ...] = (".git", "package.json", "pom.xml", "build.gradle")

STATUS_FILE = "pipeline-status.json"
MANIFEST_FILE = "change-manifest.json"
LOOP_INSTRUCTIONS_FILE = "builder-loop-instructions.json"


def output_file_for(phase: str) -> str:
    return f"{phase}-output.json"


def input_file_for(phase: str) -> str:
    return f"{phase}-input.json"


def prompt_file_for(phase: str) -> str:
    return f"{phase}-prompt.txt"


class PipelineSettings(BaseModel):
    """Configuration shared by the tracker, state machine and coordinators."""

    tracking_dir: str = DEFAULT_TRACKING_DIR
    phases: list[PhaseSpec] = Field(default_factory=lambda: list(DEFAULT_PHASES))
    repo_markers: tuple[str, ...] = DEFAULT_REPO_MARKERS
    hidden_prefix: str = "."
    combined_status_file: str = ".multi-repo-status.json"
    max_loops: int = Field(default=DEFAULT_MAX_LOOPS, ge=1)
    # Directory holding <phase>/CLAUDE.md and <phase>/skills/*.md instruction files.
    agents_dir: Path | None = None

    @model_validator(mode="after")
    def _validate_phase_table(self) -> PipelineSettings:
        names = [spec.name for spec in self.phases]
        orders = [spec.order for spec in self.phases]
        if len(set(names)) != len(names):
            raise ValueError("phase names must be unique")
        if len(set(orders)) != len(orders):
            raise ValueError("phase orders must be unique")
        missing = [phase.value for phase in Phase if phase.value not in names]
        if missing:
            raise ValueError(f"phase table is missing: {', '.join(missing)}")
        if not self.tracking_dir.strip():
            raise ValueError("tracking_dir must be a non-empty directory name")
        return self

    @classmethod
    def from_env(cls, **overrides: object) -> PipelineSettings:
        """Build settings from ``AGENT_PIPELINE_*`` environment variables.

        Explicit keyword overrides win over the environment.
        """
        values: dict[str, object] = {}
        tracking_env = os.getenv("AGENT_PIPELINE_TRACKING_DIR", "").strip()
        if tracking_env:
            values["tracking_dir"] = tracking_env
        loops_env = os.getenv("AGENT_PIPELINE_MAX_LOOPS", "").strip()
        if loops_env:
            try:
                values["max_loops"] = max(1, int(loops_env))
            except ValueError:
                logger.warning(
                    "Invalid AGENT_PIPELINE_MAX_LOOPS=%r; using %s",
                    loops_env,
                    DEFAULT_MAX_LOOPS,
                )
        agents_env = os.getenv("AGENT_PIPELINE_AGENTS_DIR", "").strip()
        if agents_env:
            values["agents_dir"] = Path(agents_env).expanduser()
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)

    # -- Phase table queries ------------------------------------------------

    def ordered_phases(self) -> list[PhaseSpec]:
        return sorted(self.phases, key=lambda spec: spec.order)

    def phase_names(self) -> list[str]:
        return [spec.name for spec in self.ordered_phases()]

    def phase_spec(self, phase: str | Phase) -> PhaseSpec:
        """Return the spec for *phase* or raise :class:`UnknownPhase`."""
        name = phase.value if isinstance(phase, Phase) else str(phase)
        for spec in self.phases:
            if spec.name == name:
                return spec
        raise UnknownPhase(name, self.phase_names())

    def first_phase(self) -> PhaseSpec:
        return self.ordered_phases()[0]
