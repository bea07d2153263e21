"""Manual actor runner: the operator runs each phase's agent by hand.

For every phase the runner writes the full agent prompt to
``<tracking>/<phase>-prompt.txt`` and looks for ``<phase>-output.json``. When
the output is there it is handed back to the pipeline; otherwise the pipeline
pauses with instructions for running the agent.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from agent_pipeline.actor_runner import (
    ActorFailure,
    ActorOutcome,
    ActorOutput,
    ActorPending,
    ActorRunner,
    PhaseContext,
    register_actor,
)
from agent_pipeline.file_io import atomic_write_text, describe_decode_error, read_json
from agent_pipeline.pipeline.phases import (
    Phase,
    input_file_for,
    output_file_for,
    prompt_file_for,
)

logger = logging.getLogger(__name__)

INSTRUCTIONS_FILE = "CLAUDE.md"
SKILLS_DIR = "skills"


def _read_optional(path: Path) -> str:
    # Prompt context only: undecodable bytes become U+FFFD.
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        return ""
    return raw.decode("utf-8", errors="replace")


def build_phase_prompt(phase: str, context: PhaseContext) -> str:
    """Assemble the prompt handed to the agent for *phase*."""
    parts = [
        f'You are running as the "{phase}" agent.',
        f"Target repository: {context.target}",
    ]
    if context.loop:
        limit = f"/{context.max_loops}" if context.max_loops else ""
        parts.append(f"Builder loop: {context.loop}{limit}")

    agent_dir = context.settings.agents_dir / phase if context.settings.agents_dir else None
    if agent_dir is not None:
        instructions = _read_optional(agent_dir / INSTRUCTIONS_FILE)
        if instructions:
            parts.append(f"Your instructions:\n{instructions}")

    if phase == Phase.DISCOVERER.value:
        source = context.input_file or context.tracking_dir / input_file_for(phase)
        endpoints = _read_optional(source)
        if endpoints:
            parts.append(f"Endpoints input:\n{endpoints}")

    if phase in (Phase.BUILDER.value, Phase.INSPECTOR.value):
        discovered = _read_optional(context.tracking_dir / output_file_for(Phase.DISCOVERER.value))
        if discovered:
            parts.append(f"Discoverer output:\n{discovered}")

    if phase == Phase.BUILDER.value and context.loop_instructions is not None:
        rendered = json.dumps(context.loop_instructions.to_document(), indent=2)
        parts.append(f"Inspector requested another pass:\n{rendered}")

    if phase == Phase.INSPECTOR.value:
        built = _read_optional(context.tracking_dir / output_file_for(Phase.BUILDER.value))
        if built:
            parts.append(f"Builder output:\n{built}")

    if agent_dir is not None and (agent_dir / SKILLS_DIR).is_dir():
        for skill in sorted((agent_dir / SKILLS_DIR).glob("*.md")):
            parts.append(f"--- Skill: {skill.stem} ---\n{_read_optional(skill)}")

    return "\n\n".join(parts) + "\n"


class ManualActorRunner(ActorRunner):
    """Writes prompts and waits for the operator to produce phase output."""

    name = "Manual"

    def run(self, phase: str, context: PhaseContext) -> ActorOutcome:
        prompt_path = context.tracking_dir / prompt_file_for(phase)
        atomic_write_text(prompt_path, build_phase_prompt(phase, context))
        logger.debug("Prompt for %s written to %s", phase, prompt_path)

        output_path = context.tracking_dir / output_file_for(phase)
        try:
            payload = read_json(output_path)
        except ValueError as exc:
            return ActorFailure(f"{output_path.name} is {describe_decode_error(exc)}")
        if payload is None:
            return ActorPending(
                instructions=self.instructions(phase, context, prompt_path, output_path),
                prompt_file=prompt_path,
            )
        if not isinstance(payload, dict):
            return ActorFailure(f"{output_path.name} must contain a JSON object")
        if str(payload.get("status", "")).lower() == "failed":
            return ActorFailure(str(payload.get("error") or "external actor reported failure"))
        return ActorOutput(payload=payload, source=output_path)

    @staticmethod
    def instructions(
        phase: str,
        context: PhaseContext,
        prompt_path: Path,
        output_path: Path,
    ) -> list[str]:
        label = context.settings.phase_spec(phase).label
        lines = [f"Run the {label} agent ({phase}):", f'  cd "{context.target}"']
        if context.settings.agents_dir is not None:
            lines.append(
                f'  claude --claude-md "{context.settings.agents_dir / phase / INSTRUCTIONS_FILE}"'
            )
        lines += [
            f'  claude --print < "{prompt_path}"',
            "After the agent finishes, make sure its output is at:",
            f"  {output_path}",
            "Then re-run this command to continue.",
        ]
        return lines


register_actor("manual", ManualActorRunner)
