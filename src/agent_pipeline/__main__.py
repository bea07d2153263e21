"""CLI entrypoint for agent-pipeline."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import ValidationError

# Registers the "manual" actor.
import agent_pipeline.manual_runner  # noqa: F401
from agent_pipeline.actor_runner import ActorRunner, get_actor_class
from agent_pipeline.errors import PhaseFailure, PipelineError, UsageError
from agent_pipeline.pipeline import (
    LoopOutcome,
    MultiTargetCoordinator,
    PipelineOrchestrator,
    PipelineRunResult,
    PipelineSettings,
    StatusReporter,
)
from agent_pipeline.pipeline.multi_target import bucket_for
from agent_pipeline.pipeline.reporter import status_marker
from agent_pipeline.schemas import CombinedStatus, StatusSummary

logger = logging.getLogger(__name__)


def _load_dotenv() -> None:
    """Load .env from cwd, its parent, or package root so it's found regardless of cwd."""
    # Package root = directory containing pyproject.toml / .env (parent of src/)
    _this_file = Path(__file__).resolve()
    _package_root = _this_file.parent.parent.parent  # src/agent_pipeline/__main__.py -> root
    for dir_ in (Path.cwd(), Path.cwd().parent, _package_root):
        env_file = dir_ / ".env"
        if env_file.is_file():
            load_dotenv(env_file)
            return
    load_dotenv()


_load_dotenv()


def _build_parser() -> argparse.ArgumentParser:
    """Build and return the command-line parser for all sub-commands."""
    p = argparse.ArgumentParser(
        prog="agent-pipeline",
        description="Agent Pipeline - track discover, build and inspect phases per repository.",
    )
    p.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging.",
    )
    p.add_argument(
        "--actor",
        type=str,
        default="manual",
        help="Actor runner that carries out each phase (default: manual).",
    )
    # -- Sub-commands ---------------------------------------------------------
    sub = p.add_subparsers(dest="command")

    reset_p = sub.add_parser("reset", help="Reset a target's pipeline, fully or from a phase.")
    reset_p.add_argument("--target", type=str, default="", help="Path to the target repository.")
    reset_p.add_argument(
        "--phase",
        type=str,
        default="",
        help="Reset this phase and every later one. Omit to remove all tracking state.",
    )

    agent_p = sub.add_parser("run-agent", help="Run a single phase against a target.")
    agent_p.add_argument(
        "phase",
        nargs="?",
        default="",
        help="Phase to run: discoverer, builder or inspector.",
    )
    agent_p.add_argument("--target", type=str, default="", help="Path to the target repository.")
    agent_p.add_argument(
        "--input",
        type=str,
        default="",
        help="Endpoints input document (required for the discoverer).",
    )

    pipe_p = sub.add_parser(
        "run-pipeline",
        help="Run discovery, then the bounded build/inspect loop.",
    )
    pipe_p.add_argument("--target", type=str, default="", help="Path to the target repository.")
    pipe_p.add_argument("--input", type=str, default="", help="Endpoints input document.")
    pipe_p.add_argument(
        "--max-loops",
        type=int,
        default=None,
        help="Maximum builder passes (default: AGENT_PIPELINE_MAX_LOOPS or 3).",
    )

    multi_p = sub.add_parser(
        "run-multi",
        help="Initialize every project under a folder and write a combined status.",
    )
    multi_p.add_argument("--folder", type=str, default="", help="Folder holding the projects.")
    multi_p.add_argument("--input", type=str, default="", help="Endpoints input document.")
    multi_p.add_argument(
        "--max-loops",
        type=int,
        default=None,
        help="Maximum builder passes shown in the per-target instructions.",
    )

    status_p = sub.add_parser("status", help="Show a target's pipeline status.")
    status_p.add_argument("--target", type=str, default="", help="Path to the target repository.")
    status_p.add_argument(
        "--json",
        action="store_true",
        help="Print the status summary as JSON instead of a table.",
    )
    return p


def main(argv: list[str] | None = None) -> int:
    """Parse arguments and dispatch to the appropriate sub-command."""
    parser = _build_parser()
    args = parser.parse_args(argv)
    # -- Logging setup (early, for all commands) ------------------------------
    level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )
    handlers = {
        "reset": _run_reset,
        "run-agent": _run_agent,
        "run-pipeline": _run_pipeline,
        "run-multi": _run_multi,
        "status": _run_status,
    }
    handler = handlers.get(args.command or "")
    if handler is None:
        parser.print_help()
        print(
            "\nTip: run 'agent-pipeline run-pipeline --target <path> --input <file>'\n"
            "     or 'agent-pipeline status --target <path>'.",
            file=sys.stderr,
        )
        return 1
    try:
        return handler(args)
    except UsageError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except PipelineError as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


# ------------------------------------------------------------------
# Shared helpers
# ------------------------------------------------------------------


def _settings(args: argparse.Namespace) -> PipelineSettings:
    try:
        return PipelineSettings.from_env(max_loops=getattr(args, "max_loops", None))
    except ValidationError as exc:
        raise UsageError(f"invalid settings: {exc.errors()[0]['msg']}") from exc


def _runner(args: argparse.Namespace) -> ActorRunner:
    try:
        cls = get_actor_class(args.actor)
    except KeyError as exc:
        raise UsageError(exc.args[0]) from exc
    return cls()


def _path_arg(raw: str, flag: str) -> Path:
    value = str(raw or "").strip()
    if not value:
        raise UsageError(f"{flag} <path> is required")
    return Path(value).expanduser().resolve()


def _existing_dir(raw: str, flag: str) -> Path:
    path = _path_arg(raw, flag)
    if not path.is_dir():
        raise UsageError(f"path does not exist: {path}")
    return path


def _existing_file(raw: str, flag: str, *, required: bool) -> Path | None:
    value = str(raw or "").strip()
    if not value:
        if required:
            raise UsageError(f"{flag} <file> is required")
        return None
    path = Path(value).expanduser().resolve()
    if not path.is_file():
        raise UsageError(f"input file does not exist: {path}")
    return path


def _check_max_loops(args: argparse.Namespace) -> None:
    if args.max_loops is not None and args.max_loops < 1:
        raise UsageError("--max-loops must be at least 1")


def _finish(result: PipelineRunResult, target: Path) -> int:
    """Print *result*; a failed phase is raised as PhaseFailure."""
    if result.outcome == LoopOutcome.PAUSED:
        print(f"\nPipeline paused at {result.paused_phase}.")
        for line in result.instructions:
            print(line)
        return 0
    if result.outcome == LoopOutcome.FAILED:
        print(f"\nInspect, then: agent-pipeline reset --target \"{target}\" --phase {result.paused_phase}")
        raise PhaseFailure(result.paused_phase or "unknown", result.error or "phase failed")
    status = result.status.overall_status if result.status is not None else "unknown"
    print(f"\n=== Pipeline finished: {status} ===")
    if result.builds:
        print(f"Builder passes: {result.builds} (loop {result.loop})")
    if result.cap_reached:
        print("Max loops reached with a loop still requested. Manual review required.")
    if result.confidence_score is not None:
        print(f"Confidence score: {result.confidence_score}")
    return result.exit_code


# ------------------------------------------------------------------
# Sub-commands
# ------------------------------------------------------------------


def _run_reset(args: argparse.Namespace) -> int:
    """Reset tracking state for one target."""
    target = _existing_dir(args.target, "--target")
    settings = _settings(args)
    phase = str(args.phase or "").strip() or None
    if phase is not None:
        settings.phase_spec(phase)
    orchestrator = PipelineOrchestrator(target, settings, _runner(args))
    done = orchestrator.reset(phase)
    if phase is None:
        print("Pipeline fully reset." if done else "Nothing to reset.")
    elif done:
        print(f"Reset from phase: {phase} (and later phases)")
    else:
        print("No pipeline to reset.")
    return 0


def _run_agent(args: argparse.Namespace) -> int:
    """Run one phase and record its outcome."""
    settings = _settings(args)
    phase_raw = str(args.phase or "").strip()
    if not phase_raw:
        raise UsageError(f"phase is required. Use one of: {', '.join(settings.phase_names())}")
    phase = settings.phase_spec(phase_raw).name
    target = _existing_dir(args.target, "--target")
    input_file = _existing_file(args.input, "--input", required=False)
    runner = _runner(args)

    print(f"\n=== Running Agent: {phase} ===")
    print(f"Target: {target}")
    if input_file is not None:
        print(f"Input: {input_file}")
    result = PipelineOrchestrator(target, settings, runner).run_agent(phase, input_file)
    return _finish(result, target)


def _run_pipeline(args: argparse.Namespace) -> int:
    """Run the whole pipeline against one target."""
    _check_max_loops(args)
    target = _existing_dir(args.target, "--target")
    input_file = _existing_file(args.input, "--input", required=True)
    settings = _settings(args)
    runner = _runner(args)

    print("=== Agent Pipeline ===")
    print(f"Target: {target}")
    print(f"Input: {input_file}")
    print(f"Max loops: {settings.max_loops}")
    result = PipelineOrchestrator(target, settings, runner).run_pipeline(
        input_file, settings.max_loops
    )
    return _finish(result, target)


def _print_combined(combined: CombinedStatus) -> None:
    print("\n=== Multi-Target Pipeline Status ===\n")
    for entry in combined.targets:
        bucket = bucket_for(entry.status_summary)
        detail = entry.status_summary.overall_status or "not started"
        if entry.error:
            detail = f"error: {entry.error}"
        print(f"  {status_marker(bucket)} {entry.name} - {detail}")
    totals = combined.totals
    print(f"\nTotal: {totals.total} targets")
    print(f"  Completed: {totals.completed}")
    print(f"  In Progress: {totals.in_progress}")
    print(f"  Pending: {totals.pending}")
    print(f"  Failed: {totals.failed}")


def _run_multi(args: argparse.Namespace) -> int:
    """Initialize every project under a folder and report combined status."""
    _check_max_loops(args)
    folder = _existing_dir(args.folder, "--folder")
    input_file = _existing_file(args.input, "--input", required=True)
    settings = _settings(args)
    coordinator = MultiTargetCoordinator(settings)

    print("=== Multi-Target Pipeline ===")
    print(f"Folder: {folder}")
    print(f"Input: {input_file}\n")
    targets = coordinator.discover(folder)
    if not targets:
        print("Error: no projects found in folder.", file=sys.stderr)
        return 1
    print(f"Found {len(targets)} target(s):")
    for target in targets:
        print(f"  - {target.name}")

    report = coordinator.initialize_all(targets, input_file)

    print("\n=== Instructions ===\n")
    print("Run each target's pipeline independently:\n")
    for target in report.initialized:
        print(
            f'  agent-pipeline --actor {args.actor} run-pipeline --target "{target}" '
            f'--input "{input_file}" --max-loops {settings.max_loops}'
        )

    combined = coordinator.aggregate(folder, targets, report.errors)
    _print_combined(combined)
    print(f"\nCombined status written to: {folder / settings.combined_status_file}")
    if report.errors:
        for target, message in report.errors.items():
            print(f"Error: {target.name}: {message}", file=sys.stderr)
        return 1
    return 0


def _run_status(args: argparse.Namespace) -> int:
    """Print a target's status table and change manifest."""
    target = _path_arg(args.target, "--target")
    reporter = StatusReporter(_settings(args))
    if target.is_dir():
        summary = reporter.summarize(target)
        manifest = reporter.manifest_summary(target)
    else:
        summary, manifest = StatusSummary(exists=False), None

    if args.json:
        payload = summary.to_document()
        if manifest is not None:
            payload["manifest"] = manifest.to_document()
        print(json.dumps(payload, indent=2))
        return 0

    print("\n=== Pipeline Status ===")
    for line in StatusReporter.render_table(summary):
        print(line)
    manifest_lines = StatusReporter.render_manifest(manifest)
    if manifest_lines:
        print("")
        for line in manifest_lines:
            print(line)
    print("")
    return 0


if __name__ == "__main__":
    sys.exit(main())
