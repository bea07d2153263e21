"""Discover, build and inspect pipeline tracking.

The pipeline drives three phases per target repository:

    Discoverer -> Builder -> Inspector -> (Builder -> Inspector)* -> done

Each phase's work is done by an external actor; this package only records
state transitions in ``<target>/.agent-tracking/`` and bounds the
builder/inspector loop.

Usage::

    from agent_pipeline.manual_runner import ManualActorRunner
    from agent_pipeline.pipeline import PipelineOrchestrator, PipelineSettings

    orchestrator = PipelineOrchestrator(
        "/path/to/repo",
        PipelineSettings.from_env(),
        ManualActorRunner(),
    )
    result = orchestrator.run_pipeline("endpoints.json")
"""

from agent_pipeline.pipeline.loop_controller import LoopController, LoopOutcome, LoopResult
from agent_pipeline.pipeline.manifest import ChangeManifestLog
from agent_pipeline.pipeline.multi_target import InitializationReport, MultiTargetCoordinator
from agent_pipeline.pipeline.orchestrator import PipelineOrchestrator, PipelineRunResult
from agent_pipeline.pipeline.phases import Phase, PhaseSpec, PipelineSettings
from agent_pipeline.pipeline.reporter import StatusReporter
from agent_pipeline.pipeline.state_machine import PipelineStateMachine
from agent_pipeline.pipeline.tracker import TrackingStore

__all__ = [
    "ChangeManifestLog",
    "InitializationReport",
    "LoopController",
    "LoopOutcome",
    "LoopResult",
    "MultiTargetCoordinator",
    "Phase",
    "PhaseSpec",
    "PipelineOrchestrator",
    "PipelineRunResult",
    "PipelineSettings",
    "PipelineStateMachine",
    "StatusReporter",
    "TrackingStore",
]
