"""Agent Pipeline - track a discover, build and inspect agent pipeline per repository."""

from importlib.metadata import PackageNotFoundError, version

from agent_pipeline.schemas import ChangeManifest, PipelineStatus, StatusSummary

__all__ = ["ChangeManifest", "PipelineStatus", "StatusSummary"]

try:
    __version__ = version("agent-pipeline")
except PackageNotFoundError:
    __version__ = "0.0.0"
