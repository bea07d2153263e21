"""Pydantic models for every document the pipeline reads or writes.

Tracking documents (status, manifest, loop instructions) are owned by this
package and reject unknown keys. Documents produced by the external actor
tolerate extra keys so richer reports do not break the tracker, but their
required fields are still enforced.

All documents serialize with camelCase keys in field order.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal, TypeVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SerializerFunctionWrapHandler,
    ValidationError,
    field_serializer,
    field_validator,
    model_serializer,
)
from pydantic.alias_generators import to_camel

from agent_pipeline.errors import DocumentValidationError

HttpMethod = Literal["GET", "POST", "PUT", "DELETE", "PATCH"]
TargetLanguage = Literal["javascript", "java", "python"]

AWAITING_EXTERNAL_STEP = "awaiting_external_step"
PIPELINE_COMPLETED = "pipeline_completed"
INITIALIZED = "initialized"


class _Document(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    def to_document(self) -> dict[str, Any]:
        """Return the JSON-ready mapping written to disk."""
        return self.model_dump(mode="json", by_alias=True)


class _ActorDocument(_Document):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


ModelT = TypeVar("ModelT", bound=BaseModel)


def validate_document(model: type[ModelT], payload: Any, name: str) -> ModelT:
    """Validate *payload* as *model*, naming the document on failure."""
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in exc.errors()
        )
        raise DocumentValidationError(name, problems) from exc


# ---------------------------------------------------------------------------
# Pipeline status
# ---------------------------------------------------------------------------

class PhaseStatus(str, Enum):
    """Lifecycle of a single phase record."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class PhaseError(_Document):
    message: str
    timestamp: str


class PhaseRecord(_Document):
    """Tracking record for one phase inside ``pipeline-status.json``."""

    order: int = Field(ge=1)
    label: str
    status: PhaseStatus = PhaseStatus.PENDING
    started_at: str | None = None
    completed_at: str | None = None
    output_file: str | None = None
    summary: Any = None
    errors: list[PhaseError] = Field(default_factory=list)


class PipelineStatus(_Document):
    """The ``pipeline-status.json`` document for one target."""

    pipeline_id: str
    target_path: str
    input_file: str | None = None
    started_at: str
    completed_at: str | None = None
    phases: dict[str, PhaseRecord] = Field(default_factory=dict)
    overall_status: str = INITIALIZED

    @field_validator("phases")
    @classmethod
    def _order_phases(cls, value: dict[str, PhaseRecord]) -> dict[str, PhaseRecord]:
        return dict(sorted(value.items(), key=lambda item: item[1].order))

    @field_serializer("phases")
    def _serialize_phases(self, value: dict[str, PhaseRecord]) -> dict[str, Any]:
        return {
            name: record.to_document()
            for name, record in sorted(value.items(), key=lambda item: item[1].order)
        }

    def ordered_phases(self) -> list[tuple[str, PhaseRecord]]:
        """Return ``(name, record)`` pairs sorted by phase order."""
        return sorted(self.phases.items(), key=lambda item: item[1].order)

    def all_completed(self) -> bool:
        return bool(self.phases) and all(
            record.status == PhaseStatus.COMPLETED for record in self.phases.values()
        )


# ---------------------------------------------------------------------------
# Change manifest
# ---------------------------------------------------------------------------

class ChangeType(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


class ChangeRecord(_Document):
    agent: str
    file: str
    change_type: ChangeType
    description: str = ""
    timestamp: str

    def identity(self) -> tuple[str, str, str, str]:
        return (self.agent, self.file, self.change_type.value, self.description)


class ScanCoverage(_Document):
    scanned_paths: list[str] = Field(default_factory=list)
    total_files: int = 0
    scanned_at: str | None = None
    coverage_complete: bool = False


class ChangeManifest(_Document):
    """The ``change-manifest.json`` document: every file touched across phases."""

    changes: list[ChangeRecord] = Field(default_factory=list)
    scan_coverage: ScanCoverage = Field(default_factory=ScanCoverage)


class LoopInstructions(_Document):
    """Pending builder re-run requested by the inspector."""

    loop: int = Field(ge=1)
    items: list[Any] = Field(default_factory=list)
    reason: str | None = None


# ---------------------------------------------------------------------------
# Status projections
# ---------------------------------------------------------------------------

class PhaseSummary(_Document):
    phase: str
    label: str
    status: PhaseStatus
    started_at: str | None = None
    completed_at: str | None = None
    error_count: int = 0


class StatusSummary(_Document):
    """Read-only view of a target's pipeline status."""

    exists: bool
    pipeline_id: str | None = None
    overall_status: str | None = None
    phases: list[PhaseSummary] = Field(default_factory=list)

    @model_serializer(mode="wrap")
    def _serialize(self, handler: SerializerFunctionWrapHandler) -> dict[str, Any]:
        # An absent pipeline is reported as nothing but the flag.
        if not self.exists:
            return {"exists": False}
        return handler(self)


class TargetStatus(_Document):
    path: str
    name: str
    status_summary: StatusSummary
    error: str | None = None


class CombinedTotals(_Document):
    total: int = 0
    completed: int = 0
    in_progress: int = 0
    pending: int = 0
    failed: int = 0


class CombinedStatus(_Document):
    """Snapshot across every target found under a folder."""

    folder: str
    targets: list[TargetStatus] = Field(default_factory=list)
    totals: CombinedTotals = Field(default_factory=CombinedTotals)
    generated_at: str


# ---------------------------------------------------------------------------
# Pipeline input
# ---------------------------------------------------------------------------

class EndpointSpec(_Document):
    method: HttpMethod
    path: str
    attributes: list[str]
    description: str | None = None
    target: str | None = None


class EndpointsInput(_Document):
    """Input document consumed by the discovery phase."""

    endpoints: list[EndpointSpec]
    schema_ref: str | None = None
    languages: list[TargetLanguage] | None = None


# ---------------------------------------------------------------------------
# External actor outputs
# ---------------------------------------------------------------------------

class Occurrence(_ActorDocument):
    endpoint: dict[str, Any]
    locations: list[dict[str, Any]]
    suggested_target: str | None = None
    migration_plan: str | None = None


class DiscovererOutput(_ActorDocument):
    target_path: str
    scanned_files: int
    language: str
    occurrences: list[Occurrence]
    migration_plan: dict[str, Any] | None = None
    scanned_paths: list[str] | None = None


class GeneratedFile(_ActorDocument):
    file: str
    type: str | None = None
    status: str | None = None


class ModifiedFile(_ActorDocument):
    file: str
    changes: str | None = None


class TestResults(_ActorDocument):
    __test__ = False  # Prevent pytest from collecting this model as a test class.

    total: int = 0
    passed: int = 0
    failed: int = 0


class BuilderOutput(_ActorDocument):
    generated_files: list[GeneratedFile]
    test_results: TestResults
    modified_files: list[ModifiedFile]


class InspectorOutput(_ActorDocument):
    validation_results: dict[str, Any]
    requires_builder_loop: bool
    loop_reason: str | None = None
    loop_items: list[Any] = Field(default_factory=list)
    recommendations: list[Any] = Field(default_factory=list)
    changed_file_review: list[Any] = Field(default_factory=list)
    confidence_score: float | None = None
