"""Per-target JSON document store.

Every document the pipeline keeps for a target lives in one hidden tracking
directory inside that target::

    <target>/.agent-tracking/
        pipeline-status.json            overall pipeline state
        discoverer-input.json           copied pipeline input
        discoverer-output.json          produced by the external actor
        builder-output.json
        inspector-output.json
        builder-loop-instructions.json  only while a builder loop is pending
        change-manifest.json            files touched across phases

A missing document is reported as ``None``: "not yet initialized" is an
expected state, not an error.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel

from agent_pipeline.errors import DocumentValidationError
from agent_pipeline.file_io import atomic_write_json, describe_decode_error, read_json
from agent_pipeline.pipeline.phases import PipelineSettings
from agent_pipeline.schemas import validate_document

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class TrackingStore:
    """Reads and writes tracking documents for a single target.

    Parameters
    ----------
    target:
        Root directory of the target repository.
    settings:
        Pipeline settings; only ``tracking_dir`` is used here.
    """

    def __init__(self, target: str | Path, settings: PipelineSettings) -> None:
        self.target = Path(target).resolve()
        self.settings = settings
        self.tracking_dir = self.target / settings.tracking_dir

    def path_for(self, name: str) -> Path:
        """Return the full path for a tracking document."""
        return self.tracking_dir / name

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()

    def ensure_dir(self) -> Path:
        self.tracking_dir.mkdir(parents=True, exist_ok=True)
        return self.tracking_dir

    def read(self, name: str) -> Any | None:
        """Return the decoded document, or ``None`` when it does not exist."""
        path = self.path_for(name)
        try:
            payload = read_json(path)
        except ValueError as exc:
            raise DocumentValidationError(name, describe_decode_error(exc), path=path) from exc
        except OSError as exc:
            raise DocumentValidationError(name, f"unreadable ({exc})", path=path) from exc
        logger.debug("Read %s (%s)", path, "missing" if payload is None else "present")
        return payload

    def read_model(self, name: str, model: type[ModelT]) -> ModelT | None:
        """Read *name* and validate it as *model*; ``None`` when absent."""
        payload = self.read(name)
        if payload is None:
            return None
        try:
            return validate_document(model, payload, name)
        except DocumentValidationError as exc:
            raise DocumentValidationError(name, exc.detail, path=self.path_for(name)) from exc

    def write(self, name: str, document: BaseModel | dict[str, Any] | list[Any]) -> Path:
        """Fully replace *name* with *document* and return its path."""
        self.ensure_dir()
        path = self.path_for(name)
        if isinstance(document, BaseModel):
            to_document = getattr(document, "to_document", None)
            payload = to_document() if callable(to_document) else document.model_dump(mode="json")
        else:
            payload = document
        atomic_write_json(path, payload)
        logger.debug("Wrote %s", path)
        return path

    def delete(self, name: str) -> bool:
        """Remove *name* if present. Returns True when a file was removed."""
        path = self.path_for(name)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        logger.info("Removed %s", path)
        return True

    def purge(self) -> bool:
        """Delete the whole tracking directory. Returns True when it existed."""
        if not self.tracking_dir.exists():
            return False
        shutil.rmtree(self.tracking_dir)
        logger.info("Removed %s", self.tracking_dir)
        return True
