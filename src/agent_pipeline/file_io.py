"""Atomic JSON document I/O for tracking files."""

from __future__ import annotations

import errno
import json
import os
import tempfile
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager, suppress
from pathlib import Path
from typing import Any

_REPLACE_ATTEMPTS = 8
_REPLACE_BACKOFF_SECONDS = 0.01

_locks_guard = threading.Lock()
_document_locks: dict[str, threading.RLock] = {}


@contextmanager
def locked_path(path: Path) -> Iterator[None]:
    """Hold the in-process lock for one tracking document.

    Only threads are covered; separate processes writing the same target
    still race and the last replace wins.
    """
    key = str(path.resolve())
    with _locks_guard:
        lock = _document_locks.setdefault(key, threading.RLock())
    with lock:
        yield


def _swap_into_place(staged: Path, destination: Path) -> None:
    # A reader holding the destination open can make the rename fail with
    # EACCES for a moment; back off and try again before giving up.
    for attempt in range(1, _REPLACE_ATTEMPTS + 1):
        try:
            staged.replace(destination)
            return
        except OSError as exc:
            if not isinstance(exc, PermissionError) and exc.errno != errno.EACCES:
                raise
            if attempt == _REPLACE_ATTEMPTS:
                raise
        time.sleep(_REPLACE_BACKOFF_SECONDS * attempt)


def atomic_write_text(path: Path, content: str, *, encoding: str = "utf-8") -> None:
    """Stage *content* beside *path*, then rename it over the document."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, staged_name = tempfile.mkstemp(prefix=f"{path.name}.", suffix=".tmp", dir=str(path.parent))
    staged = Path(staged_name)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        with locked_path(path):
            _swap_into_place(staged, path)
    finally:
        with suppress(OSError):
            staged.unlink(missing_ok=True)


def dump_json(payload: Any) -> str:
    """Render *payload* the way every tracking document is stored on disk."""
    return json.dumps(payload, indent=2, ensure_ascii=False) + "\n"


def atomic_write_json(path: Path, payload: Any) -> None:
    """Pretty-print *payload* and write it atomically."""
    atomic_write_text(path, dump_json(payload))


def read_json(path: Path) -> Any | None:
    """Return the decoded JSON at *path*, or ``None`` when the file is missing.

    Documents must be UTF-8. Bytes that do not decode raise
    :class:`UnicodeDecodeError`; malformed JSON raises
    :class:`json.JSONDecodeError`. Both are ``ValueError`` subclasses, see
    :func:`describe_decode_error`.
    """
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    return json.loads(raw)


def describe_decode_error(exc: ValueError) -> str:
    """Short reason for a :func:`read_json` decode failure."""
    if isinstance(exc, UnicodeDecodeError):
        return f"not valid UTF-8 (byte {exc.start})"
    return f"not valid JSON ({exc})"
