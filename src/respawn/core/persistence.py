"""Whole-file atomic writes for the data directory.

Persisted files (metadata sidecars, compressed records, heartbeat, crash
state, work pattern, metrics) are replaced as a whole: bytes go to a
temporary sibling, are fsynced, then renamed over the target. Readers never
observe a half-written file. New checkpoint records are created with
write_exclusive instead, which never replaces an existing file.
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any


def write_atomic(path: Path, data: bytes) -> int:
    """Atomically create or replace path with data.

    Returns:
        Number of bytes on disk after the write.

    Raises:
        OSError: If the directory is not writable or the write fails.
            The temporary file is removed before the error propagates.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    return path.stat().st_size


def write_exclusive(path: Path, data: bytes) -> int:
    """Atomically create path with data, refusing to replace an existing file.

    The bytes are fsynced to a temporary sibling which is then hard-linked
    into place; the link fails if path already exists, so two writers racing
    for the same name cannot overwrite each other.

    Returns:
        Number of bytes on disk after the write.

    Raises:
        FileExistsError: If path already exists.
        OSError: If the directory is not writable or the write fails.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.link(tmp_path, path)
    finally:
        tmp_path.unlink(missing_ok=True)
    return path.stat().st_size


def write_json_atomic(path: Path, payload: Any) -> None:
    """Serialize payload as indented JSON and write it atomically."""
    write_atomic(path, json.dumps(payload, indent=2, allow_nan=False).encode("utf-8"))


def read_json(path: Path) -> Any:
    """Read a JSON file.

    Raises:
        FileNotFoundError: If path does not exist
        json.JSONDecodeError: If the content is not valid JSON
    """
    return json.loads(path.read_text(encoding="utf-8"))
