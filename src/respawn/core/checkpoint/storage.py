# src/respawn/core/checkpoint/storage.py
"""Durable, integrity-checked checkpoint storage.

Layout under the checkpoints directory:

    <id>.bin                uncompressed record
    <id>_compressed.bin     gzip-compressed record
    metadata/<id>.json      sidecar (identity, digest, sizes, app names)
    last_used.json          identifier of the last restored checkpoint

Write ordering is the commit protocol: record bytes first, metadata last.
A record without metadata is readable (integrity check skipped with a
warning); metadata is never written for bytes that are not on disk.

The SHA-256 digest in metadata is always computed over the bytes actually
on disk, so corruption after the write is detected on the next read.
"""

import gzip
import hashlib
import hmac
import shutil
import zlib
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from time import perf_counter

import structlog

from respawn.contracts import (
    Checkpoint,
    CheckpointMetadata,
    CheckpointNotFoundError,
    CorruptRecordError,
    DuplicateCheckpointError,
    IntegrityError,
    RespawnError,
    StorageWriteError,
)
from respawn.core.checkpoint.serialization import (
    decode_checkpoint,
    decode_metadata,
    encode_checkpoint,
    encode_metadata,
)
from respawn.core.logging import get_logger
from respawn.core.persistence import read_json, write_atomic, write_exclusive, write_json_atomic

RECORD_SUFFIX = ".bin"
COMPRESSED_MARKER = "_compressed"
METADATA_DIR_NAME = "metadata"
LAST_USED_FILE_NAME = "last_used.json"


def compute_checksum(data: bytes) -> str:
    """SHA-256 hex digest of data."""
    return hashlib.sha256(data).hexdigest()


@dataclass(frozen=True)
class DiskUsage:
    """Space report for the volume holding the checkpoints directory."""

    total_bytes: int
    used_bytes: int
    free_bytes: int
    checkpoint_bytes: int

    @property
    def percent_used(self) -> float:
        if self.total_bytes == 0:
            return 0.0
        return self.used_bytes / self.total_bytes * 100


@dataclass
class CleanupResult:
    """Result of a retention pass."""

    deleted_count: int
    bytes_freed: int
    failed_paths: list[str]
    duration_seconds: float


class CheckpointStorage:
    """Filesystem storage for checkpoint records and their metadata."""

    def __init__(
        self,
        checkpoints_dir: Path,
        *,
        last_used_file: Path | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._dir = checkpoints_dir
        self._metadata_dir = checkpoints_dir / METADATA_DIR_NAME
        self._last_used_file = last_used_file if last_used_file is not None else checkpoints_dir / LAST_USED_FILE_NAME
        self._logger = logger if logger is not None else get_logger(__name__)

    @property
    def checkpoints_dir(self) -> Path:
        return self._dir

    @property
    def metadata_dir(self) -> Path:
        return self._metadata_dir

    @property
    def last_used_file(self) -> Path:
        return self._last_used_file

    def original_path(self, checkpoint_id: str) -> Path:
        return self._dir / f"{checkpoint_id}{RECORD_SUFFIX}"

    def compressed_path(self, checkpoint_id: str) -> Path:
        return self._dir / f"{checkpoint_id}{COMPRESSED_MARKER}{RECORD_SUFFIX}"

    def metadata_path(self, checkpoint_id: str) -> Path:
        return self._metadata_dir / f"{checkpoint_id}.json"

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def save_checkpoint(self, checkpoint: Checkpoint) -> tuple[Path, int]:
        """Persist a checkpoint and its metadata sidecar.

        On success the checkpoint's file_path, file_size and is_compressed
        are updated in place.

        Returns:
            (path, byte size) of the written record

        Raises:
            DuplicateCheckpointError: If a record for this identifier exists
            StorageWriteError: If the directory is not writable or the write
                is truncated
        """
        checkpoint_id = checkpoint.checkpoint_id
        try:
            self._metadata_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageWriteError(f"Checkpoint directory not writable: {self._dir}: {e}") from e

        path = self.original_path(checkpoint_id)
        if path.exists() or self.compressed_path(checkpoint_id).exists():
            raise DuplicateCheckpointError(checkpoint_id)

        data = encode_checkpoint(checkpoint)
        try:
            size = write_exclusive(path, data)
        except FileExistsError:
            # Another writer committed the same identifier after the check above
            raise DuplicateCheckpointError(checkpoint_id) from None
        except OSError as e:
            raise StorageWriteError(f"Failed to write checkpoint '{checkpoint_id}': {e}") from e

        if size != len(data):
            path.unlink(missing_ok=True)
            raise StorageWriteError(f"Checkpoint '{checkpoint_id}' truncated on write: wrote {size} of {len(data)} bytes")

        try:
            checksum = compute_checksum(path.read_bytes())
            metadata = CheckpointMetadata(
                checkpoint_id=checkpoint_id,
                timestamp=checkpoint.timestamp,
                checksum=checksum,
                original_size=size,
                app_names=list(checkpoint.app_names),
            )
            self._write_metadata(metadata)
        except OSError as e:
            # Metadata is the commit signal; without it the record must go too
            path.unlink(missing_ok=True)
            raise StorageWriteError(f"Failed to write metadata for checkpoint '{checkpoint_id}': {e}") from e

        checkpoint.file_path = str(path)
        checkpoint.file_size = size
        checkpoint.is_compressed = False

        self._logger.info(
            "Checkpoint saved",
            checkpoint_id=checkpoint_id,
            path=str(path),
            size_bytes=size,
            app_count=len(checkpoint.app_names),
        )
        return path, size

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def load_checkpoint(self, checkpoint_id: str) -> Checkpoint:
        """Load and verify one checkpoint.

        Raises:
            CheckpointNotFoundError: If no record exists for checkpoint_id
            IntegrityError: If on-disk bytes do not match the metadata digest
            CorruptRecordError: If the metadata is unreadable, or the record
                cannot be decompressed or decoded
        """
        metadata = self.read_metadata(checkpoint_id)
        path, compressed = self._resolve_record(checkpoint_id, metadata)

        try:
            data = path.read_bytes()
        except FileNotFoundError as e:
            raise CheckpointNotFoundError(checkpoint_id) from e

        if metadata is None:
            self._logger.warning(
                "Checkpoint metadata missing, integrity check skipped",
                checkpoint_id=checkpoint_id,
                path=str(path),
            )
            raw = self._decompress(checkpoint_id, data) if compressed else data
        elif metadata.is_compressed == compressed:
            self._verify(checkpoint_id, data, metadata.checksum)
            raw = self._decompress(checkpoint_id, data) if compressed else data
        else:
            # Metadata describes the other variant: check the record contents
            # against the digest of the uncompressed bytes instead
            raw = self._decompress(checkpoint_id, data) if compressed else data
            original_checksum = metadata.original_checksum if metadata.is_compressed else metadata.checksum
            if original_checksum is None:
                self._logger.warning(
                    "No digest recorded for uncompressed checkpoint, integrity check skipped",
                    checkpoint_id=checkpoint_id,
                )
            else:
                self._verify(checkpoint_id, raw, original_checksum)

        checkpoint = decode_checkpoint(raw)
        if checkpoint.checkpoint_id != checkpoint_id:
            raise CorruptRecordError(
                f"Record at {path} belongs to checkpoint '{checkpoint.checkpoint_id}', expected '{checkpoint_id}'"
            )

        checkpoint.file_path = str(path)
        checkpoint.file_size = len(data)
        checkpoint.is_compressed = compressed
        return checkpoint

    def load_all_checkpoints(self) -> list[Checkpoint]:
        """Summaries of every stored checkpoint, newest identifier first.

        Metadata is preferred so listing never deserializes process data;
        summaries built from metadata carry no processes. Checkpoints
        without metadata are loaded in full. Entries that fail either way
        are skipped with a warning.
        """
        checkpoints: list[Checkpoint] = []
        for checkpoint_id in sorted(self._known_ids(), reverse=True):
            try:
                metadata = self.read_metadata(checkpoint_id)
                if metadata is None:
                    checkpoints.append(self.load_checkpoint(checkpoint_id))
                else:
                    checkpoints.append(self._summary_from_metadata(metadata))
            except (RespawnError, OSError) as e:
                self._logger.warning(
                    "Skipping unreadable checkpoint",
                    checkpoint_id=checkpoint_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
        return checkpoints

    def read_metadata(self, checkpoint_id: str) -> CheckpointMetadata | None:
        """Read a metadata sidecar, or None when it does not exist.

        Raises:
            CorruptRecordError: If the sidecar exists but cannot be decoded
        """
        path = self.metadata_path(checkpoint_id)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CorruptRecordError(f"Checkpoint metadata unreadable at {path}: {e}") from e
        return decode_metadata(data)

    # ------------------------------------------------------------------
    # Compression
    # ------------------------------------------------------------------

    def compress_checkpoint(self, checkpoint: Checkpoint) -> None:
        """Replace a checkpoint's record with a gzip-compressed copy.

        Idempotent: an already-compressed checkpoint is left as is. The
        compressed bytes are deterministic, so a repeated compression after
        an interruption writes the same file.

        Order: compressed file, then metadata, then the original is deleted.
        The checkpoint's is_compressed, file_path and file_size are updated
        in place.

        Raises:
            CheckpointNotFoundError: If no record exists
            IntegrityError: If the original does not match its metadata
            StorageWriteError: If the compressed file or metadata cannot be written
        """
        checkpoint_id = checkpoint.checkpoint_id
        metadata = self.read_metadata(checkpoint_id)
        original = self.original_path(checkpoint_id)
        compressed = self.compressed_path(checkpoint_id)

        already_compressed = metadata.is_compressed if metadata is not None else not original.exists()
        if already_compressed:
            if not compressed.exists():
                raise CheckpointNotFoundError(checkpoint_id)
            if original.exists():
                self._remove_original(checkpoint_id, original)
            checkpoint.is_compressed = True
            checkpoint.file_path = str(compressed)
            checkpoint.file_size = compressed.stat().st_size
            return

        try:
            raw = original.read_bytes()
        except FileNotFoundError as e:
            raise CheckpointNotFoundError(checkpoint_id) from e
        if metadata is not None:
            self._verify(checkpoint_id, raw, metadata.checksum)

        packed = gzip.compress(raw, mtime=0)
        try:
            size = write_atomic(compressed, packed)
        except OSError as e:
            raise StorageWriteError(f"Failed to write compressed checkpoint '{checkpoint_id}': {e}") from e
        if size != len(packed):
            compressed.unlink(missing_ok=True)
            raise StorageWriteError(f"Compressed checkpoint '{checkpoint_id}' truncated on write")

        updated = CheckpointMetadata(
            checkpoint_id=checkpoint_id,
            timestamp=metadata.timestamp if metadata is not None else checkpoint.timestamp,
            checksum=compute_checksum(compressed.read_bytes()),
            original_size=len(raw),
            app_names=list(metadata.app_names if metadata is not None else checkpoint.app_names),
            is_compressed=True,
            compressed_size=size,
            original_checksum=compute_checksum(raw),
        )
        try:
            self._write_metadata(updated)
        except OSError as e:
            # Original and its metadata are untouched; the compressed copy is
            # ignored by load and rewritten identically on the next attempt
            raise StorageWriteError(f"Failed to update metadata for checkpoint '{checkpoint_id}': {e}") from e

        self._remove_original(checkpoint_id, original)

        checkpoint.is_compressed = True
        checkpoint.file_path = str(compressed)
        checkpoint.file_size = size

        self._logger.info(
            "Checkpoint compressed",
            checkpoint_id=checkpoint_id,
            original_size=len(raw),
            compressed_size=size,
        )

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def clean_old_checkpoints(self, cutoff: datetime) -> CleanupResult:
        """Delete every record whose modification time is strictly before cutoff.

        Metadata is removed once no record variant for its identifier is
        left. Individual delete failures are logged and the pass continues.
        """
        start_time = perf_counter()
        cutoff_ts = cutoff.timestamp()
        deleted_count = 0
        bytes_freed = 0
        failed_paths: list[str] = []
        touched_ids: set[str] = set()

        for path in self._record_files():
            try:
                stat = path.stat()
            except FileNotFoundError:
                continue
            except OSError as e:
                self._logger.warning("Cannot stat checkpoint file", path=str(path), error=str(e))
                failed_paths.append(str(path))
                continue

            if stat.st_mtime >= cutoff_ts:
                continue

            try:
                path.unlink()
            except OSError as e:
                self._logger.warning("Failed to delete old checkpoint", path=str(path), error=str(e))
                failed_paths.append(str(path))
                continue

            deleted_count += 1
            bytes_freed += stat.st_size
            touched_ids.add(_checkpoint_id_from_record(path))

        for checkpoint_id in touched_ids:
            if self.original_path(checkpoint_id).exists() or self.compressed_path(checkpoint_id).exists():
                continue
            try:
                self.metadata_path(checkpoint_id).unlink(missing_ok=True)
            except OSError as e:
                self._logger.warning("Failed to delete checkpoint metadata", checkpoint_id=checkpoint_id, error=str(e))
                failed_paths.append(str(self.metadata_path(checkpoint_id)))

        result = CleanupResult(
            deleted_count=deleted_count,
            bytes_freed=bytes_freed,
            failed_paths=failed_paths,
            duration_seconds=perf_counter() - start_time,
        )
        if deleted_count or failed_paths:
            self._logger.info(
                "Old checkpoints cleaned",
                cutoff=cutoff.isoformat(),
                deleted_count=deleted_count,
                bytes_freed=bytes_freed,
                failed_count=len(failed_paths),
            )
        return result

    # ------------------------------------------------------------------
    # Disk usage and last-used bookkeeping
    # ------------------------------------------------------------------

    def disk_usage(self) -> DiskUsage:
        """Report volume usage and total bytes held by checkpoint records.

        Raises:
            OSError: If the volume cannot be queried
        """
        self._dir.mkdir(parents=True, exist_ok=True)
        usage = shutil.disk_usage(self._dir)
        checkpoint_bytes = 0
        for path in self._record_files():
            try:
                checkpoint_bytes += path.stat().st_size
            except FileNotFoundError:
                continue
        return DiskUsage(
            total_bytes=usage.total,
            used_bytes=usage.used,
            free_bytes=usage.free,
            checkpoint_bytes=checkpoint_bytes,
        )

    def read_last_used(self) -> str | None:
        """Identifier of the last restored checkpoint, if recorded and readable."""
        path = self._last_used_file
        try:
            payload = read_json(path)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            self._logger.warning("Last-used record unreadable", path=str(path), error=str(e))
            return None
        if not isinstance(payload, dict) or not isinstance(payload.get("checkpoint_id"), str):
            self._logger.warning("Last-used record malformed", path=str(path))
            return None
        checkpoint_id: str = payload["checkpoint_id"]
        return checkpoint_id

    def write_last_used(self, checkpoint_id: str, used_at: datetime | None = None) -> None:
        """Record checkpoint_id as the last restored checkpoint.

        Raises:
            StorageWriteError: If the record cannot be written
        """
        used_at = used_at if used_at is not None else datetime.now(UTC)
        try:
            write_json_atomic(
                self._last_used_file,
                {"checkpoint_id": checkpoint_id, "used_at": used_at.isoformat()},
            )
        except OSError as e:
            raise StorageWriteError(f"Failed to record last-used checkpoint: {e}") from e

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve_record(self, checkpoint_id: str, metadata: CheckpointMetadata | None) -> tuple[Path, bool]:
        """Pick the current record file: (path, is_compressed).

        The compressed variant wins, except when metadata still describes
        the uncompressed record and that record exists (an interrupted
        compression left a compressed file behind).
        """
        original = self.original_path(checkpoint_id)
        compressed = self.compressed_path(checkpoint_id)
        if metadata is not None and not metadata.is_compressed and original.exists():
            return original, False
        if compressed.exists():
            return compressed, True
        if original.exists():
            return original, False
        raise CheckpointNotFoundError(checkpoint_id)

    def _summary_from_metadata(self, metadata: CheckpointMetadata) -> Checkpoint:
        path, compressed = self._resolve_record(metadata.checkpoint_id, metadata)
        return Checkpoint(
            checkpoint_id=metadata.checkpoint_id,
            timestamp=metadata.timestamp,
            processes=[],
            app_names=list(metadata.app_names),
            is_compressed=compressed,
            file_path=str(path),
            file_size=path.stat().st_size,
        )

    def _verify(self, checkpoint_id: str, data: bytes, expected: str) -> None:
        actual = compute_checksum(data)
        if not hmac.compare_digest(actual, expected):
            self._logger.error(
                "Checkpoint integrity check failed",
                checkpoint_id=checkpoint_id,
                expected=expected,
                actual=actual,
            )
            raise IntegrityError(checkpoint_id, expected, actual)

    def _decompress(self, checkpoint_id: str, data: bytes) -> bytes:
        try:
            return gzip.decompress(data)
        except (gzip.BadGzipFile, EOFError, zlib.error) as e:
            raise CorruptRecordError(f"Checkpoint '{checkpoint_id}' could not be decompressed: {e}") from e

    def _write_metadata(self, metadata: CheckpointMetadata) -> None:
        write_atomic(self.metadata_path(metadata.checkpoint_id), encode_metadata(metadata))

    def _remove_original(self, checkpoint_id: str, original: Path) -> None:
        try:
            original.unlink(missing_ok=True)
        except OSError as e:
            # Metadata already points at the compressed record; the leftover
            # is removed by retention
            self._logger.warning(
                "Failed to remove uncompressed checkpoint after compression",
                checkpoint_id=checkpoint_id,
                error=str(e),
            )

    def _record_files(self) -> list[Path]:
        if not self._dir.exists():
            return []
        return sorted(p for p in self._dir.glob(f"*{RECORD_SUFFIX}") if p.is_file())

    def _known_ids(self) -> set[str]:
        ids = {_checkpoint_id_from_record(p) for p in self._record_files()}
        if self._metadata_dir.exists():
            ids.update(p.stem for p in self._metadata_dir.glob("*.json") if p.is_file())
        return ids


def _checkpoint_id_from_record(path: Path) -> str:
    stem = path.name.removesuffix(RECORD_SUFFIX)
    return stem.removesuffix(COMPRESSED_MARKER)
