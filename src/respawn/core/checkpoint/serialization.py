"""Type-preserving JSON serialization for checkpoint records and metadata.

Checkpoint records are self-describing JSON documents carrying a
``format_version``. Datetimes are encoded in collision-safe type envelopes
(``__respawn_type__`` / ``__respawn_value__``) so they round-trip as
timezone-aware datetimes instead of bare strings.

Encoding is deterministic (sorted keys, compact separators): encoding the
same checkpoint twice yields identical bytes, which keeps digests stable.

NaN/Infinity are rejected; memory figures are integers and nothing else in a
record is a float.
"""

from __future__ import annotations

import json
import math
from datetime import UTC, datetime
from typing import Any

from respawn.contracts import Checkpoint, CheckpointMetadata, CorruptRecordError, ProcessRecord, WindowState

FORMAT_VERSION = 1

_ENVELOPE_TYPE_KEY = "__respawn_type__"
_ENVELOPE_VALUE_KEY = "__respawn_value__"


class RecordEncoder(json.JSONEncoder):
    """JSON encoder that wraps datetime in a type envelope.

    Naive datetimes are assumed to be UTC.
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, datetime):
            if obj.tzinfo is None:
                obj = obj.replace(tzinfo=UTC)
            return {
                _ENVELOPE_TYPE_KEY: "datetime",
                _ENVELOPE_VALUE_KEY: obj.isoformat(),
            }
        return super().default(obj)


def _reject_nan_infinity(obj: Any) -> Any:
    if isinstance(obj, float):
        if math.isnan(obj) or math.isinf(obj):
            raise ValueError(f"Cannot serialize non-finite float: {obj}")
    elif isinstance(obj, dict):
        for v in obj.values():
            _reject_nan_infinity(v)
    elif isinstance(obj, list):
        for v in obj:
            _reject_nan_infinity(v)
    return obj


def _restore_types(obj: Any) -> Any:
    if isinstance(obj, dict):
        if _ENVELOPE_TYPE_KEY in obj and _ENVELOPE_VALUE_KEY in obj and len(obj) == 2:
            if obj[_ENVELOPE_TYPE_KEY] == "datetime" and isinstance(obj[_ENVELOPE_VALUE_KEY], str):
                return datetime.fromisoformat(obj[_ENVELOPE_VALUE_KEY])
        return {k: _restore_types(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_restore_types(v) for v in obj]
    return obj


def record_dumps(obj: Any) -> bytes:
    """Serialize to deterministic UTF-8 JSON with datetime envelopes.

    Raises:
        ValueError: If data contains NaN or Infinity
        TypeError: If data contains non-serializable types
    """
    _reject_nan_infinity(obj)
    text = json.dumps(obj, cls=RecordEncoder, allow_nan=False, sort_keys=True, separators=(",", ":"))
    return text.encode("utf-8")


def record_loads(data: bytes) -> Any:
    """Deserialize bytes produced by record_dumps.

    Raises:
        UnicodeDecodeError: If data is not UTF-8
        json.JSONDecodeError: If data is not valid JSON
    """
    return _restore_types(json.loads(data.decode("utf-8")))


def _process_to_dict(process: ProcessRecord) -> dict[str, Any]:
    return {
        "name": process.name,
        "process_name": process.process_name,
        "pid": process.pid,
        "memory_mb": process.memory_mb,
        "window_state": process.window_state.value,
        "is_running": process.is_running,
    }


def _process_from_dict(data: dict[str, Any]) -> ProcessRecord:
    return ProcessRecord(
        name=data["name"],
        pid=int(data["pid"]),
        memory_mb=int(data["memory_mb"]),
        window_state=WindowState(data["window_state"]),
        is_running=bool(data["is_running"]),
        process_name=data["process_name"],
    )


def encode_checkpoint(checkpoint: Checkpoint) -> bytes:
    """Encode the durable part of a checkpoint.

    Storage location, size and compression state are properties of the
    on-disk file, not of the record, and are not encoded.
    """
    return record_dumps(
        {
            "format_version": FORMAT_VERSION,
            "checkpoint_id": checkpoint.checkpoint_id,
            "timestamp": checkpoint.timestamp,
            "app_names": list(checkpoint.app_names),
            "processes": [_process_to_dict(p) for p in checkpoint.processes],
        }
    )


def decode_checkpoint(data: bytes) -> Checkpoint:
    """Decode a record produced by encode_checkpoint.

    Raises:
        CorruptRecordError: If the bytes are not a valid checkpoint record
    """
    try:
        payload = record_loads(data)
        version = payload["format_version"]
        if version != FORMAT_VERSION:
            raise CorruptRecordError(f"Unsupported checkpoint format_version: {version!r}")
        timestamp = payload["timestamp"]
        if not isinstance(timestamp, datetime):
            raise CorruptRecordError("Checkpoint timestamp is not a datetime envelope")
        return Checkpoint(
            checkpoint_id=payload["checkpoint_id"],
            timestamp=timestamp,
            processes=[_process_from_dict(p) for p in payload["processes"]],
            app_names=list(payload["app_names"]),
        )
    except CorruptRecordError:
        raise
    except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        raise CorruptRecordError(f"Checkpoint record could not be decoded: {e}") from e


def encode_metadata(metadata: CheckpointMetadata) -> bytes:
    return record_dumps(
        {
            "format_version": FORMAT_VERSION,
            "checkpoint_id": metadata.checkpoint_id,
            "timestamp": metadata.timestamp,
            "checksum": metadata.checksum,
            "original_size": metadata.original_size,
            "app_names": list(metadata.app_names),
            "is_compressed": metadata.is_compressed,
            "compressed_size": metadata.compressed_size,
            "original_checksum": metadata.original_checksum,
        }
    )


def decode_metadata(data: bytes) -> CheckpointMetadata:
    """Decode a metadata sidecar.

    Raises:
        CorruptRecordError: If the sidecar is unreadable
    """
    try:
        payload = record_loads(data)
        timestamp = payload["timestamp"]
        if not isinstance(timestamp, datetime):
            raise CorruptRecordError("Metadata timestamp is not a datetime envelope")
        compressed_size = payload["compressed_size"]
        return CheckpointMetadata(
            checkpoint_id=payload["checkpoint_id"],
            timestamp=timestamp,
            checksum=str(payload["checksum"]),
            original_size=int(payload["original_size"]),
            app_names=list(payload["app_names"]),
            is_compressed=bool(payload["is_compressed"]),
            compressed_size=int(compressed_size) if compressed_size is not None else None,
            original_checksum=payload["original_checksum"],
        )
    except CorruptRecordError:
        raise
    except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        raise CorruptRecordError(f"Checkpoint metadata could not be decoded: {e}") from e
