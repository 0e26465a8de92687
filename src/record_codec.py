"""
Binlog Record Codec
Fixed binary layout for one log record, plus the file header.

Record layout (all integers big-endian uint32 unless noted):

    [len(table)][table utf-8]
    [flag: 1 byte, 0 = no id, 1 = id present]
    [id]                        only when flag == 1
    [len(payload)][payload utf-8]

A file starts with a 4-byte version header followed by records back-to-back.
"""

import struct
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

from utils import DecodeError, EncodeError

FORMAT_VERSION = 1
CHARSET = "utf-8"
UINT32_MAX = 0xFFFFFFFF

_UINT32 = struct.Struct(">I")
_FLAG = struct.Struct(">B")
_FLAG_WITH_ID = struct.Struct(">BI")

NO_ID = 0
HAS_ID = 1


@dataclass(frozen=True)
class LogRecord:
    """One emitted event."""

    table: str
    id: Optional[int]
    payload: str


def encode_header(version: int = FORMAT_VERSION) -> bytes:
    return _UINT32.pack(version)


def split_header(data: bytes) -> Tuple[int, bytes]:
    """Return (version, body) for the full content of a log file."""
    if len(data) < _UINT32.size:
        raise DecodeError(f"File too short for header ({len(data)} bytes)")
    (version,) = _UINT32.unpack_from(data, 0)
    return version, data[_UINT32.size:]


def _encode_str(field: str, value) -> bytes:
    if not isinstance(value, str):
        raise EncodeError(f"{field} must be str, got {type(value).__name__}")
    raw = value.encode(CHARSET)
    if len(raw) > UINT32_MAX:
        raise EncodeError(f"{field} too long ({len(raw)} bytes)")
    return _UINT32.pack(len(raw)) + raw


def encode(record: LogRecord) -> bytes:
    """Serialize a record. Raises EncodeError on a contract violation."""
    maybe_id = record.id
    if maybe_id is None:
        id_part = _FLAG.pack(NO_ID)
    else:
        # bool is an int subclass but never a valid id
        if isinstance(maybe_id, bool) or not isinstance(maybe_id, int):
            raise EncodeError(f"id must be int or None, got {type(maybe_id).__name__}")
        if not 0 <= maybe_id <= UINT32_MAX:
            raise EncodeError(f"id out of uint32 range: {maybe_id}")
        id_part = _FLAG_WITH_ID.pack(HAS_ID, maybe_id)

    return _encode_str("table", record.table) + id_part + _encode_str("payload", record.payload)


def _read_str(data: bytes, offset: int, field: str) -> Tuple[str, int]:
    if offset + _UINT32.size > len(data):
        raise DecodeError(f"Truncated {field} length at offset {offset}")
    (length,) = _UINT32.unpack_from(data, offset)
    start = offset + _UINT32.size
    end = start + length
    if end > len(data):
        raise DecodeError(f"Truncated {field}: need {length} bytes at offset {start}")
    try:
        return data[start:end].decode(CHARSET), end
    except UnicodeDecodeError as e:
        raise DecodeError(f"{field} is not valid {CHARSET}: {e}") from e


def _decode_at(data: bytes, offset: int) -> Tuple[LogRecord, int]:
    table, offset = _read_str(data, offset, "table")

    if offset + _FLAG.size > len(data):
        raise DecodeError(f"Truncated id flag at offset {offset}")
    (flag,) = _FLAG.unpack_from(data, offset)
    offset += _FLAG.size

    if flag == NO_ID:
        maybe_id = None
    elif flag == HAS_ID:
        if offset + _UINT32.size > len(data):
            raise DecodeError(f"Truncated id at offset {offset}")
        (maybe_id,) = _UINT32.unpack_from(data, offset)
        offset += _UINT32.size
    else:
        raise DecodeError(f"Invalid id flag {flag} at offset {offset - 1}")

    payload, offset = _read_str(data, offset, "payload")
    return LogRecord(table=table, id=maybe_id, payload=payload), offset


def decode(data: bytes) -> LogRecord:
    """Deserialize exactly one record."""
    record, end = _decode_at(data, 0)
    if end != len(data):
        raise DecodeError(f"{len(data) - end} trailing bytes after record")
    return record


def decode_stream(body: bytes) -> Iterator[LogRecord]:
    """Yield every record stored back-to-back in ``body``."""
    offset = 0
    while offset < len(body):
        record, offset = _decode_at(body, offset)
        yield record
