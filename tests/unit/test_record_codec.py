import struct

import pytest

from record_codec import (
    FORMAT_VERSION,
    LogRecord,
    decode,
    decode_stream,
    encode,
    encode_header,
    split_header,
)
from utils import DecodeError, EncodeError


def test_encode_without_id_matches_layout():
    data = encode(LogRecord(table="users", id=None, payload="hello"))
    assert data == b"\x00\x00\x00\x05users" + b"\x00" + b"\x00\x00\x00\x05hello"


def test_encode_with_id_places_id_after_flag():
    data = encode(LogRecord(table="orders", id=42, payload="x"))
    assert data == b"\x00\x00\x00\x06orders" + b"\x01\x00\x00\x00\x2a" + b"\x00\x00\x00\x01x"


def test_length_prefix_counts_utf8_bytes():
    data = encode(LogRecord(table="т", id=None, payload="привет"))
    (table_len,) = struct.unpack_from(">I", data, 0)
    assert table_len == 2
    (payload_len,) = struct.unpack_from(">I", data, 4 + 2 + 1)
    assert payload_len == 12


@pytest.mark.parametrize(
    "record",
    [
        LogRecord(table="users", id=None, payload="hello"),
        LogRecord(table="users", id=0, payload="hello"),
        LogRecord(table="orders", id=0xFFFFFFFF, payload=""),
        LogRecord(table="", id=7, payload="строка с кириллицей"),
    ],
)
def test_decode_inverts_encode(record):
    assert decode(encode(record)) == record


def test_absent_id_and_zero_id_stay_distinct():
    absent = encode(LogRecord(table="t", id=None, payload="p"))
    zero = encode(LogRecord(table="t", id=0, payload="p"))
    assert absent != zero
    assert decode(absent).id is None
    assert decode(zero).id == 0


@pytest.mark.parametrize(
    "record",
    [
        LogRecord(table=b"users", id=None, payload="hello"),
        LogRecord(table="users", id=None, payload=None),
        LogRecord(table="users", id=-1, payload="hello"),
        LogRecord(table="users", id=2 ** 32, payload="hello"),
        LogRecord(table="users", id=1.5, payload="hello"),
        LogRecord(table="users", id=True, payload="hello"),
    ],
)
def test_encode_rejects_contract_violations(record):
    with pytest.raises(EncodeError):
        encode(record)


def test_decode_rejects_truncated_payload():
    data = encode(LogRecord(table="users", id=None, payload="hello"))
    with pytest.raises(DecodeError):
        decode(data[:-1])


def test_decode_rejects_trailing_bytes():
    data = encode(LogRecord(table="users", id=None, payload="hello"))
    with pytest.raises(DecodeError):
        decode(data + b"\x00")


def test_decode_rejects_unknown_flag():
    data = bytearray(encode(LogRecord(table="users", id=None, payload="hello")))
    data[4 + 5] = 2
    with pytest.raises(DecodeError):
        decode(bytes(data))


def test_decode_stream_walks_back_to_back_records():
    records = [
        LogRecord(table="a", id=None, payload="1"),
        LogRecord(table="b", id=2, payload="22"),
        LogRecord(table="c", id=None, payload=""),
    ]
    body = b"".join(encode(r) for r in records)
    assert list(decode_stream(body)) == records


def test_header_round_trip():
    version, body = split_header(encode_header() + b"rest")
    assert version == FORMAT_VERSION
    assert body == b"rest"
    with pytest.raises(DecodeError):
        split_header(b"\x00\x00")
