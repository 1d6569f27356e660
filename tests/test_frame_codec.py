import struct
from array import array

import pytest

from ble_notify_bridge.errors import FrameDecodeError, FrameTooLarge
from ble_notify_bridge.frame_codec import (
    FRAME_SIZE_LIMIT,
    HEADER_SIZE,
    MAX_FRAME_SIZE,
    EventKind,
    decode_frame,
    decode_notify,
    encode_frame,
    encode_notify,
    handle_to_bytes,
    max_payload_size,
)


def test_event_kind_wire_values_are_frozen():
    assert EventKind.NOTIFY == 1
    assert EventKind.CONNECT == 2
    assert EventKind.DISCONNECT == 3


def test_header_is_three_bytes():
    assert HEADER_SIZE == 3


def test_reference_frame_bytes():
    frame = encode_notify(0x00000007, bytes([0xAA, 0xBB, 0xCC]))
    assert frame == bytes.fromhex("01 09 00 07 00 00 00 03 00 AA BB CC")


def test_bytes_handle_is_written_verbatim():
    frame = encode_notify(b"\xde\xad\xbe\xef", b"\x01")
    assert frame[3:7] == b"\xde\xad\xbe\xef"


def test_length_field_counts_everything_after_header():
    for size in (1, 2, 20, 244, max_payload_size()):
        frame = encode_notify(1, bytes(size))
        kind, payload_len = struct.unpack_from("<BH", frame)
        assert kind == EventKind.NOTIFY
        assert payload_len == 4 + 2 + size
        assert payload_len == len(frame) - HEADER_SIZE


def test_lengths_are_little_endian():
    frame = encode_notify(1, bytes(300), max_frame_size=1024)
    # payload_len = 4 + 2 + 300 = 306 = 0x0132
    assert frame[1:3] == b"\x32\x01"
    assert frame[7:9] == b"\x2c\x01"


def test_frame_at_capacity_is_accepted():
    payload = bytes(max_payload_size())
    frame = encode_notify(1, payload)
    assert len(frame) == MAX_FRAME_SIZE


def test_frame_one_byte_over_capacity_is_rejected():
    payload = bytes(max_payload_size() + 1)
    with pytest.raises(FrameTooLarge) as exc:
        encode_notify(1, payload)
    assert exc.value.total_len == MAX_FRAME_SIZE + 1
    assert exc.value.max_frame_size == MAX_FRAME_SIZE


def test_custom_handle_size_shifts_body():
    frame = encode_notify(0x0102030405060708, b"xy", handle_size=8)
    assert frame[1:3] == (8 + 2 + 2).to_bytes(2, "little")
    assert frame[3:11] == bytes.fromhex("0807060504030201")
    assert frame[11:13] == b"\x02\x00"
    assert frame[13:] == b"xy"


def test_memoryview_payload_is_copied():
    backing = bytearray(b"\x10\x20\x30")
    frame = encode_notify(2, memoryview(backing))
    backing[:] = b"\x00\x00\x00"
    assert frame[-3:] == b"\x10\x20\x30"


@pytest.mark.parametrize("handle", [-1, 1 << 32])
def test_int_handle_out_of_range(handle):
    with pytest.raises(ValueError):
        encode_notify(handle, b"\x00")


def test_bytes_handle_wrong_width():
    with pytest.raises(ValueError):
        handle_to_bytes(b"\x00\x01", 4)


@pytest.mark.parametrize("handle", [None, 1.5, "abcd"])
def test_handle_of_wrong_type_is_value_error(handle):
    with pytest.raises(ValueError):
        handle_to_bytes(handle, 4)


def test_wide_item_memoryview_lengths_count_bytes():
    words = array("H", [0x1111, 0x2222])
    frame = encode_notify(7, memoryview(words))

    assert len(frame) == HEADER_SIZE + 4 + 2 + 4
    assert struct.unpack_from("<H", frame, 1)[0] == 10
    assert struct.unpack_from("<H", frame, 7)[0] == 4
    assert frame[9:] == bytes(words)


def test_wide_item_memoryview_body_counts_bytes():
    words = array("I", [1, 2])
    frame = encode_frame(EventKind.CONNECT, memoryview(words))
    assert struct.unpack_from("<H", frame, 1)[0] == 8
    assert frame[HEADER_SIZE:] == bytes(words)


def test_non_contiguous_payload_is_rejected():
    with pytest.raises(ValueError):
        encode_notify(1, memoryview(b"abcdef")[::2])


def test_max_frame_size_above_u16_limit_is_rejected():
    with pytest.raises(ValueError):
        encode_notify(1, b"\x00", max_frame_size=FRAME_SIZE_LIMIT + 1)


def test_encode_frame_for_reserved_kind():
    frame = encode_frame(EventKind.DISCONNECT, b"\x07\x00\x00\x00")
    assert frame == bytes.fromhex("03 04 00 07 00 00 00")


def test_encode_frame_too_large():
    with pytest.raises(FrameTooLarge):
        encode_frame(EventKind.CONNECT, bytes(10), max_frame_size=12)


def test_round_trip():
    handle = b"\x11\x22\x33\x44"
    payload = bytes(range(200))
    frame = encode_notify(handle, payload)

    kind, body, consumed = decode_frame(frame)
    assert kind == EventKind.NOTIFY
    assert consumed == len(frame)

    event = decode_notify(body)
    assert event.connection_handle == handle
    assert event.data == payload
    assert event.handle_value == 0x44332211


def test_decode_frame_incomplete_returns_none():
    frame = encode_notify(1, b"abc")
    assert decode_frame(frame[:2]) is None
    assert decode_frame(frame[:-1]) is None


def test_decode_frame_consumes_only_first_frame():
    first = encode_notify(1, b"a")
    second = encode_notify(2, b"bc")
    kind, body, consumed = decode_frame(first + second)
    assert consumed == len(first)
    assert decode_notify(body).data == b"a"


def test_decode_notify_rejects_short_body():
    with pytest.raises(FrameDecodeError):
        decode_notify(b"\x01\x00\x00")


def test_decode_notify_rejects_truncated_data():
    body = b"\x01\x00\x00\x00" + b"\x05\x00" + b"abc"
    with pytest.raises(FrameDecodeError):
        decode_notify(body)
