"""Binary framing for BLE notification events.

Every event written to the output channel is a self-describing frame:

    [kind:1][payload_len:2][...payload...]

For NOTIFY events the payload is:

    [connection_handle:H][data_len:2][data...]

All multi-byte integers are little-endian. The consumer reassembles lengths as
``low + high * 256``, so the order is frozen and must never change. Packing is
done with explicit ``struct`` formats (``<`` prefix), which guarantees the
header is exactly 3 bytes with no alignment padding on any platform.

The codec performs no I/O and keeps no references to the payload it is given;
callers may pass short-lived views (``memoryview`` over a stack buffer) and
reuse the backing memory as soon as ``encode_notify`` returns.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Union

from .errors import FrameDecodeError, FrameTooLarge


class EventKind(IntEnum):
    """Wire values for the frame kind tag.

    CONNECT and DISCONNECT are reserved for the connection-state layer, which
    may emit them through the same channel. New kinds define their own body
    layout; the 3-byte header never changes shape.
    """

    NOTIFY = 1
    CONNECT = 2
    DISCONNECT = 3


_HEADER = struct.Struct("<BH")
_U16 = struct.Struct("<H")

HEADER_SIZE = _HEADER.size  # 3
DATA_LEN_SIZE = _U16.size  # 2
DEFAULT_HANDLE_SIZE = 4
MAX_FRAME_SIZE = 512
# Largest frame whose payload length still fits the u16 header field
FRAME_SIZE_LIMIT = HEADER_SIZE + 0xFFFF

ConnectionHandle = Union[int, bytes, bytearray, memoryview]
Payload = Union[bytes, bytearray, memoryview]


@dataclass(frozen=True)
class NotifyEvent:
    """A decoded NOTIFY frame.

    Attributes:
        connection_handle: Raw handle bytes exactly as written by the encoder.
        data: Characteristic value carried by the notification.
    """

    connection_handle: bytes
    data: bytes
    kind: EventKind = EventKind.NOTIFY

    @property
    def handle_value(self) -> int:
        """Connection handle interpreted as a little-endian unsigned integer."""
        return int.from_bytes(self.connection_handle, "little")


def handle_to_bytes(connection_handle: ConnectionHandle, handle_size: int) -> bytes:
    """Serialize a connection handle into exactly ``handle_size`` raw bytes.

    Integers are written little-endian; bytes-like handles are taken verbatim
    and must already have the right width.

    Raises:
        ValueError: If the handle is not an int or bytes-like value, or does
            not fit ``handle_size`` bytes.
    """
    if isinstance(connection_handle, int):
        if connection_handle < 0:
            raise ValueError(f"Connection handle must be non-negative: {connection_handle}")
        try:
            return connection_handle.to_bytes(handle_size, "little")
        except OverflowError as e:
            raise ValueError(
                f"Connection handle {connection_handle:#x} does not fit in {handle_size} bytes"
            ) from e

    try:
        raw = bytes(connection_handle)
    except TypeError as e:
        raise ValueError(
            f"Connection handle of type {type(connection_handle).__name__} is not int or bytes-like"
        ) from e
    if len(raw) != handle_size:
        raise ValueError(
            f"Connection handle is {len(raw)} bytes, expected {handle_size}"
        )
    return raw


def _as_byte_view(data: Payload) -> memoryview:
    """Flat unsigned-byte view of ``data``, so ``len()`` counts bytes.

    A ``memoryview`` over an ``array('H')`` has a length in items, not bytes;
    casting makes the length fields match what is copied into the frame.

    Raises:
        ValueError: If ``data`` is not a contiguous bytes-like object.
    """
    try:
        return memoryview(data).cast("B")
    except TypeError as e:
        raise ValueError(
            f"Payload of type {type(data).__name__} is not contiguous bytes-like data"
        ) from e


def _check_max_frame_size(max_frame_size: int) -> None:
    if max_frame_size > FRAME_SIZE_LIMIT:
        raise ValueError(
            f"max_frame_size {max_frame_size} exceeds u16 length field limit {FRAME_SIZE_LIMIT}"
        )


def encode_frame(
    kind: EventKind, body: Payload, *, max_frame_size: int = MAX_FRAME_SIZE
) -> bytes:
    """Wrap ``body`` in the generic 3-byte header.

    Raises:
        FrameTooLarge: If header plus body exceeds ``max_frame_size``.
    """
    _check_max_frame_size(max_frame_size)
    body = _as_byte_view(body)
    body_len = len(body)
    total_len = HEADER_SIZE + body_len
    if total_len > max_frame_size:
        raise FrameTooLarge(total_len, max_frame_size)

    frame = bytearray(total_len)
    _HEADER.pack_into(frame, 0, int(kind), body_len)
    frame[HEADER_SIZE:] = body
    return bytes(frame)


def encode_notify(
    connection_handle: ConnectionHandle,
    payload: Payload,
    *,
    handle_size: int = DEFAULT_HANDLE_SIZE,
    max_frame_size: int = MAX_FRAME_SIZE,
) -> bytes:
    """Build a NOTIFY frame for one characteristic value notification.

    Args:
        connection_handle: Link identifier supplied by the BLE stack.
        payload: Notification data. Copied into the frame; never retained.
        handle_size: Width of the serialized connection handle.
        max_frame_size: Capacity of a single frame including the header.

    Returns:
        The complete frame as an owned ``bytes`` object.

    Raises:
        FrameTooLarge: If the frame would exceed ``max_frame_size``. Nothing
            is produced in that case.
        ValueError: If the handle does not fit ``handle_size`` bytes, or the
            payload is not contiguous bytes-like data.

    Example:
        >>> encode_notify(7, b"\\xaa\\xbb\\xcc").hex(" ")
        '01 09 00 07 00 00 00 03 00 aa bb cc'
    """
    _check_max_frame_size(max_frame_size)
    handle = handle_to_bytes(connection_handle, handle_size)
    payload = _as_byte_view(payload)

    data_len = len(payload)
    payload_len = handle_size + DATA_LEN_SIZE + data_len
    total_len = HEADER_SIZE + payload_len
    if total_len > max_frame_size:
        raise FrameTooLarge(total_len, max_frame_size)

    frame = bytearray(total_len)
    _HEADER.pack_into(frame, 0, int(EventKind.NOTIFY), payload_len)
    offset = HEADER_SIZE
    frame[offset : offset + handle_size] = handle
    offset += handle_size
    _U16.pack_into(frame, offset, data_len)
    offset += DATA_LEN_SIZE
    frame[offset:] = payload
    return bytes(frame)


def decode_frame(buffer: Payload) -> Optional[tuple[int, bytes, int]]:
    """Split one frame off the front of ``buffer``.

    Returns:
        ``(kind, body, consumed)`` for a complete frame, or ``None`` if the
        buffer does not yet hold the full header and body. ``kind`` is the raw
        tag value so that callers can skip kinds they do not know.
    """
    if len(buffer) < HEADER_SIZE:
        return None
    kind, body_len = _HEADER.unpack_from(buffer, 0)
    end = HEADER_SIZE + body_len
    if len(buffer) < end:
        return None
    return kind, bytes(buffer[HEADER_SIZE:end]), end


def decode_notify(body: Payload, *, handle_size: int = DEFAULT_HANDLE_SIZE) -> NotifyEvent:
    """Parse the body of a NOTIFY frame.

    Raises:
        FrameDecodeError: If the body is too short for its handle, its data
            length field, or the data it declares.
    """
    min_len = handle_size + DATA_LEN_SIZE
    if len(body) < min_len:
        raise FrameDecodeError(
            f"NOTIFY body too short: {len(body)} bytes, need at least {min_len}"
        )

    handle = bytes(body[:handle_size])
    (data_len,) = _U16.unpack_from(body, handle_size)
    start = min_len
    if len(body) < start + data_len:
        raise FrameDecodeError(
            f"NOTIFY data truncated: declared {data_len} bytes, have {len(body) - start}"
        )
    return NotifyEvent(connection_handle=handle, data=bytes(body[start : start + data_len]))


def max_payload_size(
    *, handle_size: int = DEFAULT_HANDLE_SIZE, max_frame_size: int = MAX_FRAME_SIZE
) -> int:
    """Largest notification payload that still fits in one frame."""
    return max_frame_size - HEADER_SIZE - handle_size - DATA_LEN_SIZE
