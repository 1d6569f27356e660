"""Dispatch BLE notification callbacks into framed writes.

The bridge is an explicit context object: whoever initializes the BLE stack
creates one, points it at an output channel, and installs ``on_notify`` as the
stack's notification handler (see ``callbacks.get_callbacks``). Tests create
their own bridge with a fake sink and assert on the captured bytes.

Threading model:
    ``on_notify`` runs synchronously on whatever context the BLE stack uses,
    possibly several threads at once. The channel is a single attribute that
    ``set_channel`` replaces in one assignment, so a callback always sees either
    the old or the new channel, never a torn value. Each invocation builds its
    own frame buffer; nothing mutable is shared between invocations apart from
    the statistics counters, which are updated under their own lock.

Write atomicity:
    File descriptor channels get exactly one ``os.write`` per frame. The frame
    capacity is capped at ``PIPE_BUF`` (4096 on Linux), so the kernel never
    interleaves a frame with other writers on the same pipe. File-like sinks are written under
    a lock so that one frame's ``write`` cannot interleave with another's.
"""

from __future__ import annotations

import logging
import os
import select
import threading
import time
from dataclasses import dataclass
from typing import BinaryIO, Optional, Union

from .errors import ChannelUnset, EmptyPayload, FrameTooLarge
from .frame_codec import (
    DEFAULT_HANDLE_SIZE,
    MAX_FRAME_SIZE,
    ConnectionHandle,
    Payload,
    encode_notify,
)

logger = logging.getLogger(__name__)

# Passing this (or None) to set_channel disables output.
INVALID_CHANNEL = -1

Channel = Union[int, BinaryIO]

# Largest write a pipe performs atomically; 512 is the POSIX minimum.
PIPE_BUF = getattr(select, "PIPE_BUF", 512)


@dataclass
class BridgeStats:
    """Counters describing what the bridge did with the notifications it saw.

    Attributes:
        frames_written: Frames handed to the channel in full.
        bytes_written: Total bytes of those frames.
        dropped_oversize: Notifications whose frame exceeded the capacity.
        dropped_write_error: Frames lost to a failed or short write.
        last_write_time: ``time.time()`` of the most recent successful write.
    """

    frames_written: int = 0
    bytes_written: int = 0
    dropped_oversize: int = 0
    dropped_write_error: int = 0
    last_write_time: float = 0.0

    @property
    def dropped(self) -> int:
        return self.dropped_oversize + self.dropped_write_error


def _is_valid(channel: Optional[Channel]) -> bool:
    if channel is None:
        return False
    if isinstance(channel, int):
        return channel >= 0
    return not getattr(channel, "closed", False)


class EventBridge:
    """Owns the output channel and turns notify callbacks into frames.

    Args:
        channel: Initial destination. Defaults to unset (no output).
        handle_size: Width of the serialized connection handle.
        max_frame_size: Frame capacity; larger frames are dropped. At most
            ``PIPE_BUF`` so that every frame is one atomic pipe write.

    Raises:
        ValueError: If ``max_frame_size`` exceeds ``PIPE_BUF``.
    """

    def __init__(
        self,
        channel: Optional[Channel] = None,
        *,
        handle_size: int = DEFAULT_HANDLE_SIZE,
        max_frame_size: int = MAX_FRAME_SIZE,
    ) -> None:
        if max_frame_size > PIPE_BUF:
            raise ValueError(
                f"max_frame_size {max_frame_size} exceeds PIPE_BUF {PIPE_BUF}; "
                "frames could interleave with other writers"
            )
        self._handle_size = handle_size
        self._max_frame_size = max_frame_size
        self._sink_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._channel: Optional[Channel] = None
        self.stats = BridgeStats()
        self.set_channel(channel)

    @property
    def handle_size(self) -> int:
        return self._handle_size

    @property
    def max_frame_size(self) -> int:
        return self._max_frame_size

    @property
    def channel(self) -> Optional[Channel]:
        """Current destination, or ``None`` when output is disabled."""
        return self._channel

    @property
    def has_channel(self) -> bool:
        return _is_valid(self._channel)

    def set_channel(self, channel: Optional[Channel]) -> None:
        """Redirect all subsequent frames to ``channel``.

        Accepts an OS file descriptor or a binary file-like object. ``None``
        or ``INVALID_CHANNEL`` (any negative descriptor) disables output.
        Safe to call at any time, including while callbacks are firing.
        """
        if isinstance(channel, int) and channel < 0:
            channel = None
        self._channel = channel

    def emit(self, connection_handle: ConnectionHandle, payload: Optional[Payload]) -> int:
        """Frame and write one notification, reporting why it was not sent.

        Returns:
            Number of bytes written.

        Raises:
            ChannelUnset: No usable channel is configured.
            EmptyPayload: ``payload`` is ``None`` or empty.
            FrameTooLarge: The frame would exceed ``max_frame_size``.
            OSError: The write itself failed.
        """
        # Single load; a concurrent set_channel takes effect on the next call.
        channel = self._channel
        if not _is_valid(channel):
            raise ChannelUnset("No output channel configured")
        if not payload:
            raise EmptyPayload("Notification carried no data")

        frame = encode_notify(
            connection_handle,
            payload,
            handle_size=self._handle_size,
            max_frame_size=self._max_frame_size,
        )
        return self._write(channel, frame)

    def on_notify(self, connection_handle: ConnectionHandle, payload: Optional[Payload]) -> None:
        """Notification handler installed into the BLE stack.

        Never raises for telemetry loss: an absent channel or empty payload is
        a normal state, an oversize frame or failed write is counted and
        dropped. The payload is copied into the frame before this returns.
        """
        try:
            self.emit(connection_handle, payload)
        except (ChannelUnset, EmptyPayload):
            return
        except FrameTooLarge as e:
            with self._stats_lock:
                self.stats.dropped_oversize += 1
            logger.debug("Dropping notification: %s", e)
        except OSError as e:
            with self._stats_lock:
                self.stats.dropped_write_error += 1
            logger.debug("Frame write failed, dropping: %r", e)
        except ValueError as e:
            # Malformed handle or payload from the stack; the callback contract has no error path.
            logger.warning("Dropping unusable notification: %s", e)

    def _write(self, channel: Channel, frame: bytes) -> int:
        if isinstance(channel, int):
            written = os.write(channel, frame)
        else:
            with self._sink_lock:
                # Non-blocking raw sinks return None when they would block.
                written = channel.write(frame) or 0

        if written != len(frame):
            raise BlockingIOError(f"Short write: {written} of {len(frame)} bytes")

        with self._stats_lock:
            self.stats.frames_written += 1
            self.stats.bytes_written += written
            self.stats.last_write_time = time.time()
        return written

    def __repr__(self) -> str:
        return (
            f"EventBridge(channel={self._channel!r}, handle_size={self._handle_size}, "
            f"max_frame_size={self._max_frame_size})"
        )
