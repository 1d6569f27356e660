"""Consumer side of the notification pipe.

The bridge writes frames to the write end of a pipe; the process that owns the
read end polls it and turns the byte stream back into events. Pipe reads can
return any number of bytes, so frames are reassembled in a buffer rather than
assumed to arrive one per read.
"""

from __future__ import annotations

import logging
import os
from typing import Callable, Iterator, Optional

from .errors import FrameDecodeError
from .frame_codec import (
    DEFAULT_HANDLE_SIZE,
    EventKind,
    NotifyEvent,
    decode_frame,
    decode_notify,
)

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096


def open_pipe() -> tuple[int, int]:
    """Create a pipe whose read end is non-blocking.

    Returns:
        ``(read_fd, write_fd)``. Hand ``write_fd`` to ``EventBridge.set_channel``
        and poll ``read_fd`` with ``FrameReader.poll``.
    """
    read_fd, write_fd = os.pipe()
    os.set_blocking(read_fd, False)
    logger.debug("Pipe created: read_fd=%d write_fd=%d", read_fd, write_fd)
    return read_fd, write_fd


def _hex_preview(data: bytes, limit: int = 16) -> str:
    return " ".join(f"{b:02X}" for b in data[:limit])


class FrameReader:
    """Incremental decoder for a stream of concatenated frames.

    Args:
        handle_size: Width of the connection handle the writer uses.
        on_event: Optional callback invoked for every decoded event, in
            addition to the events being yielded/returned.
    """

    def __init__(
        self,
        handle_size: int = DEFAULT_HANDLE_SIZE,
        on_event: Optional[Callable[[NotifyEvent], None]] = None,
    ) -> None:
        self._handle_size = handle_size
        self._on_event = on_event
        self._buffer = bytearray()
        self.frames_decoded = 0
        self.frames_skipped = 0

    @property
    def pending(self) -> int:
        """Bytes buffered that do not yet form a complete frame."""
        return len(self._buffer)

    def reset(self) -> None:
        self._buffer.clear()

    def feed(self, data: bytes) -> Iterator[NotifyEvent]:
        """Append ``data`` and yield every frame it completes.

        This is a generator; nothing is consumed until it is iterated.
        """
        self._buffer.extend(data)

        while True:
            parsed = decode_frame(self._buffer)
            if parsed is None:
                break

            kind, body, consumed = parsed
            del self._buffer[:consumed]

            if kind != EventKind.NOTIFY:
                self.frames_skipped += 1
                if kind in (EventKind.CONNECT, EventKind.DISCONNECT):
                    logger.info("%s event received (%d bytes)", EventKind(kind).name, len(body))
                else:
                    logger.warning("Skipping frame with unknown kind %d (%d bytes)", kind, len(body))
                continue

            try:
                event = decode_notify(body, handle_size=self._handle_size)
            except FrameDecodeError as e:
                self.frames_skipped += 1
                logger.warning("Malformed NOTIFY frame: %s [%s]", e, _hex_preview(body))
                continue

            self.frames_decoded += 1
            if self._on_event is not None:
                self._on_event(event)
            yield event

    def poll(self, fd: int) -> list[NotifyEvent]:
        """Drain everything currently readable from a non-blocking ``fd``.

        Returns the events decoded from this call's reads. Stops on
        ``EAGAIN`` (nothing more to read) or EOF (writer closed).
        """
        events: list[NotifyEvent] = []
        while True:
            try:
                chunk = os.read(fd, READ_CHUNK_SIZE)
            except BlockingIOError:
                break
            if not chunk:
                if self._buffer:
                    logger.debug("EOF with %d bytes of partial frame", len(self._buffer))
                break
            events.extend(self.feed(chunk))
        return events
