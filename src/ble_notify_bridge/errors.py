"""Exceptions raised by the framing layer.

None of these ever reach the BLE stack: the event bridge absorbs them and
records the drop. They are raised so that the codec stays usable on its own.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for framing and bridge errors."""


class FrameTooLarge(BridgeError):
    """Header plus payload exceeds the frame capacity."""

    def __init__(self, total_len: int, max_frame_size: int) -> None:
        super().__init__(
            f"Frame of {total_len} bytes exceeds maximum of {max_frame_size} bytes"
        )
        self.total_len = total_len
        self.max_frame_size = max_frame_size


class FrameDecodeError(BridgeError):
    """A frame body does not match the layout its kind declares."""


class ChannelUnset(BridgeError):
    """No output channel is configured, or it was disabled."""


class EmptyPayload(BridgeError):
    """The notification carried no data."""
