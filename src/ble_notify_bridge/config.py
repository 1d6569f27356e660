"""Configuration helpers for environment-driven settings."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Any

from .event_bridge import PIPE_BUF
from .frame_codec import DATA_LEN_SIZE, FRAME_SIZE_LIMIT, HEADER_SIZE, MAX_FRAME_SIZE

# Nordic UART Service (NUS) UUID constants
NUS_SERVICE = "6e400001-b5a3-f393-e0a9-e50e24dcca9e"
NUS_TX_CHAR = "6e400003-b5a3-f393-e0a9-e50e24dcca9e"  # Notify (device to client)

DEVICE_NAME = "BLE Remote"


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)), 0)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except ValueError:
        return default


@dataclass(frozen=True)
class BridgeConfig:
    # Framing
    max_frame_size: int = MAX_FRAME_SIZE
    handle_size: int = 4
    # Handle stamped on frames from a single-link source (bleak exposes none)
    connection_handle: int = 1

    # Output channel (fd the frames are written to)
    output_fd: int = 1

    # GATT client
    device_name: str = DEVICE_NAME
    service_uuid: str = NUS_SERVICE
    char_uuid: str = NUS_TX_CHAR
    scan_timeout: float = 10.0

    @staticmethod
    def load() -> "BridgeConfig":
        """Build a BridgeConfig from the BLE_BRIDGE_* environment variables."""
        return BridgeConfig(
            max_frame_size=_env_int("BLE_BRIDGE_MAX_FRAME_SIZE", MAX_FRAME_SIZE),
            handle_size=_env_int("BLE_BRIDGE_HANDLE_SIZE", 4),
            connection_handle=_env_int("BLE_BRIDGE_CONNECTION_HANDLE", 1),
            output_fd=_env_int("BLE_BRIDGE_OUTPUT_FD", 1),
            device_name=os.getenv("BLE_BRIDGE_DEVICE_NAME", DEVICE_NAME),
            service_uuid=os.getenv("BLE_BRIDGE_SERVICE_UUID", NUS_SERVICE),
            char_uuid=os.getenv("BLE_BRIDGE_CHAR_UUID", NUS_TX_CHAR),
            scan_timeout=_env_float("BLE_BRIDGE_SCAN_TIMEOUT", 10.0),
        )

    def override(self, **changes: Any) -> "BridgeConfig":
        """Return a copy with every non-None value in ``changes`` applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    def validate(self) -> "BridgeConfig":
        """Raise ValueError if the framing settings cannot produce a frame."""
        if self.handle_size < 1:
            raise ValueError(f"handle_size must be positive, got {self.handle_size}")

        smallest = HEADER_SIZE + self.handle_size + DATA_LEN_SIZE + 1
        if self.max_frame_size < smallest:
            raise ValueError(
                f"max_frame_size {self.max_frame_size} cannot hold a notification "
                f"(need at least {smallest} bytes)"
            )
        if self.max_frame_size > FRAME_SIZE_LIMIT:
            raise ValueError(
                f"max_frame_size {self.max_frame_size} exceeds the u16 length limit {FRAME_SIZE_LIMIT}"
            )
        if self.max_frame_size > PIPE_BUF:
            raise ValueError(
                f"max_frame_size {self.max_frame_size} exceeds PIPE_BUF {PIPE_BUF}"
            )
        if not 0 <= self.connection_handle < 256**self.handle_size:
            raise ValueError(
                f"connection_handle {self.connection_handle} does not fit in "
                f"{self.handle_size} bytes"
            )
        if self.scan_timeout <= 0:
            raise ValueError(f"scan_timeout must be positive, got {self.scan_timeout}")
        return self
