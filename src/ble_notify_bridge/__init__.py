from __future__ import annotations

import argparse
import logging
import sys

from .callbacks import GattClientCallbacks, get_callbacks
from .config import BridgeConfig
from .errors import BridgeError, ChannelUnset, EmptyPayload, FrameDecodeError, FrameTooLarge
from .event_bridge import INVALID_CHANNEL, BridgeStats, EventBridge
from .frame_codec import (
    HEADER_SIZE,
    MAX_FRAME_SIZE,
    EventKind,
    NotifyEvent,
    decode_frame,
    decode_notify,
    encode_frame,
    encode_notify,
)
from .frame_reader import FrameReader, open_pipe

logger = logging.getLogger(__name__)

__all__ = [
    "BridgeConfig",
    "BridgeError",
    "BridgeStats",
    "ChannelUnset",
    "EmptyPayload",
    "EventBridge",
    "EventKind",
    "FrameDecodeError",
    "FrameReader",
    "FrameTooLarge",
    "GattClientCallbacks",
    "HEADER_SIZE",
    "INVALID_CHANNEL",
    "MAX_FRAME_SIZE",
    "NotifyEvent",
    "decode_frame",
    "decode_notify",
    "encode_frame",
    "encode_notify",
    "get_callbacks",
    "main",
    "open_pipe",
]


def _build_parser(defaults: BridgeConfig) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ble-notify-bridge",
        description=(
            "Subscribe to a BLE characteristic and write every notification as a "
            "length-prefixed binary frame to a file descriptor."
        ),
    )
    parser.add_argument(
        "--address", help="BLE address of the device (discovered by name when omitted)"
    )
    parser.add_argument(
        "--device-name",
        default=None,
        help=f"Device name to look for during discovery (default: {defaults.device_name!r})",
    )
    parser.add_argument(
        "--char-uuid",
        default=None,
        help=f"Characteristic to subscribe to (default: {defaults.char_uuid})",
    )
    parser.add_argument(
        "--scan-timeout",
        type=float,
        default=None,
        help=f"Discovery timeout in seconds (default: {defaults.scan_timeout})",
    )
    parser.add_argument(
        "--output-fd",
        type=int,
        default=None,
        help=f"File descriptor frames are written to (default: {defaults.output_fd}); -1 disables output",
    )
    parser.add_argument(
        "--max-frame-size",
        type=int,
        default=None,
        help=f"Frame capacity in bytes; larger notifications are dropped (default: {defaults.max_frame_size})",
    )
    parser.add_argument(
        "--handle-size",
        type=int,
        default=None,
        help=f"Width of the connection handle field in bytes (default: {defaults.handle_size})",
    )
    parser.add_argument(
        "--connection-handle",
        type=int,
        default=None,
        help=f"Connection handle stamped on every frame (default: {defaults.connection_handle})",
    )
    parser.add_argument(
        "--mock",
        action="store_true",
        help="Emit synthetic notifications instead of connecting to a device",
    )
    parser.add_argument(
        "--mock-count",
        type=int,
        default=None,
        help="Stop the mock source after this many notifications",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"],
        help="Log level (default: WARNING)",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Also write logs to this file (logs never go to the output channel)",
    )
    return parser


def _configure_logging(level_name: str, log_file: str | None) -> None:
    level = getattr(logging, str(level_name).upper(), logging.WARNING)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        try:
            handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
        except OSError as e:
            print(f"Cannot open log file {log_file}: {e}", file=sys.stderr)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=handlers,
        force=True,
    )


def main(argv: list[str] | None = None) -> None:
    defaults = BridgeConfig.load()
    args = _build_parser(defaults).parse_args(argv)
    _configure_logging(args.log_level, args.log_file)

    # bleak is only needed once a source is built.
    from .gatt_client import BleNotificationSource, MockNotificationSource, NotificationSource, run

    try:
        config = defaults.override(
            device_name=args.device_name,
            char_uuid=args.char_uuid,
            scan_timeout=args.scan_timeout,
            output_fd=args.output_fd,
            max_frame_size=args.max_frame_size,
            handle_size=args.handle_size,
            connection_handle=args.connection_handle,
        ).validate()
    except ValueError as e:
        logger.error("Invalid configuration: %s", e)
        raise SystemExit(2)

    bridge = EventBridge(
        config.output_fd,
        handle_size=config.handle_size,
        max_frame_size=config.max_frame_size,
    )
    logger.info("Bridge ready: %r", bridge)

    source: NotificationSource
    if args.mock:
        logger.info("Using mock notifications (no BLE device required)")
        source = MockNotificationSource(
            count=args.mock_count, connection_handle=config.connection_handle
        )
    else:
        source = BleNotificationSource(
            args.address,
            connection_handle=config.connection_handle,
            device_name=config.device_name,
            service_uuid=config.service_uuid,
            char_uuid=config.char_uuid,
            scan_timeout=config.scan_timeout,
        )

    raise SystemExit(run(source, bridge))
