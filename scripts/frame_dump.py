#!/usr/bin/env python3
"""
Decode a stream of notification frames and print them one per line.

Usage:
    ble-notify-bridge --mock --mock-count 50 | python scripts/frame_dump.py
    python scripts/frame_dump.py --handle-size 8 < capture.bin
"""

import argparse
import logging
import os
import sys

# Add the package to the path (from scripts/ to src/)
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from ble_notify_bridge.frame_reader import FrameReader  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)
logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Dump notification frames from stdin")
    parser.add_argument("--handle-size", type=int, default=4)
    args = parser.parse_args()

    reader = FrameReader(handle_size=args.handle_size)
    fd = sys.stdin.fileno()

    while True:
        chunk = os.read(fd, 4096)
        if not chunk:
            break
        for event in reader.feed(chunk):
            print(f"handle={event.handle_value:#x} len={len(event.data)} data={event.data.hex(' ')}")

    if reader.pending:
        logger.warning("Stream ended with %d bytes of partial frame", reader.pending)
    logger.info("Decoded %d frames, skipped %d", reader.frames_decoded, reader.frames_skipped)
    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(130)
