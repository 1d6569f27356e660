"""GATT client callback table and the populator the stack init code calls."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

from .event_bridge import EventBridge

NotifyHandler = Callable[[Any, Any], None]


@dataclass
class GattClientCallbacks:
    """Handler slots of a GATT client registration.

    Only ``notify_characteristics`` is ever filled by this package. Connection
    open/close arrives through the stack's GAP callbacks, not this table.
    """

    notify_characteristics: Optional[NotifyHandler] = None
    services_discovered: Optional[Callable[..., None]] = None
    read_characteristics: Optional[Callable[..., None]] = None
    write_characteristics: Optional[Callable[..., None]] = None
    mtu_updated: Optional[Callable[..., None]] = None


def get_callbacks(
    bridge: EventBridge, callbacks: Optional[GattClientCallbacks] = None
) -> GattClientCallbacks:
    """Install ``bridge.on_notify`` as the notification handler.

    Fills the caller's table when one is given (other slots are left as they
    are), otherwise returns a fresh table with only the notify slot set.
    """
    if callbacks is None:
        callbacks = GattClientCallbacks()
    callbacks.notify_characteristics = bridge.on_notify
    return callbacks
