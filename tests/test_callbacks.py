from ble_notify_bridge.callbacks import GattClientCallbacks, get_callbacks
from ble_notify_bridge.event_bridge import EventBridge


def test_fresh_table_has_only_notify_slot():
    bridge = EventBridge()
    table = get_callbacks(bridge)

    assert table.notify_characteristics == bridge.on_notify
    assert table.services_discovered is None
    assert table.read_characteristics is None
    assert table.write_characteristics is None
    assert table.mtu_updated is None


def test_existing_table_keeps_other_slots():
    def on_mtu(*_):
        pass

    table = GattClientCallbacks(mtu_updated=on_mtu)
    bridge = EventBridge()

    result = get_callbacks(bridge, table)

    assert result is table
    assert table.notify_characteristics == bridge.on_notify
    assert table.mtu_updated is on_mtu


def test_installed_handler_writes_through_bridge():
    written = []

    class _Sink:
        closed = False

        def write(self, data):
            written.append(data)
            return len(data)

    table = get_callbacks(EventBridge(_Sink()))
    table.notify_characteristics(7, b"\xaa\xbb\xcc")

    assert written == [bytes.fromhex("01 09 00 07 00 00 00 03 00 AA BB CC")]
