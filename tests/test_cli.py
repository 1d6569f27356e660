import os

import pytest

import ble_notify_bridge
from ble_notify_bridge.event_bridge import PIPE_BUF
from ble_notify_bridge.frame_reader import FrameReader, open_pipe


@pytest.fixture
def pipe():
    read_fd, write_fd = open_pipe()
    yield read_fd, write_fd
    for fd in (read_fd, write_fd):
        try:
            os.close(fd)
        except OSError:
            pass


def test_mock_run_writes_frames_to_output_fd(pipe):
    read_fd, write_fd = pipe

    with pytest.raises(SystemExit) as exc:
        ble_notify_bridge.main(
            ["--mock", "--mock-count", "3", "--output-fd", str(write_fd), "--log-level", "ERROR"]
        )

    assert exc.value.code == 0
    events = FrameReader().poll(read_fd)
    assert len(events) == 3
    assert all(e.handle_value == 1 for e in events)


def test_invalid_frame_size_exits_with_usage_error():
    with pytest.raises(SystemExit) as exc:
        ble_notify_bridge.main(["--mock", "--max-frame-size", "4", "--log-level", "CRITICAL"])
    assert exc.value.code == 2


def test_connection_handle_option_is_stamped_on_frames(pipe):
    read_fd, write_fd = pipe

    with pytest.raises(SystemExit) as exc:
        ble_notify_bridge.main(
            [
                "--mock",
                "--mock-count",
                "2",
                "--connection-handle",
                "9",
                "--output-fd",
                str(write_fd),
                "--log-level",
                "ERROR",
            ]
        )

    assert exc.value.code == 0
    events = FrameReader().poll(read_fd)
    assert [e.handle_value for e in events] == [9, 9]


def test_connection_handle_from_environment(pipe, monkeypatch):
    read_fd, write_fd = pipe
    monkeypatch.setenv("BLE_BRIDGE_CONNECTION_HANDLE", "300")

    with pytest.raises(SystemExit):
        ble_notify_bridge.main(
            ["--mock", "--mock-count", "1", "--output-fd", str(write_fd), "--log-level", "ERROR"]
        )

    events = FrameReader().poll(read_fd)
    assert events[0].handle_value == 300


def test_connection_handle_too_wide_exits_with_usage_error():
    with pytest.raises(SystemExit) as exc:
        ble_notify_bridge.main(
            ["--mock", "--handle-size", "1", "--connection-handle", "256", "--log-level", "CRITICAL"]
        )
    assert exc.value.code == 2


def test_frame_size_above_pipe_buf_exits_with_usage_error():
    with pytest.raises(SystemExit) as exc:
        ble_notify_bridge.main(
            ["--mock", "--max-frame-size", str(PIPE_BUF + 1), "--log-level", "CRITICAL"]
        )
    assert exc.value.code == 2
