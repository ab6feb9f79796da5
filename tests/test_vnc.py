"""Tests for the RFB client and boot command typing."""

import struct
import threading
from unittest.mock import MagicMock

import pytest

from kubevirt_iso_builder.bootcommand import SHIFT, KeyDown, KeyPress, KeyUp, Wait
from kubevirt_iso_builder.errors import BuildCancelledError, RemoteCallError
from kubevirt_iso_builder.vnc import VNCClient, WebSocketStream, send_actions


class FakeWebSocket:
    """Websocket that replays server frames and records client frames."""

    def __init__(self, frames: list[bytes]) -> None:
        self.frames = list(frames)
        self.sent: list[bytes] = []
        self.closed = False

    def recv(self) -> bytes:
        return self.frames.pop(0) if self.frames else b""

    def send_binary(self, data: bytes) -> None:
        self.sent.append(data)

    def close(self) -> None:
        self.closed = True


def server_init(width: int = 1280, height: int = 800, name: bytes = b"fedora-42-builder") -> bytes:
    return struct.pack(">HH", width, height) + bytes(16) + struct.pack(">I", len(name)) + name


def reason(text: bytes) -> bytes:
    return struct.pack(">I", len(text)) + text


class TestWebSocketStream:
    """Tests for WebSocketStream class."""

    def test_reads_across_frames(self) -> None:
        """Test reads span and split frames."""
        stream = WebSocketStream(FakeWebSocket([b"RF", b"B 003.008\nextra"]))

        assert stream.read(12) == b"RFB 003.008\n"
        assert stream.read(5) == b"extra"

    def test_closed_stream(self) -> None:
        """Test an empty frame raises."""
        stream = WebSocketStream(FakeWebSocket([]))

        with pytest.raises(RemoteCallError, match="closed"):
            stream.read(1)


class TestHandshake:
    """Tests for VNCClient.handshake."""

    def test_rfb_38(self) -> None:
        """Test the 3.8 handshake with security type None."""
        ws = FakeWebSocket([b"RFB 003.008\n", b"\x02\x02\x01", struct.pack(">I", 0), server_init()])

        info = VNCClient(WebSocketStream(ws)).handshake()

        assert (info.width, info.height, info.name) == (1280, 800, "fedora-42-builder")
        assert ws.sent == [b"RFB 003.008\n", b"\x01", b"\x01"]

    def test_newer_server_uses_38(self) -> None:
        """Test a newer minor version is answered with 3.8."""
        ws = FakeWebSocket([b"RFB 003.889\n", b"\x01\x01", struct.pack(">I", 0), server_init()])
        client = VNCClient(WebSocketStream(ws))

        client.handshake()

        assert client.version == (3, 8)

    def test_rfb_33(self) -> None:
        """Test the 3.3 handshake where the server picks the security type."""
        ws = FakeWebSocket([b"RFB 003.003\n", struct.pack(">I", 1), server_init()])

        VNCClient(WebSocketStream(ws)).handshake()

        assert ws.sent == [b"RFB 003.003\n", b"\x01"]

    def test_refused(self) -> None:
        """Test the server's reason is reported when it offers no security types."""
        ws = FakeWebSocket([b"RFB 003.008\n", b"\x00" + reason(b"too many connections")])

        with pytest.raises(RemoteCallError, match="too many connections"):
            VNCClient(WebSocketStream(ws)).handshake()

    def test_no_none_security(self) -> None:
        """Test servers that require authentication are rejected."""
        ws = FakeWebSocket([b"RFB 003.008\n", b"\x01\x02"])

        with pytest.raises(RemoteCallError, match="security type None"):
            VNCClient(WebSocketStream(ws)).handshake()

    def test_security_result_failed(self) -> None:
        """Test a failed SecurityResult raises."""
        ws = FakeWebSocket([b"RFB 003.008\n", b"\x01\x01", struct.pack(">I", 1) + reason(b"denied")])

        with pytest.raises(RemoteCallError, match="denied"):
            VNCClient(WebSocketStream(ws)).handshake()

    def test_bad_banner(self) -> None:
        """Test a non-RFB banner raises."""
        ws = FakeWebSocket([b"HTTP/1.1 200"])

        with pytest.raises(RemoteCallError, match="banner"):
            VNCClient(WebSocketStream(ws)).handshake()


class TestSendActions:
    """Tests for send_actions."""

    def test_key_event_encoding(self) -> None:
        """Test KeyEvent messages."""
        ws = FakeWebSocket([])

        VNCClient(WebSocketStream(ws)).key_event(0xFF0D, True)

        assert ws.sent == [b"\x04\x01\x00\x00\x00\x00\xff\x0d"]

    def test_shift_wraps_key(self) -> None:
        """Test shifted characters hold Shift around the key."""
        vnc = MagicMock()

        send_actions(vnc, [KeyPress(ord("A"), shift=True)], 0, threading.Event())

        assert [c.args for c in vnc.key_event.call_args_list] == [
            (SHIFT, True),
            (ord("A"), True),
            (ord("A"), False),
            (SHIFT, False),
        ]

    def test_hold_and_release(self) -> None:
        """Test KeyDown and KeyUp send a single event each."""
        vnc = MagicMock()

        send_actions(vnc, [KeyDown(0xFFE3), KeyUp(0xFFE3), Wait(0)], 0, threading.Event())

        assert [c.args for c in vnc.key_event.call_args_list] == [(0xFFE3, True), (0xFFE3, False)]

    def test_cancelled(self) -> None:
        """Test a cancelled build stops typing."""
        vnc = MagicMock()
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(BuildCancelledError):
            send_actions(vnc, [KeyPress(ord("a"))], 0, cancel)

        vnc.key_event.assert_not_called()

    def test_cancel_during_wait(self) -> None:
        """Test cancellation interrupts a long wait."""
        vnc = MagicMock()
        cancel = threading.Event()
        threading.Timer(0.05, cancel.set).start()

        with pytest.raises(BuildCancelledError):
            send_actions(vnc, [Wait(60), KeyPress(ord("a"))], 0, cancel)

        vnc.key_event.assert_not_called()
