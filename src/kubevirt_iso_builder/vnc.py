"""Minimal RFB client for typing boot commands over the VMI vnc stream."""

import struct
import threading
from dataclasses import dataclass

import structlog
import websocket

from . import waiting
from .bootcommand import SHIFT, Action, KeyDown, KeyPress, KeyUp, Wait
from .errors import BuildCancelledError, RemoteCallError

logger = structlog.get_logger()

SECURITY_INVALID = 0
SECURITY_NONE = 1
KEY_EVENT = 4


class WebSocketStream:
    """Byte-stream view of a websocket, buffering partial frames."""

    def __init__(self, ws: websocket.WebSocket) -> None:
        self.ws = ws
        self._buffer = bytearray()

    def read(self, size: int) -> bytes:
        while len(self._buffer) < size:
            chunk = self.ws.recv()
            if not chunk:
                raise RemoteCallError("VNC stream closed by server")
            if isinstance(chunk, str):
                chunk = chunk.encode()
            self._buffer.extend(chunk)
        data = bytes(self._buffer[:size])
        del self._buffer[:size]
        return data

    def write(self, data: bytes) -> None:
        self.ws.send_binary(data)

    def close(self) -> None:
        self.ws.close()


@dataclass
class ServerInfo:
    width: int
    height: int
    name: str


class VNCClient:
    """Just enough RFB to authenticate with security type None and send keys."""

    def __init__(self, stream: WebSocketStream) -> None:
        self.stream = stream
        self.version: tuple[int, int] | None = None
        self.server: ServerInfo | None = None

    def handshake(self) -> ServerInfo:
        banner = self.stream.read(12)
        try:
            major, minor = int(banner[4:7]), int(banner[8:11])
        except ValueError as e:
            raise RemoteCallError(f"unexpected RFB banner {banner!r}") from e
        if not banner.startswith(b"RFB "):
            raise RemoteCallError(f"unexpected RFB banner {banner!r}")

        self.version = (3, 8) if (major, minor) >= (3, 8) else (3, 3)
        self.stream.write(b"RFB %03d.%03d\n" % self.version)

        if self.version == (3, 8):
            self._negotiate_security()
        else:
            (security,) = struct.unpack(">I", self.stream.read(4))
            if security == SECURITY_INVALID:
                raise RemoteCallError(f"VNC server refused connection: {self._read_reason()}")
            if security != SECURITY_NONE:
                raise RemoteCallError(f"unsupported VNC security type {security}")

        # ClientInit, shared session
        self.stream.write(b"\x01")

        width, height = struct.unpack(">HH", self.stream.read(4))
        self.stream.read(16)  # pixel format
        (name_length,) = struct.unpack(">I", self.stream.read(4))
        name = self.stream.read(name_length).decode(errors="replace")
        self.server = ServerInfo(width=width, height=height, name=name)
        logger.debug("VNC session established", width=width, height=height, desktop=name)
        return self.server

    def _negotiate_security(self) -> None:
        (count,) = struct.unpack(">B", self.stream.read(1))
        if count == 0:
            raise RemoteCallError(f"VNC server refused connection: {self._read_reason()}")
        types = self.stream.read(count)
        if SECURITY_NONE not in types:
            raise RemoteCallError(f"VNC server does not offer security type None (offered {list(types)})")
        self.stream.write(bytes([SECURITY_NONE]))
        (result,) = struct.unpack(">I", self.stream.read(4))
        if result != 0:
            raise RemoteCallError(f"VNC security handshake failed: {self._read_reason()}")

    def _read_reason(self) -> str:
        (length,) = struct.unpack(">I", self.stream.read(4))
        return self.stream.read(length).decode(errors="replace")

    def key_event(self, keysym: int, down: bool) -> None:
        self.stream.write(struct.pack(">BBxxI", KEY_EVENT, 1 if down else 0, keysym))

    def close(self) -> None:
        self.stream.close()


def send_actions(
    vnc: VNCClient,
    actions: list[Action],
    key_interval: float,
    cancel: threading.Event,
) -> None:
    """Type actions into the console, pausing key_interval between keys.

    Raises BuildCancelledError if cancel is set during a pause.
    """
    for action in actions:
        if cancel.is_set():
            raise BuildCancelledError("boot command cancelled")
        if isinstance(action, Wait):
            logger.debug("Boot command wait", seconds=action.seconds)
            waiting.sleep(action.seconds, cancel, "boot command wait")
            continue

        if isinstance(action, KeyPress):
            if action.shift:
                vnc.key_event(SHIFT, True)
            vnc.key_event(action.keysym, True)
            vnc.key_event(action.keysym, False)
            if action.shift:
                vnc.key_event(SHIFT, False)
        elif isinstance(action, KeyDown):
            vnc.key_event(action.keysym, True)
        elif isinstance(action, KeyUp):
            vnc.key_event(action.keysym, False)

        waiting.sleep(key_interval, cancel, "boot command")
