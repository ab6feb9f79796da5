"""Local TCP listener relayed to a VMI port through the KubeVirt API."""

import socket
import threading
from dataclasses import dataclass

import structlog
import websocket

from .errors import BuildError
from .kubevirt_client import KubeVirtClient

logger = structlog.get_logger()

PROTOCOL_TCP = "tcp"
BUFFER_SIZE = 32 * 1024
ACCEPT_TIMEOUT = 1.0


@dataclass
class ForwardedPort:
    """A local port and the guest port it is relayed to. Local 0 is ephemeral."""

    local: int
    remote: int
    protocol: str = PROTOCOL_TCP


class PortForwarder:
    """Relays connections on a local listener to a VMI's portforward subresource.

    Every accepted connection gets its own websocket stream and two relay
    threads. The listener stops when close() is called or the cancel
    event is set.
    """

    def __init__(
        self,
        client: KubeVirtClient,
        kind: str,
        namespace: str,
        name: str,
        cancel: threading.Event | None = None,
    ) -> None:
        self.client = client
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.cancel = cancel or threading.Event()
        self.port: ForwardedPort | None = None
        self.address: tuple[str, int] | None = None
        self._listener: socket.socket | None = None
        self._closed = threading.Event()
        self._lock = threading.Lock()
        self._streams: list[tuple[socket.socket, websocket.WebSocket]] = []

    def start_forwarding(self, address: str, port: ForwardedPort) -> tuple[str, int]:
        """Bind the local listener and start accepting.

        Returns the bound (host, port). Raises OSError if the address
        cannot be bound.
        """
        listener = socket.create_server((address, port.local))
        listener.settimeout(ACCEPT_TIMEOUT)
        self._listener = listener
        self.port = port
        host, bound_port = listener.getsockname()[:2]
        self.address = (host, bound_port)

        thread = threading.Thread(
            target=self._accept_loop,
            args=(listener, port),
            name=f"portforward-{self.name}-{port.remote}",
            daemon=True,
        )
        thread.start()

        logger.info(
            "Port forwarding listening",
            local=f"{host}:{bound_port}",
            namespace=self.namespace,
            name=self.name,
            remote_port=port.remote,
        )
        return host, bound_port

    @property
    def stopped(self) -> bool:
        return self._closed.is_set() or self.cancel.is_set()

    def close(self) -> None:
        """Stop the listener and tear down open streams."""
        if self._closed.is_set():
            return
        self._closed.set()
        if self._listener is not None:
            self._listener.close()
        with self._lock:
            streams = list(self._streams)
            self._streams.clear()
        for conn, stream in streams:
            _close_quietly(conn, stream)
        logger.info("Port forwarding stopped", namespace=self.namespace, name=self.name)

    def _accept_loop(self, listener: socket.socket, port: ForwardedPort) -> None:
        while not self.stopped:
            try:
                conn, peer = listener.accept()
            except TimeoutError:
                continue
            except OSError as e:
                if not self.stopped:
                    logger.error("Port forwarding listener failed", error=str(e))
                break
            threading.Thread(target=self._relay, args=(conn, peer, port), daemon=True).start()

        if self.cancel.is_set():
            self.close()
        listener.close()

    def _relay(self, conn: socket.socket, peer: tuple[str, int], port: ForwardedPort) -> None:
        subresource = f"portforward/{port.remote}/{port.protocol}"
        try:
            stream = self.client.connect_subresource(self.namespace, self.kind, self.name, subresource)
        except BuildError as e:
            logger.error("Failed to open forwarding stream", peer=f"{peer[0]}:{peer[1]}", error=str(e))
            conn.close()
            return

        logger.debug("Forwarding connection", peer=f"{peer[0]}:{peer[1]}", remote_port=port.remote)
        with self._lock:
            self._streams.append((conn, stream))

        upstream = threading.Thread(target=self._local_to_remote, args=(conn, stream), daemon=True)
        upstream.start()
        self._remote_to_local(stream, conn)
        upstream.join()

        with self._lock:
            if (conn, stream) in self._streams:
                self._streams.remove((conn, stream))

    def _local_to_remote(self, conn: socket.socket, stream: websocket.WebSocket) -> None:
        try:
            while True:
                data = conn.recv(BUFFER_SIZE)
                if not data:
                    break
                stream.send_binary(data)
        except (OSError, websocket.WebSocketException) as e:
            logger.debug("Local side of forwarding closed", error=str(e))
        finally:
            _close_quietly(conn, stream)

    def _remote_to_local(self, stream: websocket.WebSocket, conn: socket.socket) -> None:
        try:
            while True:
                data = stream.recv()
                if not data:
                    break
                if isinstance(data, str):
                    data = data.encode()
                conn.sendall(data)
        except (OSError, websocket.WebSocketException) as e:
            logger.debug("Remote side of forwarding closed", error=str(e))
        finally:
            _close_quietly(conn, stream)


def _close_quietly(conn: socket.socket, stream: websocket.WebSocket) -> None:
    try:
        conn.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass  # already disconnected
    try:
        conn.close()
    except OSError as e:
        logger.debug("Error closing local connection", error=str(e))
    try:
        stream.close()
    except (OSError, websocket.WebSocketException) as e:
        logger.debug("Error closing forwarding stream", error=str(e))
