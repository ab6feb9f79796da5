"""Guest connection targets and the SSH communicator."""

import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import paramiko
import structlog

from .config import Settings
from .errors import NoTargetError
from .models import FORWARDING_HOST, FORWARDING_PORT, IP, StateBag

logger = structlog.get_logger()


@dataclass(frozen=True)
class ConnectTarget:
    host: str
    port: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


class Communicator(Protocol):
    """A connected session to the guest."""

    def execute(self, command: str) -> tuple[str, str, int]: ...

    def close(self) -> None: ...


Connector = Callable[[ConnectTarget, Settings], Communicator]
Hook = Callable[[Communicator, StateBag, threading.Event], None]


def resolve_host(state: StateBag, settings: Settings) -> str:
    """Pick the host to connect to.

    A forwarded local listener wins over a configured host, which wins
    over the address discovered on the guest.
    """
    forwarding_host = state.get(FORWARDING_HOST)
    if forwarding_host:
        return str(forwarding_host)
    if settings.communicator.host:
        return settings.communicator.host
    ip = state.get(IP)
    if ip:
        return str(ip)
    raise NoTargetError("no forwarding host, configured host or guest IP address available")


def resolve_port(state: StateBag, settings: Settings) -> int:
    forwarding_port = state.get(FORWARDING_PORT)
    if forwarding_port:
        return int(forwarding_port)
    if settings.communicator.port:
        return settings.communicator.port
    raise NoTargetError(f"no port known for communicator '{settings.communicator.type}'")


def resolve_target(state: StateBag, settings: Settings) -> ConnectTarget:
    return ConnectTarget(host=resolve_host(state, settings), port=resolve_port(state, settings))


class SSHCommunicator:
    """SSH session to the guest."""

    def __init__(self, target: ConnectTarget, settings: Settings, connect_timeout: float = 10) -> None:
        self.target = target
        self.settings = settings
        self.connect_timeout = connect_timeout
        self.ssh_client: paramiko.SSHClient | None = None

    def connect(self) -> "SSHCommunicator":
        comm = self.settings.communicator
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        client.connect(
            hostname=self.target.host.strip("[]"),
            port=self.target.port,
            username=comm.username,
            password=comm.password,
            key_filename=comm.private_key_file,
            timeout=self.connect_timeout,
            allow_agent=comm.private_key_file is None and comm.password is None,
            look_for_keys=comm.private_key_file is None and comm.password is None,
        )
        self.ssh_client = client
        logger.info("Connected over SSH", target=str(self.target), username=comm.username)
        return self

    def execute(self, command: str) -> tuple[str, str, int]:
        """Execute a command. Returns (stdout, stderr, exit_code)."""
        if self.ssh_client is None:
            raise RuntimeError("SSH communicator is not connected")
        stdin, stdout, stderr = self.ssh_client.exec_command(command)
        exit_code = stdout.channel.recv_exit_status()
        return (
            stdout.read().decode().strip(),
            stderr.read().decode().strip(),
            exit_code,
        )

    def close(self) -> None:
        if self.ssh_client:
            self.ssh_client.close()
            self.ssh_client = None


def ssh_connector(target: ConnectTarget, settings: Settings) -> Communicator:
    return SSHCommunicator(target, settings).connect()
