"""Start forwarding a local port to the guest's communicator port."""

import threading
from collections.abc import Callable
from typing import Protocol, cast

import structlog

from .. import waiting
from ..config import Settings
from ..errors import BuildCancelledError
from ..kubevirt_client import KubeVirtClient
from ..models import FORWARDING_HOST, FORWARDING_PORT, PORT_FORWARDER, StateBag, StepAction
from ..portforward import ForwardedPort, PortForwarder
from ..runner import halt
from ..waiting import BackgroundResult, WaitOutcome

logger = structlog.get_logger()

LOCAL_ADDRESS = "127.0.0.1"


class Forwarder(Protocol):
    def start_forwarding(self, address: str, port: ForwardedPort) -> tuple[str, int]: ...

    def close(self) -> None: ...


ForwarderFactory = Callable[[KubeVirtClient, str, str, str, threading.Event], Forwarder]


def default_forwarder(
    client: KubeVirtClient, kind: str, namespace: str, name: str, cancel: threading.Event
) -> Forwarder:
    return PortForwarder(client, kind, namespace, name, cancel)


class StepStartPortForward:
    """Bind the local listener in the background and race it against cancellation.

    On success forwarding_host and forwarding_port are recorded; the
    connect step prefers them over any other target.
    """

    name = "start-port-forward"

    def __init__(
        self,
        settings: Settings,
        client: KubeVirtClient,
        cancel: threading.Event,
        forwarder_factory: ForwarderFactory | None = None,
        tick: float = 1.0,
    ) -> None:
        self.settings = settings
        self.client = client
        self.cancel = cancel
        self.forwarder_factory = forwarder_factory or default_forwarder
        self.tick = tick

    def run(self, state: StateBag) -> StepAction:
        if self.settings.communicator.type == "none":
            logger.info("Communicator type 'none', skipping port forwarding setup")
            return StepAction.CONTINUE
        if self.settings.port_forward.disable_forwarding:
            logger.info("disable_forwarding = true, skipping port forwarding setup")
            return StepAction.CONTINUE

        namespace = self.settings.namespace
        name = self.settings.vm_name
        port = ForwardedPort(
            local=self.settings.port_forward.forwarding_port,
            remote=self.settings.communicator.port or 0,
        )
        logger.info(
            "Preparing port forwarding",
            local=f"{LOCAL_ADDRESS}:{port.local}",
            namespace=namespace,
            name=name,
            remote_port=port.remote,
        )

        forwarder = self.forwarder_factory(self.client, "vmi", namespace, name, self.cancel)
        slot = waiting.run_in_background(forwarder.start_forwarding, LOCAL_ADDRESS, port, name="start-port-forward")
        outcome, result = waiting.wait_any(slot, self.cancel, None, tick=self.tick)

        if outcome is WaitOutcome.CANCELLED:
            forwarder.close()
            return halt(
                state, BuildCancelledError("cancelled starting port forwarding"), "Port forwarding cancelled"
            )

        result = cast(BackgroundResult, result)
        if result.error is not None:
            return halt(state, result.error, "Failed to start port forwarding")

        host, local_port = result.value
        state.put(FORWARDING_HOST, host)
        state.put(FORWARDING_PORT, local_port)
        state.put(PORT_FORWARDER, forwarder)
        logger.info("Port forwarding enabled", local=f"{host}:{local_port}", remote_port=port.remote)
        return StepAction.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        forwarder = state.get(PORT_FORWARDER)
        if forwarder is not None:
            forwarder.close()
