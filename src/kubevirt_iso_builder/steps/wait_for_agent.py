"""Wait for the guest agent to report itself connected."""

import threading

import structlog

from .. import waiting
from ..config import Settings
from ..errors import BuildError
from ..kubevirt_client import KubeVirtClient
from ..models import GUEST_AGENT, StateBag, StepAction
from ..runner import halt

logger = structlog.get_logger()

AGENT_CONNECTED = "AgentConnected"


def agent_connected(vmi: dict) -> bool:
    for condition in vmi.get("status", {}).get("conditions") or []:
        if condition.get("type") == AGENT_CONNECTED and condition.get("status") == "True":
            return True
    return False


class StepWaitForAgent:
    """Poll the VMI conditions until AgentConnected is True.

    A zero agent_wait_timeout skips the step. The poll interval scales
    with the timeout unless poll_interval is given.
    """

    name = "wait-for-agent"

    def __init__(
        self,
        settings: Settings,
        client: KubeVirtClient,
        cancel: threading.Event,
        poll_interval: float | None = None,
    ) -> None:
        self.settings = settings
        self.client = client
        self.cancel = cancel
        self.poll_interval = poll_interval

    def run(self, state: StateBag) -> StepAction:
        timeout = self.settings.agent_wait_timeout.total_seconds()
        if timeout <= 0:
            logger.info("agent_wait_timeout is 0, skipping wait for guest agent")
            return StepAction.CONTINUE

        namespace = self.settings.namespace
        name = self.settings.vm_name
        interval = self.poll_interval if self.poll_interval is not None else waiting.interval_for(timeout)
        logger.info("Waiting for guest agent", namespace=namespace, name=name, timeout=timeout, interval=interval)

        try:
            waiting.poll_until(
                lambda: agent_connected(self.client.get_virtual_machine_instance(namespace, name)),
                interval=interval,
                timeout=timeout,
                cancel=self.cancel,
                description=f"guest agent on {namespace}/{name}",
            )
        except BuildError as e:
            return halt(state, e, "Guest agent did not connect", namespace=namespace, name=name)

        state.put(GUEST_AGENT, True)
        logger.info("Guest agent connected", namespace=namespace, name=name)
        return StepAction.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        pass
