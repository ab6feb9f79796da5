"""Shut the installer VM down so its disk can be cloned."""

import threading

import structlog

from .. import waiting
from ..config import Settings
from ..errors import BuildError, ResourceNotFoundError
from ..kubevirt_client import KubeVirtClient
from ..models import StateBag, StepAction
from ..runner import halt

logger = structlog.get_logger()

HALT_PATCH = [{"op": "add", "path": "/spec/runStrategy", "value": "Halted"}]


class StepStopVirtualMachine:
    name = "stop-virtual-machine"

    def __init__(
        self,
        settings: Settings,
        client: KubeVirtClient,
        cancel: threading.Event,
        poll_interval: float = 5.0,
    ) -> None:
        self.settings = settings
        self.client = client
        self.cancel = cancel
        self.poll_interval = poll_interval

    def run(self, state: StateBag) -> StepAction:
        namespace = self.settings.namespace
        name = self.settings.vm_name

        logger.info("Stopping VirtualMachine", namespace=namespace, name=name)
        try:
            self.client.patch_virtual_machine(namespace, name, HALT_PATCH)
            waiting.poll_until(
                self._instance_gone,
                interval=self.poll_interval,
                timeout=self.settings.stop_timeout.total_seconds(),
                cancel=self.cancel,
                description=f"VirtualMachine {namespace}/{name} to stop",
            )
        except BuildError as e:
            return halt(state, e, "Failed to stop VirtualMachine", namespace=namespace, name=name)

        logger.info("VirtualMachine stopped", namespace=namespace, name=name)
        return StepAction.CONTINUE

    def _instance_gone(self) -> bool:
        try:
            self.client.get_virtual_machine_instance(self.settings.namespace, self.settings.vm_name)
        except ResourceNotFoundError:
            return True
        return False

    def cleanup(self, state: StateBag) -> None:
        pass
