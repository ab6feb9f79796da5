"""Type the boot command into the VM console."""

import threading

import structlog

from .. import bootcommand, waiting
from ..config import Settings
from ..errors import BuildError
from ..kubevirt_client import KubeVirtClient
from ..models import StateBag, StepAction
from ..runner import halt
from ..vnc import VNCClient, WebSocketStream, send_actions

logger = structlog.get_logger()


class StepTypeBootCommand:
    name = "boot-command"

    def __init__(self, settings: Settings, client: KubeVirtClient, cancel: threading.Event) -> None:
        self.settings = settings
        self.client = client
        self.cancel = cancel

    def run(self, state: StateBag) -> StepAction:
        if not self.settings.boot_command:
            logger.info("No boot command configured, skipping")
            return StepAction.CONTINUE

        namespace = self.settings.namespace
        name = self.settings.vm_name
        actions = bootcommand.parse("".join(self.settings.boot_command))

        try:
            boot_wait = self.settings.boot_wait.total_seconds()
            if boot_wait > 0:
                logger.info("Waiting before typing boot command", seconds=boot_wait)
                waiting.sleep(boot_wait, self.cancel, "boot wait")

            logger.info("Connecting to VM console", namespace=namespace, name=name)
            vnc = VNCClient(WebSocketStream(self.client.connect_subresource(namespace, "vmi", name, "vnc")))
            try:
                vnc.handshake()
                logger.info("Typing boot command", actions=len(actions))
                send_actions(vnc, actions, self.settings.boot_key_interval.total_seconds(), self.cancel)
            finally:
                vnc.close()
        except BuildError as e:
            return halt(state, e, "Failed to type boot command", namespace=namespace, name=name)

        return StepAction.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        pass
