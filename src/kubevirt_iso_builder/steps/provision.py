"""Run the provisioning hook over the connected communicator."""

import threading

import structlog

from ..communicator import Communicator, Hook
from ..config import Settings
from ..errors import BuildCancelledError, BuildError, ProvisionError
from ..kubevirt_client import KubeVirtClient
from ..models import COMMUNICATOR, StateBag, StepAction
from ..runner import halt

logger = structlog.get_logger()


def command_hook(commands: list[str]) -> Hook:
    """Hook that runs shell commands in order, failing on the first non-zero exit."""

    def run_commands(communicator: Communicator, state: StateBag, cancel: threading.Event) -> None:
        for command in commands:
            if cancel.is_set():
                raise BuildCancelledError("provisioning cancelled")
            logger.info("Running provision command", command=command)
            stdout, stderr, exit_code = communicator.execute(command)
            if stdout:
                logger.debug("Command output", command=command, stdout=stdout)
            if exit_code != 0:
                raise ProvisionError(f"command {command!r} exited with status {exit_code}: {stderr}")

    return run_commands


class StepProvision:
    name = "provision"

    def __init__(
        self,
        settings: Settings,
        client: KubeVirtClient,
        cancel: threading.Event,
        hook: Hook | None = None,
    ) -> None:
        self.settings = settings
        self.client = client
        self.cancel = cancel
        self.hook = hook or command_hook(settings.provision_commands)

    def run(self, state: StateBag) -> StepAction:
        communicator = state.get(COMMUNICATOR)
        if communicator is None:
            return halt(state, ProvisionError("no communicator session to provision with"), "Cannot provision")

        logger.info("Provisioning guest")
        try:
            self.hook(communicator, state, self.cancel)
        except BuildError as e:
            return halt(state, e, "Provisioning failed")

        logger.info("Provisioning finished")
        return StepAction.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        pass
