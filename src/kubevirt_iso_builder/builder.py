"""Wire the build steps together and run them."""

import threading

import structlog

from .communicator import Connector, Hook, ssh_connector
from .config import Settings
from .errors import BuildFailedError, ConfigurationError
from .kubevirt_client import KubeVirtClient
from .models import BOOTABLE_VOLUME_NAME, RETAINED_RESOURCES, Artifact, StateBag
from .runner import Runner, Step
from .steps.boot_command import StepTypeBootCommand
from .steps.bootable_volume import StepCreateBootableVolume
from .steps.connect import StepConnect
from .steps.installation import StepWaitForInstallation
from .steps.media import StepCopyMediaFiles
from .steps.port_forward import ForwarderFactory, StepStartPortForward
from .steps.provision import StepProvision
from .steps.source_volume import StepValidateSourceVolume
from .steps.stop import StepStopVirtualMachine
from .steps.virtual_machine import StepCreateVirtualMachine
from .steps.wait_for_agent import StepWaitForAgent
from .steps.wait_for_ip import StepWaitForIp

logger = structlog.get_logger()


class Builder:
    """Builds a bootable image from an ISO in a temporary KubeVirt VM."""

    def __init__(
        self,
        settings: Settings,
        client: KubeVirtClient | None = None,
        cancel: threading.Event | None = None,
        connector: Connector | None = None,
        hook: Hook | None = None,
        forwarder_factory: ForwarderFactory | None = None,
    ) -> None:
        self.settings = settings
        self.client = client
        self.cancel = cancel or threading.Event()
        self.connector = connector
        self.hook = hook
        self.forwarder_factory = forwarder_factory
        self.retained_resources: list[str] = []

    def prepare(self) -> list[str]:
        """Validate settings. Returns deprecation warnings."""
        warnings = self.settings.prepare()
        for warning in warnings:
            logger.warning("Deprecated option", message=warning)
        return warnings

    def _connector(self) -> Connector:
        if self.connector is not None:
            return self.connector
        comm_type = self.settings.communicator.type
        if comm_type == "ssh":
            return ssh_connector
        raise ConfigurationError(f"no connector available for communicator type '{comm_type}'")

    def build_steps(self) -> list[Step]:
        """The fixed step sequence for these settings.

        Raises ConfigurationError if the communicator has no connector.
        """
        if self.client is None:
            self.client = KubeVirtClient(self.settings)
        args = (self.settings, self.client, self.cancel)

        steps: list[Step] = [
            StepValidateSourceVolume(*args),
            StepCopyMediaFiles(*args),
            StepCreateVirtualMachine(*args),
            StepTypeBootCommand(*args),
            StepWaitForInstallation(*args),
        ]

        if self.settings.communicator.type != "none":
            steps.extend(
                [
                    StepWaitForAgent(*args),
                    StepWaitForIp(*args),
                    StepStartPortForward(*args, forwarder_factory=self.forwarder_factory),
                    StepConnect(*args, connector=self._connector()),
                    StepProvision(*args, hook=self.hook),
                ]
            )

        steps.extend(
            [
                StepStopVirtualMachine(*args),
                StepCreateBootableVolume(*args),
            ]
        )
        return steps

    def run(self) -> Artifact:
        """Run the build. Raises BuildFailedError if any step halts."""
        steps = self.build_steps()
        state = StateBag()

        logger.info(
            "Starting build",
            namespace=self.settings.namespace,
            name=self.settings.name,
            vm_name=self.settings.vm_name,
            steps=[step.name for step in steps],
        )
        result = Runner(steps, self.cancel).run(state)
        self.retained_resources = list(state.get(RETAINED_RESOURCES, []))

        for resource in self.retained_resources:
            logger.info("Resource retained", resource=resource)

        if not result.ok:
            raise BuildFailedError(result.failed_step, result.error, self.retained_resources)

        artifact = Artifact(name=state.get(BOOTABLE_VOLUME_NAME), namespace=self.settings.namespace)
        logger.info("Build finished", artifact=artifact.id)
        return artifact
