"""Turn the installed root disk into a reusable, bootable image."""

import threading

import structlog

from .. import resources, waiting
from ..config import Settings
from ..errors import BuildError, EmptyRootVolumeError
from ..kubevirt_client import KubeVirtClient
from ..models import BOOTABLE_VOLUME_NAME, ROOT_VOLUME_NAME, StateBag, StepAction
from ..runner import halt
from .source_volume import volume_succeeded

logger = structlog.get_logger()


class StepCreateBootableVolume:
    """Clone the root volume into a DataVolume named after the image, then publish a DataSource.

    The DataSource is only created once the clone has succeeded. Nothing
    is rolled back: the image is the build's output.
    """

    name = "create-bootable-volume"

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
        s = self.settings
        root_volume = state.get(ROOT_VOLUME_NAME)
        if not root_volume:
            return halt(
                state,
                EmptyRootVolumeError("root volume name is empty, cannot clone the VM disk"),
                "Cannot create bootable volume",
            )

        logger.info(
            "Creating bootable volume",
            namespace=s.namespace,
            name=s.name,
            source=root_volume,
            size=s.disk_size,
        )
        try:
            self.client.create_data_volume(
                s.namespace,
                resources.clone_volume(s.name, root_volume, s.namespace, s.disk_size, s.access_mode, s.volume_mode),
            )
            waiting.poll_until(
                lambda: volume_succeeded(self.client, s.namespace, s.name),
                interval=self.poll_interval,
                timeout=s.volume_ready_timeout.total_seconds(),
                cancel=self.cancel,
                description=f"DataVolume {s.namespace}/{s.name} clone",
            )

            logger.info("Creating DataSource", namespace=s.namespace, name=s.name)
            self.client.create_data_source(
                s.namespace, resources.data_source(s.name, s.namespace, s.instance_type, s.preference)
            )
        except BuildError as e:
            return halt(state, e, "Failed to create bootable volume", namespace=s.namespace, name=s.name)

        state.put(BOOTABLE_VOLUME_NAME, s.name)
        logger.info("Bootable volume is ready", namespace=s.namespace, name=s.name)
        return StepAction.CONTINUE

    def cleanup(self, state: StateBag) -> None:
        pass
