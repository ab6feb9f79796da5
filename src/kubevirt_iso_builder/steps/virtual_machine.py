"""Create the temporary installer VM and wait for it to become ready."""

import threading

import structlog

from .. import resources, waiting
from ..config import OS_TYPES, Settings
from ..errors import BuildError, ConfigurationError, ResourceNotFoundError
from ..kubevirt_client import KubeVirtClient
from ..models import ROOT_VOLUME_NAME, StateBag, StepAction
from ..runner import halt

logger = structlog.get_logger()


class StepCreateVirtualMachine:
    """Submit the VirtualMachine and block until the control plane reports it ready.

    Cleanup deletes the VM with a zero grace period. With keep_vm the VM
    is left in place and reported; with keep_volumes the delete orphans
    the VM's DataVolumes instead of letting garbage collection remove them.
    """

    name = "create-virtual-machine"

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

    def manifest(self) -> dict:
        s = self.settings
        return resources.virtual_machine(
            s.vm_name,
            s.iso_volume_name,
            s.disk_size,
            s.instance_type,
            s.preference,
            s.os_type,
            instance_type_kind=s.instance_type_kind,
            preference_kind=s.preference_kind,
            networks=s.networks,
            media_label=s.media.label,
            virtio_container=s.virtio_container,
            access_mode=s.access_mode,
            mode=s.volume_mode,
        )

    def run(self, state: StateBag) -> StepAction:
        namespace = self.settings.namespace
        name = self.settings.vm_name

        if self.settings.os_type not in OS_TYPES:
            error = ConfigurationError(
                f"OS type of '{self.settings.os_type}' is not supported, set 'linux' or 'windows'"
            )
            return halt(state, error, "Invalid OS type")

        logger.info("Creating VirtualMachine", namespace=namespace, name=name, os_type=self.settings.os_type)
        try:
            self.client.create_virtual_machine(namespace, self.manifest())
        except BuildError as e:
            return halt(state, e, "Failed to create VirtualMachine", namespace=namespace, name=name)

        state.put(ROOT_VOLUME_NAME, resources.root_volume_name(name))

        logger.info("Waiting for VirtualMachine to become ready", namespace=namespace, name=name)
        try:
            waiting.poll_until(
                self._ready,
                interval=self.poll_interval,
                timeout=self.settings.vm_ready_timeout.total_seconds(),
                cancel=self.cancel,
                description=f"VirtualMachine {namespace}/{name} to become ready",
            )
        except BuildError as e:
            action = halt(state, e, "VirtualMachine did not become ready", namespace=namespace, name=name)
            try:
                self._teardown(state)
            except BuildError as delete_error:
                logger.warning("Failed to delete VirtualMachine", name=name, error=str(delete_error))
            return action

        logger.info("VirtualMachine is ready", namespace=namespace, name=name)
        return StepAction.CONTINUE

    def _ready(self) -> bool:
        vm = self.client.get_virtual_machine(self.settings.namespace, self.settings.vm_name)
        return bool(vm.get("status", {}).get("ready", False))

    def cleanup(self, state: StateBag) -> None:
        self._teardown(state)

    def _teardown(self, state: StateBag) -> None:
        namespace = self.settings.namespace
        name = self.settings.vm_name

        if self.settings.keep_vm:
            logger.info("Keeping VirtualMachine", namespace=namespace, name=name, reason="keep_vm = true")
            state.add_retained(f"VirtualMachine {namespace}/{name}")
            return

        policy = "Background"
        if self.settings.keep_volumes:
            policy = "Orphan"
            state.add_retained(f"DataVolume {namespace}/{resources.root_volume_name(name)}")

        logger.info("Deleting VirtualMachine", namespace=namespace, name=name, propagation_policy=policy)
        try:
            self.client.delete_virtual_machine(namespace, name, grace_period_seconds=0, propagation_policy=policy)
        except ResourceNotFoundError:
            logger.debug("VirtualMachine already gone", namespace=namespace, name=name)
