"""Manifests for the KubeVirt and CDI resources created during a build.

Everything here returns plain dicts ready to hand to the Kubernetes
CustomObjectsApi / CoreV1Api.
"""

from typing import Any

from .config import DEFAULT_INSTANCE_TYPE_KIND, DEFAULT_PREFERENCE_KIND, Network

KUBEVIRT_GROUP = "kubevirt.io"
KUBEVIRT_VERSION = "v1"
CDI_GROUP = "cdi.kubevirt.io"
CDI_VERSION = "v1beta1"

DEFAULT_INSTANCETYPE_LABEL = "instancetype.kubevirt.io/default-instancetype"
DEFAULT_PREFERENCE_LABEL = "instancetype.kubevirt.io/default-preference"

ROOTDISK = "rootdisk"
CDROM = "cdrom"
VIRTIO_DISK = "virtiocontainerdisk"
USERDATA = "userdata"


def root_volume_name(vm_name: str) -> str:
    """Name of the DataVolume backing the VM's root disk."""
    return f"{vm_name}-{ROOTDISK}"


def access_modes(access_mode: str) -> list[str]:
    if access_mode == "ReadWriteMany":
        return ["ReadWriteMany"]
    return ["ReadWriteOnce"]


def volume_mode(mode: str) -> str:
    if mode == "Block":
        return "Block"
    return "Filesystem"


def _pvc_spec(disk_size: str, access_mode: str, mode: str) -> dict[str, Any]:
    return {
        "accessModes": access_modes(access_mode),
        "volumeMode": volume_mode(mode),
        "resources": {"requests": {"storage": disk_size}},
    }


def config_map(
    name: str,
    data: dict[str, str],
    binary_data: dict[str, str] | None = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": name},
        "data": data,
    }
    if binary_data:
        body["binaryData"] = binary_data
    return body


def _cdrom(name: str, boot_order: int | None = None) -> dict[str, Any]:
    disk: dict[str, Any] = {"name": name, "cdrom": {"tray": "closed", "bus": "sata"}}
    if boot_order is not None:
        disk["bootOrder"] = boot_order
    return disk


def virtual_machine_disks(os_type: str) -> list[dict[str, Any]]:
    """Disk devices in attachment order.

    The VirtIO driver disk goes before the userdata disk so Windows
    drive letters referenced from Autounattend.xml stay stable.
    """
    disks = [
        {"name": ROOTDISK, "disk": {}, "bootOrder": 1},
        _cdrom(CDROM, boot_order=2),
    ]
    if os_type == "windows":
        disks.append(_cdrom(VIRTIO_DISK))
    disks.append(_cdrom(USERDATA))
    return disks


def virtual_machine_volumes(
    vm_name: str,
    iso_volume_name: str,
    os_type: str,
    media_label: str,
    virtio_container: str,
) -> list[dict[str, Any]]:
    volumes: list[dict[str, Any]] = [
        {"name": ROOTDISK, "dataVolume": {"name": root_volume_name(vm_name)}},
        {"name": CDROM, "dataVolume": {"name": iso_volume_name}},
    ]
    if os_type == "windows":
        volumes.append({"name": USERDATA, "sysprep": {"configMap": {"name": vm_name}}})
        volumes.append({"name": VIRTIO_DISK, "containerDisk": {"image": virtio_container}})
    else:
        volumes.append({"name": USERDATA, "configMap": {"name": vm_name, "volumeLabel": media_label}})
    return volumes


def network_and_interface(network: Network) -> tuple[dict[str, Any], dict[str, Any]]:
    """Translate a network option into a VM network and its interface."""
    vm_network: dict[str, Any] = {"name": network.name}
    interface: dict[str, Any] = {"name": network.name}

    if network.multus is not None:
        multus: dict[str, Any] = {"networkName": network.multus.network_name}
        if network.multus.default:
            multus["default"] = True
        vm_network["multus"] = multus
        interface["bridge"] = {}
    else:
        pod: dict[str, Any] = {}
        if network.pod is not None:
            if network.pod.vm_network_cidr:
                pod["vmNetworkCIDR"] = network.pod.vm_network_cidr
            if network.pod.vm_ipv6_network_cidr:
                pod["vmIPv6NetworkCIDR"] = network.pod.vm_ipv6_network_cidr
        vm_network["pod"] = pod
        interface["masquerade"] = {}

    return vm_network, interface


def virtual_machine(
    name: str,
    iso_volume_name: str,
    disk_size: str,
    instance_type: str,
    preference: str,
    os_type: str,
    *,
    instance_type_kind: str = "",
    preference_kind: str = "",
    networks: list[Network] | None = None,
    media_label: str = "OEMDRV",
    virtio_container: str = "",
    access_mode: str = "",
    mode: str = "",
) -> dict[str, Any]:
    """Manifest for the temporary VirtualMachine that runs the installer."""
    vm_networks = []
    interfaces = []
    for network in networks or []:
        vm_network, interface = network_and_interface(network)
        vm_networks.append(vm_network)
        interfaces.append(interface)

    return {
        "apiVersion": f"{KUBEVIRT_GROUP}/{KUBEVIRT_VERSION}",
        "kind": "VirtualMachine",
        "metadata": {"name": name},
        "spec": {
            "runStrategy": "Always",
            "instancetype": {
                "kind": instance_type_kind or DEFAULT_INSTANCE_TYPE_KIND,
                "name": instance_type,
            },
            "preference": {
                "kind": preference_kind or DEFAULT_PREFERENCE_KIND,
                "name": preference,
            },
            "dataVolumeTemplates": [
                {
                    "metadata": {"name": root_volume_name(name)},
                    "spec": {
                        "pvc": _pvc_spec(disk_size, access_mode, mode),
                        "source": {"blank": {}},
                    },
                }
            ],
            "template": {
                "spec": {
                    "networks": vm_networks,
                    "domain": {
                        "devices": {
                            "interfaces": interfaces,
                            "disks": virtual_machine_disks(os_type),
                        }
                    },
                    "volumes": virtual_machine_volumes(
                        name, iso_volume_name, os_type, media_label, virtio_container
                    ),
                }
            },
        },
    }


def clone_volume(
    name: str,
    source_volume: str,
    namespace: str,
    disk_size: str,
    access_mode: str = "",
    mode: str = "",
) -> dict[str, Any]:
    """Manifest for a DataVolume cloned from an existing PVC."""
    return {
        "apiVersion": f"{CDI_GROUP}/{CDI_VERSION}",
        "kind": "DataVolume",
        "metadata": {"name": name},
        "spec": {
            "source": {"pvc": {"name": source_volume, "namespace": namespace}},
            "pvc": _pvc_spec(disk_size, access_mode, mode),
        },
    }


def data_source(name: str, namespace: str, instance_type: str, preference: str) -> dict[str, Any]:
    """Manifest for the DataSource that publishes the finished volume."""
    return {
        "apiVersion": f"{CDI_GROUP}/{CDI_VERSION}",
        "kind": "DataSource",
        "metadata": {
            "name": name,
            "labels": {
                DEFAULT_INSTANCETYPE_LABEL: instance_type,
                DEFAULT_PREFERENCE_LABEL: preference,
            },
        },
        "spec": {"source": {"pvc": {"name": name, "namespace": namespace}}},
    }
