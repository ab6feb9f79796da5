"""Kubernetes client wrapper for KubeVirt and CDI resources."""

from collections.abc import Callable
from typing import Any

import structlog
import websocket
from kubernetes import client, config  # type: ignore[import-untyped]
from kubernetes.client.exceptions import ApiException  # type: ignore[import-untyped]
from kubernetes.stream import ws_client  # type: ignore[import-untyped]

from .config import Settings
from .errors import ConfigurationError, RemoteCallError, ResourceNotFoundError
from .resources import CDI_GROUP, CDI_VERSION, KUBEVIRT_GROUP, KUBEVIRT_VERSION

logger = structlog.get_logger()

SUBRESOURCES_PATH = "/apis/subresources.kubevirt.io/v1"
PLAIN_STREAM_PROTOCOL = "plain.kubevirt.io"

_KIND_PLURALS = {
    "vm": "virtualmachines",
    "vmi": "virtualmachineinstances",
    "virtualmachine": "virtualmachines",
    "virtualmachineinstance": "virtualmachineinstances",
}


class KubeVirtClient:
    """Wrapper for the control-plane operations a build needs.

    Not-found responses raise ResourceNotFoundError, every other API
    failure raises RemoteCallError with the server's reason.
    """

    def __init__(self, settings: Settings, api_client: client.ApiClient | None = None) -> None:
        """Initialize the client, loading kubeconfig unless api_client is given."""
        self.settings = settings
        self.request_timeout = settings.api_timeout_seconds
        self.api_client = api_client if api_client is not None else self._load_config()
        self.core_v1 = client.CoreV1Api(self.api_client)
        self.custom = client.CustomObjectsApi(self.api_client)

    def _load_config(self) -> client.ApiClient:
        """Load Kubernetes configuration.

        Raises ConfigurationError when no usable configuration is found.
        """
        try:
            if self.settings.kube_config:
                logger.info("Loading Kubernetes config", path=self.settings.kube_config)
                return config.new_client_from_config(config_file=self.settings.kube_config)
            try:
                config.load_incluster_config()
                logger.info("Loaded in-cluster Kubernetes config")
            except config.ConfigException:
                config.load_kube_config()
                logger.info("Loaded local Kubernetes config")
        except (config.ConfigException, OSError) as e:
            raise ConfigurationError(f"cannot load Kubernetes configuration: {e}") from e
        return client.ApiClient()

    def _call(self, description: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return fn(*args, _request_timeout=self.request_timeout, **kwargs)
        except ApiException as e:
            message = f"{description}: {e.reason}"
            if e.status == 404:
                raise ResourceNotFoundError(message, status=e.status, reason=e.reason) from e
            raise RemoteCallError(message, status=e.status, reason=e.reason) from e

    # VirtualMachines

    def create_virtual_machine(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        return self._call(
            f"create VirtualMachine {namespace}/{body['metadata']['name']}",
            self.custom.create_namespaced_custom_object,
            KUBEVIRT_GROUP,
            KUBEVIRT_VERSION,
            namespace,
            "virtualmachines",
            body,
        )

    def get_virtual_machine(self, namespace: str, name: str) -> dict[str, Any]:
        return self._call(
            f"get VirtualMachine {namespace}/{name}",
            self.custom.get_namespaced_custom_object,
            KUBEVIRT_GROUP,
            KUBEVIRT_VERSION,
            namespace,
            "virtualmachines",
            name,
        )

    def patch_virtual_machine(self, namespace: str, name: str, body: Any) -> dict[str, Any]:
        return self._call(
            f"patch VirtualMachine {namespace}/{name}",
            self.custom.patch_namespaced_custom_object,
            KUBEVIRT_GROUP,
            KUBEVIRT_VERSION,
            namespace,
            "virtualmachines",
            name,
            body,
        )

    def delete_virtual_machine(
        self,
        namespace: str,
        name: str,
        grace_period_seconds: int = 0,
        propagation_policy: str = "Background",
    ) -> None:
        self._call(
            f"delete VirtualMachine {namespace}/{name}",
            self.custom.delete_namespaced_custom_object,
            KUBEVIRT_GROUP,
            KUBEVIRT_VERSION,
            namespace,
            "virtualmachines",
            name,
            grace_period_seconds=grace_period_seconds,
            propagation_policy=propagation_policy,
        )

    def get_virtual_machine_instance(self, namespace: str, name: str) -> dict[str, Any]:
        return self._call(
            f"get VirtualMachineInstance {namespace}/{name}",
            self.custom.get_namespaced_custom_object,
            KUBEVIRT_GROUP,
            KUBEVIRT_VERSION,
            namespace,
            "virtualmachineinstances",
            name,
        )

    # DataVolumes and DataSources

    def create_data_volume(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        return self._call(
            f"create DataVolume {namespace}/{body['metadata']['name']}",
            self.custom.create_namespaced_custom_object,
            CDI_GROUP,
            CDI_VERSION,
            namespace,
            "datavolumes",
            body,
        )

    def get_data_volume(self, namespace: str, name: str) -> dict[str, Any]:
        return self._call(
            f"get DataVolume {namespace}/{name}",
            self.custom.get_namespaced_custom_object,
            CDI_GROUP,
            CDI_VERSION,
            namespace,
            "datavolumes",
            name,
        )

    def create_data_source(self, namespace: str, body: dict[str, Any]) -> dict[str, Any]:
        return self._call(
            f"create DataSource {namespace}/{body['metadata']['name']}",
            self.custom.create_namespaced_custom_object,
            CDI_GROUP,
            CDI_VERSION,
            namespace,
            "datasources",
            body,
        )

    # ConfigMaps

    def create_config_map(self, namespace: str, body: dict[str, Any]) -> Any:
        return self._call(
            f"create ConfigMap {namespace}/{body['metadata']['name']}",
            self.core_v1.create_namespaced_config_map,
            namespace,
            body,
        )

    def delete_config_map(self, namespace: str, name: str) -> None:
        self._call(
            f"delete ConfigMap {namespace}/{name}",
            self.core_v1.delete_namespaced_config_map,
            name,
            namespace,
        )

    # Streaming subresources

    def subresource_url(self, namespace: str, kind: str, name: str, subresource: str) -> str:
        plural = _KIND_PLURALS.get(kind.lower(), kind)
        host = self.api_client.configuration.host.rstrip("/")
        return f"{host}{SUBRESOURCES_PATH}/namespaces/{namespace}/{plural}/{name}/{subresource}"

    def connect_subresource(
        self, namespace: str, kind: str, name: str, subresource: str
    ) -> websocket.WebSocket:
        """Open a plain websocket stream to a KubeVirt subresource (vnc, portforward/...)."""
        configuration = self.api_client.configuration
        url = ws_client.get_websocket_url(self.subresource_url(namespace, kind, name, subresource))
        headers = {"sec-websocket-protocol": PLAIN_STREAM_PROTOCOL}
        token = configuration.get_api_key_with_prefix("authorization")
        if token:
            headers["authorization"] = token

        description = f"connect {kind} {namespace}/{name} {subresource}"
        try:
            return ws_client.create_websocket(configuration, url, headers)
        except websocket.WebSocketBadStatusException as e:
            status = getattr(e, "status_code", None)
            if status == 404:
                raise ResourceNotFoundError(f"{description}: {e}", status=status) from e
            raise RemoteCallError(f"{description}: {e}", status=status) from e
        except (websocket.WebSocketException, OSError) as e:
            raise RemoteCallError(f"{description}: {e}") from e
