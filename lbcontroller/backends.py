"""Resolution of Service references into dial-able backends."""

from typing import Any, List, Optional

from .cache import ResourceCache
from .errors import DefaultBackendNotFoundError
from .logging_config import get_logger
from .models import Backend, split_key

logger = get_logger(__name__)

PROTOCOL_TCP = "TCP"


def find_service_port(service: Any, port_ref: str) -> Optional[Any]:
    """Find the Service port a backend reference names.

    The reference matches a port's name, its number, or its target port.
    """
    for service_port in service.spec.ports or []:
        if service_port.name and service_port.name == port_ref:
            return service_port
        if str(service_port.port) == port_ref:
            return service_port
        if service_port.target_port is not None and str(service_port.target_port) == port_ref:
            return service_port
    return None


class BackendResolver:
    """Turns Service references into Backends using Endpoints and Pods.

    Resolution of a port happens in two explicit steps: the Service port is
    mapped to a numeric target port (looking the name up in selected Pods'
    container ports when the target port is named), then that number is
    matched against the Endpoints ports.
    """

    def __init__(self, cache: ResourceCache):
        self._cache = cache

    def resolve(self, namespace: str, service_name: str, port_ref: str) -> List[Backend]:
        """Resolve an Ingress backend reference.

        Missing objects are not fatal: the caller still emits its upstream,
        just without backends.
        """
        service = self._cache.services.get(namespace, service_name)
        if service is None:
            logger.warning("Service not found", namespace=namespace, service=service_name)
            return []
        endpoints = self._cache.endpoints.get(namespace, service_name)
        if endpoints is None:
            logger.warning("Endpoints not found", namespace=namespace, service=service_name)
            return []

        service_port = find_service_port(service, port_ref)
        if service_port is None:
            logger.warning("Service port not found",
                           namespace=namespace,
                           service=service_name,
                           port=port_ref)
            return []

        return self._backends_for_service_port(service, endpoints, service_port)

    def resolve_default(self, service_key: str) -> List[Backend]:
        """Resolve every port of the default backend Service.

        Raises:
            DefaultBackendNotFoundError: If the Service or its Endpoints are missing.
        """
        namespace, name = split_key(service_key)
        service = self._cache.services.get(namespace, name)
        if service is None:
            raise DefaultBackendNotFoundError(f"default backend service {service_key} not found")
        endpoints = self._cache.endpoints.get(namespace, name)
        if endpoints is None:
            raise DefaultBackendNotFoundError(f"endpoints for default backend service {service_key} not found")

        backends: List[Backend] = []
        for service_port in service.spec.ports or []:
            backends.extend(self._backends_for_service_port(service, endpoints, service_port))
        return backends

    def resolve_target_port(self, service: Any, service_port: Any) -> Optional[int]:
        """Map a Service port to the numeric port its Endpoints expose."""
        target = service_port.target_port
        if target is None:
            return service_port.port
        if isinstance(target, int):
            return target
        if target.isdigit():
            return int(target)
        return self.named_port_from_pods(service, target)

    def named_port_from_pods(self, service: Any, port_name: str) -> Optional[int]:
        """Look a named target port up in the container ports of selected Pods."""
        selector = service.spec.selector or {}
        for pod in self._cache.pods.list_selected(service.metadata.namespace, selector):
            for container in pod.spec.containers or []:
                for container_port in container.ports or []:
                    if container_port.name == port_name:
                        return container_port.container_port

        logger.debug("Named port not found in any selected pod",
                     namespace=service.metadata.namespace,
                     service=service.metadata.name,
                     port_name=port_name)
        return None

    def _backends_for_service_port(self, service: Any, endpoints: Any, service_port: Any) -> List[Backend]:
        target_port = self.resolve_target_port(service, service_port)
        if target_port is None:
            return []
        return endpoint_backends(endpoints, target_port)


def endpoint_backends(endpoints: Any, port: int) -> List[Backend]:
    """Pair every address with the matching TCP endpoint port, in endpoint order."""
    backends: List[Backend] = []
    for subset in endpoints.subsets or []:
        for endpoint_port in subset.ports or []:
            if (endpoint_port.protocol or PROTOCOL_TCP) != PROTOCOL_TCP:
                continue
            if endpoint_port.port != port:
                continue
            for address in subset.addresses or []:
                backends.append(Backend(address=address.ip, port=str(port)))
    return backends
