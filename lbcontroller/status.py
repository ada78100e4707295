"""Publishing the controller's addresses on Ingress status."""

import copy
from typing import Any, Dict, List, Optional, Tuple

from kubernetes import client
from kubernetes.client.rest import ApiException

from .builder import list_managed_ingresses
from .cache import ResourceCache, labels_match, object_key
from .errors import StatusUpdateError
from .logging_config import get_logger, log_function_entry, log_function_exit, log_k8s_operation
from .models import ControllerConfig, PodInfo

logger = get_logger(__name__)

NODE_EXTERNAL_IP = "ExternalIP"
NODE_INTERNAL_IP = "InternalIP"


def node_address(node: Any) -> Optional[str]:
    """The node's external address, falling back to its internal one."""
    addresses = (node.status.addresses or []) if node.status else []
    for wanted in (NODE_EXTERNAL_IP, NODE_INTERNAL_IP):
        for address in addresses:
            if address.type == wanted and address.address:
                return address.address
    return None


def status_entries(ing: Any) -> List[client.V1IngressLoadBalancerIngress]:
    """Load balancer entries currently published on an Ingress, in status order."""
    if ing.status is None or ing.status.load_balancer is None:
        return []
    return list(ing.status.load_balancer.ingress or [])


def status_addresses(ing: Any) -> List[str]:
    """Addresses currently published on an Ingress, ip or hostname, in status order."""
    result = []
    for lb_ingress in status_entries(ing):
        address = lb_ingress.ip or lb_ingress.hostname
        if address:
            result.append(address)
    return result


def entry_identity(lb_ingress: Any) -> Tuple[str, str]:
    return lb_ingress.ip or "", lb_ingress.hostname or ""


def address_entries(addresses: List[str]) -> List[client.V1IngressLoadBalancerIngress]:
    return [client.V1IngressLoadBalancerIngress(ip=address) for address in addresses]


def load_balancer_status(entries: List[Any]) -> client.V1IngressStatus:
    return client.V1IngressStatus(
        load_balancer=client.V1IngressLoadBalancerStatus(ingress=list(entries)),
    )


class LoadBalancerStatusManager:
    """Computes this controller's addresses and reconciles Ingress status.

    Writes carry the resource version they were computed from, so a
    concurrent modification surfaces as a conflict instead of being
    overwritten.
    """

    def __init__(self, cache: ResourceCache, networking_api: Any, config: ControllerConfig,
                 pod_info: Optional[PodInfo] = None):
        self._cache = cache
        self._networking_api = networking_api
        self._config = config
        self._pod_info = pod_info

    def controller_selector(self) -> Dict[str, str]:
        """Labels selecting the controller's pods.

        The configured selector wins; otherwise the labels of our own pod are
        used. Empty when neither is known.
        """
        if self._config.pod_selector:
            return dict(self._config.pod_selector)
        if self._pod_info is None:
            return {}
        pod = self._cache.pods.get(self._pod_info.pod_namespace, self._pod_info.pod_name)
        if pod is None:
            logger.warning("Controller pod not found in cache",
                           pod=self._pod_info.pod_name,
                           namespace=self._pod_info.pod_namespace)
            return {}
        return dict(pod.metadata.labels or {})

    def get_load_balancer_ingress(self, selector: Dict[str, str]) -> List[str]:
        """Sorted, deduplicated addresses of the nodes running controller pods."""
        namespace = self._pod_info.pod_namespace if self._pod_info else None
        addresses = set()
        for pod in self._cache.pods.list():
            if namespace and pod.metadata.namespace != namespace:
                continue
            if not labels_match(selector, pod.metadata.labels):
                continue
            node_name = pod.spec.node_name if pod.spec else None
            if not node_name:
                logger.debug("Controller pod not scheduled yet", pod=object_key(pod))
                continue
            node = self._cache.nodes.get("", node_name)
            if node is None:
                logger.warning("Node not found", node=node_name, pod=object_key(pod))
                continue
            address = node_address(node)
            if address is None:
                logger.warning("Node has no usable address", node=node_name)
                continue
            addresses.add(address)
        return sorted(addresses)

    def update_ingress_status(self, addresses: List[str]) -> int:
        """Publish addresses on every managed Ingress that differs.

        Entries are compared as (ip, hostname) pairs, so a hostname entry
        never counts as one of our IP addresses.

        Returns:
            Number of Ingresses written.

        Raises:
            StatusUpdateError: On the first failed write.
        """
        log_function_entry(logger, "update_ingress_status", addresses=addresses)
        entries = address_entries(sorted(addresses))
        wanted = sorted(entry_identity(entry) for entry in entries)
        updated = 0
        for ing in list_managed_ingresses(self._cache, self._config):
            if sorted(entry_identity(entry) for entry in status_entries(ing)) == wanted:
                continue
            self._write_status(ing, entries)
            updated += 1
        log_function_exit(logger, "update_ingress_status", updated=updated)
        return updated

    def remove_address_from_load_balancer_ingress(self) -> int:
        """Withdraw this controller's addresses from every managed Ingress.

        Only entries whose ip is ours are dropped; every other entry is
        written back as read. Ingresses re-read from the API are skipped when
        gone or when they carry none of our addresses.

        Returns:
            Number of Ingresses written.
        """
        log_function_entry(logger, "remove_address_from_load_balancer_ingress")
        ours = set(self.get_load_balancer_ingress(self.controller_selector()))
        if not ours:
            logger.info("No controller addresses to remove")
            return 0

        updated = 0
        for cached in list_managed_ingresses(self._cache, self._config):
            namespace, name = cached.metadata.namespace, cached.metadata.name
            log_k8s_operation(logger, "read_status", f"{namespace}/{name}")
            try:
                ing = self._networking_api.read_namespaced_ingress_status(name, namespace)
            except ApiException as e:
                if e.status == 404:
                    logger.debug("Ingress already deleted", ingress=f"{namespace}/{name}")
                    continue
                raise StatusUpdateError(f"could not read ingress {namespace}/{name}: {e.reason}", e.status) from e

            current = status_entries(ing)
            remaining = [entry for entry in current if entry.ip not in ours]
            if len(remaining) == len(current):
                continue
            self._write_status(ing, remaining)
            updated += 1

        log_function_exit(logger, "remove_address_from_load_balancer_ingress", updated=updated)
        return updated

    def _write_status(self, ing: Any, entries: List[Any]) -> None:
        namespace, name = ing.metadata.namespace, ing.metadata.name
        body = copy.deepcopy(ing)
        body.status = load_balancer_status(copy.deepcopy(entries))
        addresses = status_addresses(body)
        log_k8s_operation(logger, "replace_status", f"{namespace}/{name}",
                          addresses=addresses,
                          resource_version=ing.metadata.resource_version)
        try:
            self._networking_api.replace_namespaced_ingress_status(name, namespace, body)
        except ApiException as e:
            raise StatusUpdateError(f"could not update status of ingress {namespace}/{name}: {e.reason}",
                                    e.status) from e
        logger.info("Updated ingress status", ingress=f"{namespace}/{name}", addresses=addresses)
