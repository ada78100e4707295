"""Connection to the Kubernetes API and wiring of informers."""

from typing import Any, Callable, Dict, List, Optional, Tuple

from kubernetes import client, config

from .cache import ResourceCache
from .informer import EventHandler, Informer
from .logging_config import get_logger, log_function_entry, log_function_exit, log_k8s_operation
from .models import ControllerConfig

logger = get_logger(__name__)


class KubeClient:
    """Holds the API clients the controller talks to the cluster with."""

    def __init__(self, controller_config: ControllerConfig):
        self.controller_config = controller_config
        self._api_client: Optional[client.ApiClient] = None
        self.core_v1: Optional[client.CoreV1Api] = None
        self.networking_v1: Optional[client.NetworkingV1Api] = None

    def connect(self) -> None:
        """Load kubeconfig, or in-cluster config when no path is set."""
        log_function_entry(logger, "connect",
                           kubeconfig_path=self.controller_config.kubeconfig_path,
                           context=self.controller_config.context)
        try:
            if self.controller_config.kubeconfig_path:
                logger.debug("Loading kubeconfig from file",
                             kubeconfig_path=self.controller_config.kubeconfig_path,
                             context=self.controller_config.context)
                config.load_kube_config(
                    config_file=self.controller_config.kubeconfig_path,
                    context=self.controller_config.context,
                )
            else:
                logger.debug("Loading in-cluster config")
                config.load_incluster_config()

            self._api_client = client.ApiClient()
            self.core_v1 = client.CoreV1Api(self._api_client)
            self.networking_v1 = client.NetworkingV1Api(self._api_client)
            logger.info("Connected to cluster")
            log_function_exit(logger, "connect", status="success")
        except Exception as e:
            logger.error("Failed to connect to cluster",
                         error=str(e),
                         kubeconfig_path=self.controller_config.kubeconfig_path,
                         context=self.controller_config.context)
            log_function_exit(logger, "connect", status="error", error=str(e))
            raise

    def _ensure_connected(self) -> None:
        if self.core_v1 is None or self.networking_v1 is None:
            self.connect()

    def _list_funcs(self) -> List[Tuple[str, Callable[..., Any], Dict[str, str]]]:
        """(kind, list function, kwargs) for every cached kind."""
        namespace = self.controller_config.watch_namespace
        if namespace:
            ingress_list = (self.networking_v1.list_namespaced_ingress, {"namespace": namespace})
        else:
            ingress_list = (self.networking_v1.list_ingress_for_all_namespaces, {})
        return [
            ("ingresses",) + ingress_list,
            ("services", self.core_v1.list_service_for_all_namespaces, {}),
            ("endpoints", self.core_v1.list_endpoints_for_all_namespaces, {}),
            ("secrets", self.core_v1.list_secret_for_all_namespaces, {}),
            ("config_maps", self.core_v1.list_config_map_for_all_namespaces, {}),
            ("pods", self.core_v1.list_pod_for_all_namespaces, {}),
            ("nodes", self.core_v1.list_node, {}),
        ]

    def build_informers(self, cache: ResourceCache, handlers: Dict[str, EventHandler]) -> List[Informer]:
        """Create one informer per cached kind.

        Args:
            cache: Cache whose stores the informers fill
            handlers: Event handler per kind; kinds without one are only cached
        """
        self._ensure_connected()
        informers = []
        for kind, list_func, kwargs in self._list_funcs():
            handler: Optional[EventHandler] = handlers.get(kind)
            informers.append(Informer(kind, list_func, cache.store(kind), handler, **kwargs))
        return informers

    def load_snapshot(self, cache: ResourceCache) -> None:
        """List every cached kind once, without watching."""
        self._ensure_connected()
        for kind, list_func, kwargs in self._list_funcs():
            log_k8s_operation(logger, "list", kind, **kwargs)
            result: Any = list_func(**kwargs)
            cache.store(kind).replace(result.items)

    def close(self) -> None:
        """Clean up the connection."""
        if self._api_client:
            self._api_client.close()
            self._api_client = None
