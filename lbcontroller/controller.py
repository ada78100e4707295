"""The reconcile loop tying caches, the reloader and Ingress status together."""

import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .builder import build_ingress_config, is_managed_ingress
from .cache import ResourceCache, object_key
from .errors import ControllerError
from .informer import Informer
from .logging_config import get_logger, log_function_entry, log_function_exit, log_sync_event
from .models import ControllerConfig, IngressConfig, PodInfo, SyncStatus
from .reloader import Reloader
from .status import LoadBalancerStatusManager
from .workqueue import WorkQueue

logger = get_logger(__name__)

RESYNC_KEY = "resync"
CACHE_SYNC_POLL_SECONDS = 0.1


class LoadBalancerController:
    """Keeps the proxy configuration and Ingress status in line with the cluster.

    Every trigger key leads to the same full rebuild, because the proxy
    configuration is global. A single worker consumes the queue, so at most
    one sync runs at a time.
    """

    def __init__(self, config: ControllerConfig, cache: ResourceCache, reloader: Reloader,
                 networking_api: Any, pod_info: Optional[PodInfo] = None,
                 informers: Optional[List[Informer]] = None):
        self.config = config
        self.cache = cache
        self.reloader = reloader
        self.status_manager = LoadBalancerStatusManager(cache, networking_api, config, pod_info)
        self.queue = WorkQueue(
            maxsize=config.queue_size,
            base_delay=config.retry_base_delay,
            max_delay=config.retry_max_delay,
        )
        self.informers: List[Informer] = informers or []
        self.last_config: Optional[IngressConfig] = None
        self.sync_status = SyncStatus()

        self._stop_event = threading.Event()
        self._stop_lock = threading.Lock()
        self._stopped = False
        self._threads: List[threading.Thread] = []
        self._worker: Optional[threading.Thread] = None

    def sync(self, key: str) -> None:
        """Rebuild and apply the configuration, then reconcile Ingress status.

        Raises:
            DefaultBackendNotFoundError: If the default backend is missing.
            TLSSecretNotFoundError: If the default TLS Secret is missing.
            ReloadError: If the reloader failed.
            StatusUpdateError: If an Ingress status write failed.
        """
        log_function_entry(logger, "sync", key=key)
        start = time.monotonic()

        ing_config = build_ingress_config(self.cache, self.config)
        changed = self.reloader.check_and_reload(ing_config)
        self.last_config = ing_config
        if changed:
            self.sync_status.reload_count += 1
            log_sync_event(logger, "reload_applied", key=key, upstreams=len(ing_config.upstreams))

        selector = self.status_manager.controller_selector()
        if selector:
            addresses = self.status_manager.get_load_balancer_ingress(selector)
            self.status_manager.update_ingress_status(addresses)
            self.sync_status.addresses = addresses
        else:
            logger.warning("Controller pod selector unknown, skipping status update")

        self.sync_status.sync_count += 1
        self.sync_status.last_sync = datetime.now(timezone.utc)
        log_sync_event(logger, "sync_completed",
                       key=key,
                       changed=changed,
                       upstreams=len(ing_config.upstreams),
                       tls=ing_config.tls,
                       duration_ms=round((time.monotonic() - start) * 1000, 2))
        log_function_exit(logger, "sync", key=key, changed=changed)

    def enqueue(self, key: str) -> None:
        self.queue.add(key)

    def event_handlers(self) -> Dict[str, Callable[[str, Any, Optional[Any]], None]]:
        """Informer event handlers per resource kind."""
        return {
            "ingresses": self._on_ingress_event,
            "services": self._on_event,
            "endpoints": self._on_endpoints_event,
            "secrets": self._on_event,
            "config_maps": self._on_event,
            "pods": self._on_event,
            "nodes": self._on_event,
        }

    def _request_rebuild(self, event_type: str, obj: Any) -> None:
        # Every event maps to the same global rebuild.
        logger.debug("Rebuild requested", trigger=object_key(obj), event_type=event_type)
        self.enqueue(RESYNC_KEY)

    def _on_event(self, event_type: str, obj: Any, old: Optional[Any]) -> None:
        self._request_rebuild(event_type, obj)

    def _on_ingress_event(self, event_type: str, obj: Any, old: Optional[Any]) -> None:
        ingress_class = self.config.ingress_class
        if is_managed_ingress(obj, ingress_class) or (old is not None and is_managed_ingress(old, ingress_class)):
            self._request_rebuild(event_type, obj)
        else:
            logger.debug("Ignoring ingress of another class", ingress=object_key(obj), event_type=event_type)

    def _on_endpoints_event(self, event_type: str, obj: Any, old: Optional[Any]) -> None:
        if event_type == "MODIFIED" and old is not None and old.subsets == obj.subsets:
            return
        self._request_rebuild(event_type, obj)

    def process_next_item(self, timeout: Optional[float] = None) -> bool:
        """Run sync for the next queued key.

        Returns:
            False once the queue is shut down.
        """
        key, shutdown = self.queue.get(timeout=timeout)
        if shutdown:
            return False
        if key is None:
            return True

        try:
            self.sync(key)
        except Exception as e:
            self.sync_status.error_count += 1
            self.sync_status.last_error = str(e)
            logger.error("Sync failed, requeueing",
                         key=key,
                         error=str(e),
                         error_type=type(e).__name__,
                         requeues=self.queue.num_requeues(key))
            self.queue.add_rate_limited(key)
        else:
            self.queue.forget(key)
        finally:
            self.queue.done(key)
        self.sync_status.queue_depth = len(self.queue)
        return True

    def _wait_for_cache_sync(self) -> bool:
        while not self._stop_event.is_set() and not self.queue.shutting_down:
            if all(informer.has_synced() for informer in self.informers):
                logger.info("Caches synced")
                return True
            self._stop_event.wait(CACHE_SYNC_POLL_SECONDS)
        return False

    def _run_worker(self) -> None:
        if not self._wait_for_cache_sync():
            return
        while self.process_next_item():
            pass
        logger.info("Worker stopped")

    def _resync_loop(self) -> None:
        while not self._stop_event.wait(self.config.resync_period):
            logger.debug("Periodic resync", period=self.config.resync_period)
            self.enqueue(RESYNC_KEY)

    def _spawn(self, target: Callable[..., None], name: str, *args: Any) -> threading.Thread:
        thread = threading.Thread(target=target, args=args, name=name, daemon=True)
        thread.start()
        self._threads.append(thread)
        return thread

    def start(self) -> None:
        """Start the reloader, informers, worker and resync timer."""
        logger.info("Starting load balancer controller",
                    ingress_class=self.config.ingress_class,
                    watch_namespace=self.config.watch_namespace or "all namespaces",
                    default_backend=self.config.default_backend_service,
                    resync_period=self.config.resync_period)

        self.reloader.start(self._stop_event)
        for informer in self.informers:
            self._spawn(informer.run, f"informer-{informer.kind}", self._stop_event)
        self._worker = self._spawn(self._run_worker, "sync-worker")
        self._spawn(self._resync_loop, "resync")
        self.enqueue(RESYNC_KEY)

    def stop(self) -> None:
        """Shut down in two phases.

        New keys are refused and the in-flight sync is drained first; then
        this controller's addresses are withdrawn from Ingress status, once.
        """
        with self._stop_lock:
            if self._stopped:
                return
            self._stopped = True

        logger.info("Stopping load balancer controller")
        self.queue.shut_down()
        if self._worker is not None:
            self._worker.join()

        self.remove_addresses_with_retry()

        self._stop_event.set()
        for informer in self.informers:
            informer.stop()
        logger.info("Load balancer controller stopped")

    def remove_addresses_with_retry(self) -> bool:
        """Withdraw our addresses, retrying with exponential backoff."""
        attempts = self.config.shutdown_retries
        delay = self.config.retry_base_delay
        for attempt in range(1, attempts + 1):
            try:
                removed = self.status_manager.remove_address_from_load_balancer_ingress()
            except ControllerError as e:
                logger.warning("Failed to remove addresses from ingress status",
                               attempt=attempt,
                               attempts=attempts,
                               error=str(e))
                if attempt < attempts:
                    time.sleep(delay)
                    delay = min(delay * 2, self.config.retry_max_delay)
                continue
            logger.info("Removed controller addresses from ingress status", ingresses=removed)
            return True

        logger.error("Giving up removing addresses from ingress status", attempts=attempts)
        return False
