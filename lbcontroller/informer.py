"""List-and-watch loops that keep the resource cache fresh."""

import threading
import time
from typing import Any, Callable, Optional

from kubernetes import watch
from kubernetes.client.rest import ApiException

from .cache import Store
from .logging_config import get_logger, log_k8s_operation

logger = get_logger(__name__)

WATCH_TIMEOUT_SECONDS = 300
ERROR_BACKOFF_SECONDS = 5

EventHandler = Callable[[str, Any, Optional[Any]], None]


class Informer:
    """Mirrors one resource kind into a Store and reports every change.

    The handler receives ``(event_type, obj, old)`` where old is the
    previously stored version, if any. Relists replay every object as
    ``SYNC``.
    """

    def __init__(self, kind: str, list_func: Callable[..., Any], store: Store,
                 handler: Optional[EventHandler] = None, **list_kwargs: Any):
        self.kind = kind
        self.store = store
        self._list_func = list_func
        self._list_kwargs = list_kwargs
        self._handler = handler
        self._synced = threading.Event()
        self._watch: Optional[watch.Watch] = None

    def has_synced(self) -> bool:
        return self._synced.is_set()

    def run(self, stop_event: threading.Event) -> None:
        """List and watch until stop_event is set."""
        logger.info("Starting informer", kind=self.kind)
        resource_version = None
        while not stop_event.is_set():
            try:
                if resource_version is None:
                    resource_version = self._list()
                resource_version = self._watch_once(stop_event, resource_version)
            except ApiException as e:
                if e.status == 410:
                    logger.info("Watch expired, relisting", kind=self.kind)
                    resource_version = None
                    continue
                logger.error("Informer API error", kind=self.kind, status=e.status, error=str(e))
                resource_version = None
                stop_event.wait(ERROR_BACKOFF_SECONDS)
            except Exception as e:
                logger.error("Unexpected informer error", kind=self.kind, error=str(e))
                resource_version = None
                stop_event.wait(ERROR_BACKOFF_SECONDS)
        logger.info("Informer stopped", kind=self.kind)

    def stop(self) -> None:
        if self._watch is not None:
            self._watch.stop()

    def _list(self) -> str:
        log_k8s_operation(logger, "list", self.kind, **self._list_kwargs)
        start = time.monotonic()
        result = self._list_func(**self._list_kwargs)
        self.store.replace(result.items)
        self._synced.set()
        logger.debug("Listed resources",
                     kind=self.kind,
                     count=len(result.items),
                     duration_ms=round((time.monotonic() - start) * 1000, 2))
        for obj in result.items:
            self._notify("SYNC", obj, None)
        return result.metadata.resource_version

    def _watch_once(self, stop_event: threading.Event, resource_version: str) -> Optional[str]:
        log_k8s_operation(logger, "watch", self.kind, resource_version=resource_version)
        self._watch = watch.Watch()
        for event in self._watch.stream(self._list_func,
                                        resource_version=resource_version,
                                        timeout_seconds=WATCH_TIMEOUT_SECONDS,
                                        **self._list_kwargs):
            if stop_event.is_set():
                self._watch.stop()
                break

            event_type = event["type"]
            obj = event["object"]
            if event_type == "ERROR":
                raw = event.get("raw_object") or {}
                if raw.get("code") == 410:
                    raise ApiException(status=410, reason="Gone")
                logger.warning("Watch error event", kind=self.kind, event=raw)
                continue

            resource_version = obj.metadata.resource_version
            if event_type in ("ADDED", "MODIFIED"):
                old = self.store.update(obj)
            elif event_type == "DELETED":
                old = self.store.delete(obj)
            else:
                continue
            self._notify(event_type, obj, old)
        return resource_version

    def _notify(self, event_type: str, obj: Any, old: Optional[Any]) -> None:
        if self._handler is None:
            return
        try:
            self._handler(event_type, obj, old)
        except Exception as e:
            logger.error("Event handler failed", kind=self.kind, event_type=event_type, error=str(e))
